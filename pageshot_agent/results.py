from __future__ import annotations

import base64

from .config import Settings
from .errors import RenderError
from .models import ImageFormat, RenderRequest, RenderResponse


class ResultMapper:
    """Turns a render outcome into the response handed to the HTTP layer.

    Failures default to status 200 with an empty body: browsers only show the
    fallback for an <img> that answered 200, and the short ttl makes the edge
    cache ask again in an hour instead of keeping the failure until the next
    deploy.
    """

    def __init__(self, *, error_status: int = 200, error_ttl: int = 3600):
        self.error_status = error_status
        self.error_ttl = error_ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResultMapper":
        return cls(error_status=settings.error_status, error_ttl=settings.error_ttl)

    def map_success(self, request: RenderRequest, image: bytes) -> RenderResponse:
        return RenderResponse(
            status_code=200,
            headers={"content-type": request.media_type},
            body=base64.b64encode(image).decode("ascii"),
            is_base64_encoded=True,
        )

    def map_failure(self, error: RenderError, image_format: ImageFormat = "jpeg") -> RenderResponse:
        return RenderResponse(
            status_code=self.error_status,
            headers={
                "content-type": f"image/{image_format}",
                "x-error-message": _header_safe(error.message),
                "x-error-kind": error.kind,
            },
            body="",
            is_base64_encoded=False,
            ttl=self.error_ttl,
        )


def _header_safe(message: str) -> str:
    # header values must be single-line latin-1
    flat = " ".join(message.split())
    return flat.encode("latin-1", "replace").decode("latin-1")[:512]
