from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ImageFormat = Literal["jpeg", "png", "webp"]
ColorScheme = Literal["light", "dark"]
WaitUntil = Literal["domcontentloaded", "load", "networkidle0", "networkidle2"]
NavigationOutcome = Literal["completed", "timed_out_partial", "timed_out_fatal"]

# playwright has a single networkidle state (no connections for 500ms); it
# stands in for both puppeteer-style variants
LOAD_STATES: dict[str, str] = {
    "domcontentloaded": "domcontentloaded",
    "load": "load",
    "networkidle0": "networkidle",
    "networkidle2": "networkidle",
}


class Viewport(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)


class RenderRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str = Field(..., min_length=1)
    format: ImageFormat = "jpeg"
    viewport: Viewport
    device_scale_factor: float = Field(1.0, gt=0)
    javascript_enabled: bool = True
    wait_until: tuple[WaitUntil, ...] = ("load",)
    timeout_ms: int = Field(25000, gt=0)
    color_scheme: ColorScheme | None = None
    cache_buster_options: dict[str, int] = Field(default_factory=dict)

    # decoded path tokens, kept for logging
    size: str = "small"
    aspect_ratio: str = "1:1"
    zoom: str = "standard"

    @property
    def media_type(self) -> str:
        return f"image/{self.format}"


class Cookie(BaseModel):
    """One browser cookie, serialized with the browser's own field names."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    value: str
    domain: str | None = None
    path: str | None = "/"
    expires: float | None = None
    http_only: bool = Field(False, alias="httpOnly")
    secure: bool = False
    same_site: Literal["Strict", "Lax", "None"] | None = Field(None, alias="sameSite")

    def to_browser(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class SessionState(BaseModel):
    cookies: list[Cookie] = Field(default_factory=list)

    @classmethod
    def from_browser(cls, cookies: list[dict[str, Any]]) -> "SessionState":
        return cls(cookies=[Cookie.model_validate(c) for c in cookies])

    def is_empty(self) -> bool:
        return not self.cookies


class RenderResponse(BaseModel):
    status_code: int
    headers: dict[str, str]
    body: str = ""
    is_base64_encoded: bool = False
    # seconds a cache in front of us may keep this response; None means default
    ttl: int | None = None

    @property
    def ok(self) -> bool:
        return "x-error-kind" not in self.headers
