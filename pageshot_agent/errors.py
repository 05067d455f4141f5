from __future__ import annotations


class RenderError(Exception):
    """Base class for every failure the render pipeline reports.

    `kind` is a stable machine-readable tag; the HTTP layer copies it into the
    `x-error-kind` header.
    """

    kind = "render_error"
    fatal = True

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class InvalidRequest(RenderError):
    kind = "invalid_request"


class LaunchError(RenderError):
    kind = "launch_error"


class NavigationTimeout(RenderError):
    kind = "navigation_timeout"


class NavigationError(RenderError):
    kind = "navigation_error"


class LoginError(RenderError):
    kind = "login_error"


class HookError(RenderError):
    kind = "hook_error"


class CaptureError(RenderError):
    kind = "capture_error"


class PersistenceWarning(RenderError):
    # Raised by session stores; callers log it and carry on.
    kind = "persistence_warning"
    fatal = False
