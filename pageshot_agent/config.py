from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load a project-root .env in local dev; real environment variables win.
_HERE = Path(__file__).resolve()
load_dotenv(_HERE.parents[1] / ".env", override=False)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_list(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    min_timeout_ms: int = 3000
    max_timeout_ms: int = 25000
    soft_cutoff_margin_ms: int = 1500
    on_deadline: str = "abort"  # abort | stop
    mobile_width: int = 1024

    session_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "pageshot-sessions")

    chromium_path: str | None = None
    headless: bool = True
    sandbox: bool = False
    chromium_args: tuple[str, ...] = ()

    error_status: int = 200
    error_ttl: int = 3600

    concurrency: int = 1
    acquire_timeout_s: float = 0.25

    log_level: str = "INFO"
    log_json: bool = False

    instagram_username: str | None = None
    instagram_password: str | None = None

    def __post_init__(self) -> None:
        if self.min_timeout_ms <= 0 or self.min_timeout_ms > self.max_timeout_ms:
            raise ValueError("timeout bounds must satisfy 0 < min <= max")
        if self.soft_cutoff_margin_ms >= self.min_timeout_ms:
            raise ValueError("soft cutoff margin must be smaller than the minimum timeout")
        if self.on_deadline not in ("abort", "stop"):
            raise ValueError(f"on_deadline must be 'abort' or 'stop', got {self.on_deadline!r}")

    @classmethod
    def from_env(cls) -> "Settings":
        session_dir = os.getenv("PAGESHOT_SESSION_DIR", "").strip()
        return cls(
            min_timeout_ms=_env_int("PAGESHOT_MIN_TIMEOUT_MS", 3000),
            max_timeout_ms=_env_int("PAGESHOT_MAX_TIMEOUT_MS", 25000),
            soft_cutoff_margin_ms=_env_int("PAGESHOT_SOFT_CUTOFF_MARGIN_MS", 1500),
            on_deadline=os.getenv("PAGESHOT_ON_DEADLINE", "abort").strip().lower() or "abort",
            mobile_width=_env_int("PAGESHOT_MOBILE_WIDTH", 1024),
            session_dir=Path(session_dir) if session_dir else Path(tempfile.gettempdir()) / "pageshot-sessions",
            chromium_path=os.getenv("PAGESHOT_CHROMIUM_PATH") or None,
            headless=_env_bool("PAGESHOT_HEADLESS", True),
            sandbox=_env_bool("PAGESHOT_SANDBOX", False),
            chromium_args=_env_list("PAGESHOT_CHROMIUM_ARGS"),
            error_status=_env_int("PAGESHOT_ERROR_STATUS", 200),
            error_ttl=_env_int("PAGESHOT_ERROR_TTL", 3600),
            concurrency=max(1, _env_int("PAGESHOT_CONCURRENCY", 1)),
            acquire_timeout_s=float(os.getenv("PAGESHOT_ACQUIRE_TIMEOUT_S", "0.25")),
            log_level=os.getenv("PAGESHOT_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            log_json=_env_bool("PAGESHOT_LOG_JSON", False),
            instagram_username=os.getenv("INSTAGRAM_USERNAME") or None,
            instagram_password=os.getenv("INSTAGRAM_PASSWORD") or None,
        )
