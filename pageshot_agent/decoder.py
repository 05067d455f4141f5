"""Request path decoding.

    /<percent-encoded-url>/[size]/[aspect-ratio]/[light|dark]/[zoom]/[_cachebuster]/

e.g. `/https%3A%2F%2Fwww.11ty.dev%2F/small/1:1/smaller/`. Any segment after
the url that starts with `_` is the cache-buster: it and every field after it
fall back to defaults, so `/https%3A%2F%2Fwww.11ty.dev%2F/_20210802/` only
changes the cache key. The cache-buster may carry `_key:value` options
(`wait`, `timeout`, `js`).
"""

from __future__ import annotations

import logging
from urllib.parse import unquote, urlparse

from .config import Settings
from .errors import InvalidRequest
from .models import ColorScheme, ImageFormat, RenderRequest, Viewport, WaitUntil

logger = logging.getLogger(__name__)

CACHE_BUSTER_PREFIX = "_"

DEFAULT_SIZE = "small"
DEFAULT_ASPECT_RATIO = "1:1"
DEFAULT_ZOOM = "standard"

ZOOM_FACTORS: dict[str, float] = {
    "bigger": 1.4,
    "standard": 1.0,
    "smaller": 0.71428571,
}

VIEWPORTS: dict[tuple[str, str], tuple[int, int]] = {
    ("small", "1:1"): (375, 375),
    ("small", "9:16"): (375, 667),
    ("medium", "1:1"): (650, 650),
    ("medium", "9:16"): (650, 1156),
    # 9:16 is not offered on large
    ("large", "1:1"): (1024, 1024),
}

# opengraph ignores the aspect ratio; the viewport shrinks or grows with the
# zoom so the output image stays 1200x630
OPENGRAPH_VIEWPORTS: dict[str, tuple[int, int]] = {
    "bigger": (857, 450),
    "standard": (1200, 630),
    "smaller": (1680, 882),
}

WAIT_PRESETS: dict[int, tuple[WaitUntil, ...]] = {
    0: ("domcontentloaded",),
    1: ("load",),
    2: ("load", "networkidle0"),
    3: ("load", "networkidle2"),
}
DEFAULT_WAIT: tuple[WaitUntil, ...] = ("load",)

_COLOR_SCHEMES: tuple[ColorScheme, ...] = ("light", "dark")


def is_full_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc)


def parse_cache_buster(token: str | None) -> dict[str, int]:
    """`_wait:2_timeout:9` -> {"wait": 2, "timeout": 9}.

    Sub-tokens without an integer value (the epoch itself) carry no option.
    """
    options: dict[str, int] = {}
    for part in (token or "").split(CACHE_BUSTER_PREFIX):
        if not part:
            continue
        key, _, value = part.partition(":")
        try:
            options[key.strip().lower()] = int(value.strip())
        except ValueError:
            continue
    return options


def clamp_timeout(timeout_ms: int, settings: Settings) -> int:
    return min(max(timeout_ms, settings.min_timeout_ms), settings.max_timeout_ms)


def resolve_viewport(size: str, aspect_ratio: str, zoom: str) -> tuple[Viewport, float]:
    dpr = ZOOM_FACTORS.get(zoom)
    if size == "opengraph":
        dims = OPENGRAPH_VIEWPORTS.get(zoom)
    else:
        dims = VIEWPORTS.get((size, aspect_ratio))
    if dpr is None or dims is None:
        raise InvalidRequest("unsupported viewport combination")
    return Viewport(width=dims[0], height=dims[1]), dpr


def _split_fields(tokens: list[str]) -> tuple[list[str | None], str | None]:
    """Assign positional tokens to (size, aspect ratio, color scheme, zoom).

    Returns the fields and the cache-buster token, if any.
    """
    fields: list[str | None] = [None, None, None, None]
    cache_buster: str | None = None
    slot = 0
    for token in tokens:
        if token.startswith(CACHE_BUSTER_PREFIX):
            cache_buster = token
            break
        if slot == 2 and token.lower() not in _COLOR_SCHEMES:
            # no color scheme given, this token is the zoom
            slot = 3
        if slot > 3:
            # a trailing non-prefixed segment is taken as the cache-buster
            cache_buster = token
            break
        fields[slot] = token
        slot += 1
    return fields, cache_buster


def decode_path(
    path: str,
    *,
    settings: Settings | None = None,
    image_format: ImageFormat = "jpeg",
) -> RenderRequest:
    settings = settings or Settings()
    tokens = [t for t in path.split("/") if t]
    if not tokens:
        raise InvalidRequest("bad url")

    url = unquote(tokens[0])
    if not is_full_url(url):
        raise InvalidRequest("bad url")

    (size, aspect_ratio, color_scheme, zoom), cache_buster = _split_fields(tokens[1:])
    size = (size or DEFAULT_SIZE).lower()
    aspect_ratio = aspect_ratio or DEFAULT_ASPECT_RATIO
    zoom = (zoom or DEFAULT_ZOOM).lower()

    viewport, dpr = resolve_viewport(size, aspect_ratio, zoom)

    options = parse_cache_buster(cache_buster)
    wait_until = WAIT_PRESETS.get(options.get("wait", -1), DEFAULT_WAIT)

    timeout_ms = settings.max_timeout_ms
    if options.get("timeout"):
        timeout_ms = options["timeout"] * 1000
    timeout_ms = clamp_timeout(timeout_ms, settings)

    request = RenderRequest(
        url=url,
        format=image_format,
        viewport=viewport,
        device_scale_factor=dpr,
        javascript_enabled=options.get("js", 1) != 0,
        wait_until=wait_until,
        timeout_ms=timeout_ms,
        color_scheme=color_scheme.lower() if color_scheme else None,
        cache_buster_options=options,
        size=size,
        aspect_ratio=aspect_ratio,
        zoom=zoom,
    )
    logger.debug("decoded %s -> %s", path, request)
    return request
