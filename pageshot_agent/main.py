from __future__ import annotations

import asyncio
import base64
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import Response

from .config import Settings
from .decoder import decode_path
from .engine import RenderEngine
from .errors import InvalidRequest, RenderError
from .logs import configure_logging
from .models import RenderResponse
from .results import ResultMapper

settings = Settings.from_env()
configure_logging(settings.log_level, json_logs=settings.log_json)
logger = logging.getLogger(__name__)

engine = RenderEngine(settings)
mapper = ResultMapper.from_settings(settings)

app = FastAPI(title="Pageshot Agent", version="0.1.0")

_playwright_semaphore = asyncio.Semaphore(settings.concurrency)


@asynccontextmanager
async def _playwright_slot():
    try:
        await asyncio.wait_for(_playwright_semaphore.acquire(), timeout=settings.acquire_timeout_s)
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=503,
            detail="Agent busy (too many concurrent browser jobs). Please retry.",
            headers={"Retry-After": "2"},
        )
    try:
        yield
    finally:
        _playwright_semaphore.release()


async def render_path(path: str, *, engine: RenderEngine, mapper: ResultMapper, settings: Settings) -> RenderResponse:
    try:
        request = decode_path(path, settings=settings)
    except InvalidRequest as e:
        logger.info("rejected %s: %s", path, e.message, extra={"kind": e.kind})
        return mapper.map_failure(e)

    try:
        image = await engine.render(request)
    except RenderError as e:
        return mapper.map_failure(e, request.format)
    return mapper.map_success(request, image)


def to_http_response(result: RenderResponse) -> Response:
    headers = dict(result.headers)
    media_type = headers.pop("content-type", None)
    if result.ttl is not None:
        headers["cache-control"] = f"public, max-age={result.ttl}"
    content = base64.b64decode(result.body) if result.is_base64_encoded else result.body.encode()
    return Response(content=content, status_code=result.status_code, media_type=media_type, headers=headers)


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.get("/{path:path}")
async def screenshot_endpoint(request: Request, path: str):
    # the routed path is already percent-decoded, which would split the
    # encoded target url on its slashes
    raw_path = request.scope.get("raw_path") or request.url.path.encode()
    async with _playwright_slot():
        result = await render_path(raw_path.decode("latin-1"), engine=engine, mapper=mapper, settings=settings)
    return to_http_response(result)
