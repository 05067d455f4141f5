from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .config import Settings
from .errors import (
    CaptureError,
    HookError,
    LaunchError,
    NavigationError,
    NavigationTimeout,
    RenderError,
)
from .hooks import SiteHook, SiteHookRegistry, default_registry
from .logs import with_context
from .models import LOAD_STATES, NavigationOutcome, RenderRequest

logger = logging.getLogger(__name__)

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/101.0.4951.41 Safari/537.36 Edg/100.0.1185.39"
)
MOBILE_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 15_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/15.4 Mobile/15E148 Safari/604.1"
)
JPEG_QUALITY = 80
DEFAULT_CHROMIUM_ARGS = ("--disable-dev-shm-usage", "--disable-gpu")

Timer = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class BrowserLaunchConfig:
    executable_path: str | None = None
    headless: bool = True
    sandbox: bool = False
    extra_args: tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings: Settings) -> "BrowserLaunchConfig":
        return cls(
            executable_path=settings.chromium_path,
            headless=settings.headless,
            sandbox=settings.sandbox,
            extra_args=settings.chromium_args,
        )

    def launch_kwargs(self) -> dict[str, Any]:
        args = list(DEFAULT_CHROMIUM_ARGS)
        if not self.sandbox:
            args += ["--no-sandbox", "--disable-setuid-sandbox"]
        args += [a for a in self.extra_args if a not in args]

        kwargs: dict[str, Any] = {
            "headless": self.headless,
            "args": args,
            "chromium_sandbox": self.sandbox,
        }
        if self.executable_path:
            kwargs["executable_path"] = self.executable_path
        return kwargs


@dataclass
class BrowserSession:
    """One browser process and one page, owned by a single render."""

    playwright: Any = None
    browser: Any = None
    context: Any = None
    page: Any = None
    # event-loop time at which the soft cutoff fires
    deadline: float | None = None
    closed: bool = False


def user_agent_for(width: int, mobile_width: int = 1024) -> str:
    return MOBILE_USER_AGENT if width < mobile_width else DESKTOP_USER_AGENT


class RenderEngine:
    """Renders one request per browser: launch, navigate, hook, capture, close.

    Navigation (and an authenticated hook's login flow) is raced against a
    soft cutoff `margin` ms before the request timeout, leaving room to halt
    the page and take the screenshot before the outer deadline. What happens
    when the cutoff wins is `settings.on_deadline`: "abort" fails the request,
    "stop" halts loading and captures whatever rendered.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        registry: SiteHookRegistry | None = None,
        launch_config: BrowserLaunchConfig | None = None,
        playwright_factory: Callable[[], Any] = async_playwright,
        timer: Timer = asyncio.sleep,
    ):
        self.settings = settings or Settings()
        self.registry = registry if registry is not None else default_registry(self.settings)
        self.launch_config = launch_config or BrowserLaunchConfig.from_settings(self.settings)
        self._playwright_factory = playwright_factory
        self._timer = timer

    def soft_cutoff_ms(self, request: RenderRequest) -> int:
        return max(request.timeout_ms - self.settings.soft_cutoff_margin_ms, 0)

    async def render(self, request: RenderRequest) -> bytes:
        hook = self.registry.resolve(request.url)
        log = with_context(logger, url=request.url, hook=hook.name if hook else None)
        session = BrowserSession()
        try:
            log.debug("launching browser", extra={"state": "launching"})
            await self.launch(request, session)

            log.debug("navigating", extra={"state": "navigating"})
            outcome = await self.navigate(session, request, hook)
            if outcome == "timed_out_fatal":
                raise NavigationTimeout(
                    f"page did not finish loading within {self.soft_cutoff_ms(request)}ms"
                )

            # a halted page skips the hook; its DOM may be half built
            if hook is not None and outcome == "completed":
                log.debug("running hook", extra={"state": "hook_running"})
                await self.run_hook(hook, session, request)

            log.debug("capturing", extra={"state": "capturing"})
            image = await self.capture(session, request)
        except RenderError as e:
            log.warning("render failed: %s", e.message, extra={"state": "failed", "kind": e.kind})
            raise
        finally:
            await self._close_quietly(session, log)

        log.info(
            "rendered %s viewport=%dx%d size=%s dpr=%s aspectratio=%s outcome=%s",
            request.format,
            request.viewport.width,
            request.viewport.height,
            request.size,
            request.device_scale_factor,
            request.aspect_ratio,
            outcome,
        )
        return image

    async def launch(self, request: RenderRequest, session: BrowserSession | None = None) -> BrowserSession:
        owned = session is None
        session = session or BrowserSession()

        context_kwargs: dict[str, Any] = {
            "viewport": {"width": request.viewport.width, "height": request.viewport.height},
            "device_scale_factor": request.device_scale_factor,
            "user_agent": user_agent_for(request.viewport.width, self.settings.mobile_width),
            "java_script_enabled": request.javascript_enabled,
            "ignore_https_errors": True,
        }
        if request.color_scheme:
            context_kwargs["color_scheme"] = request.color_scheme

        try:
            session.playwright = await self._playwright_factory().start()
            session.browser = await session.playwright.chromium.launch(**self.launch_config.launch_kwargs())
            session.context = await session.browser.new_context(**context_kwargs)
            session.page = await session.context.new_page()
        except Exception as e:
            if owned:
                await self._close_quietly(session, with_context(logger, url=request.url))
            raise LaunchError(f"browser failed to start: {e}") from e
        return session

    async def navigate(
        self,
        session: BrowserSession,
        request: RenderRequest,
        hook: SiteHook | None = None,
    ) -> NavigationOutcome:
        hook_navigates = hook is not None and hook.owns_navigation
        if hook_navigates:
            operation = hook.navigate(session, request)
        else:
            operation = self._goto(session, request)

        cutoff_ms = self.soft_cutoff_ms(request)
        session.deadline = asyncio.get_running_loop().time() + cutoff_ms / 1000

        try:
            finished = await self._race(operation, cutoff_ms / 1000)
        except RenderError:
            raise
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"navigation timed out: {e}") from e
        except PlaywrightError as e:
            raise NavigationError(f"navigation failed: {e}") from e
        except Exception as e:
            if hook_navigates:
                raise HookError(f"{hook.name} hook failed: {e}") from e
            raise NavigationError(f"navigation failed: {e}") from e

        if finished:
            return "completed"

        logger.info("soft cutoff after %dms", cutoff_ms, extra={"url": request.url, "state": "navigating"})
        # a login flow cut short is not a usable page
        if self.settings.on_deadline == "stop" and not hook_navigates:
            try:
                await session.page.evaluate("() => window.stop()")
            except PlaywrightError as e:
                raise NavigationError(f"could not halt page load: {e}") from e
            return "timed_out_partial"
        return "timed_out_fatal"

    async def _goto(self, session: BrowserSession, request: RenderRequest) -> None:
        states = [LOAD_STATES[w] for w in request.wait_until] or ["load"]
        await session.page.goto(request.url, wait_until=states[0], timeout=request.timeout_ms)
        for state in states[1:]:
            await session.page.wait_for_load_state(state, timeout=request.timeout_ms)

    async def run_hook(self, hook: SiteHook, session: BrowserSession, request: RenderRequest) -> None:
        if session.deadline is not None:
            budget = session.deadline - asyncio.get_running_loop().time()
        else:
            budget = self.soft_cutoff_ms(request) / 1000

        try:
            finished = await self._race(hook.before_capture(session, request), budget)
        except RenderError:
            raise
        except Exception as e:
            raise HookError(f"{hook.name} hook failed: {e}") from e

        if not finished:
            raise NavigationTimeout(f"{hook.name} hook did not finish before the soft cutoff")

    async def capture(self, session: BrowserSession, request: RenderRequest) -> bytes:
        # never full page: nothing outside the declared viewport may leak in
        clip = {"x": 0, "y": 0, "width": request.viewport.width, "height": request.viewport.height}
        timeout_ms = self.remaining_ms(session, request)
        try:
            if request.format == "webp":
                return await self._capture_cdp(session, request, clip, timeout_ms)
            options: dict[str, Any] = {
                "type": request.format,
                "full_page": False,
                "clip": clip,
                "timeout": timeout_ms,
            }
            if request.format == "jpeg":
                options["quality"] = JPEG_QUALITY
            return await session.page.screenshot(**options)
        except asyncio.TimeoutError as e:
            raise CaptureError(f"screenshot did not finish within {timeout_ms}ms") from e
        except Exception as e:
            raise CaptureError(f"screenshot failed: {e}") from e

    async def _capture_cdp(
        self,
        session: BrowserSession,
        request: RenderRequest,
        clip: dict[str, int],
        timeout_ms: int,
    ) -> bytes:
        # page.screenshot has no webp; chromium's DevTools command does
        cdp = await session.context.new_cdp_session(session.page)
        try:
            result = await asyncio.wait_for(
                cdp.send(
                    "Page.captureScreenshot",
                    {
                        "format": request.format,
                        "clip": {**clip, "scale": 1},
                        "captureBeyondViewport": False,
                    },
                ),
                timeout_ms / 1000,
            )
        finally:
            await cdp.detach()
        return base64.b64decode(result["data"])

    def remaining_ms(self, session: BrowserSession, request: RenderRequest) -> int:
        """Time left before the request timeout itself (not the soft cutoff)."""
        if session.deadline is None:
            return request.timeout_ms
        end = session.deadline + self.settings.soft_cutoff_margin_ms / 1000
        return max(int((end - asyncio.get_running_loop().time()) * 1000), 1)

    async def _close_quietly(self, session: BrowserSession, log: logging.LoggerAdapter) -> None:
        # teardown failures are logged; they never replace the render's outcome
        try:
            await self.close(session)
        except Exception as e:
            log.warning("browser close failed: %s", e, extra={"state": "closed"})
        else:
            log.debug("browser closed", extra={"state": "closed"})

    async def close(self, session: BrowserSession) -> None:
        if session.closed:
            return
        session.closed = True
        try:
            if session.context is not None:
                await session.context.close()
        finally:
            try:
                if session.browser is not None:
                    await session.browser.close()
            finally:
                if session.playwright is not None:
                    await session.playwright.stop()

    async def _race(self, operation: Awaitable[Any], seconds: float) -> bool:
        """First of {operation, timer} wins; the loser is cancelled.

        Returns True when the operation finished first (re-raising its error),
        False when the timer fired first.
        """
        task = asyncio.ensure_future(operation)
        timer = asyncio.ensure_future(self._timer(max(seconds, 0)))
        try:
            await asyncio.wait({task, timer}, return_when=asyncio.FIRST_COMPLETED)
            won = task.done()
        finally:
            for t in (task, timer):
                if not t.done():
                    t.cancel()
            await asyncio.gather(task, timer, return_exceptions=True)

        if won:
            task.result()
        return won
