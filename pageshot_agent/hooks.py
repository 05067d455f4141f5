"""Per-site adjustments applied before the screenshot is taken.

The registry is a short, ordered list of hook objects; the first one whose
domain markers appear in the target host handles the request. Adding a site
means adding an entry to `default_registry`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError

from .config import Settings
from .errors import LoginError, PersistenceWarning
from .logs import with_context
from .models import LOAD_STATES, RenderRequest, SessionState
from .session_store import FileSessionStore, SessionStore

if TYPE_CHECKING:
    from .engine import BrowserSession

logger = logging.getLogger(__name__)

# login waits give up this long before the soft cutoff so a stuck login
# surfaces as a login failure rather than a slow page
LOGIN_SLACK_MS = 250

_REMOVE_ELEMENTS_JS = """
(selectors) => {
  let removed = 0;
  for (const sel of selectors) {
    for (const el of document.querySelectorAll(sel)) {
      if (el.parentNode) {
        el.parentNode.removeChild(el);
        removed += 1;
      }
    }
  }
  return removed;
}
"""


async def remove_elements(session: "BrowserSession", selectors: Sequence[str]) -> int:
    return await session.page.evaluate(_REMOVE_ELEMENTS_JS, list(selectors))


class SiteHook:
    name = "hook"
    domains: tuple[str, ...] = ()
    # hooks that own navigation replace the engine's page.goto sequence
    owns_navigation = False

    def matches(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        return any(d in host for d in self.domains)

    async def navigate(self, session: "BrowserSession", request: RenderRequest) -> None:
        """Load `request.url` in place of the engine's own goto sequence.

        Only called when `owns_navigation` is true; hooks that set it must
        override this.
        """
        raise NotImplementedError(f"{self.name} does not navigate on its own")

    async def before_capture(self, session: "BrowserSession", request: RenderRequest) -> None:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class DomCleanupHook(SiteHook):
    """Strips banners, headers and footers from pages of one domain family."""

    def __init__(self, name: str, domains: Sequence[str], selectors: Sequence[str]):
        self.name = name
        self.domains = tuple(d.lower() for d in domains)
        self.selectors = tuple(selectors)

    async def before_capture(self, session: "BrowserSession", request: RenderRequest) -> None:
        removed = await remove_elements(session, self.selectors)
        logger.debug("%s: removed %d elements", self.name, removed)


class InstagramHook(SiteHook):
    """Logged-in Instagram views, reusing the last session's cookies.

    States: check_stored -> logged_in, or check_stored -> needs_login ->
    submitting_credentials -> awaiting_login_result -> login_succeeded |
    login_failed. A failed login fails the request: a screenshot of the login
    wall would be cached as if it were the page.
    """

    name = "instagram"
    domains = ("instagram.com",)
    owns_navigation = True

    consent_selector = "[role=presentation]"
    logged_in_selector = "header"
    login_form_selector = "[type=submit]"
    username_selector = "[name=username]"
    password_selector = "[type=password]"
    error_banner_selector = "#slfErrorAlert"
    content_selector = "img"

    def __init__(self, store: SessionStore, *, username: str | None = None, password: str | None = None):
        self.store = store
        self.username = username
        self.password = password

    async def navigate(self, session: "BrowserSession", request: RenderRequest) -> None:
        log = with_context(logger, url=request.url, hook=self.name)
        page = session.page

        state = await asyncio.to_thread(self.store.load, self.name)
        if state is not None:
            await session.context.add_cookies([c.to_browser() for c in state.cookies])
            log.info("session has been loaded in the browser", extra={"state": "check_stored"})

        await page.goto(request.url, wait_until=_first_wait(request), timeout=request.timeout_ms)
        await remove_elements(session, [self.consent_selector])

        if await page.query_selector(self.logged_in_selector) is not None:
            log.info("already logged in", extra={"state": "logged_in"})
            return

        log.info("handling login", extra={"state": "needs_login"})
        await self._login(session, request)

        await page.goto(request.url, wait_until=_first_wait(request), timeout=request.timeout_ms)
        await page.wait_for_selector(self.content_selector, state="visible", timeout=request.timeout_ms)

        try:
            state = SessionState.from_browser(await session.context.cookies())
            await asyncio.to_thread(self.store.save, self.name, state)
        except PersistenceWarning as e:
            log.warning("%s", e.message, extra={"kind": e.kind})

    async def _login(self, session: "BrowserSession", request: RenderRequest) -> None:
        if not self.username or not self.password:
            raise LoginError("no instagram credentials configured")

        log = with_context(logger, url=request.url, hook=self.name)
        page = session.page
        try:
            await page.wait_for_selector(self.login_form_selector, timeout=_login_budget_ms(session, request))
            log.debug("filling login form", extra={"state": "submitting_credentials"})
            await page.fill(self.username_selector, self.username)
            await page.fill(self.password_selector, self.password)
        except PlaywrightError as e:
            raise LoginError(f"instagram login form unusable: {e}") from e

        budget = _login_budget_ms(session, request)
        navigated = asyncio.ensure_future(
            page.wait_for_event(
                "framenavigated",
                predicate=lambda frame: frame.parent_frame is None,
                timeout=budget,
            )
        )
        error_banner = asyncio.ensure_future(
            page.wait_for_selector(self.error_banner_selector, timeout=budget)
        )
        try:
            await page.click(self.login_form_selector)
            log.debug("waiting for login result", extra={"state": "awaiting_login_result"})
            done, _pending = await asyncio.wait(
                {navigated, error_banner}, return_when=asyncio.FIRST_COMPLETED
            )
        except PlaywrightError as e:
            raise LoginError(f"could not submit instagram login: {e}") from e
        finally:
            for task in (navigated, error_banner):
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError, PlaywrightError):
                        await task

        if error_banner in done and error_banner.exception() is None:
            raise LoginError("instagram rejected the credentials")
        if navigated in done and navigated.exception() is None:
            log.info("login succeeded", extra={"state": "login_succeeded"})
            return
        # neither signal arrived in time: not provably logged in
        raise LoginError("instagram login did not complete")

    async def before_capture(self, session: "BrowserSession", request: RenderRequest) -> None:
        await remove_elements(session, [self.consent_selector])


def _first_wait(request: RenderRequest) -> str:
    return LOAD_STATES[request.wait_until[0]] if request.wait_until else "load"


def _login_budget_ms(session: "BrowserSession", request: RenderRequest) -> int:
    if session.deadline is None:
        return request.timeout_ms
    left_ms = (session.deadline - asyncio.get_running_loop().time()) * 1000 - LOGIN_SLACK_MS
    return max(int(left_ms), 1)


class SiteHookRegistry:
    def __init__(self, hooks: Sequence[SiteHook] = ()):
        self.hooks = tuple(hooks)

    def resolve(self, url: str) -> SiteHook | None:
        for hook in self.hooks:
            if hook.matches(url):
                return hook
        return None


def default_registry(settings: Settings, store: SessionStore | None = None) -> SiteHookRegistry:
    store = store or FileSessionStore(settings.session_dir)
    return SiteHookRegistry(
        [
            InstagramHook(
                store,
                username=settings.instagram_username,
                password=settings.instagram_password,
            ),
            DomCleanupHook(
                "youtube",
                domains=("youtube.com", "youtu.be"),
                selectors=(
                    "ytd-consent-bump-v2-lightbox",
                    "tp-yt-iron-overlay-backdrop",
                    "#masthead-container",
                    "ytd-mini-guide-renderer",
                ),
            ),
        ]
    )
