"""Attachment to an already running Chrome over its remote debugging port."""

from __future__ import annotations

import asyncio
import contextlib
import json
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import nodriver
from nodriver import cdp

from cart_monitor.core.credentials import CredentialInjector
from cart_monitor.core.human import HumanPacer
from cart_monitor.exceptions import (
    AuthExpiredError,
    BrowserConnectionError,
    BrowserNotConnectedError,
    NavigationTimeoutError,
)
from cart_monitor.utils.config import BrowserSettings
from cart_monitor.utils.constants import (
    AUTH_MARKER_SELECTORS,
    AUTH_TITLE_PATTERN,
    AUTH_URL_PATTERN,
    OVERLAY_CLOSE_SELECTORS,
)
from cart_monitor.utils.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from nodriver import Tab as Page
else:
    Page = nodriver.Tab

# Export Page for other modules
__all__ = ["BrowserManager", "BrowserSession", "Page"]

logger = get_logger(__name__)

_AUTH_MARKER_JS = (
    "(() => !!document.querySelector(%s))()" % json.dumps(", ".join(AUTH_MARKER_SELECTORS))
)

_DISMISS_OVERLAYS_JS = """
(() => {
  let closed = 0;
  for (const el of document.querySelectorAll(%s)) {
    const style = window.getComputedStyle(el);
    if (style.display === 'none' || style.visibility === 'hidden') continue;
    try { el.click(); closed += 1; } catch (e) {}
  }
  return closed;
})()
""" % json.dumps(", ".join(OVERLAY_CLOSE_SELECTORS))


class BrowserSession:
    """
    Handle on an attached browser and the contexts used on it.

    The spare context is the one found (or created) at attach time. Each
    account is bound to exactly one context for the lifetime of the session.
    """

    def __init__(self, browser: nodriver.Browser, spare_context_id: Any) -> None:
        self.browser = browser
        self.spare_context_id = spare_context_id
        self.created_context_ids: list[Any] = []
        self._account_contexts: dict[str, Any] = {}

    def context_of(self, account_id: str) -> Any | None:
        return self._account_contexts.get(account_id)

    def bind(self, account_id: str, context_id: Any) -> None:
        self._account_contexts[account_id] = context_id

    @property
    def spare_taken(self) -> bool:
        return self.spare_context_id in self._account_contexts.values()


class BrowserManager:
    """
    Drives a Chrome process the operator started with ``--remote-debugging-port``.

    Features:
    - Attach instead of launch; the browser and its contexts outlive a run
    - One isolated browser context per account (separate cookie jars)
    - Scoped page acquisition with cookie injection and guaranteed close
    - Navigation deadline and login / challenge page detection
    """

    def __init__(
        self,
        settings: BrowserSettings | None = None,
        injector: CredentialInjector | None = None,
        pacer: HumanPacer | None = None,
    ) -> None:
        self.settings = settings or BrowserSettings()
        self.injector = injector or CredentialInjector(self.settings.cookie_domain)
        self.pacer = pacer or HumanPacer()

        self._session: BrowserSession | None = None
        self._pages: list[Page] = []
        self._context_lock = asyncio.Lock()

    @property
    def endpoint(self) -> str:
        return f"{self.settings.host}:{self.settings.port}"

    @property
    def session(self) -> BrowserSession:
        if self._session is None:
            raise BrowserNotConnectedError("Browser not attached. Call connect() first.")
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    # =========================================================================
    # Attachment
    # =========================================================================

    async def connect(self) -> BrowserSession:
        """
        Attach to the running browser and pick the spare context.

        The first existing browser context is reused; one is created when the
        browser exposes none.

        Raises:
            BrowserConnectionError: Debugging endpoint is unreachable
        """
        if self._session is not None:
            return self._session

        logger.info("Attaching to browser", endpoint=self.endpoint)
        try:
            browser = await nodriver.start(
                host=self.settings.host,
                port=self.settings.port,
            )
            contexts = await browser.connection.send(cdp.target.get_browser_contexts())
        except Exception as e:
            logger.error("Browser attach failed", endpoint=self.endpoint, error=str(e))
            raise BrowserConnectionError(
                f"Cannot reach remote debugging endpoint {self.endpoint}"
            ) from e

        session = BrowserSession(browser, contexts[0] if contexts else None)
        if session.spare_context_id is None:
            session.spare_context_id = await self._create_context(session)

        self._session = session
        logger.info(
            "Browser attached",
            endpoint=self.endpoint,
            existing_contexts=len(contexts),
        )
        return session

    async def _create_context(self, session: BrowserSession) -> Any:
        context_id = await session.browser.connection.send(
            cdp.target.create_browser_context()
        )
        session.created_context_ids.append(context_id)
        logger.debug("Browser context created", context_id=str(context_id))
        return context_id

    async def context_for(self, account_id: str) -> Any:
        """Return the context bound to ``account_id``, binding one on first use."""
        session = self.session
        async with self._context_lock:
            context_id = session.context_of(account_id)
            if context_id is not None:
                return context_id

            if not session.spare_taken:
                context_id = session.spare_context_id
            else:
                context_id = await self._create_context(session)
            session.bind(account_id, context_id)
            logger.info("Account bound to browser context", account_id=account_id)
            return context_id

    # =========================================================================
    # Pages
    # =========================================================================

    async def new_page(self, context_id: Any) -> Page:
        """Open a blank tab inside the given browser context."""
        browser = self.session.browser
        target_id = await browser.connection.send(
            cdp.target.create_target("about:blank", browser_context_id=context_id)
        )
        await browser.update_targets()

        for tab in browser.tabs:
            if tab.target.target_id == target_id:
                self._pages.append(tab)
                logger.debug("New page created", total_pages=len(self._pages))
                return tab

        raise BrowserNotConnectedError(f"New target {target_id} did not appear")

    async def close_page(self, page: Page) -> None:
        """Close a specific tab; the context and the browser stay open."""
        if page in self._pages:
            self._pages.remove(page)
        with contextlib.suppress(Exception):
            await page.close()
        logger.debug("Page closed", remaining_pages=len(self._pages))

    @asynccontextmanager
    async def acquire_authenticated_page(
        self,
        cookies: Any,
        account_id: str,
    ) -> AsyncIterator[Page]:
        """
        Open a page in the account's context with its cookies injected.

        The page is closed on every exit path, including cancellation.

        Raises:
            InvalidCookiesError: Cookie jar cannot be parsed
        """
        await self.connect()
        context_id = await self.context_for(account_id)
        page = await self.new_page(context_id)
        try:
            await self.injector.inject(page, cookies)
            yield page
        finally:
            await self.close_page(page)

    # =========================================================================
    # Navigation
    # =========================================================================

    async def goto(self, page: Page, url: str) -> None:
        """
        Navigate within the configured deadline, then let the page settle.

        Raises:
            NavigationTimeoutError: Navigation did not finish in time
        """
        timeout = self.settings.navigation_timeout_ms / 1000
        logger.info("Navigating to URL", url=url)

        try:
            await asyncio.wait_for(page.get(url), timeout=timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Navigation timed out", url=url, timeout=timeout)
            raise NavigationTimeoutError(f"Navigation to {url} exceeded {timeout}s") from e

        await self.pacer.random_delay(1.0, 2.5)

    async def is_auth_page(self, page: Page) -> bool:
        """Whether the page is a login form or a verification challenge."""
        url = page.target.url or ""
        if AUTH_URL_PATTERN.search(url):
            return True

        title = await page.evaluate("document.title")
        if isinstance(title, str) and AUTH_TITLE_PATTERN.search(title):
            return True

        return bool(await page.evaluate(_AUTH_MARKER_JS))

    async def ensure_authenticated(self, page: Page) -> None:
        """
        Raises:
            AuthExpiredError: Page shows a login form or challenge
        """
        if await self.is_auth_page(page):
            logger.warning("Login or verification page detected", url=page.target.url)
            raise AuthExpiredError("Session cookies are no longer accepted")

    async def dismiss_overlays(self, page: Page) -> int:
        """Best-effort close of feature tips and dialogs covering the page."""
        try:
            closed = await page.evaluate(_DISMISS_OVERLAYS_JS)
        except Exception as e:
            logger.debug("Overlay dismissal failed", error=str(e))
            return 0
        closed = closed if isinstance(closed, int) else 0
        if closed:
            logger.debug("Overlays dismissed", count=closed)
        return closed

    async def scroll_page(self, page: Page, scroll_count: int = 3) -> None:
        """Scroll page to load dynamic content."""
        for i in range(scroll_count):
            await page.evaluate("window.scrollBy(0, window.innerHeight)")
            await self.pacer.random_delay(0.5, 1.5)
            logger.debug("Page scrolled", scroll=i + 1, total=scroll_count)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def close(self) -> None:
        """
        Detach from the browser.

        Pages opened by this manager and contexts it created are released;
        the browser process itself keeps running.
        """
        if self._session is None:
            return
        logger.info("Detaching from browser")

        for page in list(self._pages):
            await self.close_page(page)

        connection = self._session.browser.connection
        for context_id in self._session.created_context_ids:
            with contextlib.suppress(Exception):
                await connection.send(cdp.target.dispose_browser_context(context_id))

        with contextlib.suppress(Exception):
            await connection.aclose()
        self._session = None
        logger.info("Browser detached")

    async def __aenter__(self) -> BrowserManager:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit."""
        await self.close()
