"""
Headless-browser rendering for JavaScript-heavy pages.

One browser is shared by all renders and created lazily on first use. Each
render gets its own browser context and page, which are always closed
afterwards; the shared browser is only closed by ``shutdown()``.
"""

import asyncio
from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .auth import AuthInjector
from .config import Settings, get_settings
from .errors import RenderError, RenderNavigationError, RenderTimeoutError
from .logging_conf import get_logger
from .models import AuthSpec, RenderOptions

logger = get_logger(__name__)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
]

BrowserFactory = Callable[[], Awaitable[Browser]]


class BrowserState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class PageRenderer:
    """
    Renders URLs into final HTML through one shared browser.

    The browser handle is guarded by a lock held only while it is being
    created; callers arriving meanwhile wait and then share the same handle.

    Args:
        settings: Settings (defaults to the cached application settings)
        browser_factory: Coroutine function returning a connected Browser.
            Defaults to launching Chromium, or connecting to the remote
            browser service when one is configured.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        browser_factory: Optional[BrowserFactory] = None,
    ):
        self.settings = settings or get_settings()
        self._browser_factory = browser_factory or self._start_browser
        self._browser: Optional[Browser] = None
        self._playwright: Optional[Playwright] = None
        self._lock = asyncio.Lock()
        self.state = BrowserState.UNINITIALIZED
        self.launch_count = 0

    def is_available(self) -> bool:
        """Whether a connected browser is ready for use."""
        return self._browser is not None and self._browser.is_connected()

    async def _start_browser(self) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        chromium = self._playwright.chromium

        endpoint = self.settings.browser_ws_endpoint
        if endpoint:
            try:
                logger.info("browser_connecting", endpoint=self.settings.chrome_service_url)
                return await chromium.connect_over_cdp(endpoint)
            except PlaywrightError as e:
                logger.warning("browser_ws_connect_failed", error=str(e))
                return await chromium.connect_over_cdp(self.settings.chrome_service_url)

        logger.info("browser_launching", headless=self.settings.browser_headless)
        return await chromium.launch(headless=self.settings.browser_headless, args=LAUNCH_ARGS)

    async def acquire(self) -> Browser:
        """Return the shared browser, creating or recreating it if needed."""
        browser = self._browser
        if browser is not None and browser.is_connected():
            return browser

        async with self._lock:
            # Another caller may have finished initialization while we waited
            if self._browser is not None and self._browser.is_connected():
                return self._browser

            if self._browser is not None:
                logger.warning("browser_disconnected", launches=self.launch_count)
                self._browser = None

            self.state = BrowserState.INITIALIZING
            try:
                self._browser = await self._browser_factory()
            except Exception as e:
                self.state = BrowserState.UNINITIALIZED
                logger.error("browser_start_failed", error=str(e))
                raise RenderError(f"could not start browser: {e}") from e

            self.launch_count += 1
            self.state = BrowserState.READY
            logger.info("browser_ready", launches=self.launch_count)
            return self._browser

    async def acquire_page(self, auth: Optional[AuthSpec] = None, url: str = "") -> Page:
        """Open a fresh context and page with user agent, viewport and credentials applied."""
        browser = await self.acquire()
        try:
            context = await browser.new_context(
                user_agent=self.settings.user_agent,
                viewport={
                    "width": self.settings.viewport_width,
                    "height": self.settings.viewport_height,
                },
                ignore_https_errors=True,
            )
        except PlaywrightError as e:
            raise RenderError(f"could not open browser context: {e}") from e

        page = None
        try:
            injector = AuthInjector(auth)
            if injector.active:
                await injector.apply_to_context(context, url)
            page = await context.new_page()
            return page
        except PlaywrightError as e:
            raise RenderError(f"could not open page: {e}") from e
        finally:
            if page is None:
                await self._close_context(context)

    async def release_page(self, page: Page) -> None:
        """Close a page and its context. The shared browser stays open."""
        await self._close_context(page.context)

    async def _close_context(self, context: BrowserContext) -> None:
        try:
            await context.close()
        except PlaywrightError as e:
            logger.debug("context_close_failed", error=str(e))

    @asynccontextmanager
    async def page(self, auth: Optional[AuthSpec] = None, url: str = "") -> AsyncIterator[Page]:
        page = await self.acquire_page(auth, url)
        try:
            yield page
        finally:
            await self.release_page(page)

    async def render(self, options: RenderOptions) -> str:
        """
        Render a page and return its serialized HTML.

        Raises:
            RenderTimeoutError: Navigation did not settle within the timeout
            RenderNavigationError: Navigation failed or returned an error status
        """
        url = options.url
        logger.debug("render_start", url=url, timeout_ms=options.timeout_ms)

        async with self.page(options.auth, url) as page:
            page.set_default_timeout(options.timeout_ms)
            page.set_default_navigation_timeout(options.timeout_ms)

            try:
                response = await page.goto(url, wait_until="networkidle", timeout=options.timeout_ms)
            except PlaywrightTimeoutError as e:
                logger.warning("render_timeout", url=url, timeout_ms=options.timeout_ms)
                raise RenderTimeoutError(f"timeout rendering {url} after {options.timeout_ms}ms") from e
            except PlaywrightError as e:
                logger.warning("render_navigation_failed", url=url, error=str(e))
                raise RenderNavigationError(f"navigation to {url} failed: {e}") from e

            if response is not None and response.status >= 400:
                raise RenderNavigationError(f"HTTP {response.status} rendering {url}")

            if options.wait_for_selector:
                try:
                    await page.wait_for_selector(
                        options.wait_for_selector,
                        timeout=self.settings.wait_for_selector_timeout_ms,
                    )
                except PlaywrightTimeoutError:
                    logger.warning(
                        "wait_for_selector_timeout",
                        url=url,
                        selector=options.wait_for_selector,
                    )

            if options.extra_wait_ms > 0:
                await asyncio.sleep(options.extra_wait_ms / 1000)

            try:
                html = await page.content()
            except PlaywrightError as e:
                raise RenderError(f"could not read rendered content of {url}: {e}") from e

        logger.info("render_complete", url=url, chars=len(html))
        return html

    async def shutdown(self) -> None:
        """Close the shared browser. Safe to call repeatedly."""
        async with self._lock:
            browser, self._browser = self._browser, None
            playwright, self._playwright = self._playwright, None
            if browser is None and playwright is None:
                return

            if browser is not None:
                try:
                    await browser.close()
                except PlaywrightError as e:
                    logger.warning("browser_close_failed", error=str(e))
            if playwright is not None:
                await playwright.stop()

            self.state = BrowserState.UNINITIALIZED
            logger.info("browser_shutdown")


# Process-wide renderer
_renderer_instance: Optional[PageRenderer] = None


def get_page_renderer() -> PageRenderer:
    """Get or create the shared page renderer."""
    global _renderer_instance
    if _renderer_instance is None:
        _renderer_instance = PageRenderer()
    return _renderer_instance


async def shutdown_page_renderer() -> None:
    """Shut down the shared page renderer, if one was created."""
    if _renderer_instance is not None:
        await _renderer_instance.shutdown()
