"""
Playwright browser for navigation-mode sessions.

One browser process is kept for the whole run, but every page is opened
in its own browser context, so no cookies, storage or script state
carry over from one listing page to the next.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Playwright,
)

from review_crawler.browser.page_context import PageContext
from review_crawler.config.settings import BrowserSettings
from review_crawler.core.exceptions import BrowserError
from review_crawler.crawler.models import PageContent
from review_crawler.crawler.sources import detect_source
from review_crawler.utils.logging import get_logger

logger = get_logger(__name__)


class BrowserManager:
    """
    Owns the Playwright driver and the browser process.

    Example:
        >>> async with BrowserManager(settings) as manager:
        ...     async with manager.fresh_context() as context:
        ...         page = await context.new_page()
    """

    def __init__(self, settings: BrowserSettings) -> None:
        self.settings = settings
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def start(self) -> None:
        """
        Launch the configured browser engine.

        Raises:
            BrowserError: If Playwright cannot launch it
        """
        if self._browser is not None:
            return

        logger.info(f"Launching {self.settings.browser_type} (headless={self.settings.headless})")
        try:
            self._playwright = await async_playwright().start()
            engine = getattr(self._playwright, self.settings.browser_type)
            self._browser = await engine.launch(headless=self.settings.headless)
        except PlaywrightError as e:
            await self.stop()
            raise BrowserError(f"Failed to launch browser: {e}", browser_type=self.settings.browser_type) from e

    async def stop(self) -> None:
        """Close the browser and the driver. Safe to call more than once."""
        browser, self._browser = self._browser, None
        driver, self._playwright = self._playwright, None

        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser: {e}")
        if driver is not None:
            try:
                await driver.stop()
            except PlaywrightError as e:
                logger.warning(f"Error stopping Playwright: {e}")

    def _context_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {
            "viewport": {"width": self.settings.viewport_width, "height": self.settings.viewport_height},
            "locale": self.settings.locale,
        }
        if self.settings.user_agent:
            options["user_agent"] = self.settings.user_agent
        return options

    @asynccontextmanager
    async def fresh_context(self) -> AsyncIterator[BrowserContext]:
        """
        A new isolated browser context, closed on exit.

        Raises:
            BrowserError: If the browser is not running or refuses a context
        """
        if self._browser is None:
            raise BrowserError("Browser not started")

        try:
            context = await self._browser.new_context(**self._context_options())
        except PlaywrightError as e:
            raise BrowserError(f"Failed to create browser context: {e}") from e

        context.set_default_timeout(self.settings.timeout_ms)
        context.set_default_navigation_timeout(self.settings.navigation_timeout_ms)
        try:
            yield context
        finally:
            try:
                await context.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser context: {e}")

    async def __aenter__(self) -> "BrowserManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()


class BrowserPageLoader:
    """
    Loads each location in a fresh browser context.

    Listing pages are considered loaded once the source's review
    container appears; other pages once navigation settles.
    """

    def __init__(self, manager: BrowserManager) -> None:
        self.manager = manager

    async def load(self, url: str) -> PageContent:
        profile = detect_source(url)
        ready_selector = profile.review_selectors.container if profile.is_listing(url) else None

        async with self.manager.fresh_context() as context:
            page = PageContext(await context.new_page())
            return await page.navigate_and_capture(
                url,
                ready_selector=ready_selector,
                page_number=profile.page_number(url),
            )


@asynccontextmanager
async def create_browser(settings: BrowserSettings) -> AsyncIterator[BrowserManager]:
    """Running BrowserManager for the duration of the block."""
    async with BrowserManager(settings) as manager:
        yield manager
