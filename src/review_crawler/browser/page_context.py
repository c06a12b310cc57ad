"""
Page context wrapper for Playwright pages.

Provides navigation with consistent error mapping and capture of the
rendered HTML as PageContent.
"""

import time

from playwright.async_api import (
    Error as PlaywrightError,
    Page,
    Response,
    TimeoutError as PlaywrightTimeoutError,
)

from review_crawler.core.exceptions import BrowserError, TransportError
from review_crawler.crawler.models import PageContent
from review_crawler.utils.logging import get_logger

logger = get_logger(__name__)


class PageContext:
    """
    Wrapper around a Playwright Page.

    Example:
        >>> ctx = PageContext(await context.new_page())
        >>> content = await ctx.navigate_and_capture(url, page_number=2)
    """

    def __init__(self, page: Page) -> None:
        self.page = page
        self._last_response: Response | None = None

    async def navigate(
        self,
        url: str,
        wait_until: str = "domcontentloaded",
    ) -> Response | None:
        """
        Navigate to URL and wait for page load.

        Raises:
            TransportError: If navigation fails, times out or returns HTTP >= 400
        """
        start_time = time.perf_counter()

        try:
            logger.debug(f"Navigating to: {url}")
            response = await self.page.goto(url, wait_until=wait_until)
        except PlaywrightTimeoutError as e:
            raise TransportError(
                f"Navigation timeout: {e}", url=url, retry_after=10.0
            ) from e
        except PlaywrightError as e:
            error_msg = str(e)
            if any(x in error_msg.lower() for x in ["net::", "dns", "connection"]):
                raise TransportError(
                    f"Network error: {error_msg}", url=url, retry_after=5.0
                ) from e
            raise TransportError(f"Navigation failed: {error_msg}", url=url) from e

        self._last_response = response

        elapsed = (time.perf_counter() - start_time) * 1000
        logger.debug(f"Navigation complete in {elapsed:.0f}ms")

        if response and response.status >= 400:
            raise TransportError(
                f"HTTP {response.status} error",
                url=url,
                status_code=response.status,
                retry_after=5.0 if response.status == 429 else None,
            )

        return response

    async def wait_for_selector(self, selector: str, timeout_ms: int = 5000) -> bool:
        """Wait for an element; False on timeout."""
        try:
            await self.page.wait_for_selector(selector, timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            logger.debug(f"Selector not found within {timeout_ms}ms: {selector}")
            return False

    async def capture(self, page_number: int | None = None) -> PageContent:
        """
        Capture the rendered page.

        Raises:
            BrowserError: If the page content cannot be read
        """
        try:
            html = await self.page.content()
        except PlaywrightError as e:
            raise BrowserError(
                f"Failed to read page content: {e}", {"url": self.page.url}
            ) from e

        return PageContent(
            url=self.page.url,
            html=html,
            status_code=self._last_response.status if self._last_response else None,
            page_number=page_number,
        )

    async def navigate_and_capture(
        self,
        url: str,
        ready_selector: str | None = None,
        page_number: int | None = None,
    ) -> PageContent:
        """Navigate, optionally wait for review markup, then capture."""
        await self.navigate(url)
        if ready_selector:
            await self.wait_for_selector(ready_selector)
        return await self.capture(page_number)
