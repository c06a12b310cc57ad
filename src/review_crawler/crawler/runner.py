"""
Session runners.

NavigationDriver plays the part of the outer page-load lifecycle: each
iteration builds a fresh controller (nothing carried over in memory),
opens the persisted next location in a fresh execution context and
hands the loaded page to resume_if_pending.

SessionRunner picks the right way to run the active session.
"""

from typing import Callable, Protocol

from review_crawler.core.exceptions import BrowserError, TransportError
from review_crawler.crawler.controller import CrawlSessionController
from review_crawler.crawler.models import CrawlSession, PageContent, TraversalMode
from review_crawler.utils.logging import get_logger, get_logger_with_context

logger = get_logger(__name__)

ControllerFactory = Callable[[], CrawlSessionController]


class PageLoader(Protocol):
    """Opens a URL in a brand-new execution context and returns what loaded."""

    async def load(self, url: str) -> PageContent: ...


class NavigationDriver:
    """
    Loop of page loads for navigation-mode sessions.

    Example:
        >>> driver = NavigationDriver(runtime.controller, BrowserPageLoader(manager))
        >>> session = await driver.drive()
    """

    def __init__(
        self,
        controller_factory: ControllerFactory,
        loader: PageLoader,
        max_loads: int = 10_000,
    ) -> None:
        self.controller_factory = controller_factory
        self.loader = loader
        self.max_loads = max_loads

    async def drive(self) -> CrawlSession | None:
        """
        Load pages until the active session is no longer live.

        Returns:
            The final persisted session, or None if none was active
        """
        last: CrawlSession | None = None

        for _ in range(self.max_loads):
            controller = self.controller_factory()
            session = controller.active_session()
            if session is None:
                return controller.get_session(last.target_id) if last else None
            last = session

            if not session.is_live or session.mode is not TraversalMode.NAVIGATION:
                return session
            target_log = get_logger_with_context(__name__, target=session.target_id)
            if not session.next_location:
                target_log.warning("Session has no location to open")
                return session

            try:
                content = await self.loader.load(session.next_location)
            except (TransportError, BrowserError) as e:
                error = e if isinstance(e, TransportError) else TransportError(e.message, url=session.next_location)
                return controller.record_failure(error)

            result = await controller.resume_if_pending(content)
            if not result.resumed:
                target_log.info(f"Nothing to resume: {result.reason}")
                return controller.get_session(session.target_id)

        logger.warning(f"Stopped driving after {self.max_loads} page loads")
        return last


class SessionRunner:
    """
    Runs whatever session is active, in the way its mode requires.

    Fetch sessions run their own loop; navigation sessions need a page
    loader.
    """

    def __init__(
        self,
        controller_factory: ControllerFactory,
        page_loader: PageLoader | None = None,
    ) -> None:
        self.controller_factory = controller_factory
        self.page_loader = page_loader

    async def run_active(self) -> CrawlSession | None:
        controller = self.controller_factory()
        session = controller.active_session()
        if session is None or not session.is_live:
            return session

        if session.mode is TraversalMode.FETCH:
            await controller.resume_if_pending()
            return controller.get_session(session.target_id)

        if self.page_loader is None:
            error = TransportError("No page loader configured for navigation mode", url=session.next_location)
            return controller.record_failure(error)

        return await NavigationDriver(self.controller_factory, self.page_loader).drive()
