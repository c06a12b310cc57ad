"""
Component wiring.

Builds the storage, strategies, rate limiting and event channel that a
controller needs, from one Settings object. Controllers are created on
demand and hold no state of their own, so each call to controller()
behaves like a brand-new execution context reading persisted state.
"""

import random
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Callable

from review_crawler.browser.manager import BrowserPageLoader, create_browser
from review_crawler.config.settings import Settings
from review_crawler.crawler.challenge import ChallengeDetector
from review_crawler.crawler.controller import CrawlSessionController
from review_crawler.crawler.events import SessionEvents
from review_crawler.crawler.models import TraversalMode
from review_crawler.crawler.queue import QueueManager, TargetQueue
from review_crawler.crawler.rate_limiter import DailyPageQuota, PageRateLimiter, SleepFunc
from review_crawler.crawler.runner import PageLoader, SessionRunner
from review_crawler.crawler.session_store import SessionStore
from review_crawler.crawler.traversal import (
    FetchStrategy,
    HttpxFetcher,
    NavigationStrategy,
    PageFetcher,
)
from review_crawler.extraction.review_extractor import RecordExtractor, SelectorExtractor
from review_crawler.storage.database import Database
from review_crawler.storage.kv_store import KeyValueStore, SQLiteKeyValueStore
from review_crawler.storage.repositories import ReviewRepository
from review_crawler.storage.sink import RecordSink, SQLiteRecordSink
from review_crawler.utils.logging import get_logger

logger = get_logger(__name__)


class Runtime:
    """
    Everything a crawl needs, built once per process.

    Any component can be injected; whatever is not injected is built
    from settings.

    Example:
        >>> runtime = Runtime(settings)
        >>> result = runtime.controller().start_session(url)
        >>> async with runtime.page_loader() as loader:
        ...     await runtime.runner(loader).run_active()
    """

    def __init__(
        self,
        settings: Settings,
        kv: KeyValueStore | None = None,
        sink: RecordSink | None = None,
        fetcher: PageFetcher | None = None,
        extractor: RecordExtractor | None = None,
        events: SessionEvents | None = None,
        rng: random.Random | None = None,
        sleep: SleepFunc | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.settings = settings
        self.db: Database | None = None

        if kv is None or sink is None:
            self.db = Database.from_settings(settings)
        self.kv = kv or SQLiteKeyValueStore(self.db)
        self.repository = ReviewRepository(self.db) if self.db is not None else None
        self.sink = sink or SQLiteRecordSink(self.repository)

        self.fetcher = fetcher or HttpxFetcher(settings.http)
        self.extractor = extractor or SelectorExtractor()
        self.detector = ChallengeDetector()
        self.events = events or SessionEvents()
        self.sessions = SessionStore(self.kv)
        self.rate_limiter = PageRateLimiter(settings.crawler, rng=rng, sleep=sleep)
        self.quota = DailyPageQuota(self.kv, settings.crawler, today=today)
        self.strategies = {
            TraversalMode.NAVIGATION: NavigationStrategy(self.detector),
            TraversalMode.FETCH: FetchStrategy(self.fetcher, self.extractor, self.detector),
        }
        self._today = today

    def controller(self) -> CrawlSessionController:
        """A fresh controller over the shared persisted state."""
        return CrawlSessionController(
            sessions=SessionStore(self.kv),
            strategies=self.strategies,
            extractor=self.extractor,
            sink=self.sink,
            rate_limiter=self.rate_limiter,
            quota=self.quota,
            events=self.events,
            settings=self.settings.crawler,
            today=self._today,
        )

    def runner(self, page_loader: PageLoader | None = None) -> SessionRunner:
        return SessionRunner(self.controller, page_loader)

    def queue_manager(self, page_loader: PageLoader | None = None) -> QueueManager:
        return QueueManager(TargetQueue(self.kv), self.controller, self.runner(page_loader), self.events)

    @asynccontextmanager
    async def page_loader(self, needed: bool = True) -> AsyncIterator[PageLoader | None]:
        """
        Browser-backed page loader for navigation sessions.

        With needed=False no browser is launched and None is yielded.
        """
        if not needed:
            yield None
            return
        async with create_browser(self.settings.browser) as manager:
            yield BrowserPageLoader(manager)

    def close(self) -> None:
        """Release storage. Use aclose() when an event loop has been used."""
        if self.db is not None:
            self.db.close()
        logger.debug("Runtime closed")

    async def aclose(self) -> None:
        if isinstance(self.fetcher, HttpxFetcher):
            await self.fetcher.close()
        self.close()
