"""
Page traversal strategies.

Two ways exist to get from page N to page N+1:

- NavigationStrategy: the next page is loaded in a brand-new execution
  context. The strategy only computes where to go; the new context
  hands the loaded page back to the controller through resume.
- FetchStrategy: the next page is retrieved directly with httpx and
  parsed in-process.

Both check every page for bot-challenge markers before anything else.
"""

from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

import httpx

from review_crawler.config.settings import HttpSettings
from review_crawler.core.exceptions import TransportError
from review_crawler.crawler.challenge import ChallengeDetector
from review_crawler.crawler.models import (
    CrawlSession,
    FetchedPage,
    PageContent,
    TraversalMode,
)
from review_crawler.crawler.sources import SourceProfile, get_profile
from review_crawler.extraction.review_extractor import RecordExtractor
from review_crawler.utils.logging import get_logger
from review_crawler.utils.metrics import time_page_fetch

logger = get_logger(__name__)


@runtime_checkable
class PageFetcher(Protocol):
    """Retrieves a page. Raises TransportError on any failure."""

    async def fetch(self, url: str) -> PageContent: ...


class HttpxFetcher:
    """
    PageFetcher backed by a shared httpx.AsyncClient.

    Example:
        >>> async with HttpxFetcher(settings.http) as fetcher:
        ...     content = await fetcher.fetch(url)
    """

    def __init__(self, settings: HttpSettings, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self._client = client
        self._owns_client = client is None

    def _build_client(self) -> httpx.AsyncClient:
        headers = {
            "User-Agent": self.settings.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": self.settings.accept_language,
            **self.settings.extra_headers,
        }
        return httpx.AsyncClient(
            headers=headers,
            timeout=self.settings.timeout_seconds,
            follow_redirects=self.settings.follow_redirects,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    async def fetch(self, url: str) -> PageContent:
        """
        Raises:
            TransportError: On timeout, connection failure or HTTP >= 400
        """
        try:
            with time_page_fetch():
                response = await self.client.get(url)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {e}", url=url, retry_after=10.0) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Request failed: {e}", url=url, retry_after=5.0) from e

        if response.status_code >= 400:
            retry_after = None
            if response.status_code == 429:
                header = response.headers.get("retry-after", "")
                retry_after = float(header) if header.isdigit() else 30.0
            raise TransportError(
                f"HTTP {response.status_code} error",
                url=url,
                status_code=response.status_code,
                retry_after=retry_after,
            )

        return PageContent(url=str(response.url), html=response.text, status_code=response.status_code)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "HttpxFetcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class TraversalStrategy(ABC):
    """
    Common behaviour of both traversal modes.
    """

    mode: TraversalMode

    def __init__(self, detector: ChallengeDetector | None = None) -> None:
        self.detector = detector or ChallengeDetector()

    def profile_for(self, session: CrawlSession) -> SourceProfile:
        return get_profile(session.source)

    def inspect(self, content: PageContent, session: CrawlSession) -> None:
        """
        Raises:
            ChallengeDetected: If the page is a verification interstitial
        """
        self.detector.check(content, self.profile_for(session))

    def page_location(self, session: CrawlSession, page_number: int) -> str:
        """URL of a listing page for the session."""
        return self.profile_for(session).page_url(session.listing_url, page_number)

    def has_next(self, content: PageContent, session: CrawlSession) -> bool:
        """
        Decide whether another page follows the given one.

        The page's own pagination markup wins; the total-pages estimate
        is used only when the markup says nothing.
        """
        profile = self.profile_for(session)
        if profile.is_last_page(content.html):
            return False
        if profile.next_page_url(content.html, content.url) is not None:
            return True
        page = content.page_number or profile.page_number(content.url)
        return session.total_pages is not None and page < session.total_pages

    @abstractmethod
    async def fetch_next(self, page_number: int, session: CrawlSession) -> FetchedPage:
        """Retrieve and parse a listing page in-process."""


class NavigationStrategy(TraversalStrategy):
    """
    Traversal through fresh execution contexts.

    Pages are never fetched here; the controller stores the location
    produced by build_next_location and the driver opens it.
    """

    mode = TraversalMode.NAVIGATION

    def build_next_location(self, session: CrawlSession, content: PageContent | None = None) -> str:
        return self.page_location(session, session.listing_page)

    async def fetch_next(self, page_number: int, session: CrawlSession) -> FetchedPage:
        raise NotImplementedError("Navigation mode receives pages through resume")


class FetchStrategy(TraversalStrategy):
    """
    Direct in-process retrieval of listing pages.

    Example:
        >>> strategy = FetchStrategy(HttpxFetcher(settings.http), SelectorExtractor())
        >>> page = await strategy.fetch_next(2, session)
    """

    mode = TraversalMode.FETCH

    def __init__(
        self,
        fetcher: PageFetcher,
        extractor: RecordExtractor,
        detector: ChallengeDetector | None = None,
    ) -> None:
        super().__init__(detector)
        self.fetcher = fetcher
        self.extractor = extractor

    async def fetch_next(self, page_number: int, session: CrawlSession) -> FetchedPage:
        """
        Raises:
            TransportError: If the page cannot be retrieved
            ChallengeDetected: If a verification page came back
        """
        url = self.page_location(session, page_number)
        logger.debug(f"Fetching page {page_number}: {url}")

        content = await self.fetcher.fetch(url)
        content.page_number = page_number
        self.inspect(content, session)

        records = self.extractor.extract(content, self.profile_for(session))
        return FetchedPage(
            content=content,
            records=records,
            has_next=self.has_next(content, session),
        )

    async def discover_listing(self, session: CrawlSession) -> PageContent:
        """
        Fetch the start page of a session whose start URL is not a listing.

        Raises:
            TransportError: If the page cannot be retrieved
            ChallengeDetected: If a verification page came back
        """
        content = await self.fetcher.fetch(session.start_url)
        self.inspect(content, session)
        return content
