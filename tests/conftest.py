"""
Shared pytest fixtures for review crawler tests.

Provides reusable fixtures for:
- Configuration and settings
- In-memory storage and a recording sink
- A scripted page fetcher and page loader
- A runtime wired from all of the above
- Listing HTML builders
"""

import random
import tempfile
from datetime import date
from pathlib import Path
from typing import Generator

import pytest

from review_crawler.config import Settings
from review_crawler.config.loader import reset_settings
from review_crawler.core.exceptions import TransportError
from review_crawler.crawler.events import RecordingEvents
from review_crawler.crawler.models import PageContent
from review_crawler.crawler.sources import GENERIC
from review_crawler.runtime import Runtime
from review_crawler.storage import Database
from review_crawler.storage.kv_store import MemoryKeyValueStore
from review_crawler.storage.sink import MemorySink
from review_crawler.utils.logging import reset_logging
from review_crawler.utils.metrics import Metrics

LISTING_URL = "https://shop.example.com/items/42/reviews"
TODAY = date(2024, 7, 1)


def review_html(body: str, author: str = "Alice", day: str | None = "2024-06-10", review_id: str = "") -> str:
    """One review block in the generic review markup."""
    id_attr = f' id="{review_id}"' if review_id else ""
    date_html = f'<time datetime="{day}">{day}</time>' if day else ""
    return (
        f'<div class="review"{id_attr}>'
        f'<span class="review-author">{author}</span>'
        f"{date_html}"
        f'<p class="review-body">{body}</p>'
        f"</div>"
    )


def listing_html(reviews: list[str], next_page: int | None = None, total: int | None = None) -> str:
    """A generic listing page holding the given review blocks."""
    parts = ["<html><body>"]
    if total is not None:
        parts.append(f'<span itemprop="reviewCount">{total}</span>')
    parts.extend(reviews)
    if next_page is not None:
        parts.append(f'<a rel="next" href="?page={next_page}">Next</a>')
    parts.append("</body></html>")
    return "".join(parts)


def page_url(page: int, url: str = LISTING_URL) -> str:
    return GENERIC.page_url(url, page)


class FakeFetcher:
    """
    PageFetcher answering from a page-number script.

    A script value may be HTML, a PageContent or an exception to raise.
    Entries in urls win over the page-number script.
    """

    def __init__(self, pages: dict[int, object] | None = None) -> None:
        self.pages = pages or {}
        self.urls: dict[str, object] = {}
        self.requests: list[str] = []
        self.on_fetch = None

    async def fetch(self, url: str) -> PageContent:
        self.requests.append(url)
        if self.on_fetch is not None:
            self.on_fetch(url)
        page = GENERIC.page_number(url)
        value = self.urls.get(url, self.pages.get(page))
        if value is None:
            raise TransportError("HTTP 404 error", url=url, status_code=404)
        if isinstance(value, Exception):
            raise value
        if isinstance(value, PageContent):
            return value
        return PageContent(url=url, html=value)


class FakeLoader:
    """PageLoader answering from a URL script; records every load."""

    def __init__(self, pages: dict[str, object] | None = None) -> None:
        self.pages = pages or {}
        self.loads: list[str] = []

    async def load(self, url: str) -> PageContent:
        self.loads.append(url)
        value = self.pages.get(url)
        if value is None:
            raise TransportError("Navigation failed", url=url)
        if isinstance(value, Exception):
            raise value
        return PageContent(url=url, html=value, page_number=GENERIC.page_number(url))


class SleepRecorder:
    """Stand-in for asyncio.sleep that returns at once."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset metrics, logging and cached settings around every test."""
    Metrics.reset()
    reset_settings()
    yield
    Metrics.reset()
    reset_settings()
    reset_logging()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that's cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """
    Provide test settings with a temporary database path.

    Delays are tiny and micro-breaks are off so waits cost nothing.
    """
    return Settings(
        storage={"database_path": str(temp_dir / "test.db")},
        crawler={
            "micro_break_probability": 0.0,
            "sources": {
                "generic": {"min_delay_seconds": 0.0, "max_delay_seconds": 0.01},
                "amazon": {"min_delay_seconds": 0.0, "max_delay_seconds": 0.01, "daily_page_limit": None},
            },
        },
        logging={"log_to_console": False},
    )


@pytest.fixture
def database(test_settings: Settings) -> Generator[Database, None, None]:
    """Provide an initialized file database, closed after the test."""
    db = Database.from_settings(test_settings)
    yield db
    db.close()


@pytest.fixture
def memory_kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def events() -> RecordingEvents:
    return RecordingEvents()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def runtime(
    test_settings: Settings,
    memory_kv: MemoryKeyValueStore,
    sink: MemorySink,
    fetcher: FakeFetcher,
    events: RecordingEvents,
    sleeper: SleepRecorder,
) -> Runtime:
    """Runtime over in-memory state with a scripted fetcher."""
    return Runtime(
        test_settings,
        kv=memory_kv,
        sink=sink,
        fetcher=fetcher,
        events=events,
        rng=random.Random(42),
        sleep=sleeper,
        today=lambda: TODAY,
    )
