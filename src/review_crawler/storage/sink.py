"""
Record sinks.

A sink receives each page's surviving records after the controller has
persisted their fingerprints. emit() returning normally is the
acknowledgment; any failure surfaces as SinkError.
"""

from typing import Protocol, runtime_checkable

from review_crawler.core.exceptions import ReviewCrawlerError, SinkError
from review_crawler.crawler.fingerprint import fingerprint
from review_crawler.crawler.models import Review
from review_crawler.storage.repositories import ReviewRepository
from review_crawler.utils.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class RecordSink(Protocol):
    """Consumer of collected records."""

    async def emit(self, records: list[Review]) -> None: ...


class SQLiteRecordSink:
    """Writes records to the reviews table."""

    def __init__(self, repository: ReviewRepository) -> None:
        self.repository = repository

    async def emit(self, records: list[Review]) -> None:
        try:
            self.repository.insert_many([(fingerprint(r), r) for r in records])
        except ReviewCrawlerError as e:
            raise SinkError(
                f"Failed to store records: {e.message}", record_count=len(records)
            ) from e


class MemorySink:
    """Keeps emitted batches in memory."""

    def __init__(self) -> None:
        self.batches: list[list[Review]] = []

    @property
    def records(self) -> list[Review]:
        return [r for batch in self.batches for r in batch]

    async def emit(self, records: list[Review]) -> None:
        self.batches.append(list(records))
