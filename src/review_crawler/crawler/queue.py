"""
Target queue management.

Targets waiting for collection are kept in a persisted FIFO list with
unique URLs. A batch runs them strictly one at a time, in insertion
order, and keeps going past targets that fail or are stopped.
"""

from dataclasses import dataclass, field
from typing import Callable

from review_crawler.core.exceptions import CrawlerError, DuplicateEnqueue, ReviewCrawlerError
from review_crawler.crawler.controller import CrawlSessionController
from review_crawler.crawler.events import SessionEvents
from review_crawler.crawler.models import QueueEntry, SessionStatus
from review_crawler.crawler.runner import SessionRunner
from review_crawler.crawler.sources import detect_source
from review_crawler.crawler.urls import normalize_url
from review_crawler.storage.kv_store import KeyValueStore
from review_crawler.utils.logging import get_logger

logger = get_logger(__name__)

QUEUE_KEY = "queue"
BATCH_STOP_KEY = "batch:stop_requested"


def _queue_key(url: str) -> str:
    return normalize_url(url)


class TargetQueue:
    """
    Persisted FIFO of queue entries, unique by normalized URL.

    Example:
        >>> queue = TargetQueue(kv)
        >>> queue.add(QueueEntry(url="https://www.amazon.co.jp/dp/B0ABC12345"))
        >>> queue.peek().url
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    def entries(self) -> list[QueueEntry]:
        raw = self.kv.get(QUEUE_KEY) or []
        return [QueueEntry.from_dict(item) for item in raw]

    def _save(self, entries: list[QueueEntry]) -> None:
        self.kv.set(QUEUE_KEY, [e.to_dict() for e in entries])

    def contains(self, url: str) -> bool:
        key = _queue_key(url)
        return any(_queue_key(e.url) == key for e in self.entries())

    def add(self, entry: QueueEntry) -> None:
        """
        Append an entry.

        Raises:
            DuplicateEnqueue: If an entry with the same URL is queued
        """
        entries = self.entries()
        key = _queue_key(entry.url)
        if any(_queue_key(e.url) == key for e in entries):
            raise DuplicateEnqueue("Target is already queued", url=entry.url)
        entries.append(entry)
        self._save(entries)

    def remove(self, url: str) -> bool:
        entries = self.entries()
        key = _queue_key(url)
        kept = [e for e in entries if _queue_key(e.url) != key]
        if len(kept) == len(entries):
            return False
        self._save(kept)
        return True

    def peek(self) -> QueueEntry | None:
        entries = self.entries()
        return entries[0] if entries else None

    def pop_front(self) -> QueueEntry | None:
        entries = self.entries()
        if not entries:
            return None
        head = entries.pop(0)
        self._save(entries)
        return head

    def clear(self) -> int:
        count = len(self.entries())
        self.kv.delete(QUEUE_KEY)
        return count

    def __len__(self) -> int:
        return len(self.entries())


@dataclass
class EnqueueResult:
    ok: bool
    reason: str = ""


@dataclass
class BatchItemResult:
    """What happened to one queued target."""

    url: str
    status: str
    end_reason: str | None = None
    collected_count: int = 0
    message: str | None = None


@dataclass
class BatchResult:
    ok: bool
    reason: str = ""
    results: list[BatchItemResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.results)


class QueueManager:
    """
    Front door for the batch queue.

    Example:
        >>> manager = QueueManager(TargetQueue(kv), runtime.controller, runner)
        >>> manager.enqueue(QueueEntry(url=url))
        >>> result = await manager.start_batch()
    """

    def __init__(
        self,
        queue: TargetQueue,
        controller_factory: Callable[[], CrawlSessionController],
        runner: SessionRunner,
        events: SessionEvents | None = None,
    ) -> None:
        self.queue = queue
        self.controller_factory = controller_factory
        self.runner = runner
        self.events = events or SessionEvents()
        self._running = False

    def enqueue(self, entry: QueueEntry) -> EnqueueResult:
        """Add a target; a URL already in the queue is reported, not raised."""
        if entry.source == "generic":
            entry.source = detect_source(entry.url).name
        try:
            self.queue.add(entry)
        except DuplicateEnqueue as e:
            logger.info(f"Not queueing {e.url}: already queued")
            return EnqueueResult(False, "duplicate")

        self.events.log(f"Queued {entry.title or entry.url} ({len(self.queue)} waiting)")
        return EnqueueResult(True, "queued")

    def entries(self) -> list[QueueEntry]:
        return self.queue.entries()

    def remove(self, url: str) -> bool:
        return self.queue.remove(url)

    def clear(self) -> int:
        return self.queue.clear()

    def stop_batch(self) -> bool:
        """
        Ask a running batch to stop after stopping its current target.

        Returns:
            True if a live session was stopped
        """
        self.queue.kv.set(BATCH_STOP_KEY, True)
        return self.controller_factory().stop_session()

    def _stop_requested(self) -> bool:
        return bool(self.queue.kv.get(BATCH_STOP_KEY))

    async def start_batch(self) -> BatchResult:
        """
        Collect every queued target in FIFO order.

        Rejected when the queue is empty or another session is live.
        Each target leaves the queue once its session reaches a terminal
        status, whatever that status is.
        """
        if self._running:
            return BatchResult(False, "batch already running")
        if len(self.queue) == 0:
            return BatchResult(False, "empty queue")

        active = self.controller_factory().active_session()
        if active is not None and active.is_live:
            return BatchResult(False, f"session for {active.target_id} is still {active.status.value}")

        self.queue.kv.delete(BATCH_STOP_KEY)
        self._running = True
        results: list[BatchItemResult] = []
        try:
            while True:
                if self._stop_requested():
                    self.events.log(f"Batch stopped with {len(self.queue)} targets left")
                    break

                entry = self.queue.peek()
                if entry is None:
                    break

                item = await self._run_entry(entry)
                if item is None:
                    break
                results.append(item)
                self.queue.remove(entry.url)
        finally:
            self._running = False
            self.queue.kv.delete(BATCH_STOP_KEY)

        self.events.log(f"Batch finished: {len(results)} targets processed, {len(self.queue)} left")
        return BatchResult(True, "completed", results)

    async def _run_entry(self, entry: QueueEntry) -> BatchItemResult | None:
        """
        Start and run one queued target.

        Returns:
            None if the session is still live afterwards and the batch
            must not move on
        """
        controller = self.controller_factory()
        started = controller.start_session(
            entry.url,
            incremental_only=entry.incremental_only,
            queue_name=entry.queue_name,
        )
        if not started.accepted:
            self.events.log(f"Skipping {entry.url}: {started.reason}", "warning")
            return BatchItemResult(entry.url, "rejected", message=started.reason)

        self.events.log(f"Batch target {entry.title or entry.url}")
        try:
            session = await self.runner.run_active()
        except ReviewCrawlerError as e:
            logger.error(f"Target {entry.url} aborted: {e}")
            session = controller.get_session(started.session.target_id)
        except Exception as e:
            logger.exception(f"Unexpected error while crawling {entry.url}")
            controller.record_failure(CrawlerError(f"Unexpected error: {e}", url=entry.url))
            session = controller.get_session(started.session.target_id)

        if session is None:
            return BatchItemResult(entry.url, SessionStatus.FAILED.value, message="session lost")
        if session.is_live:
            logger.warning(f"Session for {session.target_id} is still {session.status.value}; pausing batch")
            return None

        return BatchItemResult(
            url=entry.url,
            status=session.status.value,
            end_reason=session.end_reason.value if session.end_reason else None,
            collected_count=session.collected_count,
            message=session.error_message,
        )
