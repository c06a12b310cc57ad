"""
Tests for the target queue and batch processing.
"""

import pytest

from review_crawler.core.exceptions import DuplicateEnqueue, TransportError
from review_crawler.crawler.models import EndReason, QueueEntry, SessionStatus
from review_crawler.crawler.queue import BATCH_STOP_KEY, TargetQueue
from review_crawler.runtime import Runtime
from review_crawler.storage.kv_store import MemoryKeyValueStore
from tests.conftest import listing_html, page_url, review_html

TARGETS = [
    "https://shop.example.com/items/1/reviews",
    "https://shop.example.com/items/2/reviews",
    "https://shop.example.com/items/3/reviews",
]


class TestTargetQueue:
    """Tests for the persisted FIFO."""

    def test_fifo_order(self):
        """Entries come back in insertion order."""
        queue = TargetQueue(MemoryKeyValueStore())
        for url in TARGETS:
            queue.add(QueueEntry(url=url))

        assert [e.url for e in queue.entries()] == TARGETS
        assert queue.pop_front().url == TARGETS[0]
        assert queue.peek().url == TARGETS[1]
        assert len(queue) == 2

    def test_duplicate_rejected(self):
        """The same URL cannot be queued twice."""
        queue = TargetQueue(MemoryKeyValueStore())
        queue.add(QueueEntry(url=TARGETS[0]))

        with pytest.raises(DuplicateEnqueue) as exc_info:
            queue.add(QueueEntry(url=TARGETS[0] + "/"))

        assert exc_info.value.url == TARGETS[0] + "/"
        assert len(queue) == 1

    def test_remove(self):
        """Removing drops only the named entry."""
        queue = TargetQueue(MemoryKeyValueStore())
        for url in TARGETS:
            queue.add(QueueEntry(url=url))

        assert queue.remove(TARGETS[1]) is True
        assert queue.remove(TARGETS[1]) is False
        assert [e.url for e in queue.entries()] == [TARGETS[0], TARGETS[2]]

    def test_clear(self):
        """Clearing reports how many entries were dropped."""
        queue = TargetQueue(MemoryKeyValueStore())
        for url in TARGETS:
            queue.add(QueueEntry(url=url))

        assert queue.clear() == 3
        assert queue.peek() is None
        assert queue.pop_front() is None

    def test_survives_new_instance(self):
        """The queue lives in the store, not in the object."""
        kv = MemoryKeyValueStore()
        TargetQueue(kv).add(QueueEntry(url=TARGETS[0], title="Kettle", incremental_only=True))

        entry = TargetQueue(kv).peek()

        assert entry.title == "Kettle"
        assert entry.incremental_only is True


class TestQueueManager:
    """Tests for enqueueing and batch runs."""

    def test_enqueue_duplicate_returns_result(self, runtime: Runtime):
        """A duplicate is reported in the result rather than raised."""
        manager = runtime.queue_manager()

        first = manager.enqueue(QueueEntry(url=TARGETS[0]))
        second = manager.enqueue(QueueEntry(url=TARGETS[0]))

        assert first.ok is True
        assert second.ok is False
        assert second.reason == "duplicate"
        assert len(manager.entries()) == 1

    def test_enqueue_detects_source(self, runtime: Runtime):
        """The site profile is recorded with the entry."""
        manager = runtime.queue_manager()

        manager.enqueue(QueueEntry(url="https://www.amazon.co.jp/dp/B0ABC12345"))

        assert manager.entries()[0].source == "amazon"

    @pytest.mark.asyncio
    async def test_empty_queue_rejected(self, runtime: Runtime):
        """A batch needs something to do."""
        result = await runtime.queue_manager().start_batch()

        assert result.ok is False
        assert result.reason == "empty queue"

    @pytest.mark.asyncio
    async def test_live_session_blocks_batch(self, runtime: Runtime):
        """A batch does not start over a live session."""
        manager = runtime.queue_manager()
        manager.enqueue(QueueEntry(url=TARGETS[0]))
        runtime.controller().start_session(TARGETS[1], mode="fetch")

        result = await manager.start_batch()

        assert result.ok is False
        assert "still" in result.reason
        assert len(manager.entries()) == 1

    @pytest.mark.asyncio
    async def test_batch_runs_in_order_past_failures(self, runtime: Runtime, fetcher, sink):
        """Targets run one at a time in FIFO order; a failure does not stop the batch."""
        fetcher.pages = {1: listing_html([review_html("Solid kettle")])}
        fetcher.urls[page_url(1, TARGETS[1])] = TransportError(
            "HTTP 503 error", url=TARGETS[1], status_code=503
        )
        manager = runtime.queue_manager()
        for url in TARGETS:
            manager.enqueue(QueueEntry(url=url))

        result = await manager.start_batch()

        assert result.ok is True
        assert [item.url for item in result.results] == TARGETS
        assert [item.status for item in result.results] == [
            SessionStatus.COMPLETED.value,
            SessionStatus.FAILED.value,
            SessionStatus.COMPLETED.value,
        ]
        assert result.results[1].end_reason == EndReason.TRANSPORT.value
        assert [page_url(1, url) for url in TARGETS] == fetcher.requests
        assert len(sink.records) == 2
        assert manager.entries() == []

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_target_and_batch_continues(self, runtime: Runtime, fetcher, sink):
        """An error outside the crawler's own taxonomy fails only the target it hit."""
        fetcher.pages = {1: listing_html([review_html("Solid kettle")])}
        fetcher.urls[page_url(1, TARGETS[0])] = RuntimeError("parser exploded")
        manager = runtime.queue_manager()
        for url in TARGETS[:2]:
            manager.enqueue(QueueEntry(url=url))

        result = await manager.start_batch()

        assert result.ok is True
        assert [item.status for item in result.results] == [
            SessionStatus.FAILED.value,
            SessionStatus.COMPLETED.value,
        ]
        assert result.results[0].end_reason == EndReason.ERROR.value
        assert "parser exploded" in result.results[0].message
        assert [r.body for r in sink.records] == ["Solid kettle"]
        assert manager.entries() == []

    @pytest.mark.asyncio
    async def test_navigation_targets_without_loader_fail(self, runtime: Runtime, fetcher):
        """Navigation targets fail without a page loader and the batch moves on."""
        fetcher.pages = {1: listing_html([review_html("Fine")])}
        manager = runtime.queue_manager()
        manager.enqueue(QueueEntry(url=TARGETS[0]))
        manager.enqueue(QueueEntry(url=TARGETS[1]))
        runtime.settings.crawler.sources["generic"].mode = "navigation"

        result = await manager.start_batch()

        assert [item.status for item in result.results] == [
            SessionStatus.FAILED.value,
            SessionStatus.FAILED.value,
        ]
        assert manager.entries() == []

    @pytest.mark.asyncio
    async def test_stop_batch(self, runtime: Runtime, fetcher, sink):
        """Stopping a batch stops its current target and leaves the rest queued."""
        fetcher.pages = {1: listing_html([review_html("One")], next_page=2)}
        manager = runtime.queue_manager()
        for url in TARGETS:
            manager.enqueue(QueueEntry(url=url))
        fetcher.on_fetch = lambda url: manager.stop_batch()

        result = await manager.start_batch()

        assert len(result.results) == 1
        assert result.results[0].status == SessionStatus.STOPPED.value
        assert result.results[0].end_reason == EndReason.STOP_REQUESTED.value
        assert [e.url for e in manager.entries()] == TARGETS[1:]
        assert sink.records == []
        assert runtime.kv.get(BATCH_STOP_KEY) is None

    @pytest.mark.asyncio
    async def test_batch_carries_incremental_flag(self, runtime: Runtime, fetcher):
        """Queued incremental targets run against their stored watermark."""
        runtime.sessions.set_watermark(
            runtime.controller().start_session(TARGETS[0], mode="fetch").session.target_id,
            "2024-06-05",
        )
        runtime.controller().stop_session()
        fetcher.pages = {
            1: listing_html([
                review_html("New", day="2024-06-10"),
                review_html("Old", day="2024-05-20"),
            ]),
        }
        manager = runtime.queue_manager()
        manager.enqueue(QueueEntry(url=TARGETS[0], incremental_only=True))

        result = await manager.start_batch()

        item = result.results[0]
        assert item.collected_count == 1
        assert item.end_reason == EndReason.WATERMARK_REACHED.value
