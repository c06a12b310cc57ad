"""
In-process crawl counters.

Counts pages, records and session outcomes for the lifetime of the
process and keeps latency figures for direct page fetches. Nothing is
exported; `review-crawler batch` prints the summary when it finishes.
"""

import threading
import time
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import ClassVar, Iterator


PAGES_PROCESSED = "pages_processed"
RECORDS_EMITTED = "records_emitted"
DUPLICATES_DROPPED = "duplicates_dropped"
WATERMARK_DROPPED = "watermark_dropped"
SESSIONS_COMPLETED = "sessions_completed"
SESSIONS_FAILED = "sessions_failed"
SINK_ERRORS = "sink_errors"
PAGE_FETCH_MS = "page_fetch_ms"


@dataclass
class TimingStats:
    """Running latency figures for one kind of operation."""

    count: int = 0
    total_ms: float = 0.0
    slowest_ms: float = 0.0

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0

    def add(self, duration_ms: float) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.slowest_ms = max(self.slowest_ms, duration_ms)

    def copy(self) -> "TimingStats":
        return TimingStats(self.count, self.total_ms, self.slowest_ms)


@dataclass
class Metrics:
    """
    Process-wide crawl counters.

    Use Metrics.get() for the shared instance. Tests call Metrics.reset()
    between cases.

    Example:
        >>> Metrics.get().increment(SESSIONS_FAILED)
        >>> Metrics.get().get_counter(SESSIONS_FAILED)
        1
    """

    counters: Counter = field(default_factory=Counter)
    timings: dict[str, TimingStats] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    _instance: ClassVar["Metrics | None"] = None

    @classmethod
    def get(cls) -> "Metrics":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    def increment(self, name: str, value: int = 1) -> int:
        with self._lock:
            self.counters[name] += value
            return self.counters[name]

    def get_counter(self, name: str) -> int:
        with self._lock:
            return self.counters[name]

    def observe(self, name: str, duration_ms: float) -> None:
        with self._lock:
            self.timings.setdefault(name, TimingStats()).add(duration_ms)

    def get_timing(self, name: str) -> TimingStats | None:
        with self._lock:
            stats = self.timings.get(name)
            return stats.copy() if stats else None

    def summary(self) -> str:
        """Counters and timings as plain text lines."""
        with self._lock:
            counters = sorted(self.counters.items())
            timings = sorted((name, stats.copy()) for name, stats in self.timings.items())

        lines = [f"{name}: {value:,}" for name, value in counters if value]
        for name, stats in timings:
            lines.append(
                f"{name}: {stats.count} fetches, avg {stats.avg_ms:.0f}ms, slowest {stats.slowest_ms:.0f}ms"
            )
        return "\n".join(lines) if lines else "No pages processed"


def record_page(emitted: int, duplicates: int, watermark_dropped: int) -> None:
    """Count one processed page and what happened to its records."""
    metrics = Metrics.get()
    metrics.increment(PAGES_PROCESSED)
    metrics.increment(RECORDS_EMITTED, emitted)
    metrics.increment(DUPLICATES_DROPPED, duplicates)
    metrics.increment(WATERMARK_DROPPED, watermark_dropped)


@contextmanager
def time_page_fetch() -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        Metrics.get().observe(PAGE_FETCH_MS, (time.perf_counter() - start) * 1000)
