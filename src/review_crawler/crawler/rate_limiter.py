"""
Pacing between listing pages.

Provides the randomized inter-page delay, occasional micro-breaks and a
per-source daily page budget. Waits are interruptible so that a stop
request takes effect within one wait slice.
"""

import asyncio
import math
import random
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable

from review_crawler.config.settings import CrawlerSettings, MicroBreakTier, SourceSettings
from review_crawler.core.exceptions import QuotaExceeded
from review_crawler.storage.kv_store import KeyValueStore
from review_crawler.utils.logging import get_logger

logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]
StopCheck = Callable[[], bool]


@dataclass
class WaitPlan:
    """
    Delay chosen for one page transition.

    Attributes:
        delay: Regular inter-page delay in seconds
        micro_break: Extra pause in seconds (0 when none was drawn)
    """

    delay: float
    micro_break: float = 0.0

    @property
    def total(self) -> float:
        return self.delay + self.micro_break


class PageRateLimiter:
    """
    Randomized delay between listing pages.

    Two delay shapes are supported:
    - uniform: evenly spread between min and max
    - exponential: mostly short with a long tail, clamped to [min, max]

    Example:
        >>> limiter = PageRateLimiter(crawler_settings)
        >>> interrupted = await limiter.wait("amazon", stop_check=lambda: stopped)
    """

    def __init__(
        self,
        settings: CrawlerSettings,
        rng: random.Random | None = None,
        sleep: SleepFunc | None = None,
    ) -> None:
        """
        Args:
            settings: Crawler settings carrying per-source delay profiles
            rng: Random source (seed it in tests)
            sleep: Coroutine used to sleep; defaults to asyncio.sleep
        """
        self.settings = settings
        self.rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep

    def draw_delay(self, profile: SourceSettings) -> float:
        if profile.delay == "exponential":
            raw = self.rng.expovariate(1.0 / profile.mean_delay_seconds)
            return min(max(raw, profile.min_delay_seconds), profile.max_delay_seconds)
        return self.rng.uniform(profile.min_delay_seconds, profile.max_delay_seconds)

    def draw_micro_break(self) -> float:
        if self.rng.random() >= self.settings.micro_break_probability:
            return 0.0
        tier = self._pick_tier(self.settings.micro_break_tiers)
        if tier is None:
            return 0.0
        return self.rng.uniform(tier.min_seconds, tier.max_seconds)

    def _pick_tier(self, tiers: list[MicroBreakTier]) -> MicroBreakTier | None:
        total = sum(t.weight for t in tiers)
        if not tiers or total <= 0:
            return None
        roll = self.rng.uniform(0, total)
        for tier in tiers:
            roll -= tier.weight
            if roll <= 0:
                return tier
        return tiers[-1]

    def plan(self, source: str) -> WaitPlan:
        """Draw the delay for the next transition of a source."""
        profile = self.settings.source(source)
        return WaitPlan(delay=self.draw_delay(profile), micro_break=self.draw_micro_break())

    async def sleep_interruptibly(self, seconds: float, stop_check: StopCheck | None = None) -> bool:
        """
        Sleep in slices, checking stop_check between slices.

        Returns:
            True if the wait was cut short by a stop request
        """
        remaining = seconds
        slice_seconds = self.settings.wait_slice_seconds

        while remaining > 0:
            if stop_check is not None and stop_check():
                return True
            step = min(slice_seconds, remaining)
            await self._sleep(step)
            remaining -= step

        return stop_check is not None and stop_check()

    async def wait(self, source: str, stop_check: StopCheck | None = None) -> bool:
        """
        Wait before the next page of a source.

        Returns:
            True if interrupted by a stop request
        """
        plan = self.plan(source)
        if plan.micro_break:
            logger.info(f"Taking a {math.ceil(plan.micro_break)}s break before the next page")
        else:
            logger.debug(f"Waiting {plan.delay:.2f}s before the next page")
        return await self.sleep_interruptibly(plan.total, stop_check)


class DailyPageQuota:
    """
    Per-source page budget that resets when the calendar date changes.

    Counters are persisted as {"date": "YYYY-MM-DD", "count": N} under
    "quota:<source>" so the budget holds across processes.
    """

    KEY_PREFIX = "quota:"

    def __init__(
        self,
        store: KeyValueStore,
        settings: CrawlerSettings,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.store = store
        self.settings = settings
        self._today = today

    def limit(self, source: str) -> int | None:
        return self.settings.source(source).daily_page_limit

    def used(self, source: str) -> int:
        state = self.store.get(f"{self.KEY_PREFIX}{source}") or {}
        if state.get("date") != self._today().isoformat():
            return 0
        return int(state.get("count", 0))

    def remaining(self, source: str) -> int | None:
        limit = self.limit(source)
        if limit is None:
            return None
        return max(0, limit - self.used(source))

    def check(self, source: str) -> None:
        """
        Raises:
            QuotaExceeded: If no pages are left today
        """
        remaining = self.remaining(source)
        if remaining is not None and remaining <= 0:
            raise QuotaExceeded(
                f"Daily page limit reached for {source}",
                source=source,
                limit=self.limit(source) or 0,
            )

    def consume(self, source: str, pages: int = 1) -> int:
        """Count pages against today's budget; returns today's total."""
        count = self.used(source) + pages
        self.store.set(
            f"{self.KEY_PREFIX}{source}",
            {"date": self._today().isoformat(), "count": count},
        )
        return count
