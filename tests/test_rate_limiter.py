"""
Tests for rate limiter module.

Tests delay ranges, interruptible waits, and the daily page budget.
"""

import random
from datetime import date

import pytest

from review_crawler.config.settings import CrawlerSettings, SourceSettings
from review_crawler.core.exceptions import QuotaExceeded
from review_crawler.crawler.rate_limiter import DailyPageQuota, PageRateLimiter, WaitPlan
from review_crawler.storage.kv_store import MemoryKeyValueStore
from tests.conftest import SleepRecorder


def crawler_settings(**overrides) -> CrawlerSettings:
    values = {
        "micro_break_probability": 0.0,
        "wait_slice_seconds": 0.5,
        "sources": {
            "generic": {"min_delay_seconds": 2.0, "max_delay_seconds": 4.0},
            "amazon": {"daily_page_limit": 3},
        },
    }
    values.update(overrides)
    return CrawlerSettings(**values)


class TestWaitPlan:
    """Tests for WaitPlan dataclass."""

    def test_total_includes_micro_break(self):
        plan = WaitPlan(delay=2.5, micro_break=10.0)

        assert plan.total == 12.5

    def test_default_has_no_break(self):
        assert WaitPlan(delay=1.0).total == 1.0


class TestPageRateLimiter:
    """Tests for PageRateLimiter."""

    @pytest.fixture
    def sleeper(self) -> SleepRecorder:
        return SleepRecorder()

    @pytest.fixture
    def limiter(self, sleeper: SleepRecorder) -> PageRateLimiter:
        """Provide a seeded limiter that never really sleeps."""
        return PageRateLimiter(crawler_settings(), rng=random.Random(7), sleep=sleeper)

    def test_uniform_delay_within_bounds(self, limiter: PageRateLimiter):
        """Uniform delays stay inside the configured range."""
        delays = [limiter.plan("generic").delay for _ in range(200)]

        assert all(2.0 <= d <= 4.0 for d in delays)
        assert len(set(delays)) > 1

    def test_exponential_delay_clamped(self):
        """Exponential delays are clamped to [min, max]."""
        limiter = PageRateLimiter(
            crawler_settings(sources={
                "amazon": {
                    "delay": "exponential",
                    "min_delay_seconds": 0.5,
                    "max_delay_seconds": 8.0,
                    "mean_delay_seconds": 1.5,
                },
            }),
            rng=random.Random(3),
        )

        delays = [limiter.draw_delay(limiter.settings.source("amazon")) for _ in range(500)]

        assert min(delays) >= 0.5
        assert max(delays) <= 8.0

    def test_unknown_source_uses_generic(self, limiter: PageRateLimiter):
        """Sources without settings fall back to the generic profile."""
        delay = limiter.plan("somewhere-else").delay

        assert 2.0 <= delay <= 4.0

    def test_micro_break_drawn_from_tiers(self):
        """With probability 1 every wait carries a break from a tier."""
        limiter = PageRateLimiter(
            crawler_settings(
                micro_break_probability=1.0,
                micro_break_tiers=[{"weight": 1.0, "min_seconds": 30.0, "max_seconds": 40.0}],
            ),
            rng=random.Random(1),
        )

        plan = limiter.plan("generic")

        assert 30.0 <= plan.micro_break <= 40.0
        assert plan.total == plan.delay + plan.micro_break

    def test_no_micro_break_when_disabled(self, limiter: PageRateLimiter):
        assert all(limiter.draw_micro_break() == 0.0 for _ in range(50))

    @pytest.mark.asyncio
    async def test_sleep_is_sliced(self, limiter: PageRateLimiter, sleeper: SleepRecorder):
        """Long waits are split into slices."""
        interrupted = await limiter.sleep_interruptibly(1.25)

        assert interrupted is False
        assert sleeper.calls == [0.5, 0.5, 0.25]

    @pytest.mark.asyncio
    async def test_stop_interrupts_wait(self, limiter: PageRateLimiter, sleeper: SleepRecorder):
        """A stop request ends the wait at the next slice boundary."""
        checks = iter([False, False, True])

        interrupted = await limiter.sleep_interruptibly(10.0, stop_check=lambda: next(checks))

        assert interrupted is True
        assert sleeper.calls == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_stop_during_last_slice_reported(self, limiter: PageRateLimiter, sleeper: SleepRecorder):
        """A stop arriving during the final slice is still reported."""
        checks = iter([False, True])

        interrupted = await limiter.sleep_interruptibly(0.5, stop_check=lambda: next(checks))

        assert interrupted is True
        assert sleeper.calls == [0.5]

    @pytest.mark.asyncio
    async def test_wait_sleeps_planned_total(self, limiter: PageRateLimiter, sleeper: SleepRecorder):
        """wait() sleeps the drawn delay in total."""
        await limiter.wait("generic")

        assert 2.0 <= sum(sleeper.calls) <= 4.0 + 1e-9


class TestDailyPageQuota:
    """Tests for the per-source daily budget."""

    @pytest.fixture
    def day(self) -> list[date]:
        return [date(2024, 7, 1)]

    @pytest.fixture
    def quota(self, day: list[date]) -> DailyPageQuota:
        return DailyPageQuota(MemoryKeyValueStore(), crawler_settings(), today=lambda: day[0])

    def test_unlimited_source(self, quota: DailyPageQuota):
        """Sources without a limit never run out."""
        quota.consume("generic", 1000)

        assert quota.remaining("generic") is None
        quota.check("generic")

    def test_consume_counts_down(self, quota: DailyPageQuota):
        assert quota.remaining("amazon") == 3
        assert quota.consume("amazon") == 1
        assert quota.remaining("amazon") == 2

    def test_check_raises_when_spent(self, quota: DailyPageQuota):
        """No page may be fetched once the budget is spent."""
        quota.consume("amazon", 3)

        with pytest.raises(QuotaExceeded) as exc_info:
            quota.check("amazon")

        assert exc_info.value.source == "amazon"
        assert exc_info.value.limit == 3

    def test_resets_on_new_day(self, quota: DailyPageQuota, day: list[date]):
        """The counter starts over when the date changes."""
        quota.consume("amazon", 3)
        day[0] = date(2024, 7, 2)

        assert quota.used("amazon") == 0
        assert quota.remaining("amazon") == 3

    def test_persisted_across_instances(self, day: list[date]):
        """The count lives in the store."""
        store = MemoryKeyValueStore()
        DailyPageQuota(store, crawler_settings(), today=lambda: day[0]).consume("amazon", 2)

        quota = DailyPageQuota(store, crawler_settings(), today=lambda: day[0])

        assert quota.used("amazon") == 2


class TestSourceSettings:
    """Tests for delay settings validation."""

    def test_inverted_range_rejected(self):
        with pytest.raises(ValueError):
            SourceSettings(min_delay_seconds=5.0, max_delay_seconds=1.0)
