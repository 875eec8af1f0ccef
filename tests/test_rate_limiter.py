"""
Tests for the shared fetch rate limiter.

Covers:
    • Minimum spacing between consecutive calls
    • Monthly quota enforcement and usage reporting
    • Month rollover
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import List

import pytest

from hazardwatch.core.errors import RateLimitError
from hazardwatch.core.rate_limiter import RateLimiter, month_key


class FakeClock:
    """Monotonic clock + wall clock + sleep that only advance on demand."""

    def __init__(self, now: datetime = datetime(2024, 7, 31, 23, 0, tzinfo=timezone.utc)):
        self.t = 100.0
        self.now = now
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.t

    def wall(self) -> datetime:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += seconds


def _make_limiter(clock: FakeClock, **kwargs) -> RateLimiter:
    return RateLimiter(clock=clock.monotonic, now=clock.wall, sleep=clock.sleep, **kwargs)


class TestSpacing:
    def test_first_call_is_immediate(self):
        clock = FakeClock()
        asyncio.run(_make_limiter(clock, min_interval_seconds=1.0).acquire())
        assert clock.sleeps == []

    def test_back_to_back_calls_wait(self):
        clock = FakeClock()
        limiter = _make_limiter(clock, min_interval_seconds=1.0)

        async def go():
            await limiter.acquire()
            clock.t += 0.25
            await limiter.acquire()

        asyncio.run(go())
        assert clock.sleeps == [pytest.approx(0.75)]

    def test_no_wait_after_interval(self):
        clock = FakeClock()
        limiter = _make_limiter(clock, min_interval_seconds=1.0)

        async def go():
            await limiter.acquire()
            clock.t += 5.0
            await limiter.acquire()

        asyncio.run(go())
        assert clock.sleeps == []

    def test_zero_interval(self):
        clock = FakeClock()
        limiter = _make_limiter(clock, min_interval_seconds=0.0)

        async def go():
            for _ in range(3):
                await limiter.acquire()

        asyncio.run(go())
        assert clock.sleeps == []
        assert limiter.usage().calls == 3


class TestMonthlyQuota:
    def test_quota_exhaustion(self):
        clock = FakeClock()
        limiter = _make_limiter(clock, min_interval_seconds=0.0, monthly_quota=2)

        async def go():
            await limiter.acquire()
            await limiter.acquire()
            await limiter.acquire()

        with pytest.raises(RateLimitError):
            asyncio.run(go())
        assert limiter.usage().calls == 2
        assert not limiter.can_make_call()

    def test_usage_report(self):
        clock = FakeClock()
        limiter = _make_limiter(clock, min_interval_seconds=0.0, monthly_quota=95)
        asyncio.run(limiter.acquire())
        assert limiter.usage().to_dict() == {
            "month": "2024-07",
            "calls": 1,
            "quota": 95,
            "remaining": 94,
            "can_make_call": True,
        }

    def test_unlimited(self):
        limiter = _make_limiter(FakeClock(), min_interval_seconds=0.0)
        assert limiter.usage().remaining is None
        assert limiter.can_make_call()

    def test_month_rollover_resets(self):
        clock = FakeClock()
        limiter = _make_limiter(clock, min_interval_seconds=0.0, monthly_quota=1)
        asyncio.run(limiter.acquire())
        assert not limiter.can_make_call()

        clock.now = datetime(2024, 8, 1, 0, 5, tzinfo=timezone.utc)
        assert limiter.can_make_call()
        asyncio.run(limiter.acquire())
        assert limiter.usage().month == "2024-08"

    def test_month_key(self):
        assert month_key(datetime(2024, 1, 5, tzinfo=timezone.utc)) == "2024-01"
