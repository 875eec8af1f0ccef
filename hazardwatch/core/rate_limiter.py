"""
Shared rate-limit gate for external weather/ocean fetches.

Two budgets are enforced for every caller that shares one limiter:

    1. SPACING — consecutive calls are at least `min_interval_seconds`
       apart, whichever worker makes them. With a single worker this
       reproduces the fixed pause between monitored locations.
    2. MONTHLY QUOTA — optional hard cap on calls per calendar month
       (UTC, keyed "YYYY-MM"). Free-tier weather APIs bill this way; once
       the cap is reached `acquire()` raises RateLimitError until the
       month rolls over.

Usage:
    limiter = RateLimiter(min_interval_seconds=1.0, monthly_quota=95)
    await limiter.acquire()
    snapshot = await client.fetch_conditions(lat, lon)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from hazardwatch.core.errors import RateLimitError

logger = logging.getLogger(__name__)


@dataclass
class RateLimitUsage:
    """Snapshot of the current month's call budget."""
    month: str
    calls: int
    quota: Optional[int]

    @property
    def remaining(self) -> Optional[int]:
        if self.quota is None:
            return None
        return max(0, self.quota - self.calls)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month": self.month,
            "calls": self.calls,
            "quota": self.quota,
            "remaining": self.remaining,
            "can_make_call": self.remaining is None or self.remaining > 0,
        }


def month_key(moment: datetime) -> str:
    """Calendar month bucket, e.g. '2024-07'."""
    return moment.strftime("%Y-%m")


class RateLimiter:
    """Async gate combining minimum call spacing with a monthly quota."""

    def __init__(
        self,
        min_interval_seconds: float = 1.0,
        monthly_quota: Optional[int] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval_seconds = max(0.0, min_interval_seconds)
        self.monthly_quota = monthly_quota
        self._clock = clock
        self._now = now
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_call: Optional[float] = None
        self._month = month_key(now())
        self._calls = 0

    def _roll_month(self) -> None:
        current = month_key(self._now())
        if current != self._month:
            logger.info("Rate limit window rolled over: %s → %s", self._month, current)
            self._month = current
            self._calls = 0

    def usage(self) -> RateLimitUsage:
        self._roll_month()
        return RateLimitUsage(month=self._month, calls=self._calls, quota=self.monthly_quota)

    def can_make_call(self) -> bool:
        remaining = self.usage().remaining
        return remaining is None or remaining > 0

    async def acquire(self) -> None:
        """
        Wait for the next call slot and count it against the quota.

        Raises RateLimitError when the monthly quota is exhausted; no slot
        is consumed in that case.
        """
        async with self._lock:
            self._roll_month()
            if self.monthly_quota is not None and self._calls >= self.monthly_quota:
                logger.warning(
                    "Monthly quota exhausted (%d/%d for %s)",
                    self._calls, self.monthly_quota, self._month,
                )
                raise RateLimitError(
                    f"Monthly quota of {self.monthly_quota} calls reached for {self._month}",
                    retry_after=3600,
                )

            if self._last_call is not None:
                wait = self._last_call + self.min_interval_seconds - self._clock()
                if wait > 0:
                    await self._sleep(wait)

            self._last_call = self._clock()
            self._calls += 1

            if self.monthly_quota is not None:
                logger.debug("Call %d/%d for %s", self._calls, self.monthly_quota, self._month)
