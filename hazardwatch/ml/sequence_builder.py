"""
Sequence builder — assemble the per-location observation window.

Query plan:
    1. Box query: observations within ±tolerance° of (lat, lon) and inside
       [now − lookback, now], newest 200.
    2. If the box is empty, broad query: newest 500 observations from any
       location inside the same window. The resulting sequence is flagged
       `is_fallback` so consumers can treat it as lower-confidence context.
    3. Sort oldest → newest.

A storage failure degrades to an empty sequence; detectors then report
insufficient data instead of the error propagating.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from hazardwatch.core.errors import StorageError
from hazardwatch.ml.models import ObservationSequence
from hazardwatch.storage.base import (
    BOX_QUERY_LIMIT,
    BROAD_QUERY_LIMIT,
    BoundingBox,
    ObservationStore,
)

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_HOURS = 24
DEFAULT_TOLERANCE_DEG = 0.5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SequenceBuilder:
    """Builds point-in-time observation sequences from a store."""

    def __init__(
        self,
        store: ObservationStore,
        tolerance_deg: float = DEFAULT_TOLERANCE_DEG,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.tolerance_deg = tolerance_deg
        self._clock = clock

    async def build(
        self,
        lat: float,
        lon: float,
        lookback_hours: float = DEFAULT_LOOKBACK_HOURS,
    ) -> ObservationSequence:
        now = self._clock()
        since = now - timedelta(hours=lookback_hours)
        box = BoundingBox.around(lat, lon, self.tolerance_deg)

        try:
            rows = await self.store.query_observations(box, since, now, BOX_QUERY_LIMIT)
            is_fallback = False
            if not rows:
                rows = await self.store.query_observations(None, since, now, BROAD_QUERY_LIMIT)
                is_fallback = bool(rows)
                if is_fallback:
                    logger.info(
                        "No observations near %.4f,%.4f — using %d broad-query rows",
                        lat, lon, len(rows),
                        extra={"lat": lat, "lon": lon},
                    )
        except (StorageError, OSError) as e:
            logger.warning(
                "Sequence query failed for %.4f,%.4f: %s", lat, lon, e,
                extra={"lat": lat, "lon": lon},
            )
            return ObservationSequence()

        ordered = tuple(sorted(rows, key=lambda o: o.timestamp))
        return ObservationSequence(observations=ordered, is_fallback=is_fallback)
