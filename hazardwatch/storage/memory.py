"""
In-process stores.

Used by the test-suite and by single-node development runs
(STORAGE_BACKEND=memory). Data lives only as long as the process.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Set, Tuple

from hazardwatch.ml.models import Observation
from hazardwatch.prediction.models import Prediction
from hazardwatch.storage.base import BOX_QUERY_LIMIT, BoundingBox

logger = logging.getLogger(__name__)


def observation_key(observation: Observation) -> Tuple[float, float, datetime]:
    return (observation.latitude, observation.longitude, observation.timestamp)


class InMemoryObservationStore:
    def __init__(self) -> None:
        self._observations: List[Observation] = []
        self._keys: Set[Tuple[float, float, datetime]] = set()

    def __len__(self) -> int:
        return len(self._observations)

    async def query_observations(
        self,
        box: Optional[BoundingBox],
        since: datetime,
        until: Optional[datetime] = None,
        limit: int = BOX_QUERY_LIMIT,
    ) -> List[Observation]:
        matches = [
            obs for obs in self._observations
            if obs.timestamp >= since
            and (until is None or obs.timestamp <= until)
            and (box is None or box.contains(obs.latitude, obs.longitude))
        ]
        matches.sort(key=lambda o: o.timestamp, reverse=True)
        return matches[:limit]

    async def append_observation(self, observation: Observation) -> bool:
        key = observation_key(observation)
        if key in self._keys:
            logger.debug("Duplicate observation ignored: %s", key)
            return False
        self._keys.add(key)
        self._observations.append(observation)
        return True


class InMemoryPredictionStore:
    def __init__(self) -> None:
        self._predictions: List[Prediction] = []

    def __len__(self) -> int:
        return len(self._predictions)

    async def append_prediction(self, prediction: Prediction) -> None:
        self._predictions.append(prediction)

    async def recent_predictions(
        self, location: Optional[str] = None, limit: int = 50,
    ) -> List[Prediction]:
        selected = [
            p for p in self._predictions
            if location is None or p.location == location
        ]
        selected.sort(key=lambda p: p.created_at, reverse=True)
        return selected[:limit]

