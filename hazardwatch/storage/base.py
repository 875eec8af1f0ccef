"""
Store protocols used by the analysis pipeline.

The sequence builder and orchestrator depend only on these protocols;
concrete stores are injected (see hazardwatch.container).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Protocol

from hazardwatch.ml.models import Observation

if TYPE_CHECKING:
    from hazardwatch.prediction.models import Prediction

# Row caps for sequence queries
BOX_QUERY_LIMIT = 200
BROAD_QUERY_LIMIT = 500


@dataclass(frozen=True)
class BoundingBox:
    """Inclusive lat/lon box around a point."""
    lat_min: float
    lat_max: float
    lon_min: float
    lon_max: float

    @classmethod
    def around(cls, lat: float, lon: float, tolerance_deg: float) -> "BoundingBox":
        return cls(
            lat_min=lat - tolerance_deg,
            lat_max=lat + tolerance_deg,
            lon_min=lon - tolerance_deg,
            lon_max=lon + tolerance_deg,
        )

    def contains(self, lat: float, lon: float) -> bool:
        return (
            self.lat_min <= lat <= self.lat_max
            and self.lon_min <= lon <= self.lon_max
        )


class ObservationStore(Protocol):
    async def query_observations(
        self,
        box: Optional[BoundingBox],
        since: datetime,
        until: Optional[datetime] = None,
        limit: int = BOX_QUERY_LIMIT,
    ) -> List[Observation]:
        """
        Newest `limit` observations with since ≤ timestamp ≤ until.

        `box=None` means any location. Order of the returned list is
        unspecified. Raises StorageError when the backend fails.
        """
        ...

    async def append_observation(self, observation: Observation) -> bool:
        """Record an observation; False if (lat, lon, timestamp) already exists."""
        ...


class PredictionStore(Protocol):
    async def append_prediction(self, prediction: "Prediction") -> None:
        """Insert-only; raises StorageError when the backend fails."""
        ...

    async def recent_predictions(
        self, location: Optional[str] = None, limit: int = 50,
    ) -> List["Prediction"]:
        """Newest first, optionally for one location."""
        ...
