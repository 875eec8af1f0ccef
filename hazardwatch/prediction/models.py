"""
Prediction records and notification requests.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from hazardwatch.ml.models import HazardType, Severity


class PredictionMethod(str, Enum):
    RULE_BASED = "rule_based"
    PATTERN_EARLY_WARNING = "pattern_early_warning"
    FUSED = "fused"


class RunTrigger(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class DispatchPriority(str, Enum):
    NORMAL = "normal"
    CRITICAL = "critical"


@dataclass
class ConditionsSnapshot:
    """Point-in-time weather + ocean state for one location."""
    latitude: float
    longitude: float
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    wave_height: Optional[float] = None       # m
    wind_speed: Optional[float] = None        # m/s
    wind_direction: Optional[float] = None    # degrees
    pressure: Optional[float] = None          # hPa
    sea_surface_temp: Optional[float] = None  # °C
    current_speed: Optional[float] = None     # m/s
    tsunami_warning_active: bool = False
    cyclone_active: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "fetched_at": self.fetched_at.isoformat(),
            "wave_height": self.wave_height,
            "wind_speed": self.wind_speed,
            "wind_direction": self.wind_direction,
            "pressure": self.pressure,
            "sea_surface_temp": self.sea_surface_temp,
            "current_speed": self.current_speed,
            "tsunami_warning_active": self.tsunami_warning_active,
            "cyclone_active": self.cyclone_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConditionsSnapshot":
        fetched = data.get("fetched_at")
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            fetched_at=(
                datetime.fromisoformat(fetched) if isinstance(fetched, str)
                else datetime.now(timezone.utc)
            ),
            wave_height=data.get("wave_height"),
            wind_speed=data.get("wind_speed"),
            wind_direction=data.get("wind_direction"),
            pressure=data.get("pressure"),
            sea_surface_temp=data.get("sea_surface_temp"),
            current_speed=data.get("current_speed"),
            tsunami_warning_active=bool(data.get("tsunami_warning_active")),
            cyclone_active=bool(data.get("cyclone_active")),
        )


@dataclass
class Prediction:
    """One persisted hazard judgment for a location. Append-only."""
    location: str
    latitude: float
    longitude: float
    hazard_type: HazardType
    severity: Severity
    confidence: float
    method: PredictionMethod
    conditions: Dict[str, Any] = field(default_factory=dict)
    early_warning: bool = False
    estimated_time_to_hazard_hours: Optional[float] = None
    indicators: List[str] = field(default_factory=list)
    trigger: RunTrigger = RunTrigger.SCHEDULED
    prediction_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prediction_id": self.prediction_id,
            "location": self.location,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "hazard_type": self.hazard_type.value,
            "severity": self.severity.value,
            "confidence": round(self.confidence, 4),
            "method": self.method.value,
            "conditions": self.conditions,
            "early_warning": self.early_warning,
            "estimated_time_to_hazard_hours": self.estimated_time_to_hazard_hours,
            "indicators": list(self.indicators),
            "trigger": self.trigger.value,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class DispatchRequest:
    """Handed to the notification boundary; delivery is someone else's job."""
    priority: DispatchPriority
    predictions: List[Prediction]
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority": self.priority.value,
            "summary": self.summary,
            "count": len(self.predictions),
            "predictions": [p.to_dict() for p in self.predictions],
        }
