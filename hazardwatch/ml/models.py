"""
Domain types shared by the analysis pipeline.

Provides:
    • Severity — totally ordered low < medium < high < critical
    • HazardType — pattern hazards plus rule-only / no-hazard markers
    • Observation — one immutable ocean/weather record for a location
    • ObservationSequence — oldest→newest window of observations
    • PatternResult — one detector's verdict
    • EarlyWarning — the arbiter's decision over all detectors

═══════════════════════════════════════════════════════════════════════════
FIELD NORMALISATION
═══════════════════════════════════════════════════════════════════════════

Upstream feeds name the same quantity differently (buoy feeds use short
codes, app feeds camelCase). Raw mappings are normalised exactly once, in
Observation.from_raw(); everything downstream reads canonical attributes.

    ┌──────────────────┬──────────────────────────────────────────────┐
    │ Canonical field  │ Accepted raw keys                            │
    ├──────────────────┼──────────────────────────────────────────────┤
    │ wave_height      │ wave_height, waveHeight, hs                  │
    │ wind_speed       │ wind_speed, windSpeed, ws                    │
    │ wind_direction   │ wind_direction, windDirection, wd            │
    │ current_speed    │ current_speed, currentSpeed, u (abs value)   │
    │ sea_surface_temp │ sea_surface_temp, seaSurfaceTemp, sst        │
    │ pressure         │ pressure, pres, pressure_msl                 │
    └──────────────────┴──────────────────────────────────────────────┘

Missing values stay None. A None is "no evidence", never zero.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class Severity(str, Enum):
    """Hazard severity, ordered low < medium < high < critical."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def escalate(self) -> "Severity":
        """One step up; critical stays critical."""
        return _SEVERITY_ORDER[min(self.rank + 1, len(_SEVERITY_ORDER) - 1)]


_SEVERITY_ORDER = (Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)
_SEVERITY_RANK = {s: i for i, s in enumerate(_SEVERITY_ORDER)}


def max_severity(*severities: Optional[Severity]) -> Severity:
    """Highest of the given severities (None ignored); LOW if none given."""
    present = [s for s in severities if s is not None]
    if not present:
        return Severity.LOW
    return max(present, key=lambda s: s.rank)


class HazardType(str, Enum):
    TSUNAMI = "tsunami"
    CYCLONE = "cyclone"
    HIGH_WAVES = "high_waves"
    STORM_SURGE = "storm_surge"
    COASTAL_FLOODING = "coastal_flooding"
    STRONG_WINDS = "strong_winds"  # rule-based current-condition hazard only
    NONE = "none"


# ═══════════════════════════════════════════════════════════════════════════
# Numeric helpers
# ═══════════════════════════════════════════════════════════════════════════

FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "wave_height": ("wave_height", "waveHeight", "hs"),
    "wind_speed": ("wind_speed", "windSpeed", "ws"),
    "wind_direction": ("wind_direction", "windDirection", "wd"),
    "current_speed": ("current_speed", "currentSpeed", "u"),
    "sea_surface_temp": ("sea_surface_temp", "seaSurfaceTemp", "sst"),
    "pressure": ("pressure", "pres", "pressure_msl"),
}

# Raw keys → canonical field, for trend lookups by any accepted name
ALIAS_TO_FIELD: Dict[str, str] = {
    alias: canonical
    for canonical, aliases in FIELD_ALIASES.items()
    for alias in aliases
}


def to_float(value: Any) -> Optional[float]:
    """Parse a numeric value; None for missing, unparsable or non-finite."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def finite_or_zero(value: Optional[float]) -> float:
    """Substitute 0 for None / NaN / inf in evidence and scores."""
    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def parse_timestamp(value: Any) -> datetime:
    """Accept datetime or ISO-8601 string; always return aware UTC."""
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str):
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Unsupported timestamp: {value!r}")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _first_present(raw: Mapping[str, Any], keys: Iterable[str]) -> Optional[float]:
    for key in keys:
        if key in raw:
            value = to_float(raw[key])
            if value is not None:
                return value
    return None


def _has_active(raw: Mapping[str, Any], flag: str, nested: str, items: str) -> bool:
    if raw.get(flag):
        return True
    block = raw.get(nested)
    if isinstance(block, Mapping):
        return bool(block.get(items))
    return False


# ═══════════════════════════════════════════════════════════════════════════
# Observation
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Observation:
    """One ocean/weather record. Immutable once recorded."""
    latitude: float
    longitude: float
    timestamp: datetime
    location_id: Optional[str] = None
    wave_height: Optional[float] = None       # m
    wind_speed: Optional[float] = None        # m/s
    wind_direction: Optional[float] = None    # degrees
    current_speed: Optional[float] = None     # m/s
    sea_surface_temp: Optional[float] = None  # °C
    pressure: Optional[float] = None          # hPa
    tsunami_warning_active: bool = False
    cyclone_active: bool = False

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "Observation":
        """Build from a feed record, resolving field aliases once."""
        lat = to_float(raw.get("latitude", raw.get("lat")))
        lon = to_float(raw.get("longitude", raw.get("lon")))
        if lat is None or lon is None:
            raise ValueError("Observation requires numeric latitude and longitude")

        current = _first_present(raw, FIELD_ALIASES["current_speed"])
        location = raw.get("location_id", raw.get("locationId", raw.get("location")))

        return cls(
            latitude=lat,
            longitude=lon,
            timestamp=parse_timestamp(raw.get("timestamp") or datetime.now(timezone.utc)),
            location_id=str(location) if location is not None else None,
            wave_height=_first_present(raw, FIELD_ALIASES["wave_height"]),
            wind_speed=_first_present(raw, FIELD_ALIASES["wind_speed"]),
            wind_direction=_first_present(raw, FIELD_ALIASES["wind_direction"]),
            current_speed=abs(current) if current is not None else None,
            sea_surface_temp=_first_present(raw, FIELD_ALIASES["sea_surface_temp"]),
            pressure=_first_present(raw, FIELD_ALIASES["pressure"]),
            tsunami_warning_active=_has_active(
                raw, "tsunami_warning_active", "tsunamiWarnings", "activeWarnings",
            ),
            cyclone_active=_has_active(
                raw, "cyclone_active", "cycloneData", "activeCyclones",
            ),
        )

    def value(self, name: str) -> Optional[float]:
        """Numeric field by canonical name or any accepted alias."""
        canonical = ALIAS_TO_FIELD.get(name, name)
        if canonical not in FIELD_ALIASES:
            raise KeyError(f"Unknown observation field: {name}")
        return getattr(self, canonical)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location_id": self.location_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": self.timestamp.isoformat(),
            "wave_height": self.wave_height,
            "wind_speed": self.wind_speed,
            "wind_direction": self.wind_direction,
            "current_speed": self.current_speed,
            "sea_surface_temp": self.sea_surface_temp,
            "pressure": self.pressure,
            "tsunami_warning_active": self.tsunami_warning_active,
            "cyclone_active": self.cyclone_active,
        }


@dataclass(frozen=True)
class ObservationSequence:
    """
    Oldest→newest observations for one location.

    `is_fallback` marks a sequence assembled from the broad any-location
    query because nothing was found near the requested point; callers
    should treat it as lower-confidence context.
    """
    observations: Tuple[Observation, ...] = ()
    is_fallback: bool = False

    def __len__(self) -> int:
        return len(self.observations)

    def __iter__(self):
        return iter(self.observations)

    @property
    def latest(self) -> Optional[Observation]:
        return self.observations[-1] if self.observations else None


# ═══════════════════════════════════════════════════════════════════════════
# Detector / arbiter output
# ═══════════════════════════════════════════════════════════════════════════

SIGNIFICANCE_THRESHOLD = 0.6


@dataclass
class PatternResult:
    """One detector's verdict over a sequence."""
    hazard_type: HazardType
    confidence: float = 0.0
    severity: Severity = Severity.LOW
    indicators: List[str] = field(default_factory=list)
    reason: str = ""
    evidence: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.confidence = clamp(finite_or_zero(self.confidence), 0.0, 1.0)
        self.evidence = {k: finite_or_zero(v) for k, v in self.evidence.items()}

    @property
    def has_pattern(self) -> bool:
        return self.confidence > SIGNIFICANCE_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hazard_type": self.hazard_type.value,
            "has_pattern": self.has_pattern,
            "confidence": round(self.confidence, 3),
            "severity": self.severity.value,
            "indicators": list(self.indicators),
            "reason": self.reason,
            "evidence": {k: round(v, 4) for k, v in self.evidence.items()},
        }


@dataclass
class EarlyWarning:
    """Arbiter decision: the dominant pattern and its lead time."""
    has_pattern: bool
    predicted_hazard: Optional[HazardType] = None
    confidence: float = 0.0
    severity: Severity = Severity.LOW
    estimated_time_to_hazard_hours: Optional[float] = None
    early_warning: bool = False
    pattern_details: Optional[PatternResult] = None
    all_pattern_results: Dict[str, PatternResult] = field(default_factory=dict)
    data_points: int = 0
    is_fallback: bool = False
    reason: str = ""
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_pattern": self.has_pattern,
            "predicted_hazard": self.predicted_hazard.value if self.predicted_hazard else None,
            "confidence": round(self.confidence, 3),
            "severity": self.severity.value,
            "estimated_time_to_hazard_hours": (
                round(self.estimated_time_to_hazard_hours, 2)
                if self.estimated_time_to_hazard_hours is not None else None
            ),
            "early_warning": self.early_warning,
            "pattern_details": self.pattern_details.to_dict() if self.pattern_details else None,
            "all_pattern_results": {
                name: result.to_dict() for name, result in self.all_pattern_results.items()
            },
            "data_points": self.data_points,
            "is_fallback": self.is_fallback,
            "reason": self.reason,
            "analyzed_at": self.analyzed_at.isoformat(),
        }
