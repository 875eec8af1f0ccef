"""
Rule-based current-condition check.

Compares the freshly fetched snapshot against fixed thresholds:

    ┌──────────────┬──────────┬──────────┐
    │ Measurement  │ Warning  │ Critical │
    ├──────────────┼──────────┼──────────┤
    │ Wave height  │ ≥ 2.5 m  │ ≥ 4.0 m  │
    │ Wind speed   │ ≥ 15 m/s │ ≥ 25 m/s │
    └──────────────┴──────────┴──────────┘

"Warning" maps to MEDIUM severity. Confidence is 0.9 when anything is
critical, 0.7 for warnings only, and 0.5 when nothing is flagged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from hazardwatch.ml.models import HazardType, Severity, max_severity
from hazardwatch.prediction.models import ConditionsSnapshot

HAZARD_THRESHOLDS: Dict[str, Dict[str, float]] = {
    "wave_height": {"warning": 2.5, "critical": 4.0},
    "wind_speed": {"warning": 15.0, "critical": 25.0},
}

CRITICAL_CONFIDENCE = 0.9
WARNING_CONFIDENCE = 0.7
NO_HAZARD_CONFIDENCE = 0.5


@dataclass
class ConditionHazard:
    hazard_type: HazardType
    severity: Severity
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hazard_type": self.hazard_type.value,
            "severity": self.severity.value,
            "message": self.message,
        }


@dataclass
class ConditionAssessment:
    hazards: List[ConditionHazard] = field(default_factory=list)

    @property
    def has_hazard(self) -> bool:
        return bool(self.hazards)

    @property
    def severity(self) -> Severity:
        return max_severity(*(h.severity for h in self.hazards))

    @property
    def confidence(self) -> float:
        if not self.hazards:
            return NO_HAZARD_CONFIDENCE
        if self.severity == Severity.CRITICAL:
            return CRITICAL_CONFIDENCE
        return WARNING_CONFIDENCE

    @property
    def dominant_hazard(self) -> HazardType:
        """First hazard at the highest severity; NONE if nothing flagged."""
        if not self.hazards:
            return HazardType.NONE
        top = self.severity
        return next(h.hazard_type for h in self.hazards if h.severity == top)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_hazard": self.has_hazard,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "hazards": [h.to_dict() for h in self.hazards],
        }


def _tier(value: Optional[float], thresholds: Dict[str, float]) -> Optional[Severity]:
    if value is None:
        return None
    if value >= thresholds["critical"]:
        return Severity.CRITICAL
    if value >= thresholds["warning"]:
        return Severity.MEDIUM
    return None


def assess_current_conditions(snapshot: ConditionsSnapshot) -> ConditionAssessment:
    assessment = ConditionAssessment()

    wave_tier = _tier(snapshot.wave_height, HAZARD_THRESHOLDS["wave_height"])
    if wave_tier is not None:
        label = "Extremely high waves" if wave_tier == Severity.CRITICAL else "High waves"
        assessment.hazards.append(ConditionHazard(
            HazardType.HIGH_WAVES, wave_tier,
            f"{label} ({snapshot.wave_height:.2f} m) detected",
        ))

    wind_tier = _tier(snapshot.wind_speed, HAZARD_THRESHOLDS["wind_speed"])
    if wind_tier is not None:
        label = "Extremely strong winds" if wind_tier == Severity.CRITICAL else "Strong winds"
        assessment.hazards.append(ConditionHazard(
            HazardType.STRONG_WINDS, wind_tier,
            f"{label} ({snapshot.wind_speed:.1f} m/s) detected",
        ))

    return assessment
