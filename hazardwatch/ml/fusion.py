"""
fusion.py — Context-fusion hazard classifier.

Combines a text classifier's label distribution with deterministic
numeric rules so that physical measurements always dominate when present.

═══════════════════════════════════════════════════════════════════════════
PROCEDURE
═══════════════════════════════════════════════════════════════════════════

    1. BOOST      label scores from the base classifier:
                      high_waves          × 1.3   if wave > 3.5 m
                      critical_high_waves × 1.5   if wave > 5.0 m
                      storm_conditions    × 1.2   if wind > 15 m/s
                  then re-normalise to sum 1.
    2. FILTER     keep labels with score > 0.15, top 3.
    3. OVERRIDE   if any of wave / wind / current is known, severity comes
                  from the first matching row:
                      wave > 4.0 or wind > 25                  → critical
                      wave > 3.0 or wind > 18 or current > 1.5 → high
                      wave > 2.0 or wind > 12 or current > 1.0 → medium
                      otherwise                                → low
                  With no numeric context the top label decides.
    4. NUDGE      accelerating trends (wave trend > 0.3 or wind trend > 2.0)
                  escalate one tier within tight bounds:
                      low → medium    if wave trend > 0.5 or wind trend > 3.0
                      medium → high   if wave trend > 0.7 or wind trend > 4.0
                  and add 0.1 confidence (capped at 0.95).
    5. PRECEDENCE an early warning from the pattern arbiter replaces the
                  classifier result entirely.

Confidence is the top label's score, or 0.5 when no label survives.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from hazardwatch.core.errors import ClassifierError
from hazardwatch.ml.models import (
    EarlyWarning,
    HazardType,
    Severity,
    clamp,
    max_severity,
    to_float,
)
from hazardwatch.ml.text_classifier import HazardTextClassifier, LabelScore

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════════════════

MIN_LABEL_SCORE = 0.15
TOP_K_LABELS = 3
DEFAULT_CONFIDENCE = 0.5
MAX_NUDGED_CONFIDENCE = 0.95
TREND_CONFIDENCE_BONUS = 0.1

# (label, multiplier, context field, threshold)
CONTEXT_BOOSTS: Tuple[Tuple[str, float, str, float], ...] = (
    ("high_waves", 1.3, "wave_height", 3.5),
    ("critical_high_waves", 1.5, "wave_height", 5.0),
    ("storm_conditions", 1.2, "wind_speed", 15.0),
)

LABEL_TO_HAZARD: Dict[str, HazardType] = {
    "normal_conditions": HazardType.NONE,
    "low_hazard": HazardType.NONE,
    "rough_sea_conditions": HazardType.HIGH_WAVES,
    "high_waves": HazardType.HIGH_WAVES,
    "critical_high_waves": HazardType.HIGH_WAVES,
    "storm_conditions": HazardType.STRONG_WINDS,
    "tsunami_warning": HazardType.TSUNAMI,
    "cyclone_alert": HazardType.CYCLONE,
    "coastal_flooding": HazardType.COASTAL_FLOODING,
    "navigation_warning": HazardType.HIGH_WAVES,
}

METHOD_EARLY_WARNING = "pattern_early_warning"
METHOD_CONTEXT_FUSION = "context_fusion"


# ═══════════════════════════════════════════════════════════════════════════
# Data structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ConditionContext:
    """Numeric context accompanying a classification request."""
    wave_height: Optional[float] = None
    wind_speed: Optional[float] = None
    current_speed: Optional[float] = None
    wave_height_trend: Optional[float] = None
    wind_speed_trend: Optional[float] = None
    location: Optional[str] = None

    @property
    def has_numeric(self) -> bool:
        return any(
            v is not None
            for v in (self.wave_height, self.wind_speed, self.current_speed)
        )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "ConditionContext":
        """Accepts snake_case or camelCase keys; unparsable values → None."""
        def pick(*keys: str) -> Optional[float]:
            for key in keys:
                if key in raw:
                    value = to_float(raw[key])
                    if value is not None:
                        return value
            return None

        current = pick("current_speed", "currentSpeed")
        return cls(
            wave_height=pick("wave_height", "waveHeight", "hs"),
            wind_speed=pick("wind_speed", "windSpeed", "ws"),
            current_speed=abs(current) if current is not None else None,
            wave_height_trend=pick("wave_height_trend", "waveHeightTrend"),
            wind_speed_trend=pick("wind_speed_trend", "windSpeedTrend"),
            location=raw.get("location"),
        )


@dataclass
class HazardLabel:
    label: str
    confidence: float
    severity: Severity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "confidence": round(self.confidence, 4),
            "severity": self.severity.value,
        }


@dataclass
class FusionResult:
    severity: Severity
    confidence: float
    method: str
    hazards: List[HazardLabel] = field(default_factory=list)
    predicted_hazard: HazardType = HazardType.NONE
    early_warning: bool = False
    estimated_time_to_hazard_hours: Optional[float] = None
    severity_source: str = "default"  # numeric_override | classifier | early_warning | default
    trend_adjusted: bool = False
    classifier_error: Optional[str] = None

    @property
    def has_labels(self) -> bool:
        return bool(self.hazards)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "confidence": round(self.confidence, 4),
            "method": self.method,
            "hazards": [h.to_dict() for h in self.hazards],
            "predicted_hazard": self.predicted_hazard.value,
            "early_warning": self.early_warning,
            "estimated_time_to_hazard_hours": self.estimated_time_to_hazard_hours,
            "severity_source": self.severity_source,
            "trend_adjusted": self.trend_adjusted,
            "classifier_error": self.classifier_error,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Steps
# ═══════════════════════════════════════════════════════════════════════════

def apply_context_boosts(
    scores: Sequence[LabelScore],
    context: ConditionContext,
) -> List[LabelScore]:
    """Multiply matching labels by their boosts, then normalise to sum 1."""
    if not scores:
        return []

    values = np.array([max(0.0, s.score) for s in scores], dtype=float)
    index = {s.label: i for i, s in enumerate(scores)}
    for label, multiplier, field_name, threshold in CONTEXT_BOOSTS:
        measured = getattr(context, field_name)
        if label in index and measured is not None and measured > threshold:
            values[index[label]] *= multiplier

    total = values.sum()
    if total > 0 and np.isfinite(total):
        values = values / total
    return [LabelScore(s.label, float(v)) for s, v in zip(scores, values)]


def select_top_labels(
    scores: Sequence[LabelScore],
    min_score: float = MIN_LABEL_SCORE,
    top_k: int = TOP_K_LABELS,
) -> List[LabelScore]:
    kept = [s for s in scores if s.score > min_score]
    return sorted(kept, key=lambda s: s.score, reverse=True)[:top_k]


def numeric_severity_override(context: ConditionContext) -> Optional[Severity]:
    """Severity from measurements; None when no wave/wind/current is known."""
    if not context.has_numeric:
        return None

    wave = context.wave_height or 0.0
    wind = context.wind_speed or 0.0
    current = context.current_speed or 0.0

    if wave > 4.0 or wind > 25:
        return Severity.CRITICAL
    if wave > 3.0 or wind > 18 or current > 1.5:
        return Severity.HIGH
    if wave > 2.0 or wind > 12 or current > 1.0:
        return Severity.MEDIUM
    return Severity.LOW


def label_severity(top: LabelScore) -> Severity:
    """Overall severity from the top label when there is no numeric context."""
    label, score = top.label, top.score
    if "critical" in label or "tsunami" in label:
        return Severity.CRITICAL
    if "high" in label or "storm" in label:
        return Severity.HIGH if score > 0.4 else Severity.MEDIUM
    if "rough" in label:
        return Severity.MEDIUM if score > 0.3 else Severity.LOW
    if score > 0.4:
        return Severity.MEDIUM
    return Severity.LOW


def hazard_label_severity(item: LabelScore) -> Severity:
    """Per-label severity reported alongside each surviving label."""
    if "critical" in item.label or "tsunami" in item.label:
        return Severity.CRITICAL
    if "high" in item.label:
        return Severity.HIGH
    if "storm" in item.label or "rough" in item.label:
        return Severity.MEDIUM if item.score > 0.3 else Severity.LOW
    if item.score > 0.5:
        return Severity.MEDIUM
    return Severity.LOW


def apply_trend_nudge(
    severity: Severity,
    confidence: float,
    context: ConditionContext,
) -> Tuple[Severity, float, bool]:
    """Escalate one tier on accelerating trends; returns (severity, confidence, adjusted)."""
    wave_trend = context.wave_height_trend or 0.0
    wind_trend = context.wind_speed_trend or 0.0
    if not (wave_trend > 0.3 or wind_trend > 2.0):
        return severity, confidence, False

    if severity == Severity.LOW and (wave_trend > 0.5 or wind_trend > 3.0):
        severity = Severity.MEDIUM
    elif severity == Severity.MEDIUM and (wave_trend > 0.7 or wind_trend > 4.0):
        severity = Severity.HIGH

    confidence = min(MAX_NUDGED_CONFIDENCE, confidence + TREND_CONFIDENCE_BONUS)
    return severity, confidence, True


# ═══════════════════════════════════════════════════════════════════════════
# Classifier
# ═══════════════════════════════════════════════════════════════════════════

class ContextFusionClassifier:
    """
    Usage:
        fusion = ContextFusionClassifier(TfidfHazardClassifier.load(path))
        result = await fusion.predict(
            "Wave height 3.80 meters",
            ConditionContext(wave_height=3.8, wind_speed=14.0),
            early_warning=arbiter_result,
        )
    """

    def __init__(self, classifier: Optional[HazardTextClassifier] = None):
        self.classifier = classifier

    async def _label_scores(self, text: str) -> Tuple[List[LabelScore], Optional[str]]:
        if self.classifier is None or not text:
            return [], None
        try:
            return list(await self.classifier.classify(text)), None
        except ClassifierError as e:
            logger.warning("Classifier %s failed: %s", e.details.get("model"), e.message)
            return [], e.message

    async def predict(
        self,
        text: str,
        context: Optional[ConditionContext] = None,
        early_warning: Optional[EarlyWarning] = None,
    ) -> FusionResult:
        context = context or ConditionContext()

        if early_warning is not None and early_warning.early_warning:
            return FusionResult(
                severity=early_warning.severity,
                confidence=early_warning.confidence,
                method=METHOD_EARLY_WARNING,
                predicted_hazard=early_warning.predicted_hazard or HazardType.NONE,
                early_warning=True,
                estimated_time_to_hazard_hours=early_warning.estimated_time_to_hazard_hours,
                severity_source="early_warning",
            )

        raw_scores, error = await self._label_scores(text)
        top = select_top_labels(apply_context_boosts(raw_scores, context))

        override = numeric_severity_override(context)
        if override is not None:
            severity, source = override, "numeric_override"
        elif top:
            severity, source = label_severity(top[0]), "classifier"
        else:
            severity, source = Severity.LOW, "default"

        confidence = top[0].score if top else DEFAULT_CONFIDENCE
        severity, confidence, nudged = apply_trend_nudge(severity, confidence, context)

        return FusionResult(
            severity=severity,
            confidence=clamp(confidence, 0.0, 1.0),
            method=METHOD_CONTEXT_FUSION,
            hazards=[HazardLabel(s.label, s.score, hazard_label_severity(s)) for s in top],
            predicted_hazard=LABEL_TO_HAZARD.get(top[0].label, HazardType.NONE) if top else HazardType.NONE,
            severity_source=source,
            trend_adjusted=nudged,
            classifier_error=error,
        )

    async def predict_many(
        self,
        sources: Sequence[Tuple[str, Optional[ConditionContext]]],
    ) -> "CombinedPrediction":
        """Classify several independent sources and combine them."""
        results = await asyncio.gather(*(self.predict(text, ctx) for text, ctx in sources))
        return combine_predictions(results)


# ═══════════════════════════════════════════════════════════════════════════
# Multi-source combination
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class CombinedPrediction:
    hazards: List[HazardLabel]
    overall_risk: Severity
    confidence: float
    source_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hazards": [h.to_dict() for h in self.hazards],
            "overall_risk": self.overall_risk.value,
            "confidence": round(self.confidence, 4),
            "source_count": self.source_count,
        }


def combine_predictions(results: Sequence[FusionResult]) -> CombinedPrediction:
    """
    Ensemble several fusion results.

    Per label: mean confidence and most common severity (first seen wins
    ties). Overall risk is the highest severity across sources; confidence
    is the highest source confidence.
    """
    confidences: Dict[str, List[float]] = defaultdict(list)
    severities: Dict[str, List[Severity]] = defaultdict(list)
    for result in results:
        for hazard in result.hazards:
            confidences[hazard.label].append(hazard.confidence)
            severities[hazard.label].append(hazard.severity)

    hazards = [
        HazardLabel(
            label=label,
            confidence=float(np.mean(values)),
            severity=Counter(severities[label]).most_common(1)[0][0],
        )
        for label, values in confidences.items()
    ]
    hazards.sort(key=lambda h: h.confidence, reverse=True)

    return CombinedPrediction(
        hazards=hazards,
        overall_risk=max_severity(*(r.severity for r in results)),
        confidence=max((r.confidence for r in results), default=0.0),
        source_count=len(results),
    )
