"""
Early-warning arbiter — pick the dominant precursor pattern.

Runs every registered detector over one point-in-time sequence, keeps
the significant results (confidence > 0.6), and selects the most
confident one. Ties keep detector registration order.

Lead time ("time to hazard"):

    if the pattern projects a wave height and the wave trend is rising:
        hours = (predicted − current) / trend          clamped to [1, 48]
    else, by confidence:
        > 0.8 → 6 h      > 0.7 → 12 h      otherwise → 24 h

`early_warning` is set only when the lead time exceeds 2 hours; anything
sooner is routed as an immediate alert rather than an early warning.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from hazardwatch.ml.models import (
    SIGNIFICANCE_THRESHOLD,
    EarlyWarning,
    Observation,
    ObservationSequence,
    PatternResult,
    clamp,
)
from hazardwatch.ml.pattern_detectors import (
    DEFAULT_DETECTORS,
    TREND_WINDOW,
    HazardDetector,
)
from hazardwatch.ml.sequence_builder import DEFAULT_LOOKBACK_HOURS, SequenceBuilder
from hazardwatch.ml.trend import compute_trend

logger = logging.getLogger(__name__)

DEFAULT_MIN_LEAD_HOURS = 2.0
LEAD_TIME_MIN_HOURS = 1.0
LEAD_TIME_MAX_HOURS = 48.0
MIN_HISTORY_POINTS = 3


def estimate_time_to_hazard(
    observations: Sequence[Observation],
    result: PatternResult,
) -> float:
    """Hours until the detected pattern is expected to become a hazard."""
    predicted = result.evidence.get("predicted_wave_height")
    current = observations[-1].wave_height if observations else None
    if predicted is not None and current is not None:
        wave_trend = compute_trend(observations[-TREND_WINDOW:], "wave_height")
        if wave_trend > 0:
            return clamp((predicted - current) / wave_trend, LEAD_TIME_MIN_HOURS, LEAD_TIME_MAX_HOURS)

    if result.confidence > 0.8:
        return 6.0
    if result.confidence > 0.7:
        return 12.0
    return 24.0


class EarlyWarningArbiter:
    """
    Usage:
        arbiter = EarlyWarningArbiter(SequenceBuilder(store))
        warning = await arbiter.analyze(13.08, 80.27)
        if warning.early_warning:
            ...
    """

    def __init__(
        self,
        builder: Optional[SequenceBuilder] = None,
        detectors: Sequence[HazardDetector] = DEFAULT_DETECTORS,
        threshold: float = SIGNIFICANCE_THRESHOLD,
        min_lead_hours: float = DEFAULT_MIN_LEAD_HOURS,
    ):
        self.builder = builder
        self.detectors = tuple(detectors)
        self.threshold = threshold
        self.min_lead_hours = min_lead_hours

    def evaluate(self, sequence: ObservationSequence) -> EarlyWarning:
        """Arbitrate over an already-built sequence."""
        observations = sequence.observations
        results = {d.name: d.detect(observations) for d in self.detectors}

        significant = [r for r in results.values() if r.confidence > self.threshold]
        # sorted() is stable: equal confidences keep registration order
        significant = sorted(significant, key=lambda r: r.confidence, reverse=True)

        if not significant:
            reason = (
                "Insufficient historical data for pattern analysis"
                if len(observations) < MIN_HISTORY_POINTS
                else "No significant hazard patterns detected"
            )
            return EarlyWarning(
                has_pattern=False,
                all_pattern_results=results,
                data_points=len(observations),
                is_fallback=sequence.is_fallback,
                reason=reason,
            )

        primary = significant[0]
        lead_hours = estimate_time_to_hazard(observations, primary)
        warning = EarlyWarning(
            has_pattern=True,
            predicted_hazard=primary.hazard_type,
            confidence=primary.confidence,
            severity=primary.severity,
            estimated_time_to_hazard_hours=lead_hours,
            early_warning=lead_hours > self.min_lead_hours,
            pattern_details=primary,
            all_pattern_results=results,
            data_points=len(observations),
            is_fallback=sequence.is_fallback,
            reason=primary.reason,
        )
        logger.debug(
            "Dominant pattern %s (%.2f, %s) lead=%.1fh",
            primary.hazard_type.value, primary.confidence, primary.severity.value, lead_hours,
        )
        return warning

    async def analyze(
        self,
        lat: float,
        lon: float,
        lookback_hours: float = DEFAULT_LOOKBACK_HOURS,
    ) -> EarlyWarning:
        """Build the sequence for (lat, lon) and arbitrate over it."""
        if self.builder is None:
            raise RuntimeError("EarlyWarningArbiter.analyze() needs a SequenceBuilder")
        sequence = await self.builder.build(lat, lon, lookback_hours)
        warning = self.evaluate(sequence)
        if warning.has_pattern:
            logger.info(
                "Pattern at %.4f,%.4f: %s %s (%.2f) lead=%.1fh early=%s",
                lat, lon,
                warning.predicted_hazard.value, warning.severity.value,
                warning.confidence, warning.estimated_time_to_hazard_hours,
                warning.early_warning,
                extra={
                    "lat": lat, "lon": lon,
                    "hazard_type": warning.predicted_hazard.value,
                    "severity": warning.severity.value,
                    "confidence": warning.confidence,
                },
            )
        return warning
