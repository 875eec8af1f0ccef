"""
pattern_detectors.py — Precursor pattern detectors for coastal hazards.

Provides:
    • HazardDetector — common interface (hazard_type, min_points, detect)
    • TsunamiDetector, CycloneDetector, HighWaveDetector,
      StormSurgeDetector, CoastalFloodingDetector
    • DEFAULT_DETECTORS — the explicit registration order used by the
      early-warning arbiter (ties are resolved in this order)

═══════════════════════════════════════════════════════════════════════════
DETECTION RULES (first matching rule wins within a detector)
═══════════════════════════════════════════════════════════════════════════

All trends are least-squares slopes over the latest 6 observations
(units per sample). "Current" means the newest observation.

    TSUNAMI (≥ 2 points)
        active tsunami warning on latest             → 0.95 critical
        |Δwave| > 1.5 m AND |Δcurrent| > 0.8 m/s     → 0.75 critical
          (between the two newest observations)
        wave trend > 0.3 AND wave > 2.0 m            → 0.65 high

    CYCLONE (≥ 3 points)
        active cyclone flag                          → 0.95 critical
        pressure trend < −0.5 AND wind trend > 1.0
          AND pressure < 1005 hPa                    → 0.85 critical
        wind trend > 2.0 AND wind > 15 m/s           → 0.70 high
        pressure < 1000 hPa AND wind trend > 0.5     → 0.65 high

    HIGH WAVES (≥ 3 points)
        projected = wave + trend × 6
        trend > 0.2 AND wave > 2.5 m:
            projected > 4.0 m                        → 0.80 critical
            projected > 3.0 m                        → 0.70 high
        wind > 18 m/s AND wave > 2.0 m
          AND wind trend > 0.5                       → 0.75 high

    STORM SURGE (≥ 4 points)
        wind > 20 m/s AND pressure trend < −0.3
          AND pressure < 1005 hPa                    → 0.80 critical

    COASTAL FLOODING (≥ 3 points)
        wave > 3.0 m AND wave trend ≥ 0              → 0.70 high

A missing measurement makes every comparison that needs it false: no
evidence, never an implicit zero. Detectors are pure and never raise.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from hazardwatch.ml.models import (
    HazardType,
    Observation,
    PatternResult,
    Severity,
    clamp,
)
from hazardwatch.ml.trend import compute_trend

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════════════════

TREND_WINDOW = 6            # newest samples used for every trend
PROJECTION_SAMPLES = 6      # high-wave projection horizon

# Tsunami
TSUNAMI_WAVE_JUMP_M = 1.5
TSUNAMI_CURRENT_JUMP_MS = 0.8
TSUNAMI_WAVE_TREND = 0.3
TSUNAMI_MIN_WAVE_M = 2.0

# Cyclone
CYCLONE_PRESSURE_TREND = -0.5
CYCLONE_WIND_TREND = 1.0
CYCLONE_PRESSURE_HPA = 1005.0
CYCLONE_RAPID_WIND_TREND = 2.0
CYCLONE_RAPID_WIND_MS = 15.0
CYCLONE_LOW_PRESSURE_HPA = 1000.0
CYCLONE_LOW_PRESSURE_WIND_TREND = 0.5

# High waves
HIGH_WAVE_TREND = 0.2
HIGH_WAVE_MIN_M = 2.5
HIGH_WAVE_CRITICAL_M = 4.0
HIGH_WAVE_HIGH_M = 3.0
HIGH_WAVE_WIND_MS = 18.0
HIGH_WAVE_WIND_WAVE_M = 2.0
HIGH_WAVE_WIND_TREND = 0.5

# Storm surge
SURGE_WIND_MS = 20.0
SURGE_PRESSURE_TREND = -0.3
SURGE_PRESSURE_HPA = 1005.0

# Coastal flooding
FLOOD_WAVE_M = 3.0

# Time-to-peak bounds (hours)
PEAK_HORIZON_HOURS = 24.0
PEAK_MIN_HOURS = 2.0


def _gt(value: Optional[float], threshold: float) -> bool:
    return value is not None and value > threshold


def _lt(value: Optional[float], threshold: float) -> bool:
    return value is not None and value < threshold


def estimate_time_to_peak(observations: Sequence[Observation], field: str) -> Optional[float]:
    """
    Hours until a rising field might peak if its trend continues.

    Returns None when the trend is flat/falling or the latest value is
    missing; otherwise 24 / trend clamped to [2, 24].
    """
    if not observations:
        return None
    trend = compute_trend(observations[-TREND_WINDOW:], field)
    if trend <= 0 or not observations[-1].value(field):
        return None
    return clamp(PEAK_HORIZON_HOURS / trend, PEAK_MIN_HOURS, PEAK_HORIZON_HOURS)


# ═══════════════════════════════════════════════════════════════════════════
# Detector interface
# ═══════════════════════════════════════════════════════════════════════════

class HazardDetector(ABC):
    """Pure, stateless precursor detector for one hazard type."""

    hazard_type: HazardType
    min_points: int = 3

    @property
    def name(self) -> str:
        return self.hazard_type.value

    def detect(self, observations: Sequence[Observation]) -> PatternResult:
        """Run the rules; below `min_points` report insufficient data."""
        observations = tuple(observations)
        if len(observations) < self.min_points:
            return PatternResult(self.hazard_type, reason="Insufficient data")
        return self._detect(observations)

    @abstractmethod
    def _detect(self, observations: Tuple[Observation, ...]) -> PatternResult:
        ...

    def _none(self) -> PatternResult:
        label = self.hazard_type.value.replace("_", " ")
        return PatternResult(self.hazard_type, reason=f"No {label} patterns detected")


# ═══════════════════════════════════════════════════════════════════════════
# Implementations
# ═══════════════════════════════════════════════════════════════════════════

class TsunamiDetector(HazardDetector):
    hazard_type = HazardType.TSUNAMI
    min_points = 2

    def _detect(self, observations):
        current, previous = observations[-1], observations[-2]

        if current.tsunami_warning_active:
            return PatternResult(
                self.hazard_type, 0.95, Severity.CRITICAL,
                indicators=["tsunami_warning_active"],
                reason="Active tsunami warning detected",
            )

        wave_change = (
            abs(current.wave_height - previous.wave_height)
            if current.wave_height is not None and previous.wave_height is not None
            else None
        )
        current_change = (
            abs(current.current_speed - previous.current_speed)
            if current.current_speed is not None and previous.current_speed is not None
            else None
        )
        if _gt(wave_change, TSUNAMI_WAVE_JUMP_M) and _gt(current_change, TSUNAMI_CURRENT_JUMP_MS):
            return PatternResult(
                self.hazard_type, 0.75, Severity.CRITICAL,
                indicators=["rapid_wave_change", "unusual_currents"],
                reason="Rapid ocean condition changes detected (tsunami precursor pattern)",
                evidence={"wave_change": wave_change, "current_change": current_change},
            )

        trend = compute_trend(observations[-TREND_WINDOW:], "wave_height")
        if trend > TSUNAMI_WAVE_TREND and _gt(current.wave_height, TSUNAMI_MIN_WAVE_M):
            return PatternResult(
                self.hazard_type, 0.65, Severity.HIGH,
                indicators=["increasing_wave_trend"],
                reason="Consistent wave height increase detected",
                evidence={"wave_trend": trend},
            )

        return self._none()


class CycloneDetector(HazardDetector):
    hazard_type = HazardType.CYCLONE
    min_points = 3

    def _detect(self, observations):
        current = observations[-1]
        if current.cyclone_active:
            return PatternResult(
                self.hazard_type, 0.95, Severity.CRITICAL,
                indicators=["cyclone_active"],
                reason="Active cyclone detected",
            )

        recent = observations[-TREND_WINDOW:]
        pressure_trend = compute_trend(recent, "pressure")
        wind_trend = compute_trend(recent, "wind_speed")

        if (
            pressure_trend < CYCLONE_PRESSURE_TREND
            and wind_trend > CYCLONE_WIND_TREND
            and _lt(current.pressure, CYCLONE_PRESSURE_HPA)
        ):
            return PatternResult(
                self.hazard_type, 0.85, Severity.CRITICAL,
                indicators=["decreasing_pressure", "increasing_winds"],
                reason="Cyclone precursor pattern: decreasing pressure with increasing winds",
                evidence={"pressure_trend": pressure_trend, "wind_trend": wind_trend},
            )

        if wind_trend > CYCLONE_RAPID_WIND_TREND and _gt(current.wind_speed, CYCLONE_RAPID_WIND_MS):
            return PatternResult(
                self.hazard_type, 0.70, Severity.HIGH,
                indicators=["rapid_wind_increase"],
                reason="Rapid wind speed increase (possible cyclone approach)",
                evidence={"wind_speed": current.wind_speed, "wind_trend": wind_trend},
            )

        if _lt(current.pressure, CYCLONE_LOW_PRESSURE_HPA) and wind_trend > CYCLONE_LOW_PRESSURE_WIND_TREND:
            return PatternResult(
                self.hazard_type, 0.65, Severity.HIGH,
                indicators=["low_pressure", "increasing_winds"],
                reason="Low pressure system with increasing winds",
                evidence={"pressure": current.pressure, "wind_trend": wind_trend},
            )

        return self._none()


class HighWaveDetector(HazardDetector):
    hazard_type = HazardType.HIGH_WAVES
    min_points = 3

    def _detect(self, observations):
        current = observations[-1]
        recent = observations[-TREND_WINDOW:]
        wave_trend = compute_trend(recent, "wave_height")
        wind_trend = compute_trend(recent, "wind_speed")

        if wave_trend > HIGH_WAVE_TREND and _gt(current.wave_height, HIGH_WAVE_MIN_M):
            projected = current.wave_height + wave_trend * PROJECTION_SAMPLES
            evidence = {
                "current_wave_height": current.wave_height,
                "predicted_wave_height": projected,
                "wave_trend": wave_trend,
            }
            if projected > HIGH_WAVE_CRITICAL_M:
                time_to_peak = estimate_time_to_peak(observations, "wave_height")
                if time_to_peak is not None:
                    evidence["time_to_peak_hours"] = time_to_peak
                return PatternResult(
                    self.hazard_type, 0.80, Severity.CRITICAL,
                    indicators=["increasing_wave_trend"],
                    reason="High waves predicted: gradual increase pattern detected",
                    evidence=evidence,
                )
            if projected > HIGH_WAVE_HIGH_M:
                return PatternResult(
                    self.hazard_type, 0.70, Severity.HIGH,
                    indicators=["increasing_wave_trend"],
                    reason="Moderate-high waves predicted based on trend",
                    evidence=evidence,
                )

        if (
            _gt(current.wind_speed, HIGH_WAVE_WIND_MS)
            and _gt(current.wave_height, HIGH_WAVE_WIND_WAVE_M)
            and wind_trend > HIGH_WAVE_WIND_TREND
        ):
            return PatternResult(
                self.hazard_type, 0.75, Severity.HIGH,
                indicators=["high_winds", "moderate_waves"],
                reason="High wind conditions likely to generate high waves",
                evidence={"wind_speed": current.wind_speed, "wave_height": current.wave_height},
            )

        return self._none()


class StormSurgeDetector(HazardDetector):
    hazard_type = HazardType.STORM_SURGE
    min_points = 4

    def _detect(self, observations):
        current = observations[-1]
        pressure_trend = compute_trend(observations[-TREND_WINDOW:], "pressure")

        if (
            _gt(current.wind_speed, SURGE_WIND_MS)
            and pressure_trend < SURGE_PRESSURE_TREND
            and _lt(current.pressure, SURGE_PRESSURE_HPA)
        ):
            return PatternResult(
                self.hazard_type, 0.80, Severity.CRITICAL,
                indicators=["high_onshore_winds", "decreasing_pressure"],
                reason="Storm surge precursor pattern: high winds with falling pressure",
                evidence={
                    "wind_speed": current.wind_speed,
                    "pressure": current.pressure,
                    "pressure_trend": pressure_trend,
                },
            )

        return self._none()


class CoastalFloodingDetector(HazardDetector):
    hazard_type = HazardType.COASTAL_FLOODING
    min_points = 3

    def _detect(self, observations):
        current = observations[-1]
        wave_trend = compute_trend(observations[-TREND_WINDOW:], "wave_height")

        if _gt(current.wave_height, FLOOD_WAVE_M) and wave_trend >= 0:
            return PatternResult(
                self.hazard_type, 0.70, Severity.HIGH,
                indicators=["high_waves", "non_decreasing_trend"],
                reason="Coastal flooding risk: high waves holding or rising",
                evidence={"wave_height": current.wave_height, "wave_trend": wave_trend},
            )

        return self._none()


DEFAULT_DETECTORS: Tuple[HazardDetector, ...] = (
    TsunamiDetector(),
    CycloneDetector(),
    HighWaveDetector(),
    StormSurgeDetector(),
    CoastalFloodingDetector(),
)


def run_detectors(
    observations: Sequence[Observation],
    detectors: Sequence[HazardDetector] = DEFAULT_DETECTORS,
) -> List[PatternResult]:
    """Run every detector over the same snapshot, in registration order."""
    return [detector.detect(observations) for detector in detectors]
