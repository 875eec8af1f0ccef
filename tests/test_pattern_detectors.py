"""
Tests for trend estimation and the five precursor pattern detectors.

Covers:
    • OLS slope edge cases (constant, short, missing values)
    • Tsunami: active warning, rapid precursor, rising trend
    • Cyclone: active flag, pressure/wind rules
    • High waves: projection tiers and wind-driven rule
    • Storm surge and coastal flooding
    • Missing measurements never fire a rule
    • Confidence bounds and severity validity
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import pytest

from hazardwatch.ml.models import HazardType, Observation, PatternResult, Severity
from hazardwatch.ml.pattern_detectors import (
    DEFAULT_DETECTORS,
    CoastalFloodingDetector,
    CycloneDetector,
    HighWaveDetector,
    StormSurgeDetector,
    TsunamiDetector,
    estimate_time_to_peak,
    run_detectors,
)
from hazardwatch.ml.trend import compute_trend, slope


BASE_TIME = datetime(2024, 7, 1, tzinfo=timezone.utc)


def _make_obs(index: int = 0, **fields) -> Observation:
    return Observation(
        latitude=13.08,
        longitude=80.27,
        timestamp=BASE_TIME + timedelta(hours=index),
        **fields,
    )


def _make_series(
    waves: Optional[Sequence[Optional[float]]] = None,
    winds: Optional[Sequence[Optional[float]]] = None,
    pressures: Optional[Sequence[Optional[float]]] = None,
    currents: Optional[Sequence[Optional[float]]] = None,
) -> List[Observation]:
    length = max(len(s) for s in (waves, winds, pressures, currents) if s is not None)

    def pick(series, i):
        return series[i] if series is not None else None

    return [
        _make_obs(
            i,
            wave_height=pick(waves, i),
            wind_speed=pick(winds, i),
            pressure=pick(pressures, i),
            current_speed=pick(currents, i),
        )
        for i in range(length)
    ]


# ═══════════════════════════════════════════════════════════════════════════
# Trend
# ═══════════════════════════════════════════════════════════════════════════

class TestSlope:
    def test_constant_is_zero(self):
        assert slope([2.0, 2.0, 2.0, 2.0]) == 0.0

    def test_single_value_is_zero(self):
        assert slope([3.0]) == 0.0

    def test_empty_is_zero(self):
        assert slope([]) == 0.0

    def test_linear(self):
        assert slope([1.0, 2.0, 3.0, 4.0]) == pytest.approx(1.0)

    def test_decreasing(self):
        assert slope([1010.0, 1008.0, 1006.0]) == pytest.approx(-2.0)

    def test_missing_values_skipped(self):
        assert slope([1.0, None, 2.0, None, 3.0]) == pytest.approx(1.0)

    def test_non_finite_skipped(self):
        assert slope([1.0, float("nan"), 2.0]) == pytest.approx(1.0)


class TestComputeTrend:
    def test_reads_field(self):
        obs = _make_series(waves=[1.0, 1.5, 2.0])
        assert compute_trend(obs, "wave_height") == pytest.approx(0.5)

    def test_accepts_alias(self):
        obs = _make_series(waves=[1.0, 1.5, 2.0])
        assert compute_trend(obs, "waveHeight") == compute_trend(obs, "hs")

    def test_all_missing_is_zero(self):
        obs = _make_series(winds=[5.0, 6.0, 7.0])
        assert compute_trend(obs, "wave_height") == 0.0


# ═══════════════════════════════════════════════════════════════════════════
# Tsunami
# ═══════════════════════════════════════════════════════════════════════════

class TestTsunamiDetector:
    def test_active_warning(self):
        obs = [_make_obs(0, wave_height=1.0), _make_obs(1, wave_height=1.0, tsunami_warning_active=True)]
        result = TsunamiDetector().detect(obs)
        assert result.confidence == 0.95
        assert result.severity == Severity.CRITICAL
        assert "tsunami_warning_active" in result.indicators

    def test_rapid_precursor(self):
        obs = _make_series(waves=[2.0, 3.6], currents=[0.5, 1.4])
        result = TsunamiDetector().detect(obs)
        assert result.confidence == 0.75
        assert result.severity == Severity.CRITICAL
        assert result.evidence["wave_change"] == pytest.approx(1.6)
        assert result.evidence["current_change"] == pytest.approx(0.9)

    def test_jump_without_current_change(self):
        obs = _make_series(waves=[2.0, 3.6], currents=[0.5, 0.6])
        result = TsunamiDetector().detect(obs)
        assert result.confidence < 0.75

    def test_rising_trend(self):
        obs = _make_series(waves=[1.0, 1.4, 1.8, 2.2])
        result = TsunamiDetector().detect(obs)
        assert result.confidence == 0.65
        assert result.severity == Severity.HIGH

    def test_single_point_insufficient(self):
        result = TsunamiDetector().detect([_make_obs(0, tsunami_warning_active=True)])
        assert result.confidence == 0.0
        assert result.reason == "Insufficient data"

    def test_missing_currents_no_precursor(self):
        obs = _make_series(waves=[2.0, 3.6])
        result = TsunamiDetector().detect(obs)
        assert "rapid_wave_change" not in result.indicators


# ═══════════════════════════════════════════════════════════════════════════
# Cyclone
# ═══════════════════════════════════════════════════════════════════════════

class TestCycloneDetector:
    def test_active_flag(self):
        obs = [_make_obs(i) for i in range(2)] + [_make_obs(2, cyclone_active=True)]
        result = CycloneDetector().detect(obs)
        assert result.confidence == 0.95
        assert result.severity == Severity.CRITICAL

    def test_pressure_drop_with_rising_wind(self):
        obs = _make_series(pressures=[1008.0, 1006.0, 1004.0], winds=[10.0, 12.0, 14.0])
        result = CycloneDetector().detect(obs)
        assert result.confidence == 0.85
        assert result.severity == Severity.CRITICAL

    def test_rapid_wind_increase(self):
        obs = _make_series(winds=[10.0, 13.0, 16.0])
        result = CycloneDetector().detect(obs)
        assert result.confidence == 0.70
        assert result.severity == Severity.HIGH

    def test_low_pressure_with_wind(self):
        obs = _make_series(pressures=[998.0, 998.0, 998.0], winds=[8.0, 9.0, 10.0])
        result = CycloneDetector().detect(obs)
        assert result.confidence == 0.65

    def test_missing_pressure_blocks_pressure_rules(self):
        obs = _make_series(winds=[10.0, 11.5, 13.0])
        result = CycloneDetector().detect(obs)
        assert result.confidence == 0.0

    def test_two_points_insufficient(self):
        obs = _make_series(winds=[10.0, 20.0])
        assert CycloneDetector().detect(obs).reason == "Insufficient data"


# ═══════════════════════════════════════════════════════════════════════════
# High waves
# ═══════════════════════════════════════════════════════════════════════════

class TestHighWaveDetector:
    def test_projection_critical(self):
        obs = _make_series(waves=[1.0, 1.3, 1.6, 1.9, 2.2, 2.6])
        result = HighWaveDetector().detect(obs)
        assert result.confidence == 0.80
        assert result.severity == Severity.CRITICAL
        assert result.evidence["predicted_wave_height"] == pytest.approx(4.486, abs=0.01)
        assert result.evidence["current_wave_height"] == 2.6

    def test_critical_carries_time_to_peak(self):
        obs = _make_series(waves=[1.0, 1.3, 1.6, 1.9, 2.2, 2.6])
        result = HighWaveDetector().detect(obs)
        assert 2.0 <= result.evidence["time_to_peak_hours"] <= 24.0

    def test_projection_high(self):
        obs = _make_series(waves=[2.16, 2.38, 2.60])
        result = HighWaveDetector().detect(obs)
        assert result.confidence == 0.70
        assert result.severity == Severity.HIGH

    def test_wind_driven(self):
        obs = _make_series(waves=[2.2, 2.2, 2.2], winds=[18.0, 19.0, 20.0])
        result = HighWaveDetector().detect(obs)
        assert result.confidence == 0.75
        assert result.indicators == ["high_winds", "moderate_waves"]

    def test_calm_sea(self):
        obs = _make_series(waves=[0.5, 0.6, 0.5], winds=[3.0, 4.0, 3.0])
        result = HighWaveDetector().detect(obs)
        assert result.confidence == 0.0
        assert not result.has_pattern


class TestEstimateTimeToPeak:
    def test_flat_is_none(self):
        assert estimate_time_to_peak(_make_series(waves=[2.0, 2.0, 2.0]), "wave_height") is None

    def test_clamped_low(self):
        obs = _make_series(waves=[1.0, 20.0, 40.0])
        assert estimate_time_to_peak(obs, "wave_height") == 2.0

    def test_clamped_high(self):
        obs = _make_series(waves=[1.0, 1.01, 1.02])
        assert estimate_time_to_peak(obs, "wave_height") == 24.0


# ═══════════════════════════════════════════════════════════════════════════
# Storm surge / coastal flooding
# ═══════════════════════════════════════════════════════════════════════════

class TestStormSurgeDetector:
    def test_fires(self):
        obs = _make_series(winds=[21.0, 22.0, 22.0, 23.0], pressures=[1006.0, 1005.0, 1004.0, 1003.0])
        result = StormSurgeDetector().detect(obs)
        assert result.confidence == 0.80
        assert result.severity == Severity.CRITICAL

    def test_three_points_insufficient(self):
        obs = _make_series(winds=[21.0, 22.0, 23.0], pressures=[1005.0, 1004.0, 1003.0])
        assert StormSurgeDetector().detect(obs).reason == "Insufficient data"

    def test_stable_pressure(self):
        obs = _make_series(winds=[21.0, 22.0, 22.0, 23.0], pressures=[1003.0] * 4)
        assert StormSurgeDetector().detect(obs).confidence == 0.0


class TestCoastalFloodingDetector:
    def test_holding_high_waves(self):
        obs = _make_series(waves=[3.2, 3.2, 3.2])
        result = CoastalFloodingDetector().detect(obs)
        assert result.confidence == 0.70
        assert result.severity == Severity.HIGH

    def test_falling_waves(self):
        obs = _make_series(waves=[4.0, 3.6, 3.2])
        assert CoastalFloodingDetector().detect(obs).confidence == 0.0


# ═══════════════════════════════════════════════════════════════════════════
# Shared properties
# ═══════════════════════════════════════════════════════════════════════════

class TestDetectorProperties:
    SEQUENCES = [
        _make_series(waves=[1.0, 1.3, 1.6, 1.9, 2.2, 2.6]),
        _make_series(waves=[2.0, 3.6], currents=[0.5, 1.4]),
        _make_series(winds=[21.0, 22.0, 22.0, 23.0], pressures=[1006.0, 1005.0, 1004.0, 1003.0]),
        _make_series(waves=[float("nan"), float("inf"), 1.0]),
        [],
    ]

    @pytest.mark.parametrize("observations", SEQUENCES)
    def test_confidence_in_unit_interval(self, observations):
        for result in run_detectors(observations):
            assert 0.0 <= result.confidence <= 1.0
            if result.has_pattern:
                assert result.severity in tuple(Severity)

    def test_registration_order(self):
        assert [d.hazard_type for d in DEFAULT_DETECTORS] == [
            HazardType.TSUNAMI,
            HazardType.CYCLONE,
            HazardType.HIGH_WAVES,
            HazardType.STORM_SURGE,
            HazardType.COASTAL_FLOODING,
        ]

    def test_evidence_is_finite(self):
        result = PatternResult(HazardType.TSUNAMI, 0.7, evidence={"x": float("nan")})
        assert result.evidence["x"] == 0.0

    def test_confidence_clamped(self):
        assert PatternResult(HazardType.TSUNAMI, 1.7).confidence == 1.0
