"""
Tests for sequence building and early-warning arbitration.

Covers:
    • Box query, broad-query fallback and storage degradation
    • Dominant-pattern selection and registration-order tie break
    • Time-to-hazard estimation and the early-warning lead threshold
    • Insufficient-history reporting
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Sequence

import pytest

from hazardwatch.core.errors import StorageError
from hazardwatch.ml.early_warning import EarlyWarningArbiter, estimate_time_to_hazard
from hazardwatch.ml.models import (
    HazardType,
    Observation,
    ObservationSequence,
    PatternResult,
    Severity,
)
from hazardwatch.ml.pattern_detectors import HazardDetector
from hazardwatch.ml.sequence_builder import SequenceBuilder
from hazardwatch.storage.memory import InMemoryObservationStore


NOW = datetime(2024, 7, 1, 12, tzinfo=timezone.utc)
CHENNAI = (13.0827, 80.2707)


def _make_obs(hours_ago: float, lat: float = CHENNAI[0], lon: float = CHENNAI[1], **fields) -> Observation:
    return Observation(
        latitude=lat,
        longitude=lon,
        timestamp=NOW - timedelta(hours=hours_ago),
        **fields,
    )


def _make_sequence(waves: Sequence[float], **fields) -> ObservationSequence:
    count = len(waves)
    return ObservationSequence(tuple(
        _make_obs(count - i, wave_height=w, **fields) for i, w in enumerate(waves)
    ))


def _make_store(observations: List[Observation]) -> InMemoryObservationStore:
    store = InMemoryObservationStore()

    async def fill():
        for obs in observations:
            await store.append_observation(obs)

    asyncio.run(fill())
    return store


class _FixedDetector(HazardDetector):
    min_points = 0

    def __init__(self, hazard_type: HazardType, confidence: float, severity: Severity = Severity.HIGH):
        self.hazard_type = hazard_type
        self._confidence = confidence
        self._severity = severity

    def _detect(self, observations):
        return PatternResult(self.hazard_type, self._confidence, self._severity, reason="fixed")


class _BrokenStore:
    async def query_observations(self, box, since, until=None, limit=200):
        raise StorageError("query_observations", "connection refused")

    async def append_observation(self, observation):
        raise StorageError("append_observation", "connection refused")


class _RefusingStore:
    async def query_observations(self, box, since, until=None, limit=200):
        raise ConnectionRefusedError("connection refused")


# ═══════════════════════════════════════════════════════════════════════════
# Sequence builder
# ═══════════════════════════════════════════════════════════════════════════

class TestSequenceBuilder:
    def test_box_query_sorted_oldest_first(self):
        store = _make_store([_make_obs(1, wave_height=2.0), _make_obs(3, wave_height=1.0), _make_obs(2, wave_height=1.5)])
        builder = SequenceBuilder(store, clock=lambda: NOW)
        seq = asyncio.run(builder.build(*CHENNAI))
        assert [o.wave_height for o in seq] == [1.0, 1.5, 2.0]
        assert not seq.is_fallback

    def test_tolerance_and_window(self):
        store = _make_store([
            _make_obs(1, wave_height=1.0),
            _make_obs(1, lat=CHENNAI[0] + 0.4, wave_height=2.0),
            _make_obs(1, lat=CHENNAI[0] + 2.0, wave_height=9.0),  # outside box
            _make_obs(30, wave_height=9.0),                        # outside window
        ])
        builder = SequenceBuilder(store, tolerance_deg=0.5, clock=lambda: NOW)
        seq = asyncio.run(builder.build(*CHENNAI, lookback_hours=24))
        assert sorted(o.wave_height for o in seq) == [1.0, 2.0]

    def test_broad_fallback_is_flagged(self):
        store = _make_store([_make_obs(1, lat=19.07, lon=72.87, wave_height=1.2)])
        builder = SequenceBuilder(store, clock=lambda: NOW)
        seq = asyncio.run(builder.build(*CHENNAI))
        assert len(seq) == 1
        assert seq.is_fallback

    def test_empty_store(self):
        builder = SequenceBuilder(InMemoryObservationStore(), clock=lambda: NOW)
        seq = asyncio.run(builder.build(*CHENNAI))
        assert len(seq) == 0
        assert not seq.is_fallback

    def test_storage_error_degrades_to_empty(self):
        builder = SequenceBuilder(_BrokenStore(), clock=lambda: NOW)
        seq = asyncio.run(builder.build(*CHENNAI))
        assert len(seq) == 0

    def test_connection_error_degrades_to_empty(self):
        builder = SequenceBuilder(_RefusingStore(), clock=lambda: NOW)
        seq = asyncio.run(builder.build(*CHENNAI))
        assert len(seq) == 0
        assert not seq.is_fallback


# ═══════════════════════════════════════════════════════════════════════════
# Arbiter
# ═══════════════════════════════════════════════════════════════════════════

class TestArbiterSelection:
    def test_high_wave_scenario(self):
        warning = EarlyWarningArbiter().evaluate(_make_sequence([1.0, 1.3, 1.6, 1.9, 2.2, 2.6]))
        assert warning.has_pattern
        assert warning.predicted_hazard == HazardType.HIGH_WAVES
        assert warning.confidence == 0.80
        assert warning.severity == Severity.CRITICAL
        assert warning.pattern_details.hazard_type == HazardType.HIGH_WAVES

    def test_all_results_reported(self):
        warning = EarlyWarningArbiter().evaluate(_make_sequence([1.0, 1.3, 1.6, 1.9, 2.2, 2.6]))
        assert set(warning.all_pattern_results) == {
            "tsunami", "cyclone", "high_waves", "storm_surge", "coastal_flooding",
        }
        assert warning.all_pattern_results["tsunami"].confidence == 0.65

    def test_tie_keeps_registration_order(self):
        arbiter = EarlyWarningArbiter(detectors=[
            _FixedDetector(HazardType.CYCLONE, 0.7),
            _FixedDetector(HazardType.TSUNAMI, 0.7),
        ])
        warning = arbiter.evaluate(_make_sequence([1.0, 1.0, 1.0]))
        assert warning.predicted_hazard == HazardType.CYCLONE

    def test_threshold_is_strict(self):
        arbiter = EarlyWarningArbiter(detectors=[_FixedDetector(HazardType.CYCLONE, 0.6)])
        warning = arbiter.evaluate(_make_sequence([1.0, 1.0, 1.0]))
        assert not warning.has_pattern
        assert warning.reason == "No significant hazard patterns detected"

    def test_insufficient_history(self):
        warning = EarlyWarningArbiter().evaluate(_make_sequence([1.0, 1.1]))
        assert not warning.has_pattern
        assert not warning.early_warning
        assert warning.reason == "Insufficient historical data for pattern analysis"
        assert warning.data_points == 2

    def test_two_point_tsunami_precursor_still_detected(self):
        seq = ObservationSequence((
            _make_obs(2, wave_height=2.0, current_speed=0.5),
            _make_obs(1, wave_height=3.6, current_speed=1.4),
        ))
        warning = EarlyWarningArbiter().evaluate(seq)
        assert warning.predicted_hazard == HazardType.TSUNAMI
        assert warning.confidence == 0.75

    def test_fallback_flag_propagates(self):
        seq = ObservationSequence(_make_sequence([1.0, 1.0, 1.0]).observations, is_fallback=True)
        assert EarlyWarningArbiter().evaluate(seq).is_fallback


class TestTimeToHazard:
    def test_projection_based(self):
        seq = _make_sequence([1.0, 1.3, 1.6, 1.9, 2.2, 2.6])
        warning = EarlyWarningArbiter().evaluate(seq)
        # (4.486 − 2.6) / 0.314 ≈ 6 h
        assert warning.estimated_time_to_hazard_hours == pytest.approx(6.0, abs=0.01)
        assert warning.early_warning

    def test_confidence_bands_without_projection(self):
        obs = _make_sequence([1.0, 1.0, 1.0]).observations
        assert estimate_time_to_hazard(obs, PatternResult(HazardType.CYCLONE, 0.85)) == 6.0
        assert estimate_time_to_hazard(obs, PatternResult(HazardType.CYCLONE, 0.75)) == 12.0
        assert estimate_time_to_hazard(obs, PatternResult(HazardType.CYCLONE, 0.65)) == 24.0

    def test_projection_clamped(self):
        obs = _make_sequence([1.0, 3.0, 5.0]).observations
        result = PatternResult(HazardType.HIGH_WAVES, 0.8, evidence={"predicted_wave_height": 500.0})
        assert estimate_time_to_hazard(obs, result) == 48.0

    def test_short_lead_is_not_early_warning(self):
        arbiter = EarlyWarningArbiter(min_lead_hours=12.0)
        warning = arbiter.evaluate(_make_sequence([1.0, 1.3, 1.6, 1.9, 2.2, 2.6]))
        assert warning.has_pattern
        assert not warning.early_warning

    @pytest.mark.parametrize("waves", [
        [1.0, 1.3, 1.6, 1.9, 2.2, 2.6],
        [3.2, 3.2, 3.2],
        [2.0, 3.6],
        [0.5, 0.5, 0.5, 0.5],
    ])
    def test_early_warning_implies_lead_above_two_hours(self, waves):
        warning = EarlyWarningArbiter().evaluate(_make_sequence(waves, current_speed=0.5))
        if warning.early_warning:
            assert warning.estimated_time_to_hazard_hours > 2.0


class TestArbiterAnalyze:
    def test_analyze_uses_builder(self):
        store = _make_store([
            _make_obs(6 - i, wave_height=w) for i, w in enumerate([1.0, 1.3, 1.6, 1.9, 2.2, 2.6])
        ])
        arbiter = EarlyWarningArbiter(SequenceBuilder(store, clock=lambda: NOW))
        warning = asyncio.run(arbiter.analyze(*CHENNAI))
        assert warning.predicted_hazard == HazardType.HIGH_WAVES
        assert warning.data_points == 6

    def test_analyze_without_builder(self):
        with pytest.raises(RuntimeError):
            asyncio.run(EarlyWarningArbiter().analyze(*CHENNAI))

    def test_to_dict_serialisable(self):
        warning = EarlyWarningArbiter().evaluate(_make_sequence([1.0, 1.3, 1.6, 1.9, 2.2, 2.6]))
        d = warning.to_dict()
        assert d["predicted_hazard"] == "high_waves"
        assert d["early_warning"] is True
        assert d["pattern_details"]["severity"] == "critical"
