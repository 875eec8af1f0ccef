"""
Tests for hazard text classifiers.

Covers:
    • Condition text rendering and rule labels
    • TF-IDF model training, scoring and joblib persistence
    • Zero-shot HTTP classifier (both response shapes, failures)
    • Backend selection from settings
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import List

import httpx
import pytest

from hazardwatch.core.errors import ClassifierError
from hazardwatch.ml.models import Observation
from hazardwatch.ml.text_classifier import (
    HAZARD_LABELS,
    NORMAL_TEXT,
    TfidfHazardClassifier,
    ZeroShotHazardClassifier,
    build_classifier,
    build_training_examples,
    describe_conditions,
    infer_label,
    train_tfidf_classifier,
)


BASE_TIME = datetime(2024, 7, 1, tzinfo=timezone.utc)


def _make_obs(index: int = 0, **fields) -> Observation:
    return Observation(
        latitude=13.08,
        longitude=80.27,
        timestamp=BASE_TIME + timedelta(hours=index),
        **fields,
    )


def _make_training_set() -> List[Observation]:
    observations = []
    for i in range(10):
        observations.append(_make_obs(i, wave_height=0.5 + i * 0.1, wind_speed=3.0))
        observations.append(_make_obs(100 + i, wave_height=1.0 + i * 0.1, tsunami_warning_active=True))
        observations.append(_make_obs(200 + i, wave_height=1.5 + i * 0.1, cyclone_active=True))
    return observations


def _make_settings(**overrides) -> SimpleNamespace:
    values = {
        "CLASSIFIER_BACKEND": "none",
        "CLASSIFIER_MODEL_PATH": "does/not/exist.joblib",
        "HF_API_URL": "https://hf.test/models",
        "HF_ZERO_SHOT_MODEL": "facebook/bart-large-mnli",
        "HF_API_TOKEN": None,
        "WEATHER_FETCH_TIMEOUT": 5.0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


# ═══════════════════════════════════════════════════════════════════════════
# Text rendering & labels
# ═══════════════════════════════════════════════════════════════════════════

class TestDescribeConditions:
    def test_full_sentence(self):
        text = describe_conditions(wave_height=3.8, wind_speed=14.0, location="Chennai")
        assert text == "Wave height 3.80 meters. Wind speed 14.0 m/s. Location: Chennai"

    def test_flags(self):
        text = describe_conditions(tsunami_warning_active=True, cyclone_active=True)
        assert "Tsunami warnings active" in text
        assert "Cyclone detected" in text

    def test_nothing_known(self):
        assert describe_conditions() == NORMAL_TEXT


class TestInferLabel:
    @pytest.mark.parametrize("fields, label", [
        ({"tsunami_warning_active": True, "wave_height": 6.0}, "tsunami_warning"),
        ({"cyclone_active": True}, "cyclone_alert"),
        ({"wave_height": 5.5}, "critical_high_waves"),
        ({"wave_height": 4.0}, "high_waves"),
        ({"wind_speed": 22.0}, "storm_conditions"),
        ({"wind_speed": 17.0}, "rough_sea_conditions"),
        ({"wave_height": 1.0, "wind_speed": 5.0}, "normal_conditions"),
        ({}, "normal_conditions"),
    ])
    def test_tiers(self, fields, label):
        assert infer_label(_make_obs(**fields)) == label

    def test_training_examples_align(self):
        texts, labels = build_training_examples(_make_training_set())
        assert len(texts) == len(labels) == 30
        assert set(labels) == {"normal_conditions", "tsunami_warning", "cyclone_alert"}


# ═══════════════════════════════════════════════════════════════════════════
# TF-IDF model
# ═══════════════════════════════════════════════════════════════════════════

class TestTfidfHazardClassifier:
    def _trained(self) -> TfidfHazardClassifier:
        return TfidfHazardClassifier().fit(*build_training_examples(_make_training_set()))

    def test_scores_cover_vocabulary(self):
        scores = self._trained().predict_scores("Wave height 1.20 meters")
        assert [s.label for s in scores] == list(HAZARD_LABELS)
        assert sum(s.score for s in scores) == pytest.approx(1.0)

    def test_unseen_labels_score_zero(self):
        by_label = {s.label: s.score for s in self._trained().predict_scores("anything")}
        assert by_label["storm_conditions"] == 0.0

    def test_distinctive_text(self):
        scores = self._trained().predict_scores("Wave height 1.23 meters. Tsunami warnings active")
        top = max(scores, key=lambda s: s.score)
        assert top.label == "tsunami_warning"

    def test_classify_runs_in_worker_thread(self, monkeypatch):
        classifier = self._trained()
        calls = []
        real_to_thread = asyncio.to_thread

        async def tracking_to_thread(func, *args, **kwargs):
            calls.append(func)
            return await real_to_thread(func, *args, **kwargs)

        monkeypatch.setattr(asyncio, "to_thread", tracking_to_thread)
        text = "Wave height 1.23 meters. Tsunami warnings active"
        scores = asyncio.run(classifier.classify(text))
        assert calls == [classifier.predict_scores]
        assert [s.score for s in scores] == pytest.approx(
            [s.score for s in classifier.predict_scores(text)]
        )

    def test_single_label_rejected(self):
        with pytest.raises(ClassifierError):
            TfidfHazardClassifier().fit(["calm", "calm sea"], ["normal_conditions"] * 2)

    def test_unknown_label_rejected(self):
        with pytest.raises(ValueError):
            TfidfHazardClassifier().fit(["a", "b"], ["normal_conditions", "meteor_strike"])

    def test_untrained_raises(self):
        with pytest.raises(ClassifierError):
            TfidfHazardClassifier().predict_scores("calm")

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "models" / "hazard.joblib"
        original = self._trained()
        original.save(path)
        loaded = TfidfHazardClassifier.load(path)
        text = "Cyclone detected"
        assert [s.score for s in loaded.predict_scores(text)] == pytest.approx(
            [s.score for s in original.predict_scores(text)]
        )

    def test_train_helper_persists(self, tmp_path):
        path = tmp_path / "hazard.joblib"
        classifier = asyncio.run(train_tfidf_classifier(_make_training_set(), path))
        assert classifier.is_fitted
        assert path.exists()


# ═══════════════════════════════════════════════════════════════════════════
# Zero-shot HTTP model
# ═══════════════════════════════════════════════════════════════════════════

class TestZeroShotHazardClassifier:
    def _make(self, handler, token=None) -> ZeroShotHazardClassifier:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ZeroShotHazardClassifier(api_url="https://hf.test/models", api_token=token, client=client)

    def test_dict_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "labels": ["high_waves", "normal_conditions", "alien_label"],
                "scores": [0.7, 0.2, 0.1],
            })

        scores = asyncio.run(self._make(handler, token="secret").classify("Wave height 3.9 meters"))
        assert seen["url"] == "https://hf.test/models/facebook/bart-large-mnli"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["parameters"]["candidate_labels"] == list(HAZARD_LABELS)
        assert [(s.label, s.score) for s in scores] == [("high_waves", 0.7), ("normal_conditions", 0.2)]

    def test_list_response(self):
        def handler(request):
            return httpx.Response(200, json=[{"label": "storm_conditions", "score": 0.9}])

        scores = asyncio.run(self._make(handler).classify("Wind speed 22 m/s"))
        assert scores[0].label == "storm_conditions"

    def test_http_error(self):
        def handler(request):
            return httpx.Response(503, json={"error": "loading"})

        with pytest.raises(ClassifierError, match="HTTP 503"):
            asyncio.run(self._make(handler).classify("text"))

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(ClassifierError):
            asyncio.run(self._make(handler).classify("text"))

    def test_unexpected_shape(self):
        def handler(request):
            return httpx.Response(200, json={"something": "else"})

        with pytest.raises(ClassifierError):
            asyncio.run(self._make(handler).classify("text"))


# ═══════════════════════════════════════════════════════════════════════════
# Backend selection
# ═══════════════════════════════════════════════════════════════════════════

class TestBuildClassifier:
    def test_none(self):
        assert build_classifier(_make_settings()) is None

    def test_tfidf_missing_model(self):
        assert build_classifier(_make_settings(CLASSIFIER_BACKEND="tfidf")) is None

    def test_tfidf_loads_model(self, tmp_path):
        path = tmp_path / "hazard.joblib"
        TfidfHazardClassifier().fit(*build_training_examples(_make_training_set())).save(path)
        classifier = build_classifier(_make_settings(CLASSIFIER_BACKEND="tfidf", CLASSIFIER_MODEL_PATH=str(path)))
        assert isinstance(classifier, TfidfHazardClassifier)
        assert classifier.is_fitted

    def test_zero_shot(self):
        classifier = build_classifier(_make_settings(CLASSIFIER_BACKEND="zero_shot"))
        assert isinstance(classifier, ZeroShotHazardClassifier)

    def test_unknown(self):
        with pytest.raises(ValueError):
            build_classifier(_make_settings(CLASSIFIER_BACKEND="gpt"))
