"""
text_classifier.py — Hazard-label classifiers over condition descriptions.

Provides:
    • HAZARD_LABELS — the fixed 10-label hazard vocabulary
    • describe_conditions() — plain-text rendering of a snapshot
    • infer_label() — rule label for an observation (training targets)
    • TfidfHazardClassifier — local TF-IDF + logistic regression model,
      trained from stored observations and persisted with joblib
    • ZeroShotHazardClassifier — remote zero-shot NLI classification
      (Hugging Face Inference API, facebook/bart-large-mnli by default)
    • build_classifier() — pick a backend from settings

Every classifier exposes `async classify(text) -> List[LabelScore]`
returning a score per label (any order). Scores need not sum to one;
the fusion step re-normalises. Backend failures raise ClassifierError.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import httpx
import joblib
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.linear_model import LogisticRegression
from sklearn.pipeline import Pipeline

from hazardwatch.core.errors import ClassifierError
from hazardwatch.ml.models import Observation

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Label vocabulary
# ═══════════════════════════════════════════════════════════════════════════

HAZARD_LABELS: Tuple[str, ...] = (
    "normal_conditions",
    "low_hazard",
    "rough_sea_conditions",
    "high_waves",
    "critical_high_waves",
    "storm_conditions",
    "tsunami_warning",
    "cyclone_alert",
    "coastal_flooding",
    "navigation_warning",
)

NORMAL_TEXT = "Ocean conditions normal"


@dataclass(frozen=True)
class LabelScore:
    label: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "score": round(self.score, 4)}


class HazardTextClassifier(Protocol):
    name: str

    async def classify(self, text: str) -> List[LabelScore]:
        ...


def describe_conditions(
    wave_height: Optional[float] = None,
    wind_speed: Optional[float] = None,
    sea_surface_temp: Optional[float] = None,
    current_speed: Optional[float] = None,
    tsunami_warning_active: bool = False,
    cyclone_active: bool = False,
    location: Optional[str] = None,
) -> str:
    """Render measured conditions as the sentence fed to classifiers."""
    parts: List[str] = []
    if wave_height is not None:
        parts.append(f"Wave height {wave_height:.2f} meters")
    if wind_speed is not None:
        parts.append(f"Wind speed {wind_speed:.1f} m/s")
    if sea_surface_temp is not None:
        parts.append(f"Sea temperature {sea_surface_temp:.1f}°C")
    if current_speed is not None:
        parts.append(f"Current speed {current_speed:.2f} m/s")
    if tsunami_warning_active:
        parts.append("Tsunami warnings active")
    if cyclone_active:
        parts.append("Cyclone detected")

    text = ". ".join(parts) if parts else NORMAL_TEXT
    if location:
        text = f"{text}. Location: {location}"
    return text


def describe_observation(observation: Observation) -> str:
    return describe_conditions(
        wave_height=observation.wave_height,
        wind_speed=observation.wind_speed,
        sea_surface_temp=observation.sea_surface_temp,
        current_speed=observation.current_speed,
        tsunami_warning_active=observation.tsunami_warning_active,
        cyclone_active=observation.cyclone_active,
    )


def infer_label(observation: Observation) -> str:
    """Rule label used as the training target for an observation."""
    if observation.tsunami_warning_active:
        return "tsunami_warning"
    if observation.cyclone_active:
        return "cyclone_alert"

    wave = observation.wave_height or 0.0
    wind = observation.wind_speed or 0.0
    if wave > 5.0:
        return "critical_high_waves"
    if wave > 3.5:
        return "high_waves"
    if wind > 20:
        return "storm_conditions"
    if wind > 15:
        return "rough_sea_conditions"
    return "normal_conditions"


def build_training_examples(
    observations: Iterable[Observation],
) -> Tuple[List[str], List[str]]:
    """(texts, labels) pairs for fitting a text classifier."""
    texts: List[str] = []
    labels: List[str] = []
    for obs in observations:
        texts.append(describe_observation(obs))
        labels.append(infer_label(obs))
    return texts, labels


# ═══════════════════════════════════════════════════════════════════════════
# Local TF-IDF model
# ═══════════════════════════════════════════════════════════════════════════

class TfidfHazardClassifier:
    """
    TF-IDF (word 1–2 grams) + multinomial logistic regression.

    Labels the model never saw in training get score 0.

    Usage:
        clf = TfidfHazardClassifier()
        clf.fit(*build_training_examples(observations))
        clf.save("models/hazard_tfidf.joblib")
        scores = await clf.classify("Wave height 4.10 meters")
    """

    name = "tfidf"

    def __init__(self, pipeline: Optional[Pipeline] = None):
        self.pipeline = pipeline or Pipeline([
            ("tfidf", TfidfVectorizer(ngram_range=(1, 2), token_pattern=r"[A-Za-z]+|\d+(?:\.\d+)?")),
            ("clf", LogisticRegression(max_iter=1000)),
        ])
        self._fitted = pipeline is not None

    @property
    def is_fitted(self) -> bool:
        return self._fitted

    def fit(self, texts: Sequence[str], labels: Sequence[str]) -> "TfidfHazardClassifier":
        if len(texts) != len(labels):
            raise ValueError("texts and labels must be the same length")
        if len(set(labels)) < 2:
            raise ClassifierError(
                self.name, "need at least two distinct labels to train",
                examples=len(labels),
            )
        unknown = set(labels) - set(HAZARD_LABELS)
        if unknown:
            raise ValueError(f"Unknown hazard labels: {sorted(unknown)}")

        self.pipeline.fit(list(texts), list(labels))
        self._fitted = True
        logger.info(
            "Trained TF-IDF hazard classifier on %d examples (%d labels)",
            len(texts), len(set(labels)),
        )
        return self

    def predict_scores(self, text: str) -> List[LabelScore]:
        if not self._fitted:
            raise ClassifierError(self.name, "model is not trained")
        probabilities = self.pipeline.predict_proba([text])[0]
        by_label = dict(zip(self.pipeline.classes_, probabilities))
        return [LabelScore(label, float(by_label.get(label, 0.0))) for label in HAZARD_LABELS]

    async def classify(self, text: str) -> List[LabelScore]:
        return await asyncio.to_thread(self.predict_scores, text)

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self.pipeline, str(path))
        logger.info("Saved hazard classifier → %s", path)

    @classmethod
    def load(cls, path: str | Path) -> "TfidfHazardClassifier":
        pipeline = joblib.load(str(path))
        logger.info("Loaded hazard classifier ← %s", path)
        return cls(pipeline=pipeline)


# ═══════════════════════════════════════════════════════════════════════════
# Remote zero-shot model
# ═══════════════════════════════════════════════════════════════════════════

class ZeroShotHazardClassifier:
    """Zero-shot NLI classification over HAZARD_LABELS via the HF Inference API."""

    name = "zero_shot"

    def __init__(
        self,
        api_url: str = "https://api-inference.huggingface.co/models",
        model: str = "facebook/bart-large-mnli",
        api_token: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = f"{api_url.rstrip('/')}/{model}"
        self.model = model
        self.api_token = api_token
        self.timeout = timeout
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def classify(self, text: str) -> List[LabelScore]:
        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        payload = {
            "inputs": text,
            "parameters": {"candidate_labels": list(HAZARD_LABELS)},
        }

        client = await self._get_client()
        try:
            response = await client.post(self.endpoint, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ClassifierError(self.model, f"HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise ClassifierError(self.model, str(e)) from e

        return self._parse(data)

    def _parse(self, data: Any) -> List[LabelScore]:
        # {"labels": [...], "scores": [...]} or [{"label": ..., "score": ...}, ...]
        if isinstance(data, dict) and "labels" in data and "scores" in data:
            pairs = zip(data["labels"], data["scores"])
        elif isinstance(data, list) and all(isinstance(d, dict) for d in data):
            pairs = ((d.get("label"), d.get("score")) for d in data)
        else:
            raise ClassifierError(self.model, "unexpected response shape")

        scores: List[LabelScore] = []
        for label, score in pairs:
            if label in HAZARD_LABELS and isinstance(score, (int, float)):
                scores.append(LabelScore(label, float(score)))
        return scores


# ═══════════════════════════════════════════════════════════════════════════
# Factory
# ═══════════════════════════════════════════════════════════════════════════

def build_classifier(settings: Any) -> Optional[HazardTextClassifier]:
    """Classifier selected by CLASSIFIER_BACKEND; None disables labels."""
    backend = (settings.CLASSIFIER_BACKEND or "none").lower()
    if backend == "none":
        return None
    if backend == "tfidf":
        path = Path(settings.CLASSIFIER_MODEL_PATH)
        if not path.exists():
            logger.warning("Classifier model %s missing — running without labels", path)
            return None
        return TfidfHazardClassifier.load(path)
    if backend == "zero_shot":
        return ZeroShotHazardClassifier(
            api_url=settings.HF_API_URL,
            model=settings.HF_ZERO_SHOT_MODEL,
            api_token=settings.HF_API_TOKEN,
            timeout=settings.WEATHER_FETCH_TIMEOUT,
        )
    raise ValueError(f"Unknown CLASSIFIER_BACKEND: {settings.CLASSIFIER_BACKEND}")


async def train_tfidf_classifier(
    observations: Sequence[Observation],
    path: Optional[str | Path] = None,
) -> TfidfHazardClassifier:
    """Fit (off the event loop) and optionally persist a TF-IDF model."""
    texts, labels = build_training_examples(observations)
    classifier = TfidfHazardClassifier()
    await asyncio.to_thread(classifier.fit, texts, labels)
    if path is not None:
        await asyncio.to_thread(classifier.save, path)
    return classifier
