"""
orchestrator.py — Multi-location hazard prediction runs.

═══════════════════════════════════════════════════════════════════════════
PER-LOCATION PIPELINE
═══════════════════════════════════════════════════════════════════════════

    1. GATE       shared RateLimiter (spacing + monthly quota)
    2. FETCH      weather/ocean snapshot from the external collaborator
    3. RECORD     snapshot → Observation in the store (failure logged only)
    4. SEQUENCE   point-in-time window around the location
    5. ARBITRATE  pattern detectors → dominant pattern + lead time
    6. RULES      current-condition thresholds on the snapshot
    7. FUSE       text classifier + numeric override + trend nudge,
                  early warning taking precedence
    8. MERGE      one Prediction:
                    early warning        → method pattern_early_warning
                    classifier labels    → method fused,
                                           severity = max(rules, fused)
                    otherwise            → method rule_based,
                                           severity = max(rules, numeric)
    9. PERSIST    append-only (failure logged only)

After the batch, early-warning predictions go to the notification boundary
at CRITICAL priority; other critical-severity predictions at NORMAL.

Failures are contained per location: a fetch error, quota exhaustion or
analysis exception drops that location from this cycle and the batch
moves on. Locations run on a bounded worker pool (default 1 worker, i.e.
sequential); cancellation stops new fetches while in-flight locations
finish.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from hazardwatch.alerts.dispatcher import (
    DispatchResult,
    NotificationDispatcher,
    summarize,
)
from hazardwatch.core.errors import HazardWatchError, StorageError
from hazardwatch.core.rate_limiter import RateLimiter
from hazardwatch.ml.early_warning import EarlyWarningArbiter
from hazardwatch.ml.fusion import ConditionContext, ContextFusionClassifier, FusionResult
from hazardwatch.ml.models import (
    EarlyWarning,
    HazardType,
    Observation,
    ObservationSequence,
    Severity,
    max_severity,
)
from hazardwatch.ml.pattern_detectors import TREND_WINDOW
from hazardwatch.ml.sequence_builder import DEFAULT_LOOKBACK_HOURS, SequenceBuilder
from hazardwatch.ml.text_classifier import describe_conditions
from hazardwatch.ml.trend import compute_trend
from hazardwatch.prediction.condition_rules import ConditionAssessment, assess_current_conditions
from hazardwatch.prediction.models import (
    ConditionsSnapshot,
    DispatchPriority,
    DispatchRequest,
    Prediction,
    PredictionMethod,
    RunTrigger,
)
from hazardwatch.storage.base import ObservationStore, PredictionStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class ConditionsClient(Protocol):
    async def fetch_conditions(self, lat: float, lon: float) -> ConditionsSnapshot:
        ...


@dataclass(frozen=True)
class MonitoredLocation:
    name: str
    latitude: float
    longitude: float

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MonitoredLocation":
        return cls(
            name=str(data["name"]),
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
        )


@dataclass
class LocationFailure:
    location: str
    stage: str  # rate_limit | fetch | analysis | persist
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"location": self.location, "stage": self.stage, "error": self.error}


@dataclass
class PredictionRunReport:
    trigger: RunTrigger
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    total_locations: int = 0
    predictions: List[Prediction] = field(default_factory=list)
    failures: List[LocationFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    dispatches: List[DispatchResult] = field(default_factory=list)
    cancelled: bool = False
    duration_ms: float = 0.0

    @property
    def early_warnings(self) -> List[Prediction]:
        return [p for p in self.predictions if p.early_warning]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trigger": self.trigger.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_locations": self.total_locations,
            "processed": len(self.predictions),
            "early_warnings": len(self.early_warnings),
            "failures": [f.to_dict() for f in self.failures],
            "skipped": list(self.skipped),
            "cancelled": self.cancelled,
            "duration_ms": round(self.duration_ms, 1),
            "predictions": [p.to_dict() for p in self.predictions],
            "dispatches": [d.to_dict() for d in self.dispatches],
        }


def snapshot_to_observation(snapshot: ConditionsSnapshot, location: str) -> Observation:
    return Observation(
        latitude=snapshot.latitude,
        longitude=snapshot.longitude,
        timestamp=snapshot.fetched_at,
        location_id=location,
        wave_height=snapshot.wave_height,
        wind_speed=snapshot.wind_speed,
        wind_direction=snapshot.wind_direction,
        current_speed=snapshot.current_speed,
        sea_surface_temp=snapshot.sea_surface_temp,
        pressure=snapshot.pressure,
        tsunami_warning_active=snapshot.tsunami_warning_active,
        cyclone_active=snapshot.cyclone_active,
    )


def merge_prediction(
    location: MonitoredLocation,
    snapshot: ConditionsSnapshot,
    warning: EarlyWarning,
    rules: ConditionAssessment,
    fused: FusionResult,
    trigger: RunTrigger = RunTrigger.SCHEDULED,
) -> Prediction:
    """Apply the precedence rules to produce one Prediction."""
    indicators = list(warning.pattern_details.indicators) if warning.pattern_details else []

    if fused.early_warning:
        method = PredictionMethod.PATTERN_EARLY_WARNING
        hazard = fused.predicted_hazard
        severity = fused.severity
        confidence = fused.confidence
    elif fused.has_labels:
        method = PredictionMethod.FUSED
        severity = max_severity(rules.severity, fused.severity)
        confidence = fused.confidence
        hazard = rules.dominant_hazard
    else:
        method = PredictionMethod.RULE_BASED
        severity = max_severity(rules.severity, fused.severity)
        confidence = rules.confidence
        hazard = rules.dominant_hazard

    if hazard == HazardType.NONE and warning.has_pattern and warning.predicted_hazard:
        hazard = warning.predicted_hazard
    if hazard == HazardType.NONE:
        hazard = fused.predicted_hazard

    return Prediction(
        location=location.name,
        latitude=location.latitude,
        longitude=location.longitude,
        hazard_type=hazard,
        severity=severity,
        confidence=confidence,
        method=method,
        conditions={
            **snapshot.to_dict(),
            "rule_hazards": [h.to_dict() for h in rules.hazards],
            "labels": [h.to_dict() for h in fused.hazards],
        },
        early_warning=fused.early_warning,
        estimated_time_to_hazard_hours=(
            warning.estimated_time_to_hazard_hours if warning.has_pattern else None
        ),
        indicators=indicators,
        trigger=trigger,
    )


class HazardPredictionOrchestrator:
    """
    Usage:
        orchestrator = HazardPredictionOrchestrator(
            client=OpenMeteoOceanClient(),
            observation_store=observations,
            prediction_store=predictions,
            locations=[MonitoredLocation("Chennai", 13.0827, 80.2707)],
        )
        report = await orchestrator.run(RunTrigger.MANUAL)
    """

    def __init__(
        self,
        client: ConditionsClient,
        observation_store: ObservationStore,
        prediction_store: PredictionStore,
        locations: Sequence[MonitoredLocation] = (),
        builder: Optional[SequenceBuilder] = None,
        arbiter: Optional[EarlyWarningArbiter] = None,
        fusion: Optional[ContextFusionClassifier] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        rate_limiter: Optional[RateLimiter] = None,
        lookback_hours: float = DEFAULT_LOOKBACK_HOURS,
        max_concurrency: int = 1,
    ):
        self.client = client
        self.observation_store = observation_store
        self.prediction_store = prediction_store
        self.locations = list(locations)
        self.builder = builder or SequenceBuilder(observation_store)
        self.arbiter = arbiter or EarlyWarningArbiter(self.builder)
        self.fusion = fusion or ContextFusionClassifier()
        self.dispatcher = dispatcher
        self.rate_limiter = rate_limiter or RateLimiter(min_interval_seconds=0.0)
        self.lookback_hours = lookback_hours
        self.max_concurrency = max(1, max_concurrency)

    # ── single location ──

    async def _record_observation(self, snapshot: ConditionsSnapshot, location: MonitoredLocation) -> None:
        try:
            await self.observation_store.append_observation(
                snapshot_to_observation(snapshot, location.name)
            )
        except StorageError as e:
            logger.warning(
                "Could not record observation for %s: %s", location.name, e.message,
                extra={"location": location.name},
            )
        except Exception:
            logger.exception(
                "Could not record observation for %s", location.name,
                extra={"location": location.name},
            )

    async def analyze_snapshot(
        self,
        location: MonitoredLocation,
        snapshot: ConditionsSnapshot,
        trigger: RunTrigger = RunTrigger.SCHEDULED,
    ) -> Prediction:
        """Steps 4–8 for an already-fetched snapshot."""
        sequence: ObservationSequence = await self.builder.build(
            location.latitude, location.longitude, self.lookback_hours,
        )
        warning = self.arbiter.evaluate(sequence)
        rules = assess_current_conditions(snapshot)

        recent = sequence.observations[-TREND_WINDOW:]
        context = ConditionContext(
            wave_height=snapshot.wave_height,
            wind_speed=snapshot.wind_speed,
            current_speed=snapshot.current_speed,
            wave_height_trend=compute_trend(recent, "wave_height"),
            wind_speed_trend=compute_trend(recent, "wind_speed"),
            location=location.name,
        )
        text = describe_conditions(
            wave_height=snapshot.wave_height,
            wind_speed=snapshot.wind_speed,
            sea_surface_temp=snapshot.sea_surface_temp,
            current_speed=snapshot.current_speed,
            tsunami_warning_active=snapshot.tsunami_warning_active,
            cyclone_active=snapshot.cyclone_active,
            location=location.name,
        )
        fused = await self.fusion.predict(text, context, early_warning=warning)
        return merge_prediction(location, snapshot, warning, rules, fused, trigger)

    async def predict_location(
        self,
        location: MonitoredLocation,
        trigger: RunTrigger = RunTrigger.SCHEDULED,
    ) -> Prediction:
        """Fetch, record and analyse one location (no persistence)."""
        snapshot = await self.client.fetch_conditions(location.latitude, location.longitude)
        await self._record_observation(snapshot, location)
        return await self.analyze_snapshot(location, snapshot, trigger)

    # ── batch ──

    async def _process(
        self,
        location: MonitoredLocation,
        trigger: RunTrigger,
        report: PredictionRunReport,
        semaphore: asyncio.Semaphore,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                report.skipped.append(location.name)
                return

            try:
                await self.rate_limiter.acquire()
            except HazardWatchError as e:
                report.failures.append(LocationFailure(location.name, "rate_limit", e.message))
                return

            # The gate may have waited; honour a cancel that arrived meanwhile
            if cancel_event is not None and cancel_event.is_set():
                report.skipped.append(location.name)
                return

            try:
                snapshot = await self.client.fetch_conditions(location.latitude, location.longitude)
            except HazardWatchError as e:
                logger.warning(
                    "Fetch failed for %s: %s", location.name, e.message,
                    extra={"location": location.name},
                )
                report.failures.append(LocationFailure(location.name, "fetch", e.message))
                return
            except Exception as e:
                logger.exception(
                    "Fetch failed for %s", location.name, extra={"location": location.name},
                )
                report.failures.append(LocationFailure(location.name, "fetch", str(e)))
                return

            await self._record_observation(snapshot, location)

            try:
                prediction = await self.analyze_snapshot(location, snapshot, trigger)
            except Exception as e:
                logger.exception("Analysis failed for %s", location.name)
                report.failures.append(LocationFailure(location.name, "analysis", str(e)))
                return

            try:
                await self.prediction_store.append_prediction(prediction)
            except StorageError as e:
                logger.error(
                    "Could not persist prediction for %s: %s", location.name, e.message,
                    extra={"location": location.name},
                )
                report.failures.append(LocationFailure(location.name, "persist", e.message))
            except Exception as e:
                logger.exception(
                    "Could not persist prediction for %s", location.name,
                    extra={"location": location.name},
                )
                report.failures.append(LocationFailure(location.name, "persist", str(e)))

            report.predictions.append(prediction)
            logger.info(
                "%s: %s %s (%.2f, %s)%s",
                location.name, prediction.hazard_type.value, prediction.severity.value,
                prediction.confidence, prediction.method.value,
                " EARLY WARNING" if prediction.early_warning else "",
                extra={
                    "location": location.name,
                    "hazard_type": prediction.hazard_type.value,
                    "severity": prediction.severity.value,
                    "confidence": prediction.confidence,
                },
            )

    async def _dispatch(self, report: PredictionRunReport) -> None:
        if self.dispatcher is None:
            return

        early = report.early_warnings
        critical = [
            p for p in report.predictions
            if p.severity == Severity.CRITICAL and not p.early_warning
        ]
        for priority, batch in (
            (DispatchPriority.CRITICAL, early),
            (DispatchPriority.NORMAL, critical),
        ):
            if not batch:
                continue
            request = DispatchRequest(priority, batch, summarize(priority, batch))
            try:
                report.dispatches.append(await self.dispatcher.dispatch(request))
            except Exception:
                logger.exception("Dispatch of %s notifications failed", priority.value)

    async def run(
        self,
        trigger: RunTrigger = RunTrigger.SCHEDULED,
        cancel_event: Optional[asyncio.Event] = None,
        locations: Optional[Sequence[MonitoredLocation]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PredictionRunReport:
        """Analyse every monitored location once."""
        targets = list(locations if locations is not None else self.locations)
        report = PredictionRunReport(trigger=trigger, total_locations=len(targets))
        semaphore = asyncio.Semaphore(self.max_concurrency)
        start = time.perf_counter()
        done = 0

        logger.info("Prediction run (%s) for %d locations", trigger.value, len(targets))

        async def worker(location: MonitoredLocation) -> None:
            nonlocal done
            await self._process(location, trigger, report, semaphore, cancel_event)
            done += 1
            if on_progress is not None:
                on_progress(done, len(targets), location.name)

        await asyncio.gather(*(worker(loc) for loc in targets))

        report.cancelled = bool(cancel_event is not None and cancel_event.is_set())
        await self._dispatch(report)

        report.completed_at = datetime.now(timezone.utc)
        report.duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Prediction run finished: %d predictions, %d early warnings, %d failures, %d skipped (%.0fms)",
            len(report.predictions), len(report.early_warnings),
            len(report.failures), len(report.skipped), report.duration_ms,
            extra={"duration_ms": report.duration_ms},
        )
        return report
