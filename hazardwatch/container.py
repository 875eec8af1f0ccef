"""
Service wiring.

Builds every collaborator once from Settings and hands them to the API
through `app.state.container`. Tests pass their own stores, client and
dispatcher to `build_container()` to run the real pipeline offline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from hazardwatch.alerts.dispatcher import (
    LoggingDispatcher,
    NotificationDispatcher,
    WebhookDispatcher,
)
from hazardwatch.core.config import Settings, get_settings
from hazardwatch.core.rate_limiter import RateLimiter
from hazardwatch.ingestion.ocean_service import OpenMeteoOceanClient
from hazardwatch.jobs.background_jobs import BackgroundJobManager, ScheduledJobRunner
from hazardwatch.ml.early_warning import EarlyWarningArbiter
from hazardwatch.ml.fusion import ContextFusionClassifier
from hazardwatch.ml.sequence_builder import SequenceBuilder
from hazardwatch.ml.text_classifier import HazardTextClassifier, build_classifier
from hazardwatch.prediction.orchestrator import (
    ConditionsClient,
    HazardPredictionOrchestrator,
    MonitoredLocation,
)
from hazardwatch.storage.base import ObservationStore, PredictionStore
from hazardwatch.storage.memory import InMemoryObservationStore, InMemoryPredictionStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    observation_store: ObservationStore
    prediction_store: PredictionStore
    ocean_client: ConditionsClient
    rate_limiter: RateLimiter
    builder: SequenceBuilder
    arbiter: EarlyWarningArbiter
    fusion: ContextFusionClassifier
    dispatcher: NotificationDispatcher
    orchestrator: HazardPredictionOrchestrator
    job_manager: BackgroundJobManager
    scheduler: ScheduledJobRunner

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.job_manager.shutdown()
        for resource in (self.ocean_client, self.dispatcher, self.fusion.classifier):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()


def _build_stores(settings: Settings):
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "memory":
        return InMemoryObservationStore(), InMemoryPredictionStore()
    if backend == "sql":
        from hazardwatch.core.database import get_session_factory
        from hazardwatch.storage.sql import SqlObservationStore, SqlPredictionStore

        factory = get_session_factory()
        return SqlObservationStore(factory), SqlPredictionStore(factory)
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")


def build_container(
    settings: Optional[Settings] = None,
    *,
    observation_store: Optional[ObservationStore] = None,
    prediction_store: Optional[PredictionStore] = None,
    ocean_client: Optional[ConditionsClient] = None,
    classifier: Optional[HazardTextClassifier] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> ServiceContainer:
    settings = settings or get_settings()

    if observation_store is None or prediction_store is None:
        default_obs, default_pred = _build_stores(settings)
        observation_store = observation_store or default_obs
        prediction_store = prediction_store or default_pred

    ocean_client = ocean_client or OpenMeteoOceanClient(
        forecast_url=settings.OPEN_METEO_FORECAST_URL,
        marine_url=settings.OPEN_METEO_MARINE_URL,
        timeout=settings.WEATHER_FETCH_TIMEOUT,
        cache_ttl=settings.REDIS_SNAPSHOT_TTL,
    )
    rate_limiter = rate_limiter or RateLimiter(
        min_interval_seconds=settings.INTER_LOCATION_DELAY_SECONDS,
        monthly_quota=settings.WEATHER_MONTHLY_QUOTA,
    )

    if dispatcher is None:
        if settings.NOTIFICATION_WEBHOOK_URL:
            dispatcher = WebhookDispatcher(
                settings.NOTIFICATION_WEBHOOK_URL, timeout=settings.NOTIFICATION_TIMEOUT,
            )
        else:
            dispatcher = LoggingDispatcher()

    builder = SequenceBuilder(observation_store, tolerance_deg=settings.LOCATION_TOLERANCE_DEG)
    arbiter = EarlyWarningArbiter(builder)
    fusion = ContextFusionClassifier(classifier or build_classifier(settings))

    orchestrator = HazardPredictionOrchestrator(
        client=ocean_client,
        observation_store=observation_store,
        prediction_store=prediction_store,
        locations=[MonitoredLocation.from_dict(loc) for loc in settings.MONITORED_LOCATIONS],
        builder=builder,
        arbiter=arbiter,
        fusion=fusion,
        dispatcher=dispatcher,
        rate_limiter=rate_limiter,
        lookback_hours=settings.LOOKBACK_HOURS,
        max_concurrency=settings.MAX_CONCURRENT_LOCATIONS,
    )
    job_manager = BackgroundJobManager()
    scheduler = ScheduledJobRunner(
        job_manager, orchestrator, interval_minutes=settings.PREDICTION_INTERVAL_MINUTES,
    )

    logger.info(
        "Services ready: storage=%s classifier=%s dispatcher=%s locations=%d",
        settings.STORAGE_BACKEND,
        getattr(fusion.classifier, "name", "none"),
        type(dispatcher).__name__,
        len(orchestrator.locations),
    )
    return ServiceContainer(
        settings=settings,
        observation_store=observation_store,
        prediction_store=prediction_store,
        ocean_client=ocean_client,
        rate_limiter=rate_limiter,
        builder=builder,
        arbiter=arbiter,
        fusion=fusion,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        job_manager=job_manager,
        scheduler=scheduler,
    )


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency."""
    return request.app.state.container
