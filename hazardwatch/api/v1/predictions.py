"""
FastAPI prediction endpoints.

Endpoints:
    POST   /api/v1/predictions/classify        — Context-fusion classification
    POST   /api/v1/predictions/classify/batch  — Combine several classified sources
    POST   /api/v1/predictions/run             — Trigger a prediction run (background)
    GET    /api/v1/predictions/jobs            — List background jobs
    GET    /api/v1/predictions/jobs/{task_id}  — Job progress / run report
    DELETE /api/v1/predictions/jobs/{task_id}  — Cancel a job
    POST   /api/v1/predictions/train           — Retrain the TF-IDF classifier
    GET    /api/v1/predictions/rate-limit      — Weather API quota usage
    GET    /api/v1/predictions                 — Recent predictions
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from hazardwatch.container import ServiceContainer, get_container
from hazardwatch.core.errors import NotFoundError
from hazardwatch.jobs.background_jobs import JobStatus
from hazardwatch.ml.fusion import ConditionContext
from hazardwatch.prediction.models import RunTrigger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/predictions", tags=["predictions"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class ContextInput(BaseModel):
    wave_height: Optional[float] = Field(None, ge=0, description="m")
    wind_speed: Optional[float] = Field(None, ge=0, description="m/s")
    current_speed: Optional[float] = Field(None, description="m/s (sign ignored)")
    wave_height_trend: Optional[float] = None
    wind_speed_trend: Optional[float] = None
    location: Optional[str] = None

    def to_context(self) -> ConditionContext:
        return ConditionContext.from_mapping(self.model_dump(exclude_none=True))


class ClassifyRequest(BaseModel):
    text: str = Field("", max_length=5000)
    context: Optional[ContextInput] = None
    latitude: Optional[float] = Field(
        None, ge=-90, le=90, description="With longitude: consult the early-warning arbiter",
    )
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class SourceInput(BaseModel):
    text: str = Field(..., max_length=5000)
    context: Optional[ContextInput] = None


class BatchClassifyRequest(BaseModel):
    sources: List[SourceInput] = Field(..., min_length=1, max_length=50)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

@router.post("/classify")
async def classify(
    req: ClassifyRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Fuse text labels with numeric context.

    When a coordinate is given the stored history is analysed first and an
    early warning, if any, takes precedence over the classifier.
    """
    warning = None
    if req.latitude is not None and req.longitude is not None:
        warning = await container.arbiter.analyze(req.latitude, req.longitude)

    context = req.context.to_context() if req.context else None
    result = await container.fusion.predict(req.text, context, early_warning=warning)
    return result.to_dict()


@router.post("/classify/batch")
async def classify_batch(
    req: BatchClassifyRequest,
    container: ServiceContainer = Depends(get_container),
):
    combined = await container.fusion.predict_many([
        (source.text, source.context.to_context() if source.context else None)
        for source in req.sources
    ])
    return combined.to_dict()


# ---------------------------------------------------------------------------
# Runs & jobs
# ---------------------------------------------------------------------------

@router.post("/run", status_code=202)
async def trigger_run(container: ServiceContainer = Depends(get_container)):
    """Start a manual prediction run over every monitored location."""
    task_id = await container.job_manager.submit_prediction_run(
        container.orchestrator, RunTrigger.MANUAL,
    )
    logger.info("Manual prediction run submitted", extra={"task_id": task_id})
    return {
        "task_id": task_id,
        "status": JobStatus.PENDING.value,
        "locations": len(container.orchestrator.locations),
    }


@router.get("/jobs")
async def list_jobs(
    status: Optional[JobStatus] = None,
    container: ServiceContainer = Depends(get_container),
):
    return {"jobs": [j.to_dict() for j in container.job_manager.list_jobs(status)]}


@router.get("/jobs/{task_id}")
async def get_job(task_id: str, container: ServiceContainer = Depends(get_container)):
    progress = container.job_manager.get_progress(task_id)
    if progress is None:
        raise NotFoundError("job", task_id=task_id)
    return progress.to_dict()


@router.delete("/jobs/{task_id}")
async def cancel_job(task_id: str, container: ServiceContainer = Depends(get_container)):
    progress = container.job_manager.get_progress(task_id)
    if progress is None:
        raise NotFoundError("job", task_id=task_id)
    cancelled = await container.job_manager.cancel_job(task_id)
    return {"task_id": task_id, "cancelled": cancelled, "status": progress.status.value}


@router.post("/train", status_code=202)
async def train_classifier(container: ServiceContainer = Depends(get_container)):
    """Fit the TF-IDF classifier on recorded observations and hot-swap it in."""
    task_id = await container.job_manager.submit_training_job(
        container.observation_store,
        container.settings.CLASSIFIER_MODEL_PATH,
        fusion=container.fusion,
    )
    return {"task_id": task_id, "status": JobStatus.PENDING.value}


@router.get("/rate-limit")
async def rate_limit_status(container: ServiceContainer = Depends(get_container)):
    usage = container.rate_limiter.usage()
    return {
        **usage.to_dict(),
        "min_interval_seconds": container.rate_limiter.min_interval_seconds,
    }


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

@router.get("")
async def recent_predictions(
    location: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    container: ServiceContainer = Depends(get_container),
):
    predictions = await container.prediction_store.recent_predictions(location, limit)
    return {
        "count": len(predictions),
        "predictions": [p.to_dict() for p in predictions],
    }
