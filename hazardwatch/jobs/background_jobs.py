"""
In-process background work for the hazard service.

Two kinds of job run as asyncio tasks inside the API process:

    prediction_run        one orchestrator pass over the monitored
                          locations, started by POST /predictions/run
                          or by the ScheduledJobRunner
    classifier_training   fit the TF-IDF label model on recent
                          observations, save it with joblib and hand it
                          to the fusion classifier

Jobs are tracked by an 8-character task id. Nothing survives a restart.
Cancelling a prediction run is cooperative: locations already being
fetched finish, the rest are reported as skipped.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from hazardwatch.core.logging_config import set_request_context
from hazardwatch.prediction.models import RunTrigger
from hazardwatch.storage.base import BROAD_QUERY_LIMIT

if TYPE_CHECKING:
    from hazardwatch.ml.fusion import ContextFusionClassifier
    from hazardwatch.prediction.orchestrator import HazardPredictionOrchestrator
    from hazardwatch.storage.base import ObservationStore

logger = logging.getLogger(__name__)

PREDICTION_RUN = "prediction_run"
CLASSIFIER_TRAINING = "classifier_training"
TRAINING_LOOKBACK_DAYS = 30
SCHEDULER_ERROR_BACKOFF_SECONDS = 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINISHED_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


@dataclass
class JobProgress:
    """What callers of the jobs API see about one job."""

    task_id: str
    job_type: str
    message: str
    status: JobStatus = JobStatus.PENDING
    progress: float = 0.0  # fraction, 0..1
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_STATUSES

    def finish(self, status: JobStatus, message: str, result: Optional[Dict[str, Any]] = None) -> None:
        self.status = status
        self.message = message
        self.completed_at = _utcnow()
        if result is not None:
            self.result = result
        if status == JobStatus.COMPLETED or result is not None:
            self.progress = 1.0

    def to_dict(self) -> Dict[str, Any]:
        end = self.completed_at or _utcnow()
        return {
            "task_id": self.task_id,
            "job_type": self.job_type,
            "status": self.status.value,
            "progress": round(self.progress * 100, 1),
            "progress_pct": f"{self.progress * 100:.1f}%",
            "message": self.message,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "elapsed_seconds": (end - self.started_at).total_seconds(),
            "error": self.error,
            "result": self.result,
        }


@dataclass
class _Job:
    progress: JobProgress
    task: Optional[asyncio.Task] = None
    # Set only for prediction runs, which stop between locations
    stop_requested: Optional[asyncio.Event] = None


# ═══════════════════════════════════════════════════════════════════════════
# Manager
# ═══════════════════════════════════════════════════════════════════════════

class BackgroundJobManager:
    """
    Starts, tracks and cancels background jobs.

    Usage:
        manager = BackgroundJobManager()
        task_id = await manager.submit_prediction_run(orchestrator, RunTrigger.MANUAL)
        manager.get_progress(task_id).to_dict()
        await manager.cancel_job(task_id)
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, _Job] = {}

    # ── queries ──

    def get_progress(self, task_id: str) -> Optional[JobProgress]:
        job = self._jobs.get(task_id)
        return job.progress if job else None

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[JobProgress]:
        """Newest first, optionally only those in ``status``."""
        found = [
            job.progress for job in self._jobs.values()
            if status is None or job.progress.status == status
        ]
        found.sort(key=lambda p: p.started_at, reverse=True)
        return found

    def has_active_job(self, job_type: str) -> bool:
        return any(
            job.progress.job_type == job_type and not job.progress.is_finished
            for job in self._jobs.values()
        )

    # ── launching ──

    def _start(
        self,
        job_type: str,
        message: str,
        work: Callable[[JobProgress], Awaitable[None]],
        stop_requested: Optional[asyncio.Event] = None,
    ) -> str:
        task_id = uuid.uuid4().hex[:8]
        job = _Job(JobProgress(task_id, job_type, message), stop_requested=stop_requested)
        self._jobs[task_id] = job
        job.task = asyncio.create_task(self._execute(job, work))
        return task_id

    async def _execute(self, job: _Job, work: Callable[[JobProgress], Awaitable[None]]) -> None:
        progress = job.progress
        set_request_context(task_id=progress.task_id)
        progress.status = JobStatus.RUNNING
        try:
            await work(progress)
        except asyncio.CancelledError:
            if not progress.is_finished:
                progress.finish(JobStatus.CANCELLED, "Job cancelled")
            raise
        except Exception as e:
            logger.exception("%s %s failed", progress.job_type, progress.task_id)
            progress.error = str(e)
            progress.finish(JobStatus.FAILED, f"Failed: {e}")
        finally:
            job.task = None

    async def submit_prediction_run(
        self,
        orchestrator: "HazardPredictionOrchestrator",
        trigger: RunTrigger = RunTrigger.MANUAL,
    ) -> str:
        """Queue one orchestrator pass; returns the task id to poll."""
        stop_requested = asyncio.Event()
        total = len(orchestrator.locations)

        async def work(progress: JobProgress) -> None:
            def on_progress(done: int, count: int, location: str) -> None:
                progress.progress = done / count if count else 1.0
                progress.message = f"Analysed {location} ({done}/{count})"

            report = await orchestrator.run(
                trigger=trigger,
                cancel_event=stop_requested,
                on_progress=on_progress,
            )
            if report.cancelled:
                progress.finish(
                    JobStatus.CANCELLED,
                    f"Cancelled after {len(report.predictions)} predictions "
                    f"({len(report.skipped)} locations skipped)",
                    report.to_dict(),
                )
            else:
                progress.finish(
                    JobStatus.COMPLETED,
                    f"{len(report.predictions)}/{total} locations analysed, "
                    f"{len(report.early_warnings)} early warnings",
                    report.to_dict(),
                )

        return self._start(
            PREDICTION_RUN,
            f"Queued {trigger.value} run for {total} locations",
            work,
            stop_requested=stop_requested,
        )

    async def submit_training_job(
        self,
        store: "ObservationStore",
        model_path: str | Path,
        fusion: Optional["ContextFusionClassifier"] = None,
        lookback_days: int = TRAINING_LOOKBACK_DAYS,
    ) -> str:
        """Fit the TF-IDF classifier on the last ``lookback_days`` of observations."""
        from hazardwatch.ml.text_classifier import train_tfidf_classifier

        async def work(progress: JobProgress) -> None:
            progress.message = "Loading observations..."
            since = _utcnow() - timedelta(days=lookback_days)
            observations = await store.query_observations(None, since, None, BROAD_QUERY_LIMIT)

            progress.progress = 0.3
            progress.message = f"Training on {len(observations)} observations..."
            classifier = await train_tfidf_classifier(observations, model_path)
            if fusion is not None:
                fusion.classifier = classifier

            progress.finish(
                JobStatus.COMPLETED,
                f"Trained on {len(observations)} observations",
                {
                    "observations": len(observations),
                    "model_path": str(model_path),
                    "labels": list(classifier.pipeline.classes_),
                },
            )

        return self._start(CLASSIFIER_TRAINING, "Queued classifier training", work)

    # ── control ──

    async def cancel_job(self, task_id: str) -> bool:
        """False when the job is unknown or already finished."""
        job = self._jobs.get(task_id)
        if job is None or job.task is None or job.progress.is_finished:
            return False

        if job.stop_requested is not None:
            job.stop_requested.set()
            job.progress.message = "Cancellation requested; finishing in-flight locations"
        else:
            job.task.cancel()
            job.progress.finish(JobStatus.CANCELLED, "Job cancelled by user")
        return True

    async def wait(self, task_id: str) -> Optional[JobProgress]:
        job = self._jobs.get(task_id)
        if job is None:
            return None
        task = job.task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return job.progress

    def cleanup_old_jobs(self, max_age_hours: int = 24) -> int:
        """Forget finished jobs older than ``max_age_hours``; returns how many."""
        cutoff = _utcnow() - timedelta(hours=max_age_hours)
        stale = [
            task_id for task_id, job in self._jobs.items()
            if job.progress.is_finished
            and job.progress.completed_at is not None
            and job.progress.completed_at < cutoff
        ]
        for task_id in stale:
            del self._jobs[task_id]
        return len(stale)

    async def shutdown(self) -> None:
        tasks = []
        for job in self._jobs.values():
            if job.stop_requested is not None:
                job.stop_requested.set()
            if job.task is not None:
                job.task.cancel()
                tasks.append(job.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


# ═══════════════════════════════════════════════════════════════════════════
# Scheduler
# ═══════════════════════════════════════════════════════════════════════════

class ScheduledJobRunner:
    """
    Submits a prediction run every ``interval_minutes``.

    A tick that finds the previous run still active is skipped rather
    than queued.
    """

    def __init__(
        self,
        manager: BackgroundJobManager,
        orchestrator: "HazardPredictionOrchestrator",
        interval_minutes: float = 60,
    ):
        self._manager = manager
        self._orchestrator = orchestrator
        self._interval = interval_minutes * 60
        self._stop = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self.last_task_id: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._stop = asyncio.Event()
        self._loop_task = asyncio.create_task(self._loop())
        logger.info("Prediction scheduler started, every %.0f min", self._interval / 60)

    async def stop(self) -> None:
        if self._loop_task is None:
            return
        self._stop.set()
        self._loop_task.cancel()
        await asyncio.gather(self._loop_task, return_exceptions=True)
        self._loop_task = None
        logger.info("Prediction scheduler stopped")

    async def tick(self) -> Optional[str]:
        """Submit a scheduled run, or return None if one is still going."""
        if self._manager.has_active_job(PREDICTION_RUN):
            logger.warning("Prediction run still active; skipping scheduled tick")
            return None
        self.last_task_id = await self._manager.submit_prediction_run(
            self._orchestrator, RunTrigger.SCHEDULED,
        )
        return self.last_task_id

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduled tick failed")
                await self._sleep(SCHEDULER_ERROR_BACKOFF_SECONDS)
                continue
            await self._sleep(self._interval)
