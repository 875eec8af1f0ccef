"""
Deep health probe for the hazard service.

Each probe inspects one dependency of the prediction pipeline and says
whether it is healthy, degraded (predictions still run, with reduced
fidelity) or unhealthy (predictions cannot be stored). The overall
status is the worst component status.

Probes:
    • storage          observation/prediction store round-trip
    • redis            snapshot cache (optional)
    • text_classifier  fusion's label model
    • weather_api      Open-Meteo endpoints and the monthly call budget
    • scheduler        periodic prediction runs
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Tuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from hazardwatch.core.cache import ping_redis
from hazardwatch.core.config import settings

if TYPE_CHECKING:
    from hazardwatch.container import ServiceContainer

_STARTED = time.monotonic()


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_SEVERITY_ORDER = [HealthStatus.HEALTHY, HealthStatus.DEGRADED, HealthStatus.UNHEALTHY]

ProbeResult = Tuple[HealthStatus, str, Dict[str, Any]]


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus
    message: str
    latency_ms: float
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
            "message": self.message,
        }
        if self.details:
            out["details"] = self.details
        return out


@dataclass
class HealthReport:
    components: List[ComponentHealth]
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status(self) -> HealthStatus:
        if not self.components:
            return HealthStatus.HEALTHY
        return max((c.status for c in self.components), key=_SEVERITY_ORDER.index)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "timestamp": self.checked_at.isoformat(),
            "uptime_seconds": round(time.monotonic() - _STARTED, 1),
            "components": [c.to_dict() for c in self.components],
        }


# ═══════════════════════════════════════════════════════════════════════════
# Probes
# ═══════════════════════════════════════════════════════════════════════════

async def _probe_storage(container: "ServiceContainer") -> ProbeResult:
    backend = container.settings.STORAGE_BACKEND.lower()
    if backend != "sql":
        status = HealthStatus.DEGRADED if container.settings.is_production else HealthStatus.HEALTHY
        return status, "In-process store (data lost on restart)", {"backend": backend}

    from hazardwatch.core.database import get_engine

    details = {"backend": backend, "url": container.settings.DATABASE_URL.split("@")[-1]}
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        return HealthStatus.UNHEALTHY, str(e), details
    return HealthStatus.HEALTHY, "Database reachable", details


async def _probe_redis(container: "ServiceContainer") -> ProbeResult:
    details = {"url": settings.REDIS_URL.split("@")[-1]}
    if await ping_redis():
        return HealthStatus.HEALTHY, "Cache available", details
    return HealthStatus.DEGRADED, "Cache unreachable; snapshots fetched uncached", details


async def _probe_classifier(container: "ServiceContainer") -> ProbeResult:
    configured = container.settings.CLASSIFIER_BACKEND.lower()
    classifier = container.fusion.classifier
    details = {"backend": configured}
    if classifier is not None:
        name = getattr(classifier, "name", type(classifier).__name__)
        return HealthStatus.HEALTHY, f"{name} classifier loaded", details
    if configured == "none":
        return HealthStatus.HEALTHY, "Disabled; rule-based and pattern methods only", details
    return HealthStatus.DEGRADED, f"{configured} classifier configured but not loaded", details


async def _probe_weather_api(container: "ServiceContainer") -> ProbeResult:
    usage = container.rate_limiter.usage()
    details = {
        "forecast": container.settings.OPEN_METEO_FORECAST_URL,
        "marine": container.settings.OPEN_METEO_MARINE_URL,
        "quota": usage.to_dict(),
    }
    if usage.remaining == 0:
        return HealthStatus.DEGRADED, "Monthly API quota exhausted", details
    return HealthStatus.HEALTHY, "External APIs configured", details


async def _probe_scheduler(container: "ServiceContainer") -> ProbeResult:
    running = container.scheduler.is_running
    details = {
        "interval_minutes": container.settings.PREDICTION_INTERVAL_MINUTES,
        "locations": len(container.orchestrator.locations),
    }
    if container.settings.SCHEDULER_ENABLED and not running:
        return HealthStatus.DEGRADED, "Scheduler enabled but not running", details
    return HealthStatus.HEALTHY, "Running" if running else "Disabled", details


PROBES: List[Tuple[str, Callable[["ServiceContainer"], Awaitable[ProbeResult]]]] = [
    ("storage", _probe_storage),
    ("redis", _probe_redis),
    ("text_classifier", _probe_classifier),
    ("weather_api", _probe_weather_api),
    ("scheduler", _probe_scheduler),
]


async def run_health_check(container: "ServiceContainer") -> HealthReport:
    components = []
    for name, probe in PROBES:
        started = time.monotonic()
        status, message, details = await probe(container)
        components.append(ComponentHealth(
            name=name,
            status=status,
            message=message,
            latency_ms=(time.monotonic() - started) * 1000,
            details=details,
        ))
    return HealthReport(components)
