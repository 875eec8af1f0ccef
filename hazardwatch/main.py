"""
FastAPI application entry point.

Run with:
    uvicorn hazardwatch.main:app --reload --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hazardwatch.core.config import settings
from hazardwatch.core.logging_config import setup_logging, get_logger
from hazardwatch.core.errors import register_error_handlers
from hazardwatch.core.middleware import RequestLoggingMiddleware
from hazardwatch.core.health import HealthStatus, run_health_check
from hazardwatch.container import ServiceContainer, build_container

from hazardwatch.api.v1.observations import router as observations_router
from hazardwatch.api.v1.patterns import router as patterns_router
from hazardwatch.api.v1.predictions import router as predictions_router

setup_logging()
logger = get_logger(__name__)


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the application; pass a container to run against custom services."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        services = container or build_container(settings)
        app.state.container = services

        if container is None and settings.STORAGE_BACKEND == "sql":
            from hazardwatch.core.database import init_db

            await init_db()
        if services.settings.SCHEDULER_ENABLED:
            await services.scheduler.start()

        yield

        logger.info("Shutting down %s", settings.APP_NAME)
        await services.aclose()
        if container is None:
            from hazardwatch.core.cache import close_redis
            from hazardwatch.core.database import close_db

            await close_redis()
            await close_db()

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Coastal hazard early warning engine. "
            "Builds per-location ocean/weather observation sequences, "
            "runs tsunami, cyclone, high-wave, storm-surge and coastal-flooding "
            "precursor detectors, estimates time-to-hazard, and fuses the "
            "dominant pattern with text classification and threshold rules "
            "into one severity judgment per monitored location."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware stack (outermost first) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(app)

    app.include_router(patterns_router)
    app.include_router(predictions_router)
    app.include_router(observations_router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "monitored_locations": len(app.state.container.orchestrator.locations),
            "api": ["/api/v1/patterns", "/api/v1/predictions", "/api/v1/observations"],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Per-component status; 200 even when degraded."""
        report = await run_health_check(app.state.container)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        """503 only when predictions cannot be stored."""
        report = await run_health_check(app.state.container)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()
