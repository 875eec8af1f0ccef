"""
Error types raised across hazardwatch and the FastAPI handlers that render them.

Provides:
    • ``HazardWatchError`` with an HTTP status and a stable machine code
    • Subsystem errors (upstream fetch, storage, classifier, quota)
    • Request errors (validation, insufficient data, not found)
    • ``register_error_handlers`` producing the ``{"error": {...}}`` envelope

The orchestrator contains subsystem errors per location, so only API
requests ever surface them to a client.

Usage:
    from hazardwatch.core.errors import UpstreamFetchError, register_error_handlers

    raise UpstreamFetchError("open-meteo-marine", "HTTP 503")
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hazardwatch.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Base
# ═══════════════════════════════════════════════════════════════════════════

class HazardWatchError(Exception):
    """Root of the hierarchy; subclasses set ``status_code`` and ``error_code``."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str = "An unexpected error occurred", **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "code": self.error_code,
            "message": self.message,
            "status": self.status_code,
        }
        if self.details:
            body["details"] = self.details
        return body


class _SubsystemError(HazardWatchError):
    """``<Kind> '<subject>' failed: <reason>`` with the subject kept in details."""

    kind = "Operation"
    subject_key = "operation"

    def __init__(self, subject: str, reason: str = "", **details: Any):
        super().__init__(
            f"{self.kind} '{subject}' failed: {reason}",
            **{self.subject_key: subject, **details},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Subsystem failures
# ═══════════════════════════════════════════════════════════════════════════

class UpstreamFetchError(_SubsystemError):
    """Weather or ocean source errored, timed out or returned garbage."""

    status_code = 502
    error_code = "UPSTREAM_FETCH_ERROR"
    kind = "Upstream service"
    subject_key = "service"


class StorageError(_SubsystemError):
    status_code = 503
    error_code = "STORAGE_ERROR"
    kind = "Storage operation"


class ClassifierError(_SubsystemError):
    error_code = "CLASSIFIER_ERROR"
    kind = "Classifier"
    subject_key = "model"


class RateLimitError(HazardWatchError):
    """The shared weather-call budget is spent for now."""

    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str = "Rate limit exceeded", retry_after: int = 60):
        super().__init__(message, retry_after_seconds=retry_after)


# ═══════════════════════════════════════════════════════════════════════════
# Request problems
# ═══════════════════════════════════════════════════════════════════════════

class ValidationError(HazardWatchError):
    status_code = 422
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        if field:
            details["field"] = field
        super().__init__(message, **details)


class InsufficientDataError(HazardWatchError):
    """Fewer observations than the smallest detector window."""

    status_code = 422
    error_code = "INSUFFICIENT_DATA"

    def __init__(self, required: int, available: int, **details: Any):
        super().__init__(
            f"Insufficient data: need {required} observations, have {available}",
            required=required, available=available, **details,
        )


class NotFoundError(HazardWatchError):
    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(f"{resource} not found", resource=resource, **identifiers)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI handlers
# ═══════════════════════════════════════════════════════════════════════════

def _error_response(request: Request, error: Dict[str, Any]) -> JSONResponse:
    if not settings.is_production:
        error = {**error, "path": request.url.path, "method": request.method}
    return JSONResponse(status_code=error["status"], content={"error": error})


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(HazardWatchError)
    async def _hazardwatch_error(request: Request, exc: HazardWatchError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log("%s on %s: %s %s", exc.error_code, request.url.path, exc.message, exc.details or "")
        return _error_response(request, exc.to_dict())

    @app.exception_handler(ValueError)
    async def _value_error(request: Request, exc: ValueError):
        logger.warning("Rejected %s: %s", request.url.path, exc)
        return _error_response(
            request, {"code": "VALIDATION_ERROR", "message": str(exc), "status": 422},
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.critical("Unhandled error on %s", request.url.path, exc_info=exc)
        message = str(exc) if settings.DEBUG else "Internal server error"
        return _error_response(
            request, {"code": "INTERNAL_ERROR", "message": message, "status": 500},
        )
