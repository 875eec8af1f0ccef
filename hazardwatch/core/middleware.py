"""
HTTP access logging for the hazard API.

Every response carries ``X-Request-ID`` (echoed from the caller when
supplied) and ``X-Process-Time``. Probe and docs traffic is not logged.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from hazardwatch.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

UNLOGGED_PATHS = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        peer = request.client.host if request.client else "-"
        route = f"{request.method} {request.url.path}"
        set_request_context(request_id=request_id, endpoint=request.url.path, client_ip=peer)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "%s failed after %.1fms", route, _elapsed_ms(started),
                extra={"status_code": 500, "endpoint": request.url.path},
            )
            set_request_context()
            raise

        took = _elapsed_ms(started)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{took:.1f}ms"

        if not request.url.path.startswith(UNLOGGED_PATHS):
            level = logging.INFO if response.status_code < 400 else logging.WARNING
            logger.log(
                level, "%s %d %.1fms (%s)", route, response.status_code, took, peer,
                extra={
                    "status_code": response.status_code,
                    "duration_ms": round(took, 1),
                    "endpoint": request.url.path,
                },
            )
        set_request_context()
        return response
