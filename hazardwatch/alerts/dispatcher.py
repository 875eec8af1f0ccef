"""
dispatcher.py — Notification boundary for finished predictions.

The orchestrator hands over a DispatchRequest; delivery (push, e-mail,
SMS) belongs to a downstream service. Two implementations:

    LoggingDispatcher  — writes the request to the log (development, tests)
    WebhookDispatcher  — POSTs the request as JSON to NOTIFICATION_WEBHOOK_URL

Priorities:

    Priority   Raised for                                  Audience
    ────────   ─────────────────────────────────────────   ───────────
    CRITICAL   predictions carrying an early warning       authorities
    NORMAL     critical-severity predictions, no warning   analysts

Dispatchers never raise: failures come back as a FAILED DispatchResult.

Webhook body:

    POST <NOTIFICATION_WEBHOOK_URL>
    {
        "priority": "critical",
        "summary": "2 early warnings: high_waves, cyclone",
        "count": 2,
        "predictions": [ {...Prediction.to_dict()...}, ... ]
    }
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

import httpx

from hazardwatch.prediction.models import DispatchPriority, DispatchRequest, Prediction

logger = logging.getLogger(__name__)


class DispatchStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class DispatchResult:
    priority: DispatchPriority
    status: DispatchStatus
    count: int
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error_message: Optional[str] = None
    provider_response: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority": self.priority.value,
            "status": self.status.value,
            "count": self.count,
            "completed_at": self.completed_at.isoformat(),
            "error_message": self.error_message,
        }


class NotificationDispatcher(Protocol):
    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        ...


def summarize(priority: DispatchPriority, predictions: List[Prediction]) -> str:
    """One-line human summary, e.g. '2 early warnings: cyclone, high_waves'."""
    hazards = sorted({p.hazard_type.value for p in predictions})
    noun = "early warning" if priority == DispatchPriority.CRITICAL else "critical hazard"
    plural = "s" if len(predictions) != 1 else ""
    return f"{len(predictions)} {noun}{plural}: {', '.join(hazards)}"


class LoggingDispatcher:
    """Record dispatches in the log and keep them for inspection."""

    def __init__(self) -> None:
        self.sent: List[DispatchRequest] = []

    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        if not request.predictions:
            return DispatchResult(request.priority, DispatchStatus.SKIPPED, 0)

        self.sent.append(request)
        level = logging.WARNING if request.priority == DispatchPriority.CRITICAL else logging.INFO
        logger.log(
            level,
            "[DISPATCH] %s | %s | locations=%s",
            request.priority.value.upper(),
            request.summary,
            ", ".join(p.location for p in request.predictions),
        )
        return DispatchResult(
            request.priority, DispatchStatus.DELIVERED, len(request.predictions),
            provider_response={"mode": "log"},
        )


class WebhookDispatcher:
    """POST dispatch requests to an HTTP endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        if not request.predictions:
            return DispatchResult(request.priority, DispatchStatus.SKIPPED, 0)

        client = await self._get_client()
        try:
            response = await client.post(self.url, json=request.to_dict())
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "[DISPATCH] Webhook rejected %s dispatch: HTTP %d",
                request.priority.value, exc.response.status_code,
            )
            return DispatchResult(
                request.priority, DispatchStatus.FAILED, len(request.predictions),
                error_message=f"HTTP {exc.response.status_code}",
            )
        except httpx.HTTPError as exc:
            logger.error("[DISPATCH] Webhook unreachable: %s", exc)
            return DispatchResult(
                request.priority, DispatchStatus.FAILED, len(request.predictions),
                error_message=str(exc),
            )

        logger.info(
            "[DISPATCH] %s webhook delivered (%d predictions)",
            request.priority.value, len(request.predictions),
        )
        return DispatchResult(
            request.priority, DispatchStatus.DELIVERED, len(request.predictions),
            provider_response={"status_code": response.status_code},
        )
