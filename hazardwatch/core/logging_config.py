"""
Logging setup for the API process and its background runs.

Provides:
    • A context filter that stamps every record with the current
      request id or prediction-run task id
    • One-line JSON records in production, with hazard fields
      (location, severity, confidence, ...) lifted to the top level
    • Short coloured console lines during development

Usage:
    from hazardwatch.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Early warning raised", extra={"location": "Chennai", "severity": "critical"})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from hazardwatch.core.config import settings

_log_context: ContextVar[Dict[str, Any]] = ContextVar("hazardwatch_log_context", default={})

# Record attributes promoted into the JSON body when a caller passes them via extra=
HAZARD_FIELDS = (
    "location", "lat", "lon", "hazard_type", "severity", "confidence",
    "task_id", "duration_ms", "status_code", "endpoint",
)

_LEVEL_COLOURS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine")


def set_request_context(**kwargs: Any) -> None:
    """Replace the context attached to log records; call with no args to clear."""
    _log_context.set(dict(kwargs))


def get_request_context() -> Dict[str, Any]:
    return _log_context.get()


class LogContextFilter(logging.Filter):
    """Copies the current context onto each record as ``record.context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = get_request_context()
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        body: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        context = getattr(record, "context", None)
        if context:
            body["context"] = context
        body.update({
            field: getattr(record, field)
            for field in HAZARD_FIELDS
            if hasattr(record, field)
        })
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            body["error"] = {"type": type(exc).__name__, "message": str(exc)}
        return json.dumps(body, default=str)


class ConsoleFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        colour = _LEVEL_COLOURS.get(record.levelno, _RESET)
        context = getattr(record, "context", None) or {}
        if "request_id" in context:
            tag = f" [{context['request_id'][:8]}]"
        elif "task_id" in context:
            tag = f" [run {context['task_id']}]"
        else:
            tag = ""

        line = (
            f"{colour}{self.formatTime(record, '%H:%M:%S')} "
            f"{record.levelname:<8}{_RESET}{tag} {record.name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            line += f"\n    {type(exc).__name__}: {exc}"
        return line


def setup_logging(level: Optional[str] = None) -> None:
    """Install a single stdout handler on the root logger."""
    level_name = (level or settings.LOG_LEVEL).upper()
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(LogContextFilter())
    handler.setFormatter(JSONFormatter() if settings.is_production else ConsoleFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level_name, logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
