"""
Structured logging configuration.

Provides:
    • JSON-formatted logs for production (machine-parseable)
    • Pretty console logs for development (human-readable)
    • Request-scoped context (request_id, client_ip, endpoint)

Domain fields passed through ``extra=`` (marker ids, coordinates,
observer counts, SOS tallies) become top-level JSON keys so log
pipelines can filter on them.

Usage:
    from safety_backend.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Marker created", extra={"marker_id": m.id, "lat": 12.97, "lon": 77.59})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from safety_backend.app.core.config import Settings, settings as default_settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

# Record attributes promoted to top-level JSON keys
_EXTRA_KEYS = (
    "lat", "lon", "marker_id", "event_type", "observer_count",
    "recipient", "success_count", "total", "duration_ms",
    "status_code", "endpoint",
)

# Shown inline by the console formatter
_INLINE_KEYS = ("marker_id", "observer_count", "recipient")

_NOISY_LOGGERS = ("uvicorn.access", "twilio.http_client")


def set_request_context(**kwargs: Any) -> None:
    """Replace the request-scoped log context; no arguments clears it."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


def _extras(record: logging.LogRecord, keys=_EXTRA_KEYS) -> Dict[str, Any]:
    return {key: getattr(record, key) for key in keys if hasattr(record, key)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        ctx = get_request_context()
        if ctx:
            entry["context"] = ctx
        entry.update(_extras(record))

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }
        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Coloured human-readable format for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        ts = self.formatTime(record, "%H:%M:%S")

        request_id = get_request_context().get("request_id")
        prefix = f" [{request_id[:8]}]" if request_id else ""

        line = (
            f"{color}{ts} {record.levelname:8s}{self.RESET}"
            f"{prefix} {record.name}: {record.getMessage()}"
        )
        inline = _extras(record, _INLINE_KEYS)
        if inline:
            line += "  " + " ".join(f"{k}={v}" for k, v in inline.items())

        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


def setup_logging(config: Optional[Settings] = None) -> None:
    """Install one stdout handler on the root logger, formatted per environment."""
    config = config or default_settings

    root = logging.getLogger()
    root.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if config.is_production else PrettyFormatter())
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if config.DATABASE_ECHO else logging.WARNING
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
