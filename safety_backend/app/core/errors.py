"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON error response format
    • Automatic logging of unhandled errors

The envelope keeps the flat ``{"error": "<message>"}`` shape the map
frontend already parses, with code/details alongside it.

Usage:
    from safety_backend.app.core.errors import (
        SafetyAPIError,
        NotFoundError,
        ConfigurationError,
        register_error_handlers,
    )

    raise NotFoundError("Marker", latitude=12.97, longitude=77.59)
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from safety_backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class SafetyAPIError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "Something went wrong!",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(SafetyAPIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class MarkerNotFoundError(NotFoundError):
    """No marker matched a delete-by-coordinates request."""

    def __init__(self, latitude: float, longitude: float):
        super().__init__("Marker", latitude=latitude, longitude=longitude)
        self.latitude = latitude
        self.longitude = longitude


class ValidationError(SafetyAPIError):
    """Input validation failed (400)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class ConfigurationError(SafetyAPIError):
    """A required setting is missing; raised before any side effect (500)."""

    def __init__(self, message: str, **details: Any):
        super().__init__(
            message=message,
            status_code=500,
            error_code="CONFIGURATION_ERROR",
            details=details,
        )


class StoreError(SafetyAPIError):
    """Marker store rejected or failed an operation (500)."""

    def __init__(self, message: str, *, operation: str, cause: str = ""):
        details = {"operation": operation}
        if cause:
            details["cause"] = cause
        super().__init__(
            message=message,
            status_code=500,
            error_code="STORE_ERROR",
            details=details,
        )
        self.operation = operation


class ObserverLimitError(SafetyAPIError):
    """Event stream is at its configured subscriber cap (503)."""

    def __init__(self, limit: int):
        super().__init__(
            message="Too many event stream subscribers",
            status_code=503,
            error_code="OBSERVER_LIMIT",
            details={"max_observers": limit},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": message,
        "code": error_code,
        "status": status_code,
    }

    if details:
        body["details"] = details

    # Include request path in non-production
    if request and not settings.is_production:
        body["path"] = str(request.url.path)
        body["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(SafetyAPIError)
    async def handle_safety_error(request: Request, exc: SafetyAPIError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        logger.warning("Request validation failed: %s", exc.errors())
        return _build_error_response(
            400, "VALIDATION_ERROR", "Invalid request body",
            {"errors": jsonable_errors(exc)}, request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Something went wrong!"
        return _build_error_response(
            500, "INTERNAL_ERROR", message, request=request,
        )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Strip non-serialisable context (e.g. raised ValueErrors) from errors."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
