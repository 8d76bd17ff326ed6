"""
Request middleware — correlation IDs and one log line per request.

Every response carries ``X-Request-ID`` (echoed from the client when it
sends a sane one) and ``X-Process-Time``.

The ``/events`` feed never finishes while the map is open, so streaming
responses are logged as "stream opened" once headers are ready; the
broker logs the matching unsubscribe when the connection drops.
"""

from __future__ import annotations

import logging
import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from safety_backend.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")
_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _request_id(request: Request) -> str:
    incoming = request.headers.get("X-Request-ID", "")
    if _REQUEST_ID.match(incoming):
        return incoming
    return uuid.uuid4().hex[:16]


def _is_stream(response: Response) -> bool:
    return response.headers.get("content-type", "").startswith("text/event-stream")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Attach a correlation ID, time the handler and log the result."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = _request_id(request)
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path
        set_request_context(
            request_id=request_id,
            client_ip=client_ip,
            endpoint=path,
            method=request.method,
        )

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "%s %s → 500 (%.1fms) [%s]",
                request.method, path, (time.perf_counter() - start) * 1000, client_ip,
                extra={"status_code": 500, "endpoint": path},
            )
            set_request_context()
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if not any(path.startswith(p) for p in _QUIET_PREFIXES):
            self._log(request, response, duration_ms, client_ip)

        set_request_context()
        return response

    @staticmethod
    def _log(request: Request, response: Response, duration_ms: float, client_ip: str) -> None:
        path = request.url.path
        extra = {
            "duration_ms": duration_ms,
            "status_code": response.status_code,
            "endpoint": path,
        }
        if _is_stream(response):
            logger.info("%s %s → stream opened [%s]", request.method, path, client_ip, extra=extra)
            return
        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(
            level, "%s %s → %d (%.1fms) [%s]",
            request.method, path, response.status_code, duration_ms, client_ip,
            extra=extra,
        )
