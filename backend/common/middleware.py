"""HTTP middleware for Pulse Trading Hub.

Provides request ID tracing and request logging with Prometheus metrics
for the small HTTP surface (health, stats). WebSocket traffic is not
HTTP-middleware territory: BaseHTTPMiddleware only sees "http" scopes.

Usage:
    from backend.common.middleware import request_id_var
    rid = request_id_var.get("")  # Access current request ID from anywhere
"""

from __future__ import annotations

import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.common.logging import get_logger
from backend.common.metrics import HTTP_REQUEST_DURATION_SECONDS, HTTP_REQUESTS_TOTAL

# ContextVar, accessible from any async context during a request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

logger = get_logger("API")

# Probe and scrape traffic is neither logged nor measured
_QUIET_PATHS = frozenset({"/health", "/metrics"})


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Inject a unique request ID into every request/response cycle.

    Reads ``X-Request-ID`` from the incoming request, or generates a
    UUID4 hex. The ID is stored in ``request_id_var`` for the structured
    logger and echoed back in the ``X-Request-ID`` response header.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # noqa: ANN001
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex
        request_id_var.set(rid)

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log and measure every HTTP request outside the quiet paths."""

    async def dispatch(self, request: Request, call_next) -> Response:  # noqa: ANN001
        path = request.url.path
        if path in _QUIET_PATHS:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        HTTP_REQUESTS_TOTAL.labels(
            method=request.method,
            path=path,
            status_code=str(response.status_code),
        ).inc()
        HTTP_REQUEST_DURATION_SECONDS.labels(method=request.method, path=path).observe(duration)

        logger.info(
            f"{request.method} {path} {response.status_code}",
            extra={
                "data": {
                    "status": response.status_code,
                    "duration_ms": round(duration * 1000, 1),
                }
            },
        )
        return response
