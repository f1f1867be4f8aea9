"""Request logging middleware.

Provides canonical log line per request with trace ID propagation.
"""

import logging
import re
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from skyport.app.config import get_settings
from skyport.app.logging import clear_trace_context, set_trace_id
from skyport.app.metrics.collector import HTTP_REQUEST_DURATION, HTTP_REQUESTS_TOTAL
from skyport.core.logging_schema import Component, LogEvent

logger = logging.getLogger(__name__)

_SKIP_PATHS = ("/health", "/metrics")

# Replace dynamic ids with placeholders, most specific first
_PATH_PATTERNS = [
    (re.compile(r"^/api/v1/instances/[^/]+/users/[^/]+$"), "/api/v1/instances/:id/users/:username"),
    (re.compile(r"^/api/v1/instances/[^/]+/power/[^/]+$"), "/api/v1/instances/:id/power/:action"),
    (re.compile(r"^/api/v1/instances/[^/]+(/[a-z]+)?$"), r"/api/v1/instances/:id\1"),
    (re.compile(r"^/api/v1/nodes/(?!configure$|radar)[^/]+(/configure-key)?$"), r"/api/v1/nodes/:id\1"),
]

# Whitelist of known endpoints for metrics (cardinality control)
_KNOWN_ENDPOINTS = frozenset({
    "/api/v1/instances",
    "/api/v1/instances/:id",
    "/api/v1/instances/:id/redeploy",
    "/api/v1/instances/:id/reinstall",
    "/api/v1/instances/:id/suspend",
    "/api/v1/instances/:id/unsuspend",
    "/api/v1/instances/:id/state",
    "/api/v1/instances/:id/users",
    "/api/v1/instances/:id/users/:username",
    "/api/v1/instances/:id/power/:action",
    "/api/v1/instances/:id/workflow",
    "/api/v1/workflows/jobs",
    "/api/v1/nodes",
    "/api/v1/nodes/:id",
    "/api/v1/nodes/:id/configure-key",
    "/api/v1/nodes/configure",
    "/api/v1/nodes/radar/check",
})


def normalize_path(path: str) -> str:
    """Normalize path and apply whitelist for cardinality control."""
    for pattern, replacement in _PATH_PATTERNS:
        path, count = pattern.subn(replacement, path)
        if count:
            break
    return path if path in _KNOWN_ENDPOINTS else "other"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request logging with trace ID propagation.

    - Sets trace_id from X-Trace-ID header or generates new one
    - Logs one canonical line per request, warns when slow
    - Records HTTP metrics against normalized paths
    - Adds X-Trace-ID header to response
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        trace_id = set_trace_id(request.headers.get("x-trace-id"))
        path = request.url.path

        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "Request failed",
                extra={
                    "event": LogEvent.REQUEST_FAILED,
                    "component": Component.API,
                    "method": request.method,
                    "path": path,
                    "duration_ms": (time.monotonic() - start) * 1000,
                    "trace_id": trace_id,
                },
            )
            raise
        finally:
            clear_trace_context()

        duration_seconds = time.monotonic() - start
        duration_ms = duration_seconds * 1000

        if path not in _SKIP_PATHS:
            endpoint = normalize_path(path)
            HTTP_REQUESTS_TOTAL.labels(
                method=request.method,
                endpoint=endpoint,
                status=str(response.status_code),
            ).inc()
            HTTP_REQUEST_DURATION.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(duration_seconds)

            logger.info(
                "Request completed",
                extra={
                    "event": LogEvent.REQUEST_COMPLETE,
                    "component": Component.API,
                    "method": request.method,
                    "path": path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "trace_id": trace_id,
                },
            )

            threshold_ms = get_settings().logging.slow_threshold_ms
            if duration_ms > threshold_ms:
                logger.warning(
                    "Slow request detected",
                    extra={
                        "event": LogEvent.REQUEST_SLOW,
                        "method": request.method,
                        "path": path,
                        "status": response.status_code,
                        "duration_ms": duration_ms,
                        "threshold_ms": threshold_ms,
                        "trace_id": trace_id,
                    },
                )

        response.headers["X-Trace-ID"] = trace_id
        return response
