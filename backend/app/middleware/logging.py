"""
Billow Backend — Request Logging Middleware
============================================

What:  One access-log line per HTTP request.
How:   Times the request, then logs method, path, status and duration on the
       "billow.access" logger with the request ID for correlation.
When:  Inside RequestIDMiddleware (uses its request ID).

Severity follows the status: 5xx → ERROR, 4xx → WARNING, otherwise INFO.
Request bodies, uploaded files and Authorization headers are never logged.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.middleware.request_id import request_id_var

logger = logging.getLogger("billow.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs method, path, status, duration, client IP and request ID.

    Typical durations:
        - GET /homes/{id}: 1-5ms on a cache hit, 10-30ms on a miss
        - GET /homes/search/{term}: 10-100ms (full-text ranking)
        - POST /homes/new: dominated by writing four images
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start_time = time.perf_counter()

        client_ip = getattr(request.client, "host", "unknown") if request.client else "unknown"
        method = request.method
        path = request.url.path
        rid = request_id_var.get("")

        # Probes run every few seconds
        if path == "/health":
            return await call_next(request)

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000

        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )

        return response
