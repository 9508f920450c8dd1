"""
Billow Backend — Request ID Middleware
=======================================

What:  Assigns each request an ID and returns it in the X-Request-ID header.
Why:   Every log line and error body of a request carries the same ID, so a
       client-reported failure can be found in the logs.
How:   Reuses a client-supplied X-Request-ID or generates a short UUID, stores
       it in a ContextVar (for loggers and exception handlers) and on
       request.state (for route handlers).
When:  Outermost middleware; runs before everything else.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests share a thread but not this value
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware that assigns a unique ID to each request for tracing."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # 8 chars is enough to correlate within a log window
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
