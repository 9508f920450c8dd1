"""
Billow Backend — Security Headers Middleware
=============================================

What:  Adds conservative security headers to every response.
How:   Sets each header only if the route didn't set it already.

Headers:
    X-Content-Type-Options: nosniff        browsers honour Content-Type
    X-Frame-Options: DENY                  no framing (clickjacking)
    Referrer-Policy: no-referrer           listing URLs don't leak
    X-DNS-Prefetch-Control: off
    Cross-Origin-Resource-Policy: cross-origin
        images under /uploads are embedded by the frontend on another origin
"""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "X-DNS-Prefetch-Control": "off",
    "Cross-Origin-Resource-Policy": "cross-origin",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
