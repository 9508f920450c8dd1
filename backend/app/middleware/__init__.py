# Middleware package init
"""
Billow Backend — Middleware Package
====================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (outermost first):
    Request → [Request ID] → [Logging] → [Security Headers] → [GZip] → [CORS] → Route

    1. Request ID: correlation ID for logs and error bodies
    2. Logging: one access line per request, with status and duration
    3. Security Headers: conservative response headers on every reply
    4. GZip / CORS: Starlette's stock middleware

    Responses pass back through in reverse, so the request ID header and
    the access log see the final status.
"""
