"""
Billow Backend — Health Check Route
====================================

What:  Health check endpoint for monitoring and load balancer probes.
Why:   Load balancers route away from instances that can't serve requests.
How:   Probes the database (SELECT 1) and the Redis cache (PING) and
       returns an aggregate status.

Status levels:
    - healthy:   database and cache operational (HTTP 200)
    - degraded:  cache unreachable; reads still served from the
                 database (HTTP 200, flag for monitoring)
    - unhealthy: database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Request, Response, status
from sqlalchemy import text

from app import __version__
from app.schemas.home import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Returns the health of the service, its database and its cache.",
)
async def health_check(request: Request, response: Response) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    # ── Check Database ────────────────────────────────────────────────────
    try:
        async with request.app.state.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    # ── Check Cache ───────────────────────────────────────────────────────
    cache = request.app.state.home_cache
    cache_status = cache.status
    if cache_status == "available" and not await cache.ping():
        cache_status = "unavailable"
    if cache_status not in ("available", "disabled") and overall == "healthy":
        overall = "degraded"

    if overall == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        cache=cache_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
