"""
Request-scoped wiring.

The engine, Redis client and file service are built once in the lifespan
and parked on `app.state`; these dependencies hand them to route handlers
and assemble a HomeService per request.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db_session
from app.services.cache_service import HomeCache
from app.services.file_service import FileService
from app.services.home_service import HomeService
from app.services.home_store import HomeStore, MatchPolicy


def get_home_cache(request: Request) -> HomeCache:
    return request.app.state.home_cache


def get_file_service(request: Request) -> FileService:
    return request.app.state.file_service


def get_base_url(request: Request) -> str:
    """
    Host prefix for image URIs: PUBLIC_BASE_URL when set (e.g. behind a
    proxy or CDN), otherwise the scheme and host the request arrived on.
    """
    if settings.public_base_url:
        return settings.public_base_url.rstrip("/")
    return str(request.base_url).rstrip("/")


async def get_home_service(
    session: AsyncSession = Depends(get_db_session),
    cache: HomeCache = Depends(get_home_cache),
    file_service: FileService = Depends(get_file_service),
) -> HomeService:
    return HomeService(
        store=HomeStore(session),
        cache=cache,
        file_service=file_service,
        match_policy=MatchPolicy(settings.street_match_policy),
        invalidate_on_write=settings.cache_invalidate_on_write,
        ttl_seconds=settings.cache_ttl_seconds,
    )
