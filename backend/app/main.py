"""
Billow Backend — FastAPI Application Factory
=============================================

What:  Creates and configures the FastAPI application instance.
Why:   Centralizes app configuration, middleware registration, route mounting,
       and lifecycle management in one place.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn app.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware Chain:                                       │
    │  ┌────────┐ ┌─────────┐ ┌──────────┐ ┌──────┐ ┌──────┐   │
    │  │ Req ID │→│ Logging │→│ Security │→│ GZip │→│ CORS │   │
    │  └────────┘ └─────────┘ └──────────┘ └──────┘ └──────┘   │
    │                                                          │
    │  Routes:                                                 │
    │  ┌──────────┐ ┌──────────────────┐ ┌─────────────────┐   │
    │  │ /homes/* │ │ GET /uploads/... │ │ GET /health     │   │
    │  └──────────┘ └──────────────────┘ └─────────────────┘   │
    │                                                          │
    │  app.state: engine, session_factory, home_cache,         │
    │             file_service                                 │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Initialize logging
    2. Validate configuration (warn on missing secrets)
    3. Create the storage directory (FileService)
    4. Build the engine and wait for the database
    5. Build the Redis client and HomeCache; an unreachable Redis only
       logs, the API then serves straight from the database

    Shutdown:
    1. Close the Redis client
    2. Dispose database engine (close all connections)
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app import __version__
from app.config import settings
from app.database import (
    build_engine,
    build_session_factory,
    dispose_engine,
    wait_for_database,
)
from app.exceptions import (
    AmbiguousMatchError,
    BillowError,
    DatabaseError,
    FileStorageError,
    NotFoundError,
    UnauthorizedError,
    UpstreamUnavailableError,
    ValidationError,
)
from app.middleware.logging import RequestLoggingMiddleware
from app.middleware.request_id import RequestIDMiddleware, request_id_var
from app.middleware.security_headers import SecurityHeadersMiddleware
from app.routes import health, homes, uploads
from app.services.cache_service import CircuitBreaker, HomeCache, build_redis_client
from app.services.file_service import FileService

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    When:    Called once during app startup (before any other initialization).
    Format:  %(asctime)s [%(levelname)s] %(name)s: %(message)s
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),  # Docker captures stdout
        ],
        force=True,
    )

    # Per-operation chatter from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Build process-wide handles on startup, release them on shutdown.

    Everything request handlers need is parked on app.state and handed out
    by app.dependencies; nothing connects at import time.
    """
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("Billow Backend starting up...")

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Public reads still work; writes will answer 401
        logger.error("Configuration error: %s", str(e))

    app.state.file_service = FileService()

    engine = build_engine(settings)
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    await wait_for_database(engine, attempts=settings.db_connect_retries)

    redis_client = (
        build_redis_client(settings.redis_url, settings.cache_socket_timeout)
        if settings.cache_enabled
        else None
    )
    home_cache = HomeCache(
        client=redis_client,
        ttl_seconds=settings.cache_ttl_seconds,
        enabled=settings.cache_enabled,
        circuit_breaker=CircuitBreaker(
            failure_threshold=settings.cache_cb_failure_threshold,
            recovery_timeout=settings.cache_cb_recovery_timeout,
        ),
    )
    app.state.home_cache = home_cache
    if not settings.cache_enabled:
        logger.info("Cache disabled; serving every read from the database")
    elif await home_cache.ping():
        logger.info("Cache reachable at %s", settings.redis_url)
    else:
        logger.warning("Cache unreachable at startup; serving reads from the database")

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("API docs: http://%s:%d/docs", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Billow Backend shutting down...")
    await home_cache.close()
    await dispose_engine(engine)
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_body(error: str, message: str, details=None) -> dict:
    body = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        body["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register global exception handlers for consistent error responses.

    Handler hierarchy:
        ValidationError           → 400 Bad Request
        UnauthorizedError         → 401 Unauthorized
        NotFoundError             → 404 Not Found
        AmbiguousMatchError       → 409 Conflict
        UpstreamUnavailableError  → 503 Service Unavailable (Retry-After)
        DatabaseError             → 500 Internal Server Error
        FileStorageError          → 500 Internal Server Error
        BillowError (base)        → 500 Internal Server Error
        HTTPException (Starlette) → its own status (unknown routes: 404)
        Exception (fallback)      → 500 Internal Server Error

    Internal details (SQL, paths, stack traces) are logged, never returned.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        """Client sent invalid input; tell them what's wrong."""
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(
            status_code=400,
            content=_error_body("validation_error", exc.message, exc.context),
        )

    @app.exception_handler(UnauthorizedError)
    async def handle_unauthorized(request: Request, exc: UnauthorizedError):
        # Reason stays in the log; clients only learn that auth failed
        logger.info("[%s] Auth failed: %s", request_id_var.get(""), exc.context)
        return JSONResponse(
            status_code=401,
            content=_error_body("unauthorized", exc.message),
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(
            status_code=404,
            content=_error_body("not_found", exc.message),
        )

    @app.exception_handler(AmbiguousMatchError)
    async def handle_ambiguous_match(request: Request, exc: AmbiguousMatchError):
        """A street selector matched several homes under the unique policy."""
        logger.warning("[%s] Ambiguous match: %s", request_id_var.get(""), exc.context)
        return JSONResponse(
            status_code=409,
            content=_error_body("ambiguous_match", exc.message, exc.context),
        )

    @app.exception_handler(UpstreamUnavailableError)
    async def handle_upstream_unavailable(request: Request, exc: UpstreamUnavailableError):
        """The database is unreachable or timed out; the client may retry."""
        logger.error("[%s] Upstream unavailable: %s | Context: %s",
                     request_id_var.get(""), exc.message, exc.context)
        return JSONResponse(
            status_code=503,
            content=_error_body("service_unavailable", exc.message),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        """Database error: generic message to user, details logged server-side."""
        logger.error("[%s] Database error: %s | Context: %s",
                     request_id_var.get(""), exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                "server_error", "An internal error occurred. Please try again later."
            ),
        )

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        logger.error("[%s] File storage error: %s | Context: %s",
                     request_id_var.get(""), exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", exc.message),
        )

    @app.exception_handler(BillowError)
    async def handle_billow_error(request: Request, exc: BillowError):
        logger.error("[%s] %s: %s | Context: %s",
                     request_id_var.get(""), type(exc).__name__, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        """Router-level errors: unknown paths and methods."""
        if exc.status_code == 404:
            body = _error_body("not_found", "Not found")
        else:
            body = _error_body("http_error", str(exc.detail))
        return JSONResponse(
            status_code=exc.status_code,
            content=body,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Catch-all: generic 500 with a request ID, stack trace logged only."""
        logger.error(
            "[%s] Unexpected error: %s",
            request_id_var.get(""),
            str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content=_error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again or contact support.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns: Fully configured FastAPI instance. Tests may skip the lifespan
             and set app.state themselves.
    """
    app = FastAPI(
        title="Billow API",
        description=(
            "Real-estate listings: browse, search and manage homes with their "
            "photos. Single-home reads are served through a Redis cache."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RequestID → Logging → Security → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(homes.router)
    app.include_router(uploads.router)
    app.include_router(health.router)

    return app


# uvicorn expects `app.main:app` to be importable
app = create_app()
