"""
Prayer API Backend: FastAPI Application Factory
=================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() registers middleware, exception handlers and routers;
       the lifespan prepares logging, the topic catalog and push delivery.
Who:   uvicorn (`uvicorn prayer_api.main:app`) and the test suite.

Middleware Chain (request direction):
    RateLimit → RequestID → AccessLog → SecurityHeaders → GZip → CORS → routes

Error mapping:
    ValidationError      → 400
    NotFoundError        → 404
    PushUnavailableError → 503
    StorageFailure       → 500 (opaque message, details logged)
    anything else        → 500 internal_server_error (stack trace logged)

Lifecycle:
    Startup:
    1. Configure logging
    2. Report disabled features (missing Firebase credentials)
    3. Seed the topic catalog (insert-or-ignore)
    4. Build the push provider and notification dispatcher

    Shutdown:
    1. Dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from prayer_api import __version__
from prayer_api.config import settings
from prayer_api.database import async_session_factory, dispose_engine
from prayer_api.exceptions import (
    NotFoundError,
    PrayerWallError,
    PushUnavailableError,
    StorageFailure,
    ValidationError,
)
from prayer_api.middleware.logging import RequestLoggingMiddleware
from prayer_api.middleware.rate_limit import RateLimitMiddleware
from prayer_api.middleware.request_id import RequestIDMiddleware, request_id_var
from prayer_api.middleware.security_headers import SecurityHeadersMiddleware
from prayer_api.routes import (
    devices,
    health,
    maintenance,
    notifications,
    prayer_requests,
    topics,
)
from prayer_api.services.firebase_push import create_push_provider
from prayer_api.services.notification_dispatcher import NotificationDispatcher
from prayer_api.services.topic_catalog import topic_catalog

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once, to stdout.

    Format: 2026-01-15T12:00:00 [INFO] prayer_api.access: POST /api/... 200 ...
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Chatty at INFO; our access log already covers requests.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("google").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("Prayer API %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Not fatal: the wall works without push notifications.
        logger.warning("%s", str(e))

    if settings.seed_topics_on_startup:
        try:
            async with async_session_factory() as db:
                await topic_catalog.seed_topics(db)
        except StorageFailure:
            logger.error("Topic seeding failed; serving with the existing catalog")

    provider = create_push_provider(settings)
    app.state.dispatcher = NotificationDispatcher(
        provider,
        async_session_factory,
        max_concurrency=settings.push_max_concurrency,
    )

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Prayer API shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(status_code: int, error: str, message: str, details=None) -> JSONResponse:
    content = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map application exceptions to JSON error responses.

    Server-side context (SQL errors, identifiers) is logged, never returned,
    except for the offending field name of a ValidationError.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        rid = request_id_var.get("")
        logger.warning("[%s] Validation error: %s", rid, exc.message)
        details = {"field": exc.field} if exc.field else None
        return _error_response(400, "validation_error", exc.message, details)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message)

    @app.exception_handler(PushUnavailableError)
    async def handle_push_unavailable(request: Request, exc: PushUnavailableError):
        rid = request_id_var.get("")
        logger.warning("[%s] Push unavailable: %s", rid, exc.message)
        return _error_response(503, "push_unavailable", exc.message)

    @app.exception_handler(StorageFailure)
    async def handle_storage_failure(request: Request, exc: StorageFailure):
        rid = request_id_var.get("")
        logger.error("[%s] Storage failure | Context: %s", rid, exc.context)
        return _error_response(500, "server_error", "Internal server error")

    @app.exception_handler(PrayerWallError)
    async def handle_application_error(request: Request, exc: PrayerWallError):
        rid = request_id_var.get("")
        logger.error("[%s] Application error: %s | Context: %s", rid, exc.message, exc.context)
        return _error_response(500, "server_error", "Internal server error")

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again later.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="Prayer Warriors API",
        description=(
            "Anonymous prayer wall: devices post prayer requests, join them, "
            "pray, and complete them. Push notifications keep creators informed."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Executed in reverse order of addition: the last added runs first.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(topics.router)
    app.include_router(prayer_requests.router)
    app.include_router(maintenance.router)
    app.include_router(devices.router)
    app.include_router(notifications.router)

    return app


app = create_app()
