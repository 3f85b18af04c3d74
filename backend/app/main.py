"""
Affirmly Backend — FastAPI Application Factory
===============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() wires middleware, exception handlers, routes and the
       external collaborators (Stripe gateway, Firebase push, broadcaster).
Who:   uvicorn (`uvicorn app.main:app`) and the test suite.

Application Architecture:
    ┌─────────────────────────────────────────────────────────────┐
    │                        FastAPI App                          │
    │                                                             │
    │  Middleware:  RateLimit → RequestID → Logging → GZip → CORS │
    │                                                             │
    │  Routes:  /api/subscription/*   /api/notifications/*        │
    │           /api/admin/*          /health                     │
    │                                                             │
    │  app.state:  payment_gateway  push_service  broadcaster     │
    │              scheduler (only while the lifespan runs)       │
    └─────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging, config validation (logged, not fatal), scheduler start
    Shutdown: scheduler stop, engine dispose
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from app import __version__
from app.config import settings
from app.database import async_session_factory, dispose_engine
from app.exceptions import (
    AffirmlyError,
    AuthenticationError,
    AuthorizationError,
    DatabaseError,
    NotFoundError,
    RateLimitExceededError,
    SignatureVerificationError,
    UpstreamServiceError,
    ValidationError,
)
from app.middleware.logging import RequestLoggingMiddleware
from app.middleware.rate_limit import RateLimitMiddleware
from app.middleware.request_id import RequestIDMiddleware, request_id_var
from app.routes import admin, health, notifications, subscription
from app.services.affirmation_scheduler import AffirmationBroadcaster, BroadcastScheduler
from app.services.firebase_push import FirebasePushService
from app.services.stripe_gateway import StripePaymentGateway

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """Configure the root logger once; modules use logging.getLogger(__name__)."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Reduce noise from third-party libraries
    for name in ("uvicorn.access", "sqlalchemy.engine", "apscheduler", "stripe", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("Affirmly Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: health checks and the plan catalogue still work
        logger.error("Configuration error: %s", str(e))

    app.state.scheduler = None
    if settings.scheduler_enabled:
        scheduler = BroadcastScheduler(app.state.broadcaster)
        scheduler.start()
        app.state.scheduler = scheduler
    else:
        logger.info("Affirmation scheduler disabled (SCHEDULER_ENABLED=false)")

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Affirmly Backend shutting down...")
    if app.state.scheduler is not None:
        app.state.scheduler.shutdown()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(status_code: int, error: str, message: str, details=None, headers=None):
    body = {
        "success": False,
        "error": error,
        "message": message,
        "request_id": request_id_var.get(""),
    }
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the exception hierarchy to HTTP responses.

        ValidationError              → 400
        SignatureVerificationError   → 400
        AuthenticationError          → 401
        AuthorizationError           → settings.authorization_error_status
        NotFoundError                → 404
        RateLimitExceededError       → 429
        UpstreamServiceError         → 500
        DatabaseError                → 500
        AffirmlyError / Exception    → 500

    5xx bodies never carry exception context; it is logged instead.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "validation_error", exc.message, details=exc.context)

    @app.exception_handler(SignatureVerificationError)
    async def handle_signature_error(request: Request, exc: SignatureVerificationError):
        logger.warning("[%s] Webhook rejected: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "signature_verification_failed", exc.message)

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        return _error_response(
            401,
            "authentication_failed",
            exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(AuthorizationError)
    async def handle_authorization_error(request: Request, exc: AuthorizationError):
        logger.warning("[%s] Authorization denied: %s", request_id_var.get(""), exc.context)
        return _error_response(settings.authorization_error_status, "access_denied", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message)

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return _error_response(
            429,
            "rate_limit_exceeded",
            exc.message,
            details=exc.context,
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(UpstreamServiceError)
    async def handle_upstream_error(request: Request, exc: UpstreamServiceError):
        logger.error(
            "[%s] %s call failed: %s | Context: %s",
            request_id_var.get(""),
            exc.service,
            exc.message,
            exc.context,
        )
        return _error_response(500, f"{exc.service}_error", exc.message)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context
        )
        return _error_response(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(AffirmlyError)
    async def handle_application_error(request: Request, exc: AffirmlyError):
        logger.error("[%s] Unhandled application error: %s", request_id_var.get(""), exc.message)
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="Affirmly API",
        description="Subscriptions, push notifications and daily affirmations for the Affirmly apps.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Collaborators ─────────────────────────────────────────────────────
    # Built once per app; tests replace them through dependency_overrides
    app.state.payment_gateway = StripePaymentGateway()
    app.state.push_service = FirebasePushService()
    app.state.broadcaster = AffirmationBroadcaster(async_session_factory, app.state.push_service)
    app.state.scheduler = None

    # ── Middleware ────────────────────────────────────────────────────────
    # Executes in reverse order of addition: RequestID → RateLimit → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(subscription.router)
    app.include_router(notifications.router)
    app.include_router(admin.router)
    app.include_router(health.router)

    return app


app = create_app()
