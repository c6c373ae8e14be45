"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from prescreen.api.middleware import (
    AuthenticationMiddleware,
    ErrorHandlingMiddleware,
    ObservabilityMiddleware,
    RequestContextMiddleware,
    RequestLoggingMiddleware,
)
from prescreen.api.middleware.errors import error_response
from prescreen.api.routers import health_router, v1_router
from prescreen.api.schemas.errors import ErrorCode
from prescreen.bureau import BureauGatewayClient, TokenCache
from prescreen.compliance import FirmOfferTracker
from prescreen.config.settings import Settings, get_settings
from prescreen.config.validation import validate_or_raise
from prescreen.core.audit import AuditLogger
from prescreen.core.encryption import encryptor_from_settings
from prescreen.core.logging import setup_logging
from prescreen.db.config import close_db, create_engine, create_session_factory, init_db
from prescreen.leads import LeadService
from prescreen.programs import ProgramService
from prescreen.screening import BatchOrchestrator, MissingBureauFiller, RetryQueueManager

logger = structlog.get_logger("prescreen.api")


def create_app(
    settings: Settings | None = None,
    *,
    gateway_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    This is the application factory that assembles all components:
    - Engine, session factory and services (stored on ``app.state``)
    - Middleware (in correct order)
    - Routers
    - Lifespan management

    Args:
        settings: Optional settings override (useful for testing)
        gateway_transport: Optional httpx transport for the bureau gateway
            (useful for testing)

    Returns:
        Configured FastAPI application

    Example:
        # Production
        app = create_app()

        # Run with uvicorn
        uvicorn prescreen.api.app:create_app --factory
    """
    if settings is None:
        settings = get_settings()

    setup_logging(settings.log_level, json_format=settings.ENVIRONMENT == "production")
    validate_or_raise(settings)

    app = FastAPI(
        title="Prescreen API",
        description="Credit prescreen engine admin API",
        version="0.1.0",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=_lifespan,
    )

    app.state.settings = settings
    _configure_services(app, settings, gateway_transport)
    _configure_middleware(app, settings)
    _configure_routers(app)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)

    return app


def _configure_services(
    app: FastAPI,
    settings: Settings,
    gateway_transport: httpx.AsyncBaseTransport | None,
) -> None:
    """Wire the engine, gateway client and services onto ``app.state``.

    One token cache and one gateway client serve the whole process.
    """
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    encryptor = encryptor_from_settings(settings)
    audit = AuditLogger(session_factory)

    bureau_config = settings.get_bureau_config()
    gateway = BureauGatewayClient(
        bureau_config,
        token_cache=TokenCache(bureau_config.token_refresh_buffer_seconds),
        transport=gateway_transport,
    )
    orchestrator = BatchOrchestrator(
        session_factory,
        gateway,
        encryptor,
        audit,
        lease_seconds=settings.BATCH_LEASE_SECONDS,
    )

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.audit_logger = audit
    app.state.gateway = gateway
    app.state.orchestrator = orchestrator
    app.state.retry_queue = RetryQueueManager(session_factory, orchestrator)
    app.state.bureau_filler = MissingBureauFiller(session_factory, gateway, encryptor, audit)
    app.state.lead_service = LeadService(session_factory, encryptor, audit)
    app.state.firm_offer_tracker = FirmOfferTracker(session_factory, audit)
    app.state.program_service = ProgramService(session_factory, gateway, audit)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Verifies the database on startup; on shutdown drains pending audit
    writes before closing the gateway client and the engine.
    """
    logger.info("api_starting", environment=app.state.settings.ENVIRONMENT)
    await init_db(app.state.engine)

    yield

    logger.info("api_stopping", pending_audit_writes=app.state.audit_logger.pending_count)
    await app.state.audit_logger.wait_idle()
    await app.state.gateway.aclose()
    await close_db(app.state.engine)


def _configure_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure middleware stack.

    Middleware order (outermost to innermost execution):
    1. ObservabilityMiddleware - Records HTTP metrics
    2. RequestLoggingMiddleware - Logs all requests
    3. ErrorHandlingMiddleware - Converts exceptions to HTTP responses
    4. CORSMiddleware - Handles CORS (if configured)
    5. AuthenticationMiddleware - Validates Bearer token and caller headers
    6. RequestContextMiddleware - Sets ContextVar for request context

    Note: Middleware is added in reverse order because Starlette
    processes them from last-added to first-added.
    """
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(AuthenticationMiddleware)

    if settings.CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ObservabilityMiddleware)


def _configure_routers(app: FastAPI) -> None:
    # Health check endpoints (no prefix - at root level)
    app.include_router(health_router)
    app.include_router(v1_router)


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request-shape errors in the APIError format.

    Input values are dropped from the error list; they may contain an SSN.
    """
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    return error_response(
        request,
        422,
        ErrorCode.VALIDATION_ERROR.value,
        "Request validation failed",
        {"errors": errors},
    )
