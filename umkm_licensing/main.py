# ==== UMKM LICENSING MAIN APPLICATION MODULE ==== #

"""
Main FastAPI application for the UMKM licensing core.

This module provides the application factory with lifespan management,
correlation middleware, observability wiring and the mapping of licensing
errors onto HTTP responses.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional, Type

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from umkm_licensing import __version__
from umkm_licensing.dependencies import LicensingServices, build_default_services
from umkm_licensing.errors import (
    CapacityError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    LicensingError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from umkm_licensing.middleware.correlation import CorrelationMiddleware
from umkm_licensing.observability.logging import get_logger, init_logging
from umkm_licensing.observability.metrics import init_metrics, metrics_router
from umkm_licensing.observability.tracing import init_tracing
from umkm_licensing.routes import health, licenses
from umkm_licensing.settings import settings


logger = get_logger(__name__)


# (status code, error title) per licensing error type
ERROR_RESPONSES: Dict[Type[LicensingError], tuple[int, str]] = {
    ValidationError: (422, "Validation error"),
    InvalidTransitionError: (409, "Invalid transition"),
    CapacityError: (409, "Reviewer capacity exceeded"),
    ConflictError: (409, "Conflict"),
    NotFoundError: (404, "Not found"),
    ForbiddenError: (403, "Forbidden"),
    StoreError: (503, "Store unavailable"),
}


# ==== APPLICATION LIFECYCLE MANAGEMENT ==== #


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager for startup and shutdown operations.

    Builds database/Redis backed services unless the factory was handed
    ready-made ones, and releases connections on shutdown.
    """
    # --► STARTUP SEQUENCE
    init_logging(settings.LOG_LEVEL, settings.LOG_TO_FILES)
    init_tracing(
        settings.SERVICE_NAME,
        settings.OTEL_EXPORTER_OTLP_ENDPOINT,
        settings.OTEL_EXPORTER_OTLP_HEADERS,
    )

    owns_backends = app.state.services is None
    if owns_backends:
        app.state.services = build_default_services(settings)

    logger.info("Licensing service started", environment=settings.APP_ENV)

    yield

    # --► SHUTDOWN SEQUENCE
    await app.state.services.notifications.drain()
    if owns_backends:
        from umkm_licensing.storage.db import close_database
        from umkm_licensing.storage.redis import close_redis_client

        await close_database()
        await close_redis_client()


# ==== APPLICATION FACTORY ==== #


def create_app(services: Optional[LicensingServices] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        services (Optional[LicensingServices]): Pre-built services; when
            omitted they are built from settings at startup

    Returns:
        FastAPI: Configured application instance
    """
    app = FastAPI(
        title="UMKM Licensing",
        description="License application workflow for Indonesian small businesses",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.APP_ENV == "dev" else None,
        redoc_url="/redoc" if settings.APP_ENV == "dev" else None
    )
    app.state.services = services

    # --► OBSERVABILITY INITIALIZATION
    init_metrics(app)

    # --► MIDDLEWARE STACK CONFIGURATION
    app.add_middleware(CorrelationMiddleware)

    # --► ROUTER REGISTRATION
    app.include_router(metrics_router, prefix="", tags=["monitoring"])
    app.include_router(health.router, prefix="", tags=["health"])
    app.include_router(licenses.router, prefix="/api/licenses", tags=["licenses"])

    # --► EXCEPTION HANDLERS
    _register_exception_handlers(app)

    # --► OPENTELEMETRY INSTRUMENTATION
    FastAPIInstrumentor.instrument_app(app)

    return app


# ==== EXCEPTION HANDLERS ==== #


def _error_response(request: Request, status_code: int, title: str, details: dict) -> JSONResponse:
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    return JSONResponse(
        status_code=status_code,
        content={"error": title, "correlation_id": correlation_id, **details},
    )


def _register_exception_handlers(app: FastAPI) -> None:
    """Map licensing errors onto status codes with a consistent body."""

    @app.exception_handler(LicensingError)
    async def licensing_error_handler(request: Request, exc: LicensingError) -> JSONResponse:
        status_code, title = 500, "Licensing error"
        for error_type, response in ERROR_RESPONSES.items():
            if isinstance(exc, error_type):
                status_code, title = response
                break

        if status_code >= 500:
            logger.error("Request failed", path=request.url.path, code=exc.code, error=exc.message)
        else:
            logger.info("Request rejected", path=request.url.path, code=exc.code, error=exc.message)

        return _error_response(request, status_code, title, exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error", path=request.url.path, error_type=type(exc).__name__)
        return _error_response(request, 500, "Internal server error", {
            "message": "An unexpected error occurred",
            "code": "INTERNAL_ERROR",
        })


def run() -> None:
    """Console entry point serving the app with uvicorn."""
    uvicorn.run(
        "umkm_licensing.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level=settings.LOG_LEVEL.lower(),
    )
