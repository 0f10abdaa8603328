"""
FastAPI application entry point.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dialer.agents.router import router as agents_router
from dialer.calls.bridge import CallBridge
from dialer.calls.reaper import run_reaper_loop
from dialer.calls.router import router as calls_router
from dialer.config import get_settings
from dialer.contacts.router import router as contacts_router
from dialer.events.publisher import close_event_publisher, get_event_publisher
from dialer.shared.database import get_database_manager
from dialer.shared.exceptions import (
    ConflictError,
    NotFoundError,
    ServiceUnavailableError,
    ValidationError,
)
from dialer.shared.logging import get_logger, setup_logging
from dialer.shared.middleware import CorrelationIdMiddleware
from dialer.telephony.factory import get_telephony_config, get_telephony_provider
from dialer.telephony.interface import TelephonyProviderError
from dialer.telephony.webhooks.router import router as telephony_webhooks_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()
    db_manager = get_database_manager()

    logger.info("Application starting", extra={"env": settings.app_env})

    if settings.database_auto_create:
        await db_manager.create_all()
        logger.info("Database tables ensured")

    reaper_task: asyncio.Task[None] | None = None
    if settings.reaper_enabled:
        provider = get_telephony_provider()
        reaper_task = asyncio.create_task(
            run_reaper_loop(
                db_manager,
                interval_seconds=settings.reaper_interval_seconds,
                stale_after_minutes=settings.stale_call_minutes,
                publisher=get_event_publisher(),
                bridge=CallBridge(provider, get_telephony_config()),
            )
        )
        app.state.reaper_task = reaper_task
        logger.info("Reaper enabled; background task created")

    yield

    logger.info("Shutting down application")

    if reaper_task is not None:
        reaper_task.cancel()
        try:
            await reaper_task
        except asyncio.CancelledError:
            pass
        logger.info("Reaper background task stopped")

    await close_event_publisher()

    provider_close = getattr(get_telephony_provider(), "close", None)
    if callable(provider_close):
        provider_close()

    await db_manager.close()
    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Predictive Dialer API",
        description="Predictive outbound dialer with answering machine detection",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Map domain exceptions to HTTP responses
    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def _validation(_: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ConflictError)
    async def _conflict(_: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ServiceUnavailableError)
    async def _unavailable(_: Request, exc: ServiceUnavailableError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(TelephonyProviderError)
    async def _provider_error(_: Request, exc: TelephonyProviderError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": {"code": exc.error_code, "message": str(exc)}},
        )

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(calls_router)
    app.include_router(agents_router)
    app.include_router(contacts_router)
    app.include_router(telephony_webhooks_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
