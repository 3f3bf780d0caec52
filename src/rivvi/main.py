"""
FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable
from uuid import uuid4

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rivvi.ai.models import LLMError
from rivvi.ai.openai_adapter import get_llm_gateway
from rivvi.ai.router import router as ai_router
from rivvi.analytics.router import router as analytics_router
from rivvi.calls.router import router as calls_router
from rivvi.campaigns.router import admin_router as campaigns_admin_router
from rivvi.campaigns.router import router as campaigns_router
from rivvi.config import get_settings
from rivvi.identity.router import router as identity_router
from rivvi.organizations.router import router as organizations_router
from rivvi.patients.router import router as patients_router
from rivvi.realtime.publisher import get_realtime_publisher
from rivvi.runs.dispatcher import DispatcherLoop
from rivvi.runs.router import campaign_runs_router
from rivvi.runs.router import router as runs_router
from rivvi.shared.database import get_database_manager
from rivvi.shared.exceptions import AppException
from rivvi.shared.logging import correlation_id_var, get_logger, setup_logging
from rivvi.telephony.factory import get_telephony_provider
from rivvi.telephony.interface import TelephonyProviderError
from rivvi.telephony.webhooks.router import router as retell_webhooks_router

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()

    logger.info("Application starting", extra={"env": settings.app_env})

    dispatcher: DispatcherLoop | None = None
    if settings.dispatcher_enabled:
        dispatcher = DispatcherLoop(settings.dispatcher_interval_seconds)
        await dispatcher.start()
        app.state.dispatcher = dispatcher

    yield

    logger.info("Shutting down application")

    if dispatcher is not None:
        await dispatcher.stop()

    await get_telephony_provider().close()
    await get_realtime_publisher().close()
    await get_llm_gateway().close()
    await get_database_manager().close()
    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Rivvi API",
        description="AI voice-agent outreach campaigns for healthcare organizations",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    @app.exception_handler(AppException)
    async def _app_exception(_: Request, exc: AppException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})

    @app.exception_handler(TelephonyProviderError)
    async def _telephony_error(_: Request, exc: TelephonyProviderError) -> JSONResponse:
        logger.error("Voice provider error", extra={"error": exc.message, "error_code": exc.error_code})
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "detail": {
                    "code": exc.error_code or "TELEPHONY_PROVIDER_ERROR",
                    "message": exc.message,
                    "details": {},
                }
            },
        )

    @app.exception_handler(LLMError)
    async def _llm_error(_: Request, exc: LLMError) -> JSONResponse:
        logger.error("LLM provider error", extra={"error": exc.message})
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": {"code": "LLM_PROVIDER_ERROR", "message": exc.message, "details": {}}},
        )

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
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

    @app.middleware("http")
    async def correlation_id_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid4())
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(organizations_router)
    app.include_router(patients_router)
    app.include_router(campaigns_router)
    app.include_router(campaigns_admin_router)
    app.include_router(campaign_runs_router)
    app.include_router(runs_router)
    app.include_router(calls_router)
    app.include_router(analytics_router)
    app.include_router(ai_router)
    app.include_router(retell_webhooks_router)
    app.include_router(identity_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
