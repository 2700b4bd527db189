"""
FastAPI application factory and main app configuration.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .api.deps import get_ingest_gateway, get_session_registry
from .api.errors import APIError, status_for_domain_error
from .api.routers import consultations, health, stream
from .api.utils.responses import error_response
from .core.config import get_settings
from .core.exceptions import ExternalServiceError
from .core.structured_logger import configure_logging
from .domain.errors import DomainError
from .middleware.auth_middleware import AuthenticationMiddleware
from .observability.metrics import record_error
from .workers.session_reaper import run_session_reaper_forever

logger = logging.getLogger("clinicstream")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    configure_logging(settings.logging)
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.app_env}, debug: {settings.debug}")

    # Honour test overrides so the reaper sees the same registry as the routes
    registry = app.dependency_overrides.get(get_session_registry, get_session_registry)()
    gateway = app.dependency_overrides.get(get_ingest_gateway, get_ingest_gateway)()

    if not settings.asr.api_key:
        logger.warning("ASR_API_KEY not set: live transcription will fail until configured")
    if not (settings.openai.api_key or settings.azure_openai.is_configured):
        logger.warning("No language model configured: structuring will return MISSING_CREDENTIALS")

    reaper_task = None
    if settings.session.reaper_enabled:
        reaper_task = asyncio.create_task(
            run_session_reaper_forever(registry, gateway, settings.session), name="session-reaper"
        )
    logger.info("Application startup completed successfully")

    yield

    logger.info(f"Shutting down {settings.app_name}")
    if reaper_task is not None:
        reaper_task.cancel()
        await asyncio.gather(reaper_task, return_exceptions=True)
    for live in registry.list():
        if live.consultation_id in registry and not live.state.is_terminal:
            logger.warning(f"Aborting live session {live.consultation_id} on shutdown")
            await gateway.abort(live.consultation_id, reason="shutdown")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Live clinical consultation capture: streaming transcription and structured anamnesis",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.allowed_origins,
        allow_credentials=settings.cors.allow_credentials,
        allow_methods=settings.cors.allowed_methods,
        allow_headers=settings.cors.allowed_headers,
        max_age=600,
    )
    if settings.security.auth_enabled:
        app.add_middleware(AuthenticationMiddleware)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request.state.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        response = await call_next(request)
        response.headers["X-Request-ID"] = request.state.request_id
        return response

    app.include_router(health.router)
    app.include_router(consultations.router)
    app.include_router(stream.router)

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        status_code = status_for_domain_error(exc)
        if status_code >= 500:
            record_error("domain", exc.error_code)
            logger.error(f"DomainError: {exc.error_code} ({status_code}) {exc.message}")
        return error_response(request, status_code, exc.error_code or "DOMAIN_ERROR", exc.message, exc.details)

    @app.exception_handler(ValueError)
    async def validation_error_handler(request: Request, exc: ValueError):
        return error_response(request, 422, "VALIDATION_ERROR", str(exc))

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        logger.error(f"APIError: {exc.code} ({exc.http_status}) {exc.message}")
        return error_response(request, exc.http_status, exc.code, exc.message, exc.details)

    @app.exception_handler(ExternalServiceError)
    async def external_service_error_handler(request: Request, exc: ExternalServiceError):
        record_error("external_service", exc.service)
        logger.error(f"ExternalServiceError: {exc.message}")
        return error_response(request, 502, exc.error_code, exc.message, {"service": exc.service})

    @app.exception_handler(RequestValidationError)
    async def pydantic_error_handler(request: Request, exc: RequestValidationError):
        error_details = exc.errors()
        logger.warning(f"ValidationError on {request.method} {request.url.path}: {error_details}")
        error_messages = []
        for error in error_details:
            loc = " -> ".join(str(x) for x in error.get("loc", []))
            msg = error.get("msg", "Validation error")
            error_messages.append(f"{loc}: {msg}")
        return error_response(
            request,
            422,
            "INVALID_INPUT",
            f"Input validation failed: {'; '.join(error_messages)}",
            {"errors": [{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in error_details]},
        )

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error: {type(exc).__name__}: {exc}", exc_info=exc)
        record_error("unhandled", type(exc).__name__)
        return error_response(
            request, 500, "INTERNAL_ERROR", "An unexpected error has occurred. Please try again later."
        )

    @app.get("/", tags=["health"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.app_env,
            "status": "running",
            "docs": "/docs",
            "endpoints": {
                "health": "GET /health",
                "ready": "GET /health/ready",
                "stream": "WS /ws/consultations/{consultation_id}",
                "list_sessions": "GET /consultations/sessions",
                "get_session": "GET /consultations/{consultation_id}/session",
                "abort_session": "DELETE /consultations/{consultation_id}/session",
                "structure": "POST /consultations/structure",
            },
        }

    return app


# Create the app instance
app = create_app()
