"""FastAPI application entry point."""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from video_optimization import __version__
from video_optimization.core.config import ConfigurationError, Settings, load_settings
from video_optimization.core.logging import setup_logging
from video_optimization.core.metrics import set_app_info
from video_optimization.core.middleware import (
    CORSMiddleware,
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    TracingMiddleware,
)
from video_optimization.core.rate_limiter import RateLimiterRegistry
from video_optimization.core.storage import ObjectStore, StorageError, create_object_store
from video_optimization.core.tracing import setup_tracing, shutdown_tracing
from video_optimization.modules.objects import objects_router
from video_optimization.modules.system_monitoring import system_monitoring_router
from video_optimization.modules.transcoding import transcoding_router
from video_optimization.modules.transcoding.service import TranscodingService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    shutdown_tracing()


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ObjectStore] = None,
    transcoding_service: Optional[TranscodingService] = None,
    rate_limiter: Optional[RateLimiterRegistry] = None,
) -> FastAPI:
    """Build the application.

    Collaborators not passed in are constructed from ``settings``.

    Raises:
        ConfigurationError: if settings are not given and cannot be loaded
        StorageError: if the storage client cannot be constructed
    """
    if settings is None:
        settings = load_settings()

    setup_logging(
        level=settings.LOG_LEVEL,
        json_format=settings.is_production,
        include_stack_trace=True,
    )
    setup_tracing(
        service_name=settings.PROJECT_NAME,
        service_version=__version__,
        environment=settings.APP_ENV,
        enable_console_export=False,
    )
    set_app_info(version=__version__, environment=settings.APP_ENV)

    if store is None:
        store = create_object_store(settings)
    if transcoding_service is None:
        transcoding_service = TranscodingService.from_settings(settings, store)
    if rate_limiter is None:
        rate_limiter = RateLimiterRegistry(
            rate=settings.RATE_LIMIT_PER_SECOND,
            burst=settings.RATE_LIMIT_BURST,
        )

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=__version__,
        description="Re-encodes stored videos, generates thumbnails and deletes objects.",
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "transcoding", "description": "Video optimization and thumbnails"},
            {"name": "objects", "description": "Object deletion"},
            {"name": "system-monitoring", "description": "Health check and Prometheus metrics"},
        ],
    )
    app.state.settings = settings
    app.state.store = store
    app.state.transcoding_service = transcoding_service
    app.state.rate_limiter = rate_limiter

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning(
            "Invalid request body",
            extra={"path": request.url.path, "errors": str(exc.errors())},
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "Invalid request body"},
        )

    routers = (transcoding_router, objects_router, system_monitoring_router)
    for router in routers:
        app.include_router(router)
    known_paths = [route.path for router in routers for route in router.routes]

    # Added innermost first
    app.add_middleware(TracingMiddleware)
    app.add_middleware(RateLimitMiddleware, registry=rate_limiter)
    app.add_middleware(CORSMiddleware, allowed_origin=settings.SERVER_URL)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware, known_paths=known_paths)
    app.add_middleware(CorrelationIdMiddleware)

    return app


def run() -> None:
    """Console entry point: load settings and serve until interrupted."""
    try:
        settings = load_settings()
    except ConfigurationError as e:
        setup_logging(json_format=False)
        logger.error("Invalid configuration", extra={"missing": e.missing, "error": str(e)})
        sys.exit(1)

    try:
        app = create_app(settings)
    except StorageError as e:
        logger.error("Failed to initialize object storage", extra={"error": str(e)})
        sys.exit(1)

    logger.info(
        "Starting server",
        extra={"host": settings.HOST, "port": settings.PORT, "environment": settings.APP_ENV},
    )
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    run()
