"""
FastAPI application for the runtime manager.

Main entry point that configures the FastAPI app with:
- Service construction and startup (database, bundled version registration)
- Background session auto-initialization
- Route registration under /api/v1
- Domain error to HTTP status mapping
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import RuntimeConfig, load_runtime_config
from ..core.exceptions import (
    ChecksumMismatchError,
    MissingBinaryError,
    NetworkError,
    ProtectedVersionError,
    RuntimeManagerError,
    UnsupportedPlatformError,
    VersionNotFoundError,
)
from ..core.logging_config import setup_backend_logging
from ..services.container import ServiceContainer, build_services
from .routes import background_router, health_router, versions_router

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[RuntimeManagerError], int]] = [
    (VersionNotFoundError, 404),
    (ProtectedVersionError, 409),
    (MissingBinaryError, 409),
    (UnsupportedPlatformError, 400),
    (ChecksumMismatchError, 502),
    (NetworkError, 502),
]


def status_for_error(exc: RuntimeManagerError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def _build_lifespan(config: RuntimeConfig, services: Optional[ServiceContainer]):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Startup: build services, init the database, register the bundled
        version and start the background session.
        Shutdown: close the session and release connections.
        """
        logger.info("Starting runtime manager API...")
        container = services or build_services(config)
        await container.startup()
        logger.info("Database initialized")
        app.state.services = container

        init_task: Optional[asyncio.Task] = None
        if config.background_session.auto_init:
            init_task = asyncio.create_task(container.session.init())

        yield

        logger.info("Shutting down runtime manager API...")
        await container.session.close()
        if init_task is not None:
            await asyncio.gather(init_task, return_exceptions=True)
        await container.aclose()

    return lifespan


def create_app(
    config: Optional[RuntimeConfig] = None,
    services: Optional[ServiceContainer] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Configuration; loaded from runtime.yaml when omitted.
        services: Prebuilt services. When omitted they are built from
            config at startup.
        configure_logging: Install console and file log handlers.
    """
    if config is None:
        config = services.config if services else load_runtime_config()

    if configure_logging:
        setup_backend_logging(
            level=config.logging.level,
            log_dir=config.storage.logs_dir,
            log_file=config.logging.file,
        )

    app = FastAPI(
        title="Runtime Manager API",
        description="Runtime binary versions and the background utility session",
        version=__version__,
        lifespan=_build_lifespan(config, services),
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
    )

    app.include_router(health_router, prefix="/api/v1")
    app.include_router(versions_router, prefix="/api/v1")
    app.include_router(background_router, prefix="/api/v1")

    @app.exception_handler(RuntimeManagerError)
    async def runtime_manager_error_handler(
        request: Request, exc: RuntimeManagerError
    ) -> JSONResponse:
        """Convert domain errors to JSON responses with a matching status."""
        status_code = status_for_error(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(f"Unhandled exception during {request.method} {request.url}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app
