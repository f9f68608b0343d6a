"""FastAPI application for the Strata API.

This module creates and configures the main FastAPI application,
including logging, routers, middleware, CORS settings, and lifecycle events.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.store import ProjectNotFoundError

from .config import Settings, get_settings
from .dependencies import init_dependencies, shutdown_dependencies
from .middleware import RequestLoggingMiddleware, TimingMiddleware
from .routers import health_router, projects_router, webhooks_router

logger = structlog.get_logger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure structlog for the process.

    Args:
        settings: Application settings; ``log_level`` filters events and
            ``debug`` selects console rendering over JSON lines.
    """
    level = logging.getLevelNamesMapping().get(settings.log_level.upper(), logging.INFO)
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.debug
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Initializes the record store and pipeline on startup and drains
    in-flight work on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        None after startup is complete.
    """
    # Startup
    settings = get_settings()
    logger.info(
        "Starting Strata API",
        version=settings.app_version,
        debug=settings.debug,
    )

    try:
        await init_dependencies(settings)
        logger.info("Dependencies initialized successfully")
    except Exception as e:
        logger.error("Failed to initialize dependencies", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("Shutting down Strata API")
    await shutdown_dependencies()
    logger.info("Shutdown complete")


async def project_not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map ProjectNotFoundError to 404."""
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Strata API",
        description=(
            "Repository ingestion service. Indexes every file of a GitHub "
            "repository as a summary embedding, summarizes recent commits, "
            "and keeps both current through push and pull request webhooks."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add custom middleware
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(TimingMiddleware)

    app.add_exception_handler(ProjectNotFoundError, project_not_found_handler)

    # Health routes are at root level (/health)
    app.include_router(health_router)

    # API routes are prefixed with /api/v1
    app.include_router(projects_router, prefix=settings.api_prefix)
    app.include_router(webhooks_router, prefix=settings.api_prefix)

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Root endpoint returning API information."""
        return JSONResponse(
            content={
                "name": settings.app_name,
                "version": settings.app_version,
                "docs": "/docs",
                "health": "/health",
            }
        )

    return app


# Create the application instance
app = create_app()
