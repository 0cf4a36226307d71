"""FastAPI application for LQS.

Exposes the batch entry points and the manual review queue over HTTP.
"""

from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession

from . import __version__
from .api import APIError, register_exception_handlers
from .api.ingestion import router as ingestion_router
from .api.reviews import router as reviews_router
from .config import get_settings
from .db import close_db, get_session_factory, verify_storage
from .exceptions import StorageError
from .logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    settings = get_settings()
    logger.info(
        "Starting LQS API",
        extra={"environment": settings.environment},
    )

    yield

    logger.info("Shutting down LQS API")
    if app.state.owns_database:
        await close_db()


def create_app(
    session_factory: Callable[[], AsyncSession] | None = None,
    configure_logging: bool = True,
) -> FastAPI:
    """Build the API application.

    Args:
        session_factory: Session factory for all requests (defaults to the shared one)
        configure_logging: Install the JSON/text log handler

    Returns:
        Configured FastAPI app
    """
    if configure_logging:
        setup_logging()
    settings = get_settings()

    app = FastAPI(
        title="LQS API",
        description="Lead-Quote-Sale household matching engine",
        version=__version__,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )
    app.state.owns_database = session_factory is None
    app.state.session_factory = session_factory or get_session_factory()

    register_exception_handlers(app)
    app.include_router(ingestion_router, prefix="/api/v1", tags=["Ingestion"])
    app.include_router(reviews_router, prefix="/api/v1", tags=["Reviews"])

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Basic health check endpoint."""
        return {"status": "healthy", "service": "lqs-api"}

    @app.get("/health/ready", tags=["Health"])
    async def readiness_check():
        """Readiness check that verifies the database schema is reachable."""
        try:
            await verify_storage(app.state.session_factory)
        except StorageError as e:
            raise APIError(503, "STORAGE_UNAVAILABLE", e.message)
        return {"status": "ready", "database": "healthy"}

    return app
