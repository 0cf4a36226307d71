"""Database connection management for LQS.

Provides the declarative base, a lazily created async engine and
session factory, and schema/health helpers.
"""

from sqlalchemy import MetaData, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from .config import get_settings
from .exceptions import StorageError

# =========================
# SQLAlchemy Setup
# =========================

# Naming convention for constraints (improves migration compatibility)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    metadata = MetaData(naming_convention=convention)


# Engine and session factory (lazy initialization)
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, sizing the pool only for server databases."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        echo=echo,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
    )


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """Get or create the async SQLAlchemy engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine_for_url(settings.database_url, echo=settings.database_echo)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory(get_engine())
    return _session_factory


# =========================
# Schema & Health
# =========================


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create all tables that do not exist yet."""
    # Register the ORM tables on Base.metadata
    from .models import tables  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def verify_storage(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> None:
    """Check connectivity and that the LQS schema is in place.

    Raises:
        StorageError: If the database is unreachable or the tables are missing
    """
    from .models.tables import Household, ManualReviewCase, Quote, Sale

    factory = session_factory or get_session_factory()
    try:
        async with factory() as session:
            await session.execute(text("SELECT 1"))
            for table in (Household, Quote, Sale, ManualReviewCase):
                await session.execute(select(table.id).limit(1))
    except SQLAlchemyError as e:
        raise StorageError(f"Storage unavailable: {e}", original=e) from e


# =========================
# Cleanup
# =========================


async def close_db() -> None:
    """Dispose of the engine (for shutdown)."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
    _session_factory = None
