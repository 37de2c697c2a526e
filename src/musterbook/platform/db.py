"""
SQLAlchemy 2.0 Database Configuration

Async engine, session factory and declarative base shared by the billing tables.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from urllib.parse import quote_plus

import structlog
from sqlalchemy import DateTime, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from musterbook.platform.settings import settings

logger = structlog.get_logger(__name__)

# ==========================================
# Database URLs from settings
# ==========================================


def get_database_url() -> str:
    """Get the async database URL from settings."""
    if settings.database.url:
        url = settings.database.url
    elif (settings.is_development or settings.is_testing) and not settings.database.password:
        # In development, use SQLite if PostgreSQL is not configured
        url = "sqlite:///./musterbook_dev.sqlite"
    else:
        username = quote_plus(settings.database.username)
        password = quote_plus(settings.database.password) if settings.database.password else ""
        url = (
            f"postgresql://{username}:{password}"
            f"@{settings.database.host}:{settings.database.port}/{settings.database.database}"
        )

    # Convert to async driver
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


# ==========================================
# SQLAlchemy 2.0 Declarative Base
# ==========================================


class Base(DeclarativeBase):
    """Base class for all database models using SQLAlchemy 2.0 declarative mapping."""

    pass


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored and returned in UTC.

    SQLite keeps no offset, so values read back from it are naive; they are
    tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            return value.astimezone(UTC)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class TimestampMixin:
    """Adds created_at and updated_at timestamps to models."""

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )


# ==========================================
# Engine and Session Management
# ==========================================

_async_engine: AsyncEngine | None = None
_async_session_maker: async_sessionmaker[AsyncSession] | None = None


def create_engine_for_url(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine, applying pool options only where the driver supports them."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.database.echo, **kwargs)
    return create_async_engine(
        url,
        echo=settings.database.echo,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
        pool_timeout=settings.database.pool_timeout,
        pool_recycle=settings.database.pool_recycle,
        pool_pre_ping=settings.database.pool_pre_ping,
        **kwargs,
    )


def get_async_engine() -> AsyncEngine:
    """Get or create the asynchronous engine."""
    global _async_engine
    if _async_engine is None:
        _async_engine = create_engine_for_url(get_database_url())
    return _async_engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory bound to the global engine."""
    global _async_session_maker
    if _async_session_maker is None:
        _async_session_maker = async_sessionmaker(
            autoflush=False,
            bind=get_async_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_maker


def configure_session_maker(session_maker: async_sessionmaker[AsyncSession] | None) -> None:
    """Override the session factory (tests bind it to a throwaway engine)."""
    global _async_session_maker
    _async_session_maker = session_maker


@asynccontextmanager
async def get_async_db() -> AsyncIterator[AsyncSession]:
    """Get an asynchronous database session that commits on success."""
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_async_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency for getting an async database session."""
    async with get_session_maker()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


# ==========================================
# Database Initialization
# ==========================================


async def create_all_tables(engine: AsyncEngine | None = None) -> None:
    """Create all tables in the database."""
    # Register the billing tables on Base.metadata
    from musterbook.platform.billing import models  # noqa: F401

    engine = engine or get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_database_health() -> bool:
    """Check if the database is accessible."""
    try:
        async with get_async_db() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database health check failed", error=str(e))
        return False


__all__ = [
    "Base",
    "TimestampMixin",
    "UTCDateTime",
    "get_database_url",
    "get_async_engine",
    "get_session_maker",
    "configure_session_maker",
    "get_async_db",
    "get_async_session",
    "create_all_tables",
    "check_database_health",
]
