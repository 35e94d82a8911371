"""
Database Infrastructure
=======================

Manages database connections, session lifecycle, and engine configuration.

Uses SQLAlchemy 2.0 async: asyncpg for PostgreSQL in production, aiosqlite
for local runs and tests.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncContextManager, AsyncGenerator, Callable, Optional

from sqlalchemy import DateTime
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from municipal_ticketing.config import settings
from municipal_ticketing.core.exceptions import ConflictError, ExternalDependencyError
from municipal_ticketing.shared.clock import ensure_utc


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    SQLAlchemy 2.0 style using DeclarativeBase.
    All models inherit from this class.
    """
    pass


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column that always round-trips as UTC.

    SQLite drops tzinfo on storage, so values are stored as naive UTC and
    re-tagged on load. Comparisons against bound parameters go through the
    same conversion.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        value = ensure_utc(value)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        return ensure_utc(value)

    def load_dialect_impl(self, dialect):
        return dialect.type_descriptor(DateTime(timezone=dialect.name != "sqlite"))


SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]

# Global engine and session maker
_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Get the database engine.

    Raises:
        RuntimeError: If engine has not been initialized
    """
    if _engine is None:
        raise RuntimeError("Database engine not initialized. Call init_database() first.")
    return _engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session maker with the engine-wide session settings."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading after commit
        autoflush=False,
    )


def init_database(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Initialize the database engine and session maker.

    Should be called during application startup.
    """
    global _engine, _session_maker

    database_url = database_url or settings.database_url
    if database_url.startswith("sqlite"):
        _engine = create_async_engine(database_url, echo=settings.debug)
    else:
        _engine = create_async_engine(
            database_url,
            echo=settings.debug,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,  # Verify connections before using
        )

    _session_maker = create_session_maker(_engine)
    return _engine


async def close_database() -> None:
    """
    Close the database engine and dispose of connections.

    Should be called during application shutdown.
    """
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None


@asynccontextmanager
async def session_scope(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    One transaction: commits when the block exits cleanly, rolls back otherwise.

    Store failures surface as ``ExternalDependencyError``. A unique-index
    violation or a locked SQLite database means a competing writer and
    surfaces as ``ConflictError``.

    Usage:
        async with session_scope(maker) as session:
            await session.execute(...)
    """
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            raise ConflictError(
                "Concurrent write rejected by the store",
                details={"error": str(e.orig)}
            ) from e
        except OperationalError as e:
            await session.rollback()
            if "locked" in str(e.orig).lower():
                raise ConflictError("Ticket store is locked by another writer") from e
            raise ExternalDependencyError(
                "ticket_store", "store operation failed", details={"error": str(e.orig)}
            ) from e
        except SQLAlchemyError as e:
            await session.rollback()
            raise ExternalDependencyError(
                "ticket_store", "store operation failed", details={"error": str(e)}
            ) from e
        except Exception:
            await session.rollback()
            raise


def get_session_context() -> AsyncContextManager[AsyncSession]:
    """
    Async context manager for database sessions bound to the global engine.

    For use in services, background tasks and scripts.
    """
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return session_scope(_session_maker)


async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
    """
    Create all database tables.

    This should only be used for development/testing.
    Production should use migrations.
    """
    # Register every model on the metadata before create_all
    from municipal_ticketing.tickets.infrastructure import models as _ticket_models  # noqa: F401
    from municipal_ticketing.assignment.infrastructure import models as _staff_models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
