# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Lifecycle database connection management using SQLAlchemy async.

This module owns the engine and sessionmaker for the lifecycle record
store: student records, promotion batches, overrides, archive entries,
the audit log and the notification outbox.

Uses SQLAlchemy 2.0 async API (asyncpg in deployment, aiosqlite in tests).

Example:
    from src.infrastructure.database.connection import (
        init_lifecycle_database,
        get_lifecycle_session,
    )

    # Initialize at application startup
    await init_lifecycle_database(settings)

    # Use in request handlers
    async with get_lifecycle_session() as session:
        result = await session.execute(select(PromotionBatch))
        batches = result.scalars().all()
"""

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.infrastructure.database.models import Base

if TYPE_CHECKING:
    from src.core.config.settings import DatabaseSettings, Settings

# Module-level state for the lifecycle database connection
_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


class DatabaseError(Exception):
    """Base exception for database operations.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying SQLAlchemy or database error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        """Initialize the database error.

        Args:
            message: Human-readable error description.
            original_error: The underlying exception that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


def create_engine_from_settings(db_settings: "DatabaseSettings") -> AsyncEngine:
    """Build an async engine for the configured URL.

    Pool sizing only applies to server databases; SQLite picks its own pool.

    Args:
        db_settings: Database settings.

    Returns:
        A new AsyncEngine.
    """
    kwargs: dict[str, Any] = {"echo": db_settings.echo}
    if not db_settings.is_sqlite:
        kwargs.update(
            pool_size=db_settings.pool_size,
            max_overflow=db_settings.max_overflow,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
    return create_async_engine(db_settings.url, **kwargs)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the sessionmaker used by every lifecycle service.

    Objects stay loaded after commit so services can build responses
    without another round trip.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create any missing lifecycle tables.

    Args:
        engine: Engine to create the tables on.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_lifecycle_database(settings: "Settings") -> None:
    """Initialize the lifecycle database connection pool.

    This should be called once at application startup.

    Args:
        settings: Application settings containing database configuration.

    Raises:
        DatabaseError: If connection pool creation fails.
    """
    global _engine, _sessionmaker

    try:
        _engine = create_engine_from_settings(settings.database)
        _sessionmaker = create_sessionmaker(_engine)
        if settings.database.create_schema:
            await create_schema(_engine)
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to initialize lifecycle database connection", e) from e


async def close_lifecycle_database() -> None:
    """Close the lifecycle database connection pool.

    This should be called at application shutdown.
    """
    global _engine, _sessionmaker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _sessionmaker = None


def get_lifecycle_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Get the lifecycle database sessionmaker.

    Returns:
        The SQLAlchemy async sessionmaker.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _sessionmaker is None:
        raise DatabaseError(
            "Lifecycle database not initialized. Call init_lifecycle_database() first."
        )
    return _sessionmaker


@asynccontextmanager
async def get_lifecycle_session() -> AsyncIterator[AsyncSession]:
    """Get an async session for the lifecycle database.

    Services commit their own units of work; anything still pending when
    the block exits is committed, and the session is rolled back on error.

    Yields:
        AsyncSession for database operations.

    Raises:
        DatabaseError: If the database has not been initialized or
            if a database operation fails.
    """
    sessionmaker = get_lifecycle_sessionmaker()

    async with sessionmaker() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            raise DatabaseError("Database operation failed", e) from e
        except Exception:
            await session.rollback()
            raise


async def check_lifecycle_database_connection() -> bool:
    """Check if the lifecycle database is reachable.

    Returns:
        True if the database is reachable, False otherwise.
    """
    if _engine is None:
        return False

    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False
