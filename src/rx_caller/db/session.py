"""Database Session Management for rx-caller.

Provides:
- Async SQLAlchemy engine creation
- AsyncSession factory with dependency injection
- Database initialization and table creation
- Transaction context manager
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from rx_caller.config import get_settings
from rx_caller.db.base import Base


# Global engine and session factory (initialized lazily)
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy own BEGIN so SAVEPOINTs work on pysqlite/aiosqlite."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def _build_engine(url: str, echo: bool = False) -> AsyncEngine:
    if "sqlite" in url:
        engine = create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )
        _enable_sqlite_savepoints(engine)
        return engine

    return create_async_engine(
        url,
        echo=echo,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
    )


def get_engine() -> AsyncEngine:
    """Get or create the async database engine.

    Returns:
        AsyncEngine instance configured from settings.
    """
    global _engine

    if _engine is None:
        settings = get_settings()

        # Ensure data directory exists
        db_url = settings.database.url
        if "sqlite" in db_url and "///" in db_url:
            db_path = db_url.split("///")[1]
            if db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        _engine = _build_engine(db_url, echo=settings.database.echo)

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _session_factory

    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions.

    Yields:
        AsyncSession that is automatically committed/rolled back.
    """
    session_factory = get_session_factory()

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for database sessions outside of FastAPI.

    Use this for background tasks and CLI commands.

    Usage:
        async with get_db_context() as db:
            result = await db.execute(select(Model))
    """
    session_factory = get_session_factory()

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Initialize database and create all tables.

    Safe to call multiple times.
    """
    # Import all models to register them with Base.metadata
    from rx_caller.db.models import (  # noqa: F401
        CallAttemptModel,
        CallLogModel,
        CallModel,
        PatientModel,
        ScheduledCallModel,
    )

    engine = get_engine()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections.

    Call this during application shutdown.
    """
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


# Testing utilities
async def create_test_engine(url: str = "sqlite+aiosqlite:///:memory:") -> AsyncEngine:
    """Create a test database engine with all tables created.

    Args:
        url: Database URL (default: in-memory SQLite)
    """
    from rx_caller.db import models  # noqa: F401

    engine = _build_engine(url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return engine


def get_test_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to a test engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
