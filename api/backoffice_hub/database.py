# backoffice_hub/database.py
"""
Embedded database connection for Backoffice Hub.

Uses SQLAlchemy 2.0 async with the aiosqlite driver. One process, one
database file; the request transaction is the only concurrency guard.
"""
from __future__ import annotations
from typing import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool
from sqlalchemy import event, text

from backoffice_hub.settings import settings

# ============================================================================
# Base class for all ORM models
# ============================================================================

class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


# ============================================================================
# Engine and Session Factory
# ============================================================================

_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_database_url() -> str:
    """Build async database URL from settings."""
    if settings.DATABASE_URL:
        return settings.DATABASE_URL
    root = settings.BACKOFFICE_DATA_ROOT.expanduser()
    root.mkdir(parents=True, exist_ok=True)
    return f"sqlite+aiosqlite:///{(root / 'backoffice.db').as_posix()}"


def _install_sqlite_hooks(engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy own BEGIN/SAVEPOINT on SQLite.

    The sqlite3 module issues its own BEGIN lazily, which breaks nested
    transactions; per-item side effects rely on SAVEPOINT working.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; SQLite engines get transaction hooks."""
    kwargs = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    engine = create_async_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        _install_sqlite_hooks(engine)
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables from ORM metadata (new installs)."""
    # Register models on Base.metadata
    from backoffice_hub import db_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """Initialize database engine and session factory."""
    global _engine, _async_session_factory

    if _engine is not None:
        return  # Already initialized

    _engine = build_engine(get_database_url(), echo=settings.DB_ECHO)
    _async_session_factory = build_session_factory(_engine)
    await create_schema(_engine)


async def close_db() -> None:
    """Close database connections."""
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for FastAPI - provides database session.

    The whole request is one transaction: committed on success,
    rolled back on any exception.
    """
    if _async_session_factory is None:
        await init_db()

    async with _async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database session (for use outside FastAPI).

    Usage:
        async with get_session_context() as db:
            await PurchaseOrderService(db).create(...)
    """
    if _async_session_factory is None:
        await init_db()

    async with _async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ============================================================================
# Health Check
# ============================================================================

async def check_db_health() -> dict:
    """Check database connectivity and return status."""
    try:
        async with get_session_context() as db:
            result = await db.execute(text("SELECT 1"))
            result.scalar()
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        return {"status": "unhealthy", "database": "disconnected", "error": str(e)}
