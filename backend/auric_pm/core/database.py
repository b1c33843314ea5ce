"""
Auric PM - Database Connection
==============================

Async SQLAlchemy setup with connection pooling.

SQLite is the default store. Its connections are switched to explicit
transaction control so every session transaction starts with
``BEGIN <SQLITE_BEGIN_MODE>``; together with ``PRAGMA foreign_keys=ON`` this
gives cascading deletes and serialised writers across processes.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from auric_pm.core.config import settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# ==========================================================================
# Engine Setup
# ==========================================================================

def configure_sqlite(engine: AsyncEngine, begin_mode: str = settings.SQLITE_BEGIN_MODE) -> None:
    """
    Install SQLite connection hooks on an async engine.

    The pysqlite driver's own transaction handling is disabled so that
    SQLAlchemy's "begin" event can emit the BEGIN statement itself.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql(f"BEGIN {begin_mode}")


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create async database engine with connection pooling."""
    url = database_url or settings.DATABASE_URL

    # SQLite doesn't support pool_size/max_overflow
    if "sqlite" in url:
        engine = create_async_engine(
            url,
            echo=settings.DATABASE_ECHO,
            connect_args={"check_same_thread": False},
        )
        configure_sqlite(engine)
        return engine

    return create_async_engine(
        url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        echo=settings.DATABASE_ECHO,
        pool_pre_ping=True,  # Verify connections before use
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine, shared by the API, MCP server and tests."""
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_engine()


# ==========================================================================
# Session Factory
# ==========================================================================

AsyncSessionLocal = create_session_factory(engine)


# ==========================================================================
# Session Dependencies
# ==========================================================================

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session.

    Usage:
        @router.get("/epics")
        async def list_epics(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_db_session(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions.

    Usage:
        async with get_db_session() as session:
            ...
    """
    factory = session_factory or AsyncSessionLocal
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Run a block as a single transaction on ``session``.

    Commits when the block finishes and rolls back on any exception, so a
    multi-statement write is either fully visible or not at all.
    """
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise


# ==========================================================================
# Lifecycle
# ==========================================================================

def _ensure_sqlite_dir(bind: AsyncEngine) -> None:
    url = bind.url
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Initialize database (create tables if not exist)."""
    bind = bind or engine
    _ensure_sqlite_dir(bind)
    async with bind.begin() as conn:
        # Import all models to register them
        from auric_pm.core import models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)


async def close_db(bind: Optional[AsyncEngine] = None) -> None:
    """Close database connections."""
    await (bind or engine).dispose()
