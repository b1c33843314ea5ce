"""
Auric PM - Test Fixtures
========================

Shared pytest fixtures for all tests.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from auric_pm.api.main import app
from auric_pm.core.database import Base, configure_sqlite, create_session_factory, get_db
from auric_pm.core.models import Epic, Ticket
from auric_pm.core.pm import EpicRepository, TicketRepository


# ==========================================================================
# Test Database Setup
# ==========================================================================

# Use in-memory SQLite for tests (fast)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    In-memory engine with the production SQLite hooks installed.

    StaticPool keeps the single in-memory database alive for the whole test.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(test_engine)


# ==========================================================================
# Database Fixtures
# ==========================================================================

@pytest_asyncio.fixture(scope="function")
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Provide a clean database session for each test."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide test HTTP client with database override.
    """
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ==========================================================================
# Domain Fixtures
# ==========================================================================

@pytest_asyncio.fixture
async def epic(db_session: AsyncSession) -> Epic:
    """A single empty epic."""
    return await EpicRepository(db_session).create_epic("Platform", "Core platform work")


@pytest_asyncio.fixture
async def make_ticket(db_session: AsyncSession, epic: Epic):
    """
    Factory creating tickets in the default epic.

    Usage:
        ticket = await make_ticket("Write parser", priority="high")
    """
    repo = TicketRepository(db_session)

    async def _make(name: str, priority: str = None, epic_id: str = None, **updates) -> Ticket:
        ticket = await repo.create_ticket(epic_id or epic.id, name, priority=priority)
        if updates:
            ticket = await repo.update_ticket(ticket.id, **updates)
        return ticket

    return _make
