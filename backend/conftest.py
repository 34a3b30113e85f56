"""
Pytest configuration and fixtures for backend tests.

This module provides the core testing infrastructure including:
- In-memory test database setup and teardown
- Session fixtures for database access
- Fake push adapters and a dispatcher wired to them
- Test client for API integration tests
"""

import os
from collections.abc import AsyncGenerator

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402
from sqlmodel.ext.asyncio.session import AsyncSession  # noqa: E402

from app.api.deps import get_push_dispatcher  # noqa: E402
from app.core.rate_limit import limiter  # noqa: E402
from app.db import base  # noqa: E402,F401
from app.db.session import get_session  # noqa: E402
from app.main import app  # noqa: E402
from app.models.push_token import DeviceClass  # noqa: E402
from app.services.push_notifications import NotificationDispatcher  # noqa: E402
from app.testing.fakes import FakePushAdapter  # noqa: E402

# A single shared connection keeps the in-memory database alive for the test
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture(scope="function")
async def engine():
    """Create a test database engine with all tables created."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    """Session factory bound to the test engine, for code that opens its own sessions."""
    return sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test.

    The database lives in memory and is discarded with the engine, so every
    test starts from empty tables.
    """
    async with session_factory() as test_session:
        yield test_session

        # Expire all objects to detach them from the session
        test_session.expire_all()


@pytest.fixture
def managed_adapter() -> FakePushAdapter:
    return FakePushAdapter(DeviceClass.managed)


@pytest.fixture
def native_adapter() -> FakePushAdapter:
    return FakePushAdapter(DeviceClass.native_apple)


@pytest.fixture
def dispatcher(managed_adapter: FakePushAdapter, native_adapter: FakePushAdapter) -> NotificationDispatcher:
    return NotificationDispatcher(
        {
            DeviceClass.managed: managed_adapter,
            DeviceClass.native_apple: native_adapter,
        }
    )


@pytest.fixture
async def client(
    session: AsyncSession,
    dispatcher: NotificationDispatcher,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an async HTTP client for testing API endpoints.

    This fixture:
    - Overrides the database session dependency to use the test session
    - Routes push delivery through the fake adapters
    - Provides an AsyncClient configured with the FastAPI app

    Usage:
        async def test_endpoint(client: AsyncClient):
            response = await client.get("/api/v1/version")
            assert response.status_code == 200
    """

    async def override_get_session() -> AsyncGenerator[AsyncSession, None]:
        yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_push_dispatcher] = lambda: dispatcher

    # Disable rate limiting in tests
    limiter.enabled = False

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as test_client:
        yield test_client

    app.dependency_overrides.clear()
