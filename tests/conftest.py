"""
Shared test fixtures for the notification service tests.

Provides an in-memory SQLite session, in-memory adapters for the pipeline
and an HTTP client bound to the app with Redis replaced by fakes.
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

# Register the tables with SQLModel.metadata before creating them
import inventory.infrastructure.models  # noqa: F401
import notifications.infrastructure.models  # noqa: F401
import sales.infrastructure.models  # noqa: F401
from config.database import get_database_session
from fakes import (
    FakeChannel,
    FakeChannelManager,
    FakePublisher,
    FixedClock,
    InMemoryNotificationRepository,
    InMemoryPreferenceRepository,
)
from main import create_app
from notifications.application.dispatcher import NotificationDispatcher
from notifications.infrastructure.factory import (
    get_notification_channel_manager,
    get_notification_publisher,
)

TEST_DATABASE_URL = "sqlite+aiosqlite://"


# --- Database Fixtures ---


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Fresh in-memory database per test.
    StaticPool keeps the single connection the in-memory database lives in.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    async with AsyncSession(bind=engine, expire_on_commit=False) as session:
        yield session

    await engine.dispose()


# --- Pipeline Fixtures ---


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def notification_repository(clock) -> InMemoryNotificationRepository:
    return InMemoryNotificationRepository(clock)


@pytest.fixture
def preference_repository() -> InMemoryPreferenceRepository:
    return InMemoryPreferenceRepository()


@pytest.fixture
def channels() -> list[FakeChannel]:
    """Channels in fan-out order: in-app, desktop, e-mail."""
    return [FakeChannel("in_app"), FakeChannel("desktop"), FakeChannel("email")]


@pytest.fixture
def dispatcher(notification_repository, channels, clock) -> NotificationDispatcher:
    return NotificationDispatcher(
        notification_repository=notification_repository,
        channels=channels,
        clock=clock,
    )


# --- HTTP Fixtures ---


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def channel_manager() -> FakeChannelManager:
    return FakeChannelManager()


@pytest.fixture
def app(db_session, publisher, channel_manager):
    """App with the database session and Redis adapters overridden.

    The lifespan is not run, so no tables are created on disk and Redis is
    never contacted.
    """
    application = create_app()

    async def override_get_database_session():
        yield db_session

    application.dependency_overrides[get_database_session] = override_get_database_session
    application.dependency_overrides[get_notification_publisher] = lambda: publisher
    application.dependency_overrides[get_notification_channel_manager] = (
        lambda: channel_manager
    )

    yield application

    application.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def recipient_headers():
    """Factory fixture for the recipient identity header."""

    def _recipient_headers(recipient_id: str = "pharmacist-1") -> dict[str, str]:
        return {"X-Recipient-Id": recipient_id}

    return _recipient_headers
