"""
Prayer API Backend: Test Configuration (conftest.py)
======================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Environment overrides are applied before any prayer_api import, so
       settings and the module-level engine never point at a real database
       or real Firebase credentials.

Fixture Hierarchy (all function-scoped):
    ├── mock_db_session: AsyncMock session for failure-path tests
    ├── clock: Controllable UTC clock for expiry tests
    ├── engine → session_factory → db_session: in-memory SQLite (aiosqlite)
    ├── seeded_db: db_session with the topic catalog seeded
    ├── push_provider: FakePushProvider recording every send
    ├── dispatcher: NotificationDispatcher over the fake provider
    └── test_client: HTTPX AsyncClient over a fresh app, with the session and
        dispatcher dependencies pointed at the fixtures above
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

# Must run before prayer_api is imported anywhere.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["SEED_TOPICS_ON_STARTUP"] = "false"
os.environ["FIREBASE_SERVICE_ACCOUNT"] = ""
os.environ["FIREBASE_CREDENTIALS_PATH"] = ""
os.environ["PUSH_RETRY_MIN_WAIT"] = "0"
os.environ["PUSH_RETRY_MAX_WAIT"] = "0"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from prayer_api.database import Base
from prayer_api.models import device as _device_models  # noqa: F401
from prayer_api.models import prayer as _prayer_models  # noqa: F401
from prayer_api.services.notification_dispatcher import NotificationDispatcher
from prayer_api.services.push_base import PushProvider
from prayer_api.services.topic_catalog import topic_catalog


# ══════════════════════════════════════════════════════════════════════════
# Test Doubles
# ══════════════════════════════════════════════════════════════════════════

class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakePushProvider(PushProvider):
    """
    Records every send. `results` maps a token to the value send() returns,
    or to an exception it raises; unknown tokens succeed.
    """

    def __init__(self, is_available: bool = True):
        self.is_available = is_available
        self.results: Dict[str, object] = {}
        self.sent: List[dict] = []

    @property
    def available(self) -> bool:
        return self.is_available

    async def send(self, token, title, body, data=None) -> bool:
        self.sent.append({"token": token, "title": title, "body": body, "data": data})
        outcome = self.results.get(token, True)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def mock_db_session():
    """
    A MagicMock that simulates AsyncSession behavior.

    Usage:
        mock_db_session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.get_bind = MagicMock()
    session.get_bind.return_value.dialect.name = "sqlite"
    return session


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def engine():
    """
    In-memory SQLite shared by every session of one test.

    StaticPool keeps the single connection alive; without it each checkout
    would open a new, empty in-memory database.
    """
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seeded_db(db_session):
    await topic_catalog.seed_topics(db_session)
    return db_session


@pytest.fixture
def push_provider():
    return FakePushProvider()


@pytest.fixture
def dispatcher(push_provider, session_factory):
    return NotificationDispatcher(push_provider, session_factory, max_concurrency=3)


@pytest_asyncio.fixture
async def test_client(session_factory, dispatcher, seeded_db):
    """
    HTTPX AsyncClient talking to a fresh app over ASGITransport.

    ASGITransport does not run the lifespan, so nothing is seeded or
    initialised by the app itself; the fixtures provide both.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    from prayer_api.database import get_db_session
    from prayer_api.dependencies import get_dispatcher
    from prayer_api.main import create_app

    app = create_app()

    async def override_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
