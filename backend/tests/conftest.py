"""
Centralized Test Configuration.
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from backend.app.main import app
from backend.app.core.config import Settings
from backend.app.core.dependencies import get_engine
from backend.app.core.jwt import create_access_token
from backend.app.db.session import build_session_factory, create_tables
from backend.app.domain.notifications.email_transports import RecordingEmailTransport
from backend.app.domain.notifications.engine import build_notification_engine
from backend.app.domain.notifications.push_transports import RecordingPushTransport
from backend.app.domain.notifications.sql_store import SqlNotificationStore
from backend.app.domain.notifications.store import InMemoryNotificationStore, MonotonicClock
import backend.app.core.redis_client as redis_client_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class SteppingClock:
    """Wall clock stand-in: every reading advances by `step` from `start`."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value

    def set(self, value: datetime):
        self.current = value


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


@pytest.fixture
def clock():
    return SteppingClock(datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
async def memory_store(clock):
    return InMemoryNotificationStore(clock=MonotonicClock(clock))


@pytest.fixture
async def sql_store(clock):
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(engine)
    store = SqlNotificationStore(build_session_factory(engine), engine=engine, clock=MonotonicClock(clock))
    yield store
    await store.close()


@pytest.fixture(params=["memory", "sql"])
async def store(request, memory_store, sql_store):
    """Runs a test once per storage adapter."""
    return memory_store if request.param == "memory" else sql_store


@pytest.fixture
def redis_client():
    return MockRedis()


@pytest.fixture
def test_settings():
    return Settings(
        store_backend="memory",
        channel_timeout_seconds=0.5,
        unread_poll_interval_seconds=0.05,
        breaker_failure_threshold=50,
        breaker_reset_timeout=1,
    )


@pytest.fixture
def fcm():
    return RecordingPushTransport()


@pytest.fixture
def apns():
    return RecordingPushTransport()


@pytest.fixture
def email_transport():
    return RecordingEmailTransport()


@pytest.fixture
async def engine(test_settings, memory_store, fcm, apns, email_transport, redis_client):
    engine = await build_notification_engine(
        test_settings,
        store=memory_store,
        fcm=fcm,
        apns=apns,
        email_transport=email_transport,
        redis=redis_client,
    )
    yield engine
    await engine.aclose()


@pytest.fixture
async def client(engine, redis_client):
    """Async client for testing."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client
    app.dependency_overrides[get_engine] = lambda: engine

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


_user_ids = itertools.count(1)


def auth_headers(user_id: str, role: str = "USER") -> dict:
    token = create_access_token({"sub": f"{user_id}@test.com", "user_id": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_id():
    return f"user-{next(_user_ids)}"


@pytest.fixture
def user_headers(user_id):
    return auth_headers(user_id)


@pytest.fixture
def service_headers():
    return auth_headers("booking-service", role="SERVICE")


@pytest.fixture
def admin_headers():
    return auth_headers("ops-admin", role="ADMIN")
