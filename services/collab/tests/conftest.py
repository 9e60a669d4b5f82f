"""
Shared fixtures for the collaboration service test suite.

Provides:
- dict-backed FakeRedis (shared broker so several "instances" can talk)
- a CollaborationService wired to in-memory collaborators
- async FastAPI test client with app.state populated by hand (no lifespan,
  so no real Redis / Postgres is touched)
"""

import os

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure test env vars before any app imports
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("SENTRY_DSN", "")
os.environ.setdefault("BRIDGE_ENABLED", "false")

from services.collab.realtime.activity import ActivityLog  # noqa: E402
from services.collab.realtime.presence import PresenceStore  # noqa: E402
from services.collab.realtime.rooms import RoomRegistry  # noqa: E402
from services.collab.realtime.service import CollaborationService  # noqa: E402
from services.collab.tests.helpers.fake_redis import FakeBroker, FakeRedis  # noqa: E402
from services.collab.tests.helpers.fakes import (  # noqa: E402
    FakeAuthorizer,
    FakeConnection,
    FakeInvalidator,
    FakePersister,
)


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def fake_redis(broker) -> FakeRedis:
    return FakeRedis(broker)


@pytest.fixture
def authorizer() -> FakeAuthorizer:
    auth = FakeAuthorizer()
    # trip-1: A owns, B edits, V views. trip-2: A owns.
    auth.add_trip("trip-1", "user-a", editors=("user-b",), viewers=("user-v",))
    auth.add_trip("trip-2", "user-a")
    return auth


@pytest.fixture
def persister() -> FakePersister:
    return FakePersister()


@pytest.fixture
def invalidator() -> FakeInvalidator:
    return FakeInvalidator()


@pytest.fixture
def collab(fake_redis, authorizer, persister, invalidator) -> CollaborationService:
    return CollaborationService(
        presence=PresenceStore(fake_redis, ttl_seconds=300),
        activity=ActivityLog(fake_redis, max_entries=50, ttl_seconds=86_400),
        rooms=RoomRegistry(),
        authorizer=authorizer,
        persister=persister,
        read_cache=invalidator,
        external_call_timeout_s=0.5,
    )


@pytest.fixture
def connect(collab):
    """Open a session on the shared service: ``conn, handler = connect()``."""

    def _connect(connection_id: str | None = None):
        conn = FakeConnection(connection_id)
        return conn, collab.open_session(conn)

    return _connect


@pytest.fixture
async def app(fake_redis, collab):
    """The FastAPI app with mocked state injected."""
    from services.collab.config import settings
    from services.collab.main import app as _app

    _app.state.redis = fake_redis
    _app.state.settings = settings
    _app.state.collab = collab
    yield _app
    del _app.state.collab


@pytest.fixture
async def client(app):
    """Async HTTP client bound to the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
