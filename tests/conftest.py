"""
Pytest configuration and shared fixtures.

Test settings are injected into the environment before any chatsync
import, then the settings cache is cleared so they take effect.
"""

import os
import tempfile

import pytest

_TMP_DIR = tempfile.mkdtemp(prefix="chatsync-tests-")

os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_TMP_DIR, "uploads"))
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("DELIVERED_DELAY_MS", "50")
os.environ.setdefault("READ_DELAY_MS", "150")
os.environ.setdefault("DB_RETRY_DELAY_SECONDS", "0.05")
os.environ.pop("WEBHOOK_SECRET", None)

# Clear settings cache before any app imports to ensure test env vars are used
from chatsync.config import get_settings  # noqa: E402

get_settings.cache_clear()

from fastapi.testclient import TestClient  # noqa: E402

from chatsync.main import app  # noqa: E402
from chatsync.realtime import broadcaster  # noqa: E402
from chatsync.storage import Base, database  # noqa: E402


class RecordingSubscriber:
    """Realtime subscriber that keeps every envelope it receives."""

    def __init__(self):
        self.events = []

    async def send_json(self, data):
        self.events.append(data)

    def of_type(self, event_type: str) -> list:
        return [e["data"] for e in self.events if e["type"] == event_type]

    @property
    def types(self) -> list:
        return [e["type"] for e in self.events]


@pytest.fixture(scope="function")
def client():
    """Test client with a fresh schema for each test."""
    with TestClient(app) as test_client:
        yield test_client
        Base.metadata.drop_all(bind=database.engine)


@pytest.fixture(scope="function")
def db():
    """Plain session for store-level tests, on a fresh schema."""
    assert database.connect(), database.error
    session = database.session()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=database.engine)
        database.dispose()


@pytest.fixture
def events():
    """Record every realtime event published during the test."""
    subscriber = RecordingSubscriber()
    broadcaster.subscribe(subscriber)
    yield subscriber
    broadcaster.unsubscribe(subscriber)
