"""Pytest configuration and fixtures."""

import os
import tempfile
from itertools import count

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

# Set test environment variables before imports
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["ENCRYPTION_KEY_FILE"] = "/tmp/caldesk_test_encryption.key"
os.environ["PUBLIC_URL"] = "http://localhost:3000"
os.environ["RATE_LIMIT_PER_MINUTE"] = "10000"
os.environ["REMOTE_PACING_SECONDS"] = "0"
os.environ["PULL_INTERVAL_MINUTES"] = "0"
os.environ["SESSION_SECRET_KEY"] = "test-session-secret"


@pytest.fixture(scope="function")
def test_encryption_key():
    """Create a temporary encryption key and install it as the active key."""
    from caldesk.encryption import generate_encryption_key, init_encryption_manager

    key = generate_encryption_key()

    with tempfile.NamedTemporaryFile(mode="wb", delete=False, suffix=".key") as f:
        f.write(key)
        key_path = f.name

    init_encryption_manager(key)

    yield key

    if os.path.exists(key_path):
        os.remove(key_path)


@pytest_asyncio.fixture
async def test_db():
    """Create a fresh in-memory test database."""
    import caldesk.database as db_module
    from caldesk.database import close_database, get_database

    db_module._db_connection = None

    db = await get_database()

    yield db

    await close_database()
    db_module._db_connection = None


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    import caldesk.database as db_module
    from caldesk.main import app

    db_module._db_connection = None
    with TestClient(app) as c:
        yield c
    db_module._db_connection = None


@pytest.fixture
def session_cookie():
    """Session cookie for owner "owner-1"."""
    from caldesk.auth.session import SESSION_COOKIE_NAME, create_session_token

    return {SESSION_COOKIE_NAME: create_session_token("owner-1", "owner@example.com")}


class FakeCalendarClient:
    """In-memory stand-in for GoogleCalendarClient that records every call."""

    calendar_id = "primary"
    sync_tag = "caldeskSync"

    def __init__(self):
        self.calls = []
        self.remote = {}
        self.failures = {}
        self.deleted = set()
        self._ids = count(1)

    def _maybe_fail(self, op: str, key):
        error = self.failures.get((op, key)) or self.failures.get((op, None))
        if error is not None:
            raise error

    def ops(self, name: str) -> list:
        return [call for call in self.calls if call[0] == name]

    def list_events(self, time_min, time_max):
        self.calls.append(("list", time_min, time_max))
        self._maybe_fail("list", None)
        return list(self.remote.values())

    def insert_event(self, payload: dict) -> str:
        local_id = payload["extendedProperties"]["private"]["localId"]
        self.calls.append(("insert", local_id, payload))
        self._maybe_fail("insert", local_id)
        remote_id = f"g{next(self._ids)}"
        payload["extendedProperties"]["private"][self.sync_tag] = "true"
        self.remote[remote_id] = {"id": remote_id, **payload}
        return remote_id

    def update_event(self, remote_id: str, payload: dict) -> dict:
        self.calls.append(("update", remote_id, payload))
        self._maybe_fail("update", remote_id)
        if remote_id in self.deleted:
            from caldesk.sync.google_calendar import RemoteNotFoundError

            raise RemoteNotFoundError(f"Event {remote_id} is gone", 410)
        self.remote.setdefault(remote_id, {"id": remote_id}).update(payload)
        return self.remote[remote_id]

    def delete_event(self, remote_id: str) -> None:
        self.calls.append(("delete", remote_id))
        self._maybe_fail("delete", remote_id)
        self.remote.pop(remote_id, None)
        self.deleted.add(remote_id)

    def is_our_event(self, event: dict) -> bool:
        private = event.get("extendedProperties", {}).get("private", {})
        return private.get(self.sync_tag) == "true"


@pytest.fixture
def fake_calendar():
    """A fake remote calendar."""
    return FakeCalendarClient()


@pytest.fixture
def linked_remote(monkeypatch, fake_calendar):
    """Treat every owner as linked to the fake remote calendar."""
    async def fake_get_remote_client(owner_id):
        return fake_calendar

    monkeypatch.setattr("caldesk.sync.engine.get_remote_client", fake_get_remote_client)
    return fake_calendar


@pytest.fixture
def mock_google_api(mocker):
    """Mock the Google Calendar v3 service built by GoogleCalendarClient."""
    mock_service = mocker.MagicMock()

    mock_service.events().list().execute.return_value = {
        "items": [
            {
                "id": "remote-1",
                "summary": "Test Event",
                "start": {"dateTime": "2025-03-03T10:00:00Z"},
                "end": {"dateTime": "2025-03-03T11:00:00Z"},
            }
        ],
    }
    mock_service.events().insert().execute.return_value = {"id": "new_event_id"}
    mock_service.events().patch().execute.return_value = {"id": "remote-1"}

    mocker.patch(
        "caldesk.sync.google_calendar.build",
        return_value=mock_service,
    )

    return mock_service
