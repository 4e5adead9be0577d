import os
from datetime import datetime, timedelta, timezone

import pytest


@pytest.fixture(scope="session", autouse=True)
def set_test_env(tmp_path_factory):
    db_file = tmp_path_factory.mktemp("data") / "test.db"
    demo_file = tmp_path_factory.mktemp("demo") / "demo.db"
    os.environ["DB_PATH"] = str(db_file)
    os.environ["APP_PASSWORD"] = "testpass"
    os.environ["SECRET_KEY"] = "test-secret-key-for-testing"
    os.environ["DEMO_DB_URL"] = str(demo_file)
    os.environ["SCHEDULER_ENABLED"] = "0"
    for key in ("PUSH_GATEWAY_URL", "SMTP_HOST"):
        os.environ.pop(key, None)


@pytest.fixture(scope="session")
def client(set_test_env):
    from fastapi.testclient import TestClient
    from app.main import app
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture(scope="session")
def api_user(client):
    from grocery_tracker.core import users as users_core
    from grocery_tracker.db.models import User
    return users_core.add(User(id=None, name="Api Tester", email="api@example.com"))


@pytest.fixture(scope="session")
def authed_client(client, api_user):
    client.post("/login", data={"password": "testpass", "user_id": str(api_user)})
    return client


@pytest.fixture
def db(tmp_path, monkeypatch):
    """A fresh, empty database for one test."""
    from grocery_tracker.db.database import init_db
    path = tmp_path / "engine.db"
    monkeypatch.setenv("DB_PATH", str(path))
    init_db()
    return path


class FixedClock:
    """A controllable clock; call it to read the time."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeChannels:
    """Records sends instead of delivering them. Set push_ok/email_ok to simulate failures."""

    def __init__(self, push_ok=True, email_ok=True, push_raises=None):
        from grocery_tracker.core.channels import ChannelResult
        self._result = ChannelResult
        self.push_ok = push_ok
        self.email_ok = email_ok
        self.push_raises = push_raises
        self.pushes = []
        self.emails = []

    def send_push(self, user_id, title, body, metadata=None):
        self.pushes.append((user_id, title, body, metadata))
        if self.push_raises is not None:
            raise self.push_raises
        return self._result("push", self.push_ok, None if self.push_ok else "gateway down")

    def send_email(self, user_id, subject, body):
        self.emails.append((user_id, subject, body))
        return self._result("email", self.email_ok, None if self.email_ok else "smtp down")


@pytest.fixture
def clock():
    # A Sunday; 2026-10-19 is a Monday.
    return FixedClock(datetime(2026, 10, 18, 10, 30, tzinfo=timezone.utc))


@pytest.fixture
def channels():
    return FakeChannels()
