from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from fakes import InMemoryRecordStore, RecordingNotifier
from foodsafe.settings import get_settings


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def now():
    return datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def actor():
    return "qa-lead-7"


def make_token(sub: str, **claims) -> str:
    settings = get_settings()
    return jwt.encode({"sub": sub, **claims}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def token_for():
    return make_token


@pytest.fixture
def auth_headers(actor):
    return {"Authorization": f"Bearer {make_token(actor, email='qa@example.com')}"}


@pytest.fixture
def client(store, notifier):
    from foodsafe.dependencies import get_notifier, get_store
    from foodsafe.main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    app.dependency_overrides.clear()
