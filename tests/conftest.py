"""Shared test configuration and fixtures."""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Ensure api_service is on sys.path so `app.main` resolves
PROJECT_ROOT = Path(__file__).resolve().parent.parent
API_ROOT = PROJECT_ROOT / "api_service"
if str(API_ROOT) not in sys.path:
    sys.path.insert(0, str(API_ROOT))

# Set test environment before importing the app (settings are read once)
_DB_DIR = tempfile.mkdtemp(prefix="shelves-test-")
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CACHE_ENABLED"] = "false"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-testing"
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.pop("ACHIEVEMENT_TRACKER_URL", None)
os.environ.pop("AWS_ENDPOINT_URL", None)


class RecordingPublisher:
    """Stands in for the achievement tracker publisher and keeps what it was given."""

    def __init__(self):
        self.events = []

    async def publish(self, events):
        self.events.extend(events)


@pytest_asyncio.fixture
async def db():
    """Fresh schema for every test."""
    from app.database import Base, engine
    from app.models import book, favorite, queue, shelf, user  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine


@pytest_asyncio.fixture
async def seeded(db):
    """Two active users, one deactivated user and six books."""
    from app.database import async_session
    from app.models.book import Book
    from app.models.user import User

    async with async_session() as session:
        users = [
            User(email="alice@example.com", username="alice"),
            User(email="bob@example.com", username="bob"),
            User(email="gone@example.com", username="gone", is_active=False),
        ]
        books = [
            Book(title=f"Book {i}", author=f"Author {i}", pages=100 + i, genres=["Fiction"])
            for i in range(1, 7)
        ]
        session.add_all(users + books)
        await session.commit()
        return SimpleNamespace(
            alice=users[0].id,
            bob=users[1].id,
            inactive=users[2].id,
            books=[b.id for b in books],
        )


@pytest.fixture
def session_factory(db):
    from app.database import async_session

    return async_session


def auth_headers(user_id: int) -> dict[str, str]:
    from app.auth.jwt_handler import create_access_token

    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def headers_for():
    return auth_headers


@pytest.fixture
def publisher():
    from app.main import app
    from app.services.events import get_event_publisher

    recording = RecordingPublisher()
    app.dependency_overrides[get_event_publisher] = lambda: recording
    yield recording
    app.dependency_overrides.pop(get_event_publisher, None)


@pytest.fixture
def transport(publisher):
    from app.main import app

    return ASGITransport(app=app)


@pytest_asyncio.fixture
async def client(transport, seeded):
    """Test client authenticated as alice."""
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers=auth_headers(seeded.alice),
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def anon_client(transport, db):
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
