"""
Billow Backend — Test Configuration (conftest.py)
==================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy (all function-scoped):
    ├── engine / session_factory / db_session
    │       in-memory SQLite (aiosqlite) with the real schema
    ├── fake_redis / home_cache
    │       dict-backed stand-in for redis.asyncio.Redis
    ├── temp_storage / file_service
    ├── listing_fields / insert_home
    ├── sample_image_bytes
    ├── auth_headers
    └── test_client
            HTTPX AsyncClient against create_app(), with app.state wired to
            the fixtures above (the lifespan is not run)
"""

import os
import tempfile

# Must happen before any app import: Settings() reads the environment once
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET"] = "test-secret-for-billow-unit-tests-only"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="billow_test_")
os.environ["CACHE_ENABLED"] = "true"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.database import Base, build_session_factory
from app.models.home import Home
from app.services.cache_service import HomeCache
from app.services.file_service import FileService


# ══════════════════════════════════════════════════════════════════════════
# Doubles
# ══════════════════════════════════════════════════════════════════════════


class FakeRedis:
    """
    In-memory stand-in for the subset of redis.asyncio.Redis HomeCache uses.

    `calls` records (command, key) pairs; setting `fail = True` makes every
    command raise ConnectionError, like a dead server.
    """

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.calls = []
        self.fail = False
        self.closed = False

    def _check(self, command: str, key: Optional[str] = None) -> None:
        self.calls.append((command, key))
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def get(self, key):
        self._check("get", key)
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self._check("set", key)
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        self._check("delete", keys[0] if keys else None)
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def ping(self):
        self._check("ping")
        return True

    async def aclose(self):
        self.closed = True


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def engine():
    """
    Fresh in-memory SQLite database per test.

    StaticPool keeps one connection so every session sees the same memory
    database. PostgreSQL-only DDL (the GIN search index) is skipped.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_db_session():
    """AsyncSession double for tests that only inspect the statements issued."""
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    return session


# ══════════════════════════════════════════════════════════════════════════
# Cache & Storage
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def home_cache(fake_redis):
    return HomeCache(client=fake_redis, ttl_seconds=settings.cache_ttl_seconds)


@pytest.fixture
def temp_storage(tmp_path):
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


@pytest.fixture
def file_service(temp_storage):
    return FileService(storage_root=temp_storage)


@pytest.fixture
def sample_image_bytes():
    """
    Minimal JPEG bytes: Start of Image (FFD8) + JFIF marker + End of Image (FFD9).
    Not a real photograph, but enough for extension/size/MIME checks.
    """
    return (
        b'\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00'
        b'\xff\xd9'
    )


# ══════════════════════════════════════════════════════════════════════════
# Listings
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def listing_fields() -> Dict[str, Any]:
    """Every writable column of a home, images already as public URIs."""
    return {
        "price": 350000.0,
        "street": "12 Elm St",
        "city": "Springfield",
        "state": "IL",
        "zip": "62701",
        "lat": 39.78,
        "lon": -89.65,
        "bedrooms": 3,
        "bathrooms": 2.5,
        "square_feet": 1800,
        "description": "Sunny colonial with a large backyard",
        "agent": "Pat Doe",
        "agent_phone": "555-0100",
        "agent_img": "http://test/uploads/2026/01/01/agent.jpg",
        "house_img_main": "http://test/uploads/2026/01/01/main.jpg",
        "house_img_inside_1": "http://test/uploads/2026/01/01/in1.jpg",
        "house_img_inside_2": "http://test/uploads/2026/01/01/in2.jpg",
    }


@pytest.fixture
def insert_home(session_factory, listing_fields):
    """
    Insert a home directly, with an explicit created_at so insertion order
    is deterministic. Returns the persisted Home.

        home = await insert_home(street="1 Oak Ave", minutes=5)
    """
    base_time = datetime(2026, 1, 1, tzinfo=timezone.utc)

    async def _insert(minutes: int = 0, **overrides) -> Home:
        fields = {**listing_fields, **overrides}
        home = Home(id=uuid4(), created_at=base_time + timedelta(minutes=minutes), **fields)
        async with session_factory() as session:
            session.add(home)
            await session.commit()
        return home

    return _insert


# ══════════════════════════════════════════════════════════════════════════
# HTTP
# ══════════════════════════════════════════════════════════════════════════


def make_token(secret: Optional[str] = None, expires_in: int = 3600, **claims) -> str:
    payload = {"sub": "agent-1", "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in)}
    payload.update(claims)
    return jwt.encode(payload, secret or settings.jwt_secret, algorithm=settings.jwt_algorithm)


@pytest.fixture
def token_factory():
    """Signed JWTs: token_factory(sub="agent-7"), token_factory(expires_in=-60)."""
    return make_token


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def app(engine, session_factory, home_cache, file_service):
    """
    Application with app.state wired to the test fixtures.

    ASGITransport doesn't run the lifespan, so the handles it would build
    are assigned here instead.
    """
    from app.main import create_app

    application = create_app()
    application.state.engine = engine
    application.state.session_factory = session_factory
    application.state.home_cache = home_cache
    application.state.file_service = file_service
    return application


@pytest_asyncio.fixture
async def test_client(app):
    """
    HTTPX AsyncClient routed directly into the app.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
