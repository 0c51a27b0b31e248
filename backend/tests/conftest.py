"""Shared test fixtures with in-memory SQLite and a fake X API."""
import json
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qsl

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles

from distributo.dependencies import get_session_factory, get_x_client
from distributo.integrations.x.client import XClient
from distributo.main import app
from distributo.models.base import Base
from distributo.models.connected_account import ConnectedAccount, Platform
from distributo.models.post import Post, PostStatus
from distributo.models.profile import Profile
from distributo.services.auth_service import create_access_token
from distributo.services.handshake_store import InMemoryHandshakeStore, get_handshake_store

# --- SQLite compatibility: compile PostgreSQL types for SQLite ---

@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@compiles(UUID, "sqlite")
def _compile_uuid_sqlite(type_, compiler, **kw):
    return "VARCHAR(36)"


@compiles(ARRAY, "sqlite")
def _compile_array_sqlite(type_, compiler, **kw):
    return "JSON"


sqlite3.register_adapter(list, lambda val: json.dumps(val))
sqlite3.register_converter("JSON", lambda val: json.loads(val))

# In-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)
test_session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@event.listens_for(test_engine.sync_engine, "connect")
def _set_sqlite_pragma(dbapi_connection, _connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture(autouse=True)
async def setup_db():
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


app.dependency_overrides[get_session_factory] = lambda: test_session_factory


# --- Fake X API ---

class FakeX:
    """Scripted X API v2 behind an httpx.MockTransport.

    Responses are (status, json) pairs; every request is kept in ``requests``.
    Setting ``refresh_error`` or ``post_error`` raises it instead, like a
    dropped connection or timeout.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_response = (200, {
            "token_type": "bearer",
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_in": 7200,
            "scope": "tweet.read tweet.write users.read offline.access",
        })
        self.refresh_response = (200, {
            "token_type": "bearer",
            "access_token": "access-2",
            "refresh_token": "refresh-2",
            "expires_in": 7200,
            "scope": "tweet.read tweet.write users.read offline.access",
        })
        self.me_response = (200, {
            "data": {"id": "42", "username": "alice", "name": "Alice", "profile_image_url": "https://pbs.example/a.jpg"},
        })
        self.post_response: tuple[int, dict] | None = None
        self.refresh_error: Exception | None = None
        self.post_error: Exception | None = None
        self._next_post_id = 1_000_000

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/oauth2/token"):
            form = dict(parse_qsl(request.content.decode()))
            if form.get("grant_type") == "refresh_token":
                if self.refresh_error is not None:
                    raise self.refresh_error
                status, body = self.refresh_response
            else:
                status, body = self.token_response
            return httpx.Response(status, json=body)
        if path.endswith("/users/me"):
            status, body = self.me_response
            return httpx.Response(status, json=body)
        if path.endswith("/tweets"):
            if self.post_error is not None:
                raise self.post_error
            if self.post_response is not None:
                status, body = self.post_response
                return httpx.Response(status, json=body)
            self._next_post_id += 1
            text = json.loads(request.content)["text"]
            return httpx.Response(201, json={"data": {"id": str(self._next_post_id), "text": text}})
        return httpx.Response(404, json={"title": "Not Found"})

    def calls(self, suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(suffix)]

    def token_grants(self) -> list[str]:
        return [dict(parse_qsl(r.content.decode()))["grant_type"] for r in self.calls("/oauth2/token")]


@pytest.fixture
def fake_x() -> FakeX:
    return FakeX()


@pytest.fixture
async def x_client(fake_x: FakeX):
    async with XClient(
        client_id="client-id", client_secret="client-secret", transport=httpx.MockTransport(fake_x.handler)
    ) as client:
        yield client


@pytest.fixture
def handshake_store() -> InMemoryHandshakeStore:
    return InMemoryHandshakeStore()


@pytest.fixture
async def client(x_client: XClient, handshake_store: InMemoryHandshakeStore):
    app.dependency_overrides[get_x_client] = lambda: x_client
    app.dependency_overrides[get_handshake_store] = lambda: handshake_store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_x_client, None)
    app.dependency_overrides.pop(get_handshake_store, None)


@pytest.fixture
async def db_session():
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def session_factory():
    return test_session_factory


# --- Seed data ---

async def _create_profile(email: str | None = None) -> Profile:
    async with test_session_factory() as db:
        profile = Profile(
            id=uuid.uuid4(),
            email=email or f"user_{uuid.uuid4().hex[:8]}@test.com",
            full_name="Test User",
        )
        db.add(profile)
        await db.commit()
        return profile


@pytest.fixture
def make_profile():
    return _create_profile


@pytest.fixture
async def user_auth() -> tuple[Profile, dict]:
    """Return (profile, auth_headers)."""
    profile = await _create_profile()
    token = create_access_token(str(profile.id))
    return profile, {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_account():
    async def _make(
        user_id: uuid.UUID,
        access_token: str = "stored-access",
        refresh_token: str | None = "stored-refresh",
        expires_in: timedelta | None = timedelta(hours=2),
        username: str = "alice",
    ) -> ConnectedAccount:
        now = datetime.now(timezone.utc)
        async with test_session_factory() as db:
            account = ConnectedAccount(
                user_id=user_id,
                platform=Platform.X,
                access_token=access_token,
                refresh_token=refresh_token,
                token_expires_at=now + expires_in if expires_in is not None else None,
                scopes=["tweet.read", "tweet.write", "users.read", "offline.access"],
                platform_user_id="42",
                platform_username=username,
                platform_display_name=username.title(),
                is_active=True,
                connected_at=now,
            )
            db.add(account)
            await db.commit()
            return account

    return _make


@pytest.fixture
def make_post():
    async def _make(
        user_id: uuid.UUID,
        content: str = "Hello from the scheduler",
        status: PostStatus = PostStatus.SCHEDULED,
        scheduled_at: datetime | None = None,
        retry_count: int = 0,
    ) -> Post:
        if scheduled_at is None and status == PostStatus.SCHEDULED:
            scheduled_at = datetime.now(timezone.utc) - timedelta(minutes=5)
        async with test_session_factory() as db:
            post = Post(
                user_id=user_id,
                platform=Platform.X,
                content=content,
                status=status,
                scheduled_at=scheduled_at,
                retry_count=retry_count,
            )
            db.add(post)
            await db.commit()
            return post

    return _make
