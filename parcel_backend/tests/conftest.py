"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from parcel_backend.app.main import app
from parcel_backend.app.core.config import settings
from parcel_backend.app.db.session import get_db, Base
import parcel_backend.app.core.redis_client as redis_client_module
from parcel_backend.app.models.enums import UserRole
from parcel_backend.app.services import user_store

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Keep bcrypt cheap in tests
settings.bcrypt_salt_rounds = 4

TEST_PASSWORD = "Secret@123"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

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

    async def setex(self, key, ttl, value):
        # TTL is not simulated; tests never outlive a token
        return await self.set(key, value, ex=ttl)

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}

# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()

@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """

    # Patch the global redis client used by token revocation
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client

@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    """Factory for extra sessions, e.g. to simulate concurrent requests."""
    return TestingSessionLocal


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def login(client, email: str, password: str = TEST_PASSWORD) -> str:
    """Log in and return the access token, leaving no cookies on the client."""
    response = await client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    client.cookies.clear()
    return response.json()["data"]["access_token"]


@pytest.fixture
def make_user(client, db_session):
    """
    Factory creating a user directly in the store and logging it in.

    Returns a dict with the user's id, email, token and auth headers.
    """
    async def _make_user(email: str, role: UserRole = UserRole.USER, name: str = None, **fields):
        user = await user_store.create_user(
            db_session,
            name=name or email.split("@")[0].title(),
            email=email,
            password=TEST_PASSWORD,
            role=role,
            **fields
        )
        token = await login(client, email)
        return {"id": user.id, "email": user.email, "token": token, "headers": auth_headers(token)}

    return _make_user


@pytest.fixture
async def admin(make_user):
    return await make_user("admin@mail.com", UserRole.ADMIN, name="Admin")


@pytest.fixture
async def sender(make_user):
    return await make_user("sender@mail.com", name="Sam Sender", phone="+8801700000001", address="1 Sender Road")


@pytest.fixture
async def receiver(make_user):
    return await make_user("receiver@mail.com", name="Rita Receiver", phone="+8801700000002", address="2 Receiver Lane")


@pytest.fixture
async def delivery_man(make_user):
    return await make_user("rider@mail.com", UserRole.DELIVERY_MAN, name="Dan Rider")


@pytest.fixture
async def other_delivery_man(make_user):
    return await make_user("rider2@mail.com", UserRole.DELIVERY_MAN, name="Dora Rider")


@pytest.fixture
def manual_recipient():
    return {"name": "Walk In", "phone": "+8801711111111", "address": "9 Unknown Street"}


@pytest.fixture
def book_parcel(client):
    """Factory booking a parcel through the API as the given sender."""
    async def _book_parcel(sender: dict, recipient: dict, weight: float = 2.5, **fields):
        response = await client.post(
            "/api/v1/parcels/",
            json={"recipient": recipient, "weight": weight, **fields},
            headers=sender["headers"]
        )
        assert response.status_code == 201, response.text
        return response.json()["data"]

    return _book_parcel
