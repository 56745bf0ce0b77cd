"""Shared pytest fixtures for the storefront test suite.

Provides:
  - mock_redis: Mock RedisClient with in-memory dict storage
  - fake_sms: SmsSender double that records outgoing messages
  - counting_opener: ConnectionOpener double that counts opens
  - tenant_connection: TenantConnection over in-memory SQLite (schema created)
  - tenant_session: AsyncSession on tenant_connection
  - directory_session: AsyncSession on an in-memory platform directory
  - token_issuer: SessionTokenIssuer with a fixed test secret

Environment defaults are set below before any storefront module is imported
so Settings never points at a real database or provider.
"""

from __future__ import annotations

import os

os.environ.setdefault("MAIN_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-storefront-tests")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("FIREBASE_PROJECT_ID", "")
os.environ.setdefault("FIREBASE_WEB_API_KEY", "")
os.environ.setdefault("MSG91_AUTH_KEY", "")

import asyncio  # noqa: E402
import json  # noqa: E402
from typing import Any, AsyncIterator  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import storefront.models  # noqa: E402,F401
from storefront.db.postgres import Base  # noqa: E402
from storefront.db.tenant import TenantBase, TenantConnection  # noqa: E402
from storefront.models.settings import StoreSettings, TenantUser  # noqa: E402
from storefront.models.store import Store  # noqa: E402
from storefront.services.messaging.msg91 import SmsDelivery  # noqa: E402
from storefront.services.session_tokens import SessionTokenIssuer  # noqa: E402

TEST_SECRET = "test-secret-key-for-storefront-tests"


def sqlite_engine():
    """Single-connection in-memory SQLite engine shared across sessions."""
    return create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


# ---------------------------------------------------------------------------
# Mock Redis Client
# ---------------------------------------------------------------------------


class MockRedisClient:
    """In-memory mock of RedisClient for testing."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def delete(self, key: str) -> int:
        if key in self._store:
            del self._store[key]
            self._ttls.pop(key, None)
            return 1
        return 0

    async def set_json(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        self._store[key] = json.dumps(value)
        if ttl_seconds:
            self._ttls[key] = ttl_seconds

    async def get_json(self, key: str) -> Any | None:
        raw = self._store.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def ttl(self, key: str) -> int | None:
        return self._ttls.get(key)

    def keys(self) -> list[str]:
        return list(self._store)


# ---------------------------------------------------------------------------
# Messaging doubles
# ---------------------------------------------------------------------------


class FakeSmsSender:
    """Records every SMS instead of sending it."""

    def __init__(self, delivered: bool = True) -> None:
        self.delivered = delivered
        self.sent: list[tuple[str, str]] = []

    async def send(self, contact: str, message: str) -> SmsDelivery:
        self.sent.append((contact, message))
        if not self.delivered:
            return SmsDelivery(delivered=False, error="rejected")
        return SmsDelivery(delivered=True, id=f"sms-{len(self.sent)}")


class FakeEmailSender:
    def __init__(self, delivered: bool = True) -> None:
        self.delivered = delivered
        self.sent: list[dict[str, str]] = []

    async def send_code(self, email: str, code: str, purpose: str, store_name: str) -> bool:
        self.sent.append(
            {"email": email, "code": code, "purpose": purpose, "store_name": store_name}
        )
        return self.delivered


# ---------------------------------------------------------------------------
# Tenant connection doubles
# ---------------------------------------------------------------------------


class FakeTenantConnection(TenantConnection):
    """TenantConnection whose ping/close are controlled by the test."""

    def __init__(self, tenant_id: str, healthy: bool = True) -> None:
        engine = MagicMock()
        engine.dispose = AsyncMock()
        super().__init__(tenant_id, engine)
        self.healthy = healthy
        self.closed = False

    async def ping(self) -> None:
        if not self.healthy:
            raise OSError("connection refused")

    async def close(self) -> None:
        self.closed = True


class CountingOpener:
    """ConnectionOpener that counts calls and can fail on demand."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.failures_left = 0

    async def __call__(self, tenant_id: str, url: str) -> TenantConnection:
        self.calls.append((tenant_id, url))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures_left > 0:
            self.failures_left -= 1
            raise OSError("tenant database unreachable")
        return FakeTenantConnection(tenant_id)


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------


async def seed_tenant(session: AsyncSession, owner_email: str = "owner@acme.test") -> None:
    """Insert the owner and settings rows a store needs to be loadable."""
    session.add(
        TenantUser(name="Acme Owner", email=owner_email, role="owner", store_info={})
    )
    session.add(
        StoreSettings(
            general={"currency": "INR", "timezone": "Asia/Kolkata"},
            payment={"razorpay_key_id": "rzp_test", "razorpay_key_secret": "hidden"},
            social={},
            shipping={"free_above": 999},
        )
    )
    await session.commit()


async def seed_store(
    session: AsyncSession,
    store_id: str = "acme",
    tenant_id: str = "tenant_acme",
    name: str = "Acme Goods",
    is_active: bool = True,
) -> Store:
    store = Store(store_id=store_id, tenant_id=tenant_id, name=name, is_active=is_active)
    session.add(store)
    await session.commit()
    return store


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_redis() -> MockRedisClient:
    """Mock Redis client fixture."""
    return MockRedisClient()


@pytest.fixture
def fake_sms() -> FakeSmsSender:
    return FakeSmsSender()


@pytest.fixture
def fake_email() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def counting_opener() -> CountingOpener:
    return CountingOpener()


@pytest.fixture
def token_issuer() -> SessionTokenIssuer:
    """Session token issuer with the test secret."""
    return SessionTokenIssuer(secret_key=TEST_SECRET)


@pytest_asyncio.fixture
async def tenant_connection() -> AsyncIterator[TenantConnection]:
    """Tenant partition over in-memory SQLite with the tenant schema created."""
    engine = sqlite_engine()
    async with engine.begin() as conn:
        await conn.run_sync(TenantBase.metadata.create_all)
    connection = TenantConnection("tenant_acme", engine)
    yield connection
    await connection.close()


@pytest_asyncio.fixture
async def tenant_session(tenant_connection: TenantConnection) -> AsyncIterator[AsyncSession]:
    async with tenant_connection.session() as session:
        yield session


@pytest_asyncio.fixture
async def directory_session() -> AsyncIterator[AsyncSession]:
    """Platform directory (stores table) over in-memory SQLite."""
    engine = sqlite_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session
    await engine.dispose()
