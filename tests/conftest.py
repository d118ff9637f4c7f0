"""
Test fixtures for the wallet ledger test suite.

This module provides shared fixtures used across all test files:

  - db_engine / session_factory: Fresh file-backed SQLite database per test
  - fake_redis: In-memory stand-in for the Redis idempotency cache
  - wallet_service: The real ledger core wired to both
  - make_account: Onboards a user and seeds its account balance
  - client: Async HTTP test client with the test database and service injected
  - authenticated_client: Test client for a freshly onboarded user

Key design decisions:
  - Each test gets its own SQLite FILE, not an in-memory database. An
    in-memory aiosqlite database is a single shared connection, so two
    concurrent sessions would share one transaction; the concurrency tests
    need genuinely separate connections.
  - FakeRedis implements exactly the primitives the coordinator uses
    (SET with NX/EX, GET, DELETE). Every method runs without awaiting, so
    a SET NX is atomic with respect to other tasks, as it is in Redis.
"""

import time

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from wallet.config import settings
from wallet.database import Base, get_db
from wallet.dependencies import get_wallet_service
from wallet.main import app
from wallet.models.account import Account
from wallet.services import account_service
from wallet.services.wallet_service import build_wallet_service


class FakeRedis:
    """In-memory Redis with expiry, covering SET NX/EX, GET, and DELETE."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.expires_at: dict[str, float] = {}
        self.ttls: dict[str, int | None] = {}

    def _evict(self, key: str) -> None:
        deadline = self.expires_at.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self.store.pop(key, None)
            self.expires_at.pop(key, None)
            self.ttls.pop(key, None)

    async def set(self, key, value, ex=None, nx=False):
        self._evict(key)
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.ttls[key] = ex
        if ex is None:
            self.expires_at.pop(key, None)
        else:
            self.expires_at[key] = time.monotonic() + ex
        return True

    async def get(self, key):
        self._evict(key)
        return self.store.get(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            self._evict(key)
            if self.store.pop(key, None) is not None:
                removed += 1
            self.expires_at.pop(key, None)
            self.ttls.pop(key, None)
        return removed

    def expire(self, key: str) -> None:
        """Force `key` to expire now, as if its TTL had elapsed."""
        self.expires_at[key] = time.monotonic() - 1

    def flushall(self) -> None:
        self.store.clear()
        self.expires_at.clear()
        self.ttls.clear()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'wallet.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def fake_redis():
    return FakeRedis()


@pytest_asyncio.fixture
async def wallet_service(session_factory, fake_redis):
    return build_wallet_service(session_factory, fake_redis, settings)


@pytest_asyncio.fixture
async def make_account(session_factory):
    """
    Factory fixture: onboard a user and return its committed Account.

    `balance_cents` seeds the stored balance directly, bypassing the ledger,
    so tests start from a known balance without extra records.
    """
    counter = 0

    async def _make(balance_cents: int = 0, currency: str = "USD", email: str | None = None) -> Account:
        nonlocal counter
        counter += 1
        async with session_factory() as session:
            async with session.begin():
                _, account = await account_service.onboard_user(
                    session,
                    email or f"user{counter}@example.com",
                    currency,
                )
                account.balance_cents = balance_cents
        return account

    return _make


@pytest_asyncio.fixture
async def client(session_factory, wallet_service):
    """
    Async HTTP test client with the test database and service injected.

    The lifespan does not run under ASGITransport, so the dependencies that
    would read app.state are overridden here.
    """

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_wallet_service] = lambda: wallet_service

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def authenticated_client(client):
    """
    Test client for a freshly onboarded USD user.

    Onboards via the real endpoint and sets the X-User-API-Key header for
    all subsequent requests.
    """
    response = await client.post("/v1/users", json={"email": "testuser@example.com"})
    assert response.status_code == 201, f"Onboarding failed: {response.text}"
    client.headers["X-User-API-Key"] = response.json()["api_key"]
    return client
