"""
tests/conftest.py -- Shared test fixtures for Agora unit and integration tests.

This module provides:
  - FakeClock: a settable clock so expiry is tested without sleeping
  - make_settings(): Settings with a fixed key and a cheap bcrypt cost
  - _make_test_stores(): creates isolated in-memory DBs for auth + community
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - auth_store / community_store / gateway: per-test component fixtures
  - api_client: TestClient with an admin access token for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any api/auth/core import: get_settings() is
cached on first call and the route decorators read the rate limits at import
time.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set these before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError, and so
# the whole suite hashes at bcrypt's minimum cost.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("SIGNUP_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REFRESH_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.gateway import AuthGateway, build_gateway
from auth.store import AuthStore
from community.store import CommunityStore
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789abcdef-0123456789"
ADMIN_PASSWORD = "admin-pass-42!"
MEMBER_PASSWORD = "member-pass-42!"


# ---------------------------------------------------------------------------
# Clock and settings helpers
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "bcrypt_rounds": 4,
        "access_token_expire_seconds": 900,
        "refresh_token_expire_seconds": 7 * 24 * 3600,
    }
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _memory_url(name: str) -> str:
    return f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true"


def _make_test_stores(db_suffix: str) -> tuple[AuthStore, CommunityStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so test modules and
                   individual tests don't share state.
    """
    auth_store = AuthStore(_memory_url(f"test_auth_{db_suffix}"))
    community_store = CommunityStore(_memory_url(f"test_community_{db_suffix}"))
    return auth_store, community_store


def _patch_lifespan(auth_store: AuthStore, community_store: CommunityStore, gateway: AuthGateway):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores and gateway into app.state so TestClient
    routes see isolated test DBs rather than the configured databases.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_store = auth_store
        app.state.community_store = community_store
        app.state.gateway = gateway
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Function-scoped component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def stores() -> Generator[tuple[AuthStore, CommunityStore], None, None]:
    auth_store, community_store = _make_test_stores(uuid.uuid4().hex)
    yield auth_store, community_store
    community_store.close()
    auth_store.close()


@pytest.fixture
def auth_store(stores) -> AuthStore:
    return stores[0]


@pytest.fixture
def community_store(stores) -> CommunityStore:
    return stores[1]


@pytest.fixture
def gateway(auth_store, community_store, settings, clock) -> AuthGateway:
    return build_gateway(auth_store, community_store, settings, clock)


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores. The
    admin account is created before the client starts and logged in through
    the gateway to get a real access token. The gateway itself is reachable
    as client.app.state.gateway.
    """
    auth_store, community_store = _make_test_stores(uuid.uuid4().hex)
    gateway = build_gateway(auth_store, community_store, make_settings())

    admin = gateway.bootstrap_admin("root@example.com", ADMIN_PASSWORD)
    token = gateway.login("root@example.com", ADMIN_PASSWORD).access_token

    app.router.lifespan_context = _patch_lifespan(auth_store, community_store, gateway)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin.id

    community_store.close()
    auth_store.close()


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
