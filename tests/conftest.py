"""
tests/conftest.py -- Shared test fixtures for authcore unit and integration tests.

This module provides:
  - clock: a FakeClock (tests/helpers.py) so expiry tests move time instead of sleeping
  - unit fixtures: credentials, codec, user_store, refresh_store, audit, flows
  - _make_test_stores(): creates isolated in-memory DBs for the HTTP tests
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient with an admin access token for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the HTTP tests because TestClient runs route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process. Unit tests stay on one thread
and use plain :memory:.

The signing secrets must be in the environment before any api/ import so
get_settings() validates instead of raising ValueError. bcrypt cost is
dropped to the minimum (4) to keep the suite fast.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set secrets before any api/ or core/ import so get_settings()
# passes its secret policy checks.
os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-access-secret-0123456789abcdef0123")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret-0123456789abcdef012")
os.environ.setdefault("PASSWORD_HASH_COST", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_state
from auth.audit import MemoryAuditSink
from auth.flows import AuthFlows
from auth.models import Principal, Role
from auth.passwords import CredentialService
from auth.store import RefreshTokenStore, UserStore
from auth.tokens import TokenCodec
from core.config import get_settings
from tests.helpers import ACCESS_SECRET, ADMIN_EMAIL, ADMIN_PASSWORD, REFRESH_SECRET, FakeClock


# ---------------------------------------------------------------------------
# Unit fixtures -- fresh collaborators per test
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="session")
def credentials() -> CredentialService:
    return CredentialService(cost=4)


@pytest.fixture
def codec(clock: FakeClock) -> TokenCodec:
    return TokenCodec(
        access_secret=ACCESS_SECRET,
        refresh_secret=REFRESH_SECRET,
        access_ttl=15 * 60,
        refresh_ttl=7 * 24 * 3600,
        clock=clock,
    )


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(db_url="sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def refresh_store(clock: FakeClock) -> Generator[RefreshTokenStore, None, None]:
    store = RefreshTokenStore(db_url="sqlite:///:memory:", clock=clock)
    yield store
    store.close()


@pytest.fixture
def audit() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def flows(
    user_store: UserStore,
    refresh_store: RefreshTokenStore,
    credentials: CredentialService,
    codec: TokenCodec,
    audit: MemoryAuditSink,
) -> AuthFlows:
    return AuthFlows(user_store, refresh_store, credentials, codec, audit)


@pytest.fixture
def make_principal(user_store: UserStore, credentials: CredentialService):
    """Factory: insert a principal and return it as stored."""

    def _make(
        email: str = "user@example.com",
        password: str = "Secret123!",
        role: Role = Role.USER,
        name: str = "Test User",
        is_active: bool = True,
    ) -> Principal:
        uid = user_store.create(
            Principal(
                email=email,
                name=name,
                password_hash=credentials.hash(password),
                role=role,
                is_active=is_active,
            )
        )
        return user_store.find_by_id(uid)

    return _make


# ---------------------------------------------------------------------------
# Store helpers for the HTTP tests
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, RefreshTokenStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Both stores point at the same named database, as they would in
    production. Named URIs allow multiple connections (from different threads
    in TestClient) to access the same in-memory database.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    url = f"sqlite:///file:test_authcore_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=url), RefreshTokenStore(db_url=url)


def _patch_lifespan(user_store: UserStore, refresh_store: RefreshTokenStore, audit: MemoryAuditSink):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores and an in-memory audit sink into app.state
    so TestClient routes see isolated test DBs rather than the production
    database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, get_settings(), user_store, refresh_store, audit=audit)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores.
    The admin user is created before the client starts and an access token
    is issued for use in Authorization headers.
    """
    user_store, refresh_store = _make_test_stores(request.module.__name__.rsplit(".", 1)[-1])
    settings = get_settings()

    admin = Principal(
        email=ADMIN_EMAIL,
        name="Test Admin",
        password_hash=CredentialService(cost=settings.password_hash_cost).hash(ADMIN_PASSWORD),
        role=Role.ADMIN,
    )
    uid = user_store.create(admin)
    token = TokenCodec.from_settings(settings).issue_access(user_store.find_by_id(uid))

    app.router.lifespan_context = _patch_lifespan(user_store, refresh_store, MemoryAuditSink())

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid

    refresh_store.close()
    user_store.close()
