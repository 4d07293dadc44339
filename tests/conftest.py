"""
tests/conftest.py -- Shared test fixtures for teamauth.

This module provides:
  - FakeClock: a controllable "now" injected into IdentityStore for expiry tests
  - memory_url(): named shared-memory SQLite URLs
  - unit fixtures: store, settings, issuer, token_store, roles, users,
    sessions, notifier, resets, signup
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any api/ or auth/ import so
get_settings() auto-generates SECRET_KEY in dev mode rather than raising.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, attach_services
from auth.passwords import PasswordResetManager
from auth.permissions import ALL_PERMISSIONS
from auth.roles import RoleService
from auth.sessions import SessionService
from auth.store import IdentityStore
from auth.token_store import TokenStore
from auth.tokens import TokenIssuer
from auth.users import UserService
from core.config import Settings, get_settings

# Rate limits are exercised by slowapi's own tests; here they would only make
# login-heavy modules flaky.
limiter.enabled = False

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"


class FakeClock:
    """Callable clock whose time only moves when a test says so."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


def memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Unit fixtures -- fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> Generator[IdentityStore, None, None]:
    db = IdentityStore(memory_url("unit"), clock=clock)
    db.seed_permissions(ALL_PERMISSIONS)
    yield db
    db.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(debug=True, secret_key=TEST_SECRET)


@pytest.fixture
def issuer(settings: Settings) -> TokenIssuer:
    return TokenIssuer(settings.secret_key)


@pytest.fixture
def token_store(store: IdentityStore) -> TokenStore:
    return TokenStore(store)


@pytest.fixture
def roles(store: IdentityStore) -> RoleService:
    return RoleService(store)


@pytest.fixture
def users(store: IdentityStore) -> UserService:
    return UserService(store)


@pytest.fixture
def sessions(store, token_store, issuer, settings) -> SessionService:
    return SessionService(store, token_store, issuer, settings)


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock()


@pytest.fixture
def resets(store: IdentityStore, notifier: MagicMock) -> PasswordResetManager:
    return PasswordResetManager(store, notifier, ttl_seconds=3600, token_bytes=128)


@pytest.fixture
def signup(users: UserService):
    """Return a helper that creates a team whose first user holds its Admin role."""

    def _signup(email: str = "alice@example.com", password: str = "pw123", team_name: str = "Acme"):
        return users.sign_up(team_name, email.split("@")[0].title(), email, password)

    return _signup


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: IdentityStore, notifier: MagicMock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and a mock notifier into app.state through the same
    attach_services() the real lifespan uses. The OAuth registry is a mock so
    no provider metadata is ever fetched.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_services(app, store, get_settings(), notifier=notifier)
        app.state.oauth = MagicMock()
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, IdentityStore, MagicMock], None, None]:
    """Yield (client, store, notifier) for API integration tests.

    One client per test module. The store uses the real clock because the
    HTTP layer validates token expiry against real time anyway.
    """
    store = IdentityStore(memory_url("api"))
    store.seed_permissions(ALL_PERMISSIONS)
    notifier = MagicMock()

    app.router.lifespan_context = _patch_lifespan(store, notifier)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, store, notifier

    store.close()

