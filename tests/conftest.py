"""
tests/conftest.py -- Shared test fixtures for CredGate.

This module provides:
  - FakeClock: injectable clock for token expiry tests (no real sleep)
  - hasher / policy / store / manager / keys / issuer / service: unit-level
    collaborators wired the same way api/main.py's lifespan wires them
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: every store uses a file-backed SQLite DB under tmp_path. TestClient
runs sync route handlers in a thread pool, and the concurrency tests use
real threads; a file DB with WAL and a busy timeout behaves like the
production setup across threads, where shared-cache in-memory DBs raise
"table is locked" instead of waiting.

DEBUG must be set before any core/ import so get_settings() auto-generates
SECRET_KEY instead of raising ValueError. bcrypt cost 4 keeps tests fast.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.credentials import CredentialManager
from auth.hashing import SecretHasher
from auth.policy import SecretPolicy
from auth.service import AuthService
from auth.store import CredentialStore
from auth.tokens import KeyRingHolder, SigningKeyRing, TokenIssuer
from core.config import get_settings

TEST_KEY = "k" * 40
TEST_ROUNDS = 4


class FakeClock:
    """Callable clock returning a controllable UTC datetime."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Unit-level collaborators
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def hasher() -> SecretHasher:
    return SecretHasher(rounds=TEST_ROUNDS)


@pytest.fixture
def policy() -> SecretPolicy:
    return SecretPolicy()


@pytest.fixture
def store(tmp_path) -> Generator[CredentialStore, None, None]:
    s = CredentialStore(f"sqlite:///{tmp_path / 'credentials.db'}", timeout=5.0)
    yield s
    s.close()


@pytest.fixture
def manager(store, hasher, policy) -> CredentialManager:
    return CredentialManager(store, hasher, policy)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def keys() -> KeyRingHolder:
    return KeyRingHolder(SigningKeyRing(current_kid="k1", current_key=TEST_KEY))


@pytest.fixture
def issuer(keys, clock) -> TokenIssuer:
    return TokenIssuer(keys, ttl_seconds=3600, clock=clock)


@pytest.fixture
def service(manager, issuer) -> AuthService:
    return AuthService(manager, issuer)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore, clock: FakeClock):
    """Return an async context manager that replaces the real lifespan.

    Wires test collaborators into app.state so routes see an isolated DB and
    a controllable clock instead of the production configuration.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        app.state.settings = settings
        app.state.credential_store = store
        app.state.hasher = SecretHasher(rounds=TEST_ROUNDS)
        app.state.credentials = CredentialManager(store, app.state.hasher, SecretPolicy())
        app.state.keys = KeyRingHolder(SigningKeyRing(current_kid="k1", current_key=TEST_KEY))
        app.state.tokens = TokenIssuer(app.state.keys, ttl_seconds=3600, clock=clock)
        app.state.auth_service = AuthService(app.state.credentials, app.state.tokens)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, FakeClock], None, None]:
    """Yield (client, clock) for API integration tests.

    The rate limiter is disabled here; TestRateLimit in test_api_routes.py
    turns it back on for its own requests.
    """
    db_path = tmp_path_factory.mktemp("api") / "credentials.db"
    store = CredentialStore(f"sqlite:///{db_path}", timeout=5.0)
    clock = FakeClock()
    app.router.lifespan_context = _patch_lifespan(store, clock)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, clock

    limiter.enabled = True
    store.close()
