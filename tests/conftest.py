"""
tests/conftest.py -- Shared test fixtures for the identity service tests.

This module provides:
  - engine / users / refresh_tokens: SQLAlchemy stores on a fresh in-memory DB
  - issuer / hasher / service: a fully wired SessionService (cheap bcrypt cost)
  - publisher: records session events so tests can assert on them
  - register_verified(): register + verify helper for login-based tests
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: unit fixtures use sqlite:///:memory: (single thread, one connection
per thread via SQLAlchemy's SingletonThreadPool). The API fixture uses a
temp-file database because TestClient runs sync route handlers in a thread
pool, and each worker thread would otherwise see its own empty in-memory DB.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import timedelta

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_session_service
from auth.events import SessionEvent
from auth.passwords import PasswordHasher
from auth.service import SessionService
from auth.store import RefreshTokenStore, UserStore, open_engine
from auth.tokens import TokenIssuer
from core.config import Settings

TEST_SECRET = "test-secret-0123456789abcdef0123456789abcdef"
STRONG_PASSWORD = "Passw0rd!"


class RecordingPublisher:
    """Collects published SessionEvents in order."""

    def __init__(self) -> None:
        self.events: list[SessionEvent] = []

    def publish(self, event: SessionEvent) -> None:
        self.events.append(event)

    @property
    def names(self) -> list[str]:
        return [e.name for e in self.events]


# ---------------------------------------------------------------------------
# Store and service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    eng = open_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def users(engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def refresh_tokens(engine) -> RefreshTokenStore:
    return RefreshTokenStore(engine)


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(TEST_SECRET, access_ttl=timedelta(minutes=15), refresh_ttl=timedelta(days=7))


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    # Minimum bcrypt cost keeps the suite fast; production uses 12.
    return PasswordHasher(rounds=4)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def service(users, refresh_tokens, issuer, hasher, publisher) -> SessionService:
    return SessionService(users, refresh_tokens, issuer, hasher, publisher=publisher)


def register_verified(service: SessionService, username: str, email: str, password: str = STRONG_PASSWORD):
    """Register a user and mark the email verified. Returns the verified User."""
    user = service.register(username, email, password, name=username.title())
    return service.verify_email(user.id)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(service: SessionService):
    """Return an async context manager that replaces the real lifespan.

    Wires a pre-built SessionService into app.state so routes use the
    isolated test database rather than the configured one.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.session_service = service
        yield

    return test_lifespan


@pytest.fixture
def api_client(tmp_path) -> Generator[tuple[TestClient, SessionService], None, None]:
    """Yield (client, service) for API integration tests.

    The service is shared with the test so it can verify emails and inspect
    stored sessions directly.
    """
    settings = Settings(
        debug=True,
        secret_key=TEST_SECRET,
        database_url=f"sqlite:///{tmp_path / 'api.db'}",
        bcrypt_rounds=4,
    )
    service = build_session_service(settings)
    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service

    service.users.engine.dispose()
