"""
tests/conftest.py -- Shared test fixtures for AuthGate unit and integration tests.

This module provides:
  - FrozenClock / RecordingNotifier: deterministic collaborators for engines
  - unit fixtures: in-memory stores, hasher, token service, engines
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - api_client: TestClient over the real app with isolated state per test module

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API client because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment variables must be set before any api/auth/core import:
  DEBUG=true             -- get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4        -- the bcrypt minimum keeps the suite fast
  *_RATE_LIMIT           -- high enough that ordinary tests never trip them
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any auth/core import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("AUTH_RATE_LIMIT", "1000/minute")
os.environ.setdefault("GLOBAL_RATE_LIMIT", "1000/minute")
os.environ["SMTP_HOST"] = ""

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, init_state
from auth.audit import AuditLog
from auth.engine import AuthEngine
from auth.exceptions import NotificationError
from auth.hashing import PasswordHasher
from auth.models import User
from auth.reset import ResetEngine
from auth.revocation import InMemoryRevocationList
from auth.store import AuthEventStore, PasswordResetStore, UserStore, create_db_engine
from auth.tokens import TokenService
from core.background import InlineRunner
from core.config import get_settings

TEST_SECRET = "test-secret-key-" + "x" * 32
PASSWORD = "Passw0rd!"


# ---------------------------------------------------------------------------
# Deterministic collaborators
# ---------------------------------------------------------------------------


class FrozenClock:
    """Wall clock that only moves when a test tells it to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingNotifier:
    """Notifier that remembers what it would have sent. Can be told to fail."""

    def __init__(self) -> None:
        self.welcomes: list[str] = []
        self.resets: list[tuple[str, str, int]] = []
        self.fail_welcome = False
        self.fail_reset = False

    def send_welcome(self, user: User) -> None:
        if self.fail_welcome:
            raise OSError("smtp down")
        self.welcomes.append(user.email)

    def send_password_reset(self, user: User, token: str, ttl_hours: int) -> None:
        if self.fail_reset:
            raise NotificationError()
        self.resets.append((user.email, token, ttl_hours))

    def last_token_for(self, email: str) -> str:
        tokens = [token for addr, token, _ in self.resets if addr == email]
        assert tokens, f"no reset email recorded for {email}"
        return tokens[-1]


# ---------------------------------------------------------------------------
# Unit fixtures -- one fresh in-memory database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def db_engine():
    engine = create_db_engine("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def user_store(db_engine, clock) -> UserStore:
    return UserStore(db_engine, clock=clock)


@pytest.fixture
def reset_store(db_engine, clock) -> PasswordResetStore:
    return PasswordResetStore(db_engine, clock=clock)


@pytest.fixture
def event_store(db_engine, clock) -> AuthEventStore:
    return AuthEventStore(db_engine, clock=clock)


@pytest.fixture
def secret_key() -> str:
    return TEST_SECRET


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def audit(event_store) -> AuditLog:
    return AuditLog(event_store, InlineRunner())


@pytest.fixture
def tokens(clock, secret_key) -> TokenService:
    return TokenService(secret_key, ttl_seconds=3600, clock=clock)


@pytest.fixture
def revocations() -> InMemoryRevocationList:
    return InMemoryRevocationList()


@pytest.fixture
def auth_engine(user_store, hasher, tokens, revocations, audit, notifier) -> AuthEngine:
    return AuthEngine(
        users=user_store,
        hasher=hasher,
        tokens=tokens,
        revocations=revocations,
        audit=audit,
        notifier=notifier,
        runner=InlineRunner(),
    )


@pytest.fixture
def reset_engine(user_store, reset_store, hasher, audit, notifier, clock) -> ResetEngine:
    return ResetEngine(
        users=user_store,
        resets=reset_store,
        hasher=hasher,
        audit=audit,
        notifier=notifier,
        ttl_hours=1,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# API integration fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(db_engine, notifier: RecordingNotifier):
    """Return an async context manager that replaces the real lifespan.

    Wires test components into app.state so TestClient routes see an
    isolated test DB and a recording notifier. InlineRunner keeps audit
    writes on the request thread so assertions never race a pool.

    purge_tasks are long-sleeping coroutines standing in for the retention
    loops (a real asyncio.Task is required for .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, get_settings(), db_engine, InlineRunner(), notifier=notifier)
        app.state.purge_tasks = [asyncio.create_task(asyncio.sleep(99999))]
        yield
        for task in app.state.purge_tasks:
            task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, RecordingNotifier], None, None]:
    """Yield (client, notifier) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but use an isolated in-memory database named
    after the test module.
    """
    db_name = request.module.__name__.replace(".", "_")
    db_engine = create_db_engine(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    notifier = RecordingNotifier()

    app.router.lifespan_context = _patch_lifespan(db_engine, notifier)
    limiter.reset()

    with TestClient(app, raise_server_exceptions=False) as client:
        yield client, notifier

    db_engine.dispose()


@pytest.fixture
def unique_email() -> Callable[[], str]:
    """Factory for emails that never collide across tests sharing one database."""

    def make(prefix: str = "user") -> str:
        return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"

    return make


@pytest.fixture
def registered(api_client, unique_email) -> dict:
    """A freshly registered account: {"email", "password", "token", "user"}."""
    client, _notifier = api_client
    email = unique_email()
    resp = client.post("/api/v1/auth/register", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 201, resp.text
    body = resp.json()
    return {"email": email, "password": PASSWORD, "token": body["token"], "user": body["user"]}
