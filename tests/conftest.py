"""
tests/conftest.py -- Shared test fixtures for PrepLog.

This module provides:
  - FrozenClock: a controllable UTC clock injected into every time-aware component
  - RecordingMailer: captures outgoing mail, can be switched to fail
  - store / service: function-scoped AuthService over a private in-memory DB
  - api_client: TestClient over the real FastAPI app with a patched lifespan
  - client: the api_client's TestClient with its cookie jar emptied per test

Design: the HTTP fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

bcrypt rounds are lowered to 4 (the minimum) everywhere so the suite stays
fast; the cost factor does not change hashing semantics.

The DEBUG env var must be set before any app import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import re
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_auth_service
from auth.errors import DeliveryError
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import ResetTokenCodec, SessionIssuer
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"
TEST_ROUNDS = 4

_RESET_LINK_RE = re.compile(r"/password/reset/([0-9a-f]{64})")


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@dataclass
class SentMail:
    to_address: str
    subject: str
    body: str

    @property
    def reset_token(self) -> str:
        match = _RESET_LINK_RE.search(self.body)
        assert match, f"No reset link in mail body: {self.body!r}"
        return match.group(1)


class RecordingMailer:
    """Mailer double. Set fail=True to make the next sends raise DeliveryError."""

    def __init__(self) -> None:
        self.sent: list[SentMail] = []
        self.fail = False

    def send(self, to_address: str, subject: str, body: str) -> None:
        if self.fail:
            raise DeliveryError()
        self.sent.append(SentMail(to_address, subject, body))

    @property
    def last(self) -> SentMail:
        assert self.sent, "No mail was sent"
        return self.sent[-1]


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "bcrypt_rounds": TEST_ROUNDS,
        "smtp_host": "",
        "public_base_url": "",
    }
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=TEST_ROUNDS)


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    """Private in-memory AccountStore; a fresh database for every test."""
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def service(store: AccountStore, mailer: RecordingMailer, hasher: PasswordHasher, clock: FrozenClock) -> AuthService:
    return AuthService(
        store=store,
        mailer=mailer,
        hasher=hasher,
        reset_codec=ResetTokenCodec(window_seconds=3600, clock=clock),
        sessions=SessionIssuer(secret_key=TEST_SECRET, expire_seconds=3600, clock=clock),
        clock=clock,
    )


# ---------------------------------------------------------------------------
# HTTP fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    mailer: RecordingMailer
    store: AccountStore


def _patch_lifespan(settings: Settings, store: AccountStore, mailer: RecordingMailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and recording mailer into app.state through the same
    build_auth_service() the production lifespan uses.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.account_store = store
        app.state.auth_service = build_auth_service(settings, store, mailer)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness bound to an isolated shared-memory database.

    The DB name includes the test module name so modules never share state.
    Tests inside one module do share it, so each test registers its own
    uniquely named accounts.
    """
    db_name = request.module.__name__.replace(".", "_")
    store = AccountStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    mailer = RecordingMailer()
    app.router.lifespan_context = _patch_lifespan(make_settings(), store, mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, mailer=mailer, store=store)

    store.close()


@pytest.fixture
def client(api_client: ApiHarness) -> TestClient:
    """The module's TestClient with no session cookie left over from earlier tests."""
    api_client.client.cookies.clear()
    api_client.mailer.fail = False
    return api_client.client
