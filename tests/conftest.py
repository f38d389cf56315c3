"""
tests/conftest.py -- Shared test fixtures for the account service.

This module provides:
  - FakeClock:          a callable clock CodeService accepts, moved by hand
  - RecordingMailer:    a real Mailer (templates render) whose transport
                        records messages instead of calling SendGrid
  - StubGoogleStrategy: maps credential strings to GoogleIdentity objects
  - harness:            every store and service wired together on an
                        isolated database
  - client:             TestClient over the real FastAPI app with the
                        harness injected through a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool and the reaper
runs in worker threads. Plain :memory: DBs are per-connection and would
present a blank schema to each thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the process; a uuid in the name keeps tests apart.

The DEBUG env var must be set before any api/ import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from accounts.service import AccountService
from api.main import app
from auth.codes import CodeService, CodeStore
from auth.google import GoogleIdentity, GoogleIdentityBridge
from auth.store import UserStore, utcnow
from auth.tokens import TokenIssuer
from core.errors import EmailSendFailedError, InvalidGoogleCredentialError
from core.mailer import Mailer

TEST_SECRET = "test-secret-key-for-the-account-service-0123456789"

VALID_PASSWORD = "Abc12345!"

_CODE_RE = re.compile(r">\s*(\d{6})\s*<")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock for CodeService. Starts at the real current time."""

    def __init__(self) -> None:
        self.now: datetime = utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class SentMail:
    to: str
    subject: str
    html: str

    @property
    def code(self) -> str | None:
        match = _CODE_RE.search(self.html)
        return match.group(1) if match else None


class RecordingMailer(Mailer):
    """Mailer whose transport appends to self.sent. Set fail=True to simulate an outage."""

    def __init__(self) -> None:
        super().__init__(api_key="", from_email="", app_name="BiloGames")
        self.sent: list[SentMail] = []
        self.fail = False

    def send(self, to: str, subject: str, html: str) -> None:
        if self.fail:
            raise EmailSendFailedError()
        self.sent.append(SentMail(to=to, subject=subject, html=html))

    def to(self, address: str) -> list[SentMail]:
        return [m for m in self.sent if m.to == address]

    def last_code(self, address: str) -> str:
        codes = [m.code for m in self.to(address) if m.code]
        assert codes, f"no code mailed to {address}"
        return codes[-1]


class StubGoogleStrategy:
    """Resolves only the credentials registered in self.identities."""

    name = "stub"

    def __init__(self) -> None:
        self.identities: dict[str, GoogleIdentity] = {}

    def add(
        self,
        credential: str,
        google_id: str,
        email: str,
        given_name: str = "Gina",
        family_name: str = "Gold",
        email_verified: bool = True,
    ) -> GoogleIdentity:
        identity = GoogleIdentity(
            google_id=google_id,
            email=email,
            given_name=given_name,
            family_name=family_name,
            email_verified=email_verified,
        )
        self.identities[credential] = identity
        return identity

    def resolve(self, credential: str) -> GoogleIdentity:
        if credential not in self.identities:
            raise InvalidGoogleCredentialError("unknown stub credential")
        return self.identities[credential]


# ---------------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    store: UserStore
    codes: CodeService
    tokens: TokenIssuer
    mailer: RecordingMailer
    google: StubGoogleStrategy
    clock: FakeClock
    service: AccountService
    extras: dict = field(default_factory=dict)


def shared_memory_url(prefix: str = "accounts") -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def harness() -> Generator[Harness, None, None]:
    store = UserStore(db_url=shared_memory_url())
    clock = FakeClock()
    codes = CodeService(CodeStore(store.engine), ttl_minutes=15, clock=clock)
    tokens = TokenIssuer(TEST_SECRET, expire_seconds=7 * 24 * 3600)
    mailer = RecordingMailer()
    google = StubGoogleStrategy()
    service = AccountService(
        users=store,
        codes=codes,
        tokens=tokens,
        mailer=mailer,
        google=GoogleIdentityBridge([google]),
    )
    yield Harness(store=store, codes=codes, tokens=tokens, mailer=mailer, google=google, clock=clock, service=service)
    store.close()


def _patch_lifespan(h: Harness):
    """Return an async context manager that replaces the real lifespan.

    Wires the harness into app.state so routes see the isolated database,
    the recording mailer and the stub Google bridge. No reaper task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = h.store
        app.state.code_service = h.codes
        app.state.token_issuer = h.tokens
        app.state.mailer = h.mailer
        app.state.account_service = h.service
        app.state.reaper_task = None
        yield

    return test_lifespan


@pytest.fixture
def client(harness: Harness) -> Generator[TestClient, None, None]:
    app.router.lifespan_context = _patch_lifespan(harness)
    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def registration(**overrides) -> dict:
    """JSON body for POST /api/auth/register."""
    body = {
        "email": "a@x.com",
        "password": VALID_PASSWORD,
        "firstname": "Ann",
        "lastname": "Lee",
        "username": "annlee",
        "birthDate": "2000-01-01",
    }
    body.update(overrides)
    return body


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
