"""
tests/conftest.py -- Shared fixtures for the Focipedia auth test suite.

This module provides:
  - settings: Settings with a fixed SECRET_KEY and cheap Argon2 parameters
  - engine: an isolated in-memory SQLite database per test
  - notifier: RecordingNotifier, a fake EmailNotifier that keeps every message
  - credential_store / token_store: repositories over the test engine
  - auth_service / verification: fully wired services over the same engine

Design: Named shared-memory SQLite URIs (not plain :memory:). The uuid in the
name gives every test its own database, and the shared cache keeps one schema
visible to every connection the engine opens.

Argon2 runs with 1 MiB / 1 iteration here. Production cost parameters would
make the suite slow without testing anything different.

The DEBUG env var must be set before any core import so get_settings() (used
by the CLI) auto-generates SECRET_KEY instead of raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from sqlalchemy.engine import Engine

from auth.models import TokenKind, VerificationToken
from auth.notifier import EmailVerificationData, PasswordResetData
from auth.schema import create_db_engine, to_iso
from auth.service import AuthService
from auth.store import CredentialStore
from auth.token_store import TokenStore
from auth.tokens import generate_secure_token, hash_token
from auth.verification import VerificationTokenService
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789abcdef-0123456789abcdef"
FRONTEND_URL = "https://focipedia.test"


# ---------------------------------------------------------------------------
# Fake notifier
# ---------------------------------------------------------------------------


class RecordingNotifier:
    """EmailNotifier that records messages instead of sending them.

    Set fail = True to make every send raise ConnectionError, the way an SMTP
    outage surfaces from a real transport.
    """

    def __init__(self) -> None:
        self.verifications: list[EmailVerificationData] = []
        self.resets: list[PasswordResetData] = []
        self.fail = False

    async def send_email_verification(self, data: EmailVerificationData) -> None:
        if self.fail:
            raise ConnectionError("SMTP unavailable")
        self.verifications.append(data)

    async def send_password_reset(self, data: PasswordResetData) -> None:
        if self.fail:
            raise ConnectionError("SMTP unavailable")
        self.resets.append(data)

    def last_verification_token(self) -> str:
        return _token_from_url(self.verifications[-1].verification_url)

    def last_reset_token(self) -> str:
        return _token_from_url(self.resets[-1].reset_url)


def _token_from_url(url: str) -> str:
    return parse_qs(urlparse(url).query)["token"][0]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "frontend_url": FRONTEND_URL,
        "argon2_memory_cost": 1024,
        "argon2_time_cost": 1,
        "argon2_parallelism": 1,
        "password_hash_workers": 2,
    }
    values.update(overrides)
    return Settings(**values)


def _insert_expired_token(token_store: TokenStore, user_id: str, kind: TokenKind) -> str:
    """Store a token that expired an hour ago and return its raw value."""
    raw = generate_secure_token()
    token_store.upsert_token(
        VerificationToken(
            user_id=user_id,
            kind=kind,
            token_hash=hash_token(raw),
            expires_at=to_iso(datetime.now(timezone.utc) - timedelta(hours=1)),
        )
    )
    return raw


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    eng = create_db_engine(url)
    yield eng
    eng.dispose()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def credential_store(engine: Engine) -> CredentialStore:
    return CredentialStore(engine)


@pytest.fixture
def token_store(engine: Engine) -> TokenStore:
    return TokenStore(engine)


@pytest.fixture
def auth_service(settings, engine, notifier) -> Generator[AuthService, None, None]:
    service = AuthService.from_settings(settings, notifier=notifier, engine=engine)
    yield service
    service.hasher.shutdown()


@pytest.fixture
def verification(auth_service: AuthService) -> VerificationTokenService:
    return auth_service.verification


@pytest.fixture
async def alice(auth_service: AuthService):
    """Register alice@example.com / alice and return the AuthResponse."""
    return await auth_service.register("alice@example.com", "Passw0rd!", "alice", "Alice")


@pytest.fixture
def insert_expired_token():
    """Factory fixture: insert_expired_token(token_store, user_id, kind) -> raw token."""
    return _insert_expired_token
