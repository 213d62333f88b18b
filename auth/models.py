"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and services do the work.

Layer rule: no imports from core/. Stores map rows into these types; services
never see SQLAlchemy rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class TokenKind(str, Enum):
    """Discriminator for the tagged-variant verification_tokens table."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


@dataclass
class User:
    """An account that can log in with a password.

    password_hash is an Argon2id PHC string (algorithm, parameters, salt and
    digest in one field). is_verified flips to True exactly once, when an
    email-verification token is consumed.
    """

    email: str
    password_hash: str
    id: str | None = None  # uuid4 string, assigned by the store
    is_verified: bool = False
    created_at: str | None = None


@dataclass
class Profile:
    """Public identity of a user. Owned by the profile module, read here."""

    user_id: str
    username: str
    display_name: str


@dataclass
class UserSettings:
    """Per-user preferences. Created with defaults during registration."""

    user_id: str
    theme: str = "light"
    notifications_enabled: bool = True
    privacy_level: str = "public"


@dataclass
class UserWithProfile:
    """Join result used by login and refresh to build the response summary."""

    user: User
    profile: Profile | None = None


@dataclass
class VerificationToken:
    """A single-use out-of-band token (email verification or password reset).

    Only token_hash (SHA-256 of the raw token) is persisted. The raw value is
    returned once at creation time and handed to the notifier.
    """

    user_id: str
    kind: TokenKind
    token_hash: str
    expires_at: str
    id: str | None = None
    created_at: str | None = None


@dataclass
class RefreshSession:
    """Server-side record of one issued refresh token, keyed by its jti claim.

    revoked_at is set on logout, on rotation (the predecessor of every newly
    issued refresh token) and on password reset.
    """

    jti: str
    user_id: str
    expires_at: str
    created_at: str | None = None
    revoked_at: str | None = None


@dataclass
class TokenValidationResult:
    """Outcome of validating a single-use token.

    error is one of "Token not found" or "Token expired" when is_valid is False.
    """

    is_valid: bool
    user_id: str | None = None
    error: str | None = None


@dataclass
class CleanupResult:
    """Row counts removed by one cleanup sweep. failed lists the steps that errored."""

    email_verification: int = 0
    password_reset: int = 0
    refresh_sessions: int = 0
    failed: list[str] | None = None
