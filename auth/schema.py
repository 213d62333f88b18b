"""
auth/schema.py -- SQLAlchemy Core schema and engine factory shared by the auth stores.

Uses SQLAlchemy Core (not ORM) so the dataclasses in auth/models.py remain the
authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

CredentialStore and TokenStore share one engine: verify-email updates users
and deletes from verification_tokens inside a single transaction, which only
works when both tables live behind the same connection.

Timestamps are TEXT in fixed-width ISO-8601 UTC (always with microseconds), so
lexicographic order equals chronological order and "expires_at < :now" works
as a plain string comparison on every backend.

Single-active-token rule: UNIQUE(user_id, kind) on verification_tokens.
TokenStore writes with INSERT .. ON CONFLICT DO UPDATE against that key.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    event,
    false,
    true,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("is_verified", Boolean, nullable=False, server_default=false()),
    Column("created_at", String(32), nullable=False),
)

profiles = Table(
    "profiles",
    metadata,
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("username", String(32), nullable=False, unique=True),
    Column("display_name", String(100), nullable=False),
)

user_settings = Table(
    "user_settings",
    metadata,
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("theme", String(20), nullable=False, server_default="light"),
    Column("notifications_enabled", Boolean, nullable=False, server_default=true()),
    Column("privacy_level", String(20), nullable=False, server_default="public"),
)

verification_tokens = Table(
    "verification_tokens",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("kind", String(30), nullable=False),  # "email_verification" | "password_reset"
    Column("token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("expires_at", String(32), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "kind", name="uq_verification_tokens_user_kind"),
)

refresh_sessions = Table(
    "refresh_sessions",
    metadata,
    Column("jti", String(32), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("revoked_at", String(32)),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys on every new SQLite connection.

    PRAGMAs are per-connection, so they are set from a connect listener rather
    than once at startup. Foreign keys are off by default in SQLite; without
    them a token row could reference a user that does not exist.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    """Create an engine for db_url and make sure every auth table exists.

    create_all() only creates missing tables, so this is safe on every start.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------


def to_iso(dt: datetime) -> str:
    """Fixed-width UTC ISO-8601 string. Naive datetimes are treated as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))
