"""
auth/token_store.py -- Persistence for single-use tokens and refresh sessions.

Pattern: Repository + Data Mapper, same as auth/store.py.

verification_tokens is one tagged-variant table for both token kinds. The
UNIQUE(user_id, kind) constraint plus upsert_token()'s INSERT .. ON CONFLICT
DO UPDATE gives "one live token per user per kind" without the
delete-then-insert window where two concurrent requests could leave zero or
two rows.

Consumption is conditional: deletes run with WHERE id = :id and report
rowcount, so when two requests race on the same token exactly one sees
rowcount == 1 and wins.

refresh_sessions is the revocation store for refresh tokens. A refresh token
is redeemable only while its jti row exists, is unrevoked and unexpired.
"""

from __future__ import annotations

import uuid

from sqlalchemy import and_, delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine

from auth.models import RefreshSession, TokenKind, VerificationToken
from auth.schema import now_iso, refresh_sessions, users, verification_tokens


class TokenStore:
    """Repository for VerificationToken and RefreshSession records.

    Usage:
        store = TokenStore(engine)
        store.upsert_token(VerificationToken(user_id=uid, kind=TokenKind.PASSWORD_RESET, ...))
        record = store.find_by_hash(hash_token(raw))
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Verification / reset tokens
    # ------------------------------------------------------------------

    def upsert_token(self, token: VerificationToken) -> VerificationToken:
        """Insert token, replacing any existing row for (user_id, kind) in one statement.

        Raises sqlalchemy.exc.IntegrityError if user_id does not reference an
        existing user (foreign key).
        """
        token_id = str(uuid.uuid4())
        created_at = now_iso()
        values = {
            "id": token_id,
            "user_id": token.user_id,
            "kind": token.kind.value,
            "token_hash": token.token_hash,
            "expires_at": token.expires_at,
            "created_at": created_at,
        }
        replace = {k: values[k] for k in ("id", "token_hash", "expires_at", "created_at")}
        dialect = self.engine.dialect.name
        with self.engine.begin() as conn:
            if dialect in ("sqlite", "postgresql"):
                insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
                stmt = (
                    insert(verification_tokens)
                    .values(**values)
                    .on_conflict_do_update(index_elements=["user_id", "kind"], set_=replace)
                )
                conn.execute(stmt)
            else:
                # No portable upsert: fall back to delete + insert in one transaction.
                conn.execute(
                    delete(verification_tokens).where(
                        and_(
                            verification_tokens.c.user_id == token.user_id,
                            verification_tokens.c.kind == token.kind.value,
                        )
                    )
                )
                conn.execute(verification_tokens.insert().values(**values))
        return VerificationToken(
            id=token_id,
            user_id=token.user_id,
            kind=token.kind,
            token_hash=token.token_hash,
            expires_at=token.expires_at,
            created_at=created_at,
        )

    def find_by_hash(self, token_hash: str, kind: TokenKind) -> VerificationToken | None:
        """Look up a token of the given kind by its SHA-256 digest. O(1) via UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(
                verification_tokens.select().where(
                    and_(
                        verification_tokens.c.token_hash == token_hash,
                        verification_tokens.c.kind == kind.value,
                    )
                )
            ).fetchone()
        return _row_to_token(row) if row is not None else None

    def find_for_user(self, user_id: str, kind: TokenKind) -> VerificationToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                verification_tokens.select().where(
                    and_(
                        verification_tokens.c.user_id == user_id,
                        verification_tokens.c.kind == kind.value,
                    )
                )
            ).fetchone()
        return _row_to_token(row) if row is not None else None

    def delete_by_id(self, token_id: str) -> bool:
        """Delete one token row. Returns True only for the caller that removed it."""
        with self.engine.begin() as conn:
            result = conn.execute(delete(verification_tokens).where(verification_tokens.c.id == token_id))
        return result.rowcount > 0

    def consume_email_verification(self, token_id: str, user_id: str) -> bool:
        """Delete the token and mark its user verified in one transaction.

        Returns False (and changes nothing) if the token row was already gone,
        i.e. a concurrent request consumed it first.
        """
        with self.engine.begin() as conn:
            deleted = conn.execute(delete(verification_tokens).where(verification_tokens.c.id == token_id))
            if deleted.rowcount == 0:
                return False
            conn.execute(update(users).where(users.c.id == user_id).values(is_verified=True))
        return True

    def delete_expired(self, kind: TokenKind, now: str | None = None) -> int:
        """Delete every token of kind whose expires_at is before now. Returns rows removed."""
        cutoff = now or now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(verification_tokens).where(
                    and_(
                        verification_tokens.c.kind == kind.value,
                        verification_tokens.c.expires_at < cutoff,
                    )
                )
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Refresh sessions
    # ------------------------------------------------------------------

    def create_session(self, session: RefreshSession) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                refresh_sessions.insert().values(
                    jti=session.jti,
                    user_id=session.user_id,
                    expires_at=session.expires_at,
                    created_at=session.created_at or now_iso(),
                    revoked_at=None,
                )
            )

    def get_session(self, jti: str) -> RefreshSession | None:
        with self.engine.connect() as conn:
            row = conn.execute(refresh_sessions.select().where(refresh_sessions.c.jti == jti)).fetchone()
        return _row_to_session(row) if row is not None else None

    def rotate_session(self, old_jti: str, new_session: RefreshSession) -> bool:
        """Revoke old_jti and record new_session atomically.

        The revoke is conditional on old_jti being live, so a refresh token
        presented twice concurrently rotates at most once. Returns False when
        old_jti was already revoked, expired or missing; nothing is written.
        """
        now = now_iso()
        with self.engine.begin() as conn:
            revoked = conn.execute(
                update(refresh_sessions)
                .where(
                    and_(
                        refresh_sessions.c.jti == old_jti,
                        refresh_sessions.c.revoked_at.is_(None),
                        refresh_sessions.c.expires_at > now,
                    )
                )
                .values(revoked_at=now)
            )
            if revoked.rowcount == 0:
                return False
            conn.execute(
                refresh_sessions.insert().values(
                    jti=new_session.jti,
                    user_id=new_session.user_id,
                    expires_at=new_session.expires_at,
                    created_at=now,
                    revoked_at=None,
                )
            )
        return True

    def revoke_user_sessions(self, user_id: str) -> int:
        """Revoke every live refresh session for user_id. Returns how many were revoked."""
        now = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                update(refresh_sessions)
                .where(and_(refresh_sessions.c.user_id == user_id, refresh_sessions.c.revoked_at.is_(None)))
                .values(revoked_at=now)
            )
        return result.rowcount

    def list_active_sessions(self, user_id: str) -> list[RefreshSession]:
        now = now_iso()
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(refresh_sessions)
                .where(
                    and_(
                        refresh_sessions.c.user_id == user_id,
                        refresh_sessions.c.revoked_at.is_(None),
                        refresh_sessions.c.expires_at > now,
                    )
                )
                .order_by(refresh_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def delete_expired_sessions(self, now: str | None = None) -> int:
        """Drop sessions past their expiry. Revoked-but-unexpired rows are kept."""
        cutoff = now or now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(delete(refresh_sessions).where(refresh_sessions.c.expires_at < cutoff))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_token(row) -> VerificationToken:
    return VerificationToken(
        id=row.id,
        user_id=row.user_id,
        kind=TokenKind(row.kind),
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


def _row_to_session(row) -> RefreshSession:
    return RefreshSession(
        jti=row.jti,
        user_id=row.user_id,
        expires_at=row.expires_at,
        created_at=row.created_at,
        revoked_at=row.revoked_at,
    )
