"""Unit tests for auth/token_store.py -- single-use tokens and refresh sessions.

Covers:
- upsert_token() keeps exactly one row per (user, kind)
- unknown user_id is rejected by the foreign key
- conditional consumption: the second delete/consume reports False
- delete_expired() only touches expired rows of the requested kind
- refresh session create/rotate/revoke/expire
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from auth.models import RefreshSession, TokenKind, User, VerificationToken
from auth.schema import to_iso, verification_tokens


def _in(hours: float) -> str:
    return to_iso(datetime.now(timezone.utc) + timedelta(hours=hours))


def _token(user_id, kind=TokenKind.EMAIL_VERIFICATION, token_hash="a" * 64, hours=1.0):
    return VerificationToken(user_id=user_id, kind=kind, token_hash=token_hash, expires_at=_in(hours))


@pytest.fixture
def user_id(credential_store):
    created = credential_store.create_user_with_profile(
        User(email="alice@example.com", password_hash="$argon2id$stub"), "alice", "Alice"
    )
    return created.user.id


def _row_count(engine) -> int:
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(verification_tokens)).scalar()


# ---------------------------------------------------------------------------
# TestUpsert
# ---------------------------------------------------------------------------


class TestUpsert:
    def test_upsert_replaces_previous_token_of_same_kind(self, engine, token_store, user_id):
        token_store.upsert_token(_token(user_id, token_hash="a" * 64))
        token_store.upsert_token(_token(user_id, token_hash="b" * 64))

        assert _row_count(engine) == 1
        assert token_store.find_by_hash("a" * 64, TokenKind.EMAIL_VERIFICATION) is None
        assert token_store.find_for_user(user_id, TokenKind.EMAIL_VERIFICATION).token_hash == "b" * 64

    def test_kinds_are_independent(self, engine, token_store, user_id):
        token_store.upsert_token(_token(user_id, TokenKind.EMAIL_VERIFICATION, "a" * 64))
        token_store.upsert_token(_token(user_id, TokenKind.PASSWORD_RESET, "b" * 64))
        assert _row_count(engine) == 2

    def test_find_by_hash_respects_kind(self, token_store, user_id):
        token_store.upsert_token(_token(user_id, TokenKind.PASSWORD_RESET, "c" * 64))
        assert token_store.find_by_hash("c" * 64, TokenKind.EMAIL_VERIFICATION) is None
        assert token_store.find_by_hash("c" * 64, TokenKind.PASSWORD_RESET).user_id == user_id

    def test_unknown_user_rejected(self, token_store):
        with pytest.raises(IntegrityError):
            token_store.upsert_token(_token("no-such-user"))


# ---------------------------------------------------------------------------
# TestConsume
# ---------------------------------------------------------------------------


class TestConsume:
    def test_delete_by_id_succeeds_once(self, token_store, user_id):
        stored = token_store.upsert_token(_token(user_id))
        assert token_store.delete_by_id(stored.id) is True
        assert token_store.delete_by_id(stored.id) is False

    def test_consume_email_verification_marks_user_verified(self, token_store, credential_store, user_id):
        stored = token_store.upsert_token(_token(user_id))
        assert token_store.consume_email_verification(stored.id, user_id) is True
        assert credential_store.get_by_id(user_id).is_verified is True
        assert token_store.find_for_user(user_id, TokenKind.EMAIL_VERIFICATION) is None

    def test_second_consume_changes_nothing(self, token_store, credential_store, user_id):
        stored = token_store.upsert_token(_token(user_id))
        token_store.consume_email_verification(stored.id, user_id)
        credential_store.set_verified(user_id, False)

        assert token_store.consume_email_verification(stored.id, user_id) is False
        assert credential_store.get_by_id(user_id).is_verified is False

    def test_delete_expired_only_removes_expired_rows_of_kind(self, token_store, credential_store, user_id):
        bob = credential_store.create_user_with_profile(
            User(email="bob@example.com", password_hash="$argon2id$stub"), "bob", "Bob"
        ).user.id
        token_store.upsert_token(_token(user_id, TokenKind.EMAIL_VERIFICATION, "a" * 64, hours=-1))
        token_store.upsert_token(_token(bob, TokenKind.EMAIL_VERIFICATION, "b" * 64, hours=1))
        token_store.upsert_token(_token(user_id, TokenKind.PASSWORD_RESET, "c" * 64, hours=-1))

        assert token_store.delete_expired(TokenKind.EMAIL_VERIFICATION) == 1
        assert token_store.find_for_user(bob, TokenKind.EMAIL_VERIFICATION) is not None
        assert token_store.find_for_user(user_id, TokenKind.PASSWORD_RESET) is not None


# ---------------------------------------------------------------------------
# TestRefreshSessions
# ---------------------------------------------------------------------------


class TestRefreshSessions:
    def test_create_and_get(self, token_store, user_id):
        token_store.create_session(RefreshSession(jti="j1", user_id=user_id, expires_at=_in(24)))
        session = token_store.get_session("j1")
        assert session.user_id == user_id
        assert session.revoked_at is None
        assert token_store.get_session("missing") is None

    def test_rotate_revokes_old_and_creates_new(self, token_store, user_id):
        token_store.create_session(RefreshSession(jti="j1", user_id=user_id, expires_at=_in(24)))
        assert token_store.rotate_session("j1", RefreshSession(jti="j2", user_id=user_id, expires_at=_in(24)))

        assert token_store.get_session("j1").revoked_at is not None
        assert token_store.get_session("j2").revoked_at is None

    def test_rotate_twice_fails_and_writes_nothing(self, token_store, user_id):
        token_store.create_session(RefreshSession(jti="j1", user_id=user_id, expires_at=_in(24)))
        token_store.rotate_session("j1", RefreshSession(jti="j2", user_id=user_id, expires_at=_in(24)))

        assert token_store.rotate_session("j1", RefreshSession(jti="j3", user_id=user_id, expires_at=_in(24))) is False
        assert token_store.get_session("j3") is None

    def test_rotate_expired_session_fails(self, token_store, user_id):
        token_store.create_session(RefreshSession(jti="j1", user_id=user_id, expires_at=_in(-1)))
        assert token_store.rotate_session("j1", RefreshSession(jti="j2", user_id=user_id, expires_at=_in(24))) is False

    def test_revoke_user_sessions(self, token_store, user_id):
        for jti in ("j1", "j2", "j3"):
            token_store.create_session(RefreshSession(jti=jti, user_id=user_id, expires_at=_in(24)))
        assert len(token_store.list_active_sessions(user_id)) == 3

        assert token_store.revoke_user_sessions(user_id) == 3
        assert token_store.list_active_sessions(user_id) == []
        assert token_store.revoke_user_sessions(user_id) == 0

    def test_delete_expired_sessions(self, token_store, user_id):
        token_store.create_session(RefreshSession(jti="old", user_id=user_id, expires_at=_in(-1)))
        token_store.create_session(RefreshSession(jti="live", user_id=user_id, expires_at=_in(24)))

        assert token_store.delete_expired_sessions() == 1
        assert token_store.get_session("old") is None
        assert token_store.get_session("live") is not None
