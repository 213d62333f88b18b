"""
auth/verification.py -- Email-verification and password-reset token lifecycle.

Each (user, kind) pair runs the same small state machine:

    CREATED --validate/consume--> CONSUMED        (row deleted)
    CREATED --read after expiry--> EXPIRED        (row deleted lazily)
    CREATED --cleanup sweep------> EXPIRED        (row deleted in batch)
    CREATED --new token issued---> REPLACED       (row overwritten by upsert)

Once a row is gone its token string can never validate again, so deleting
the row is the single mechanism behind single-use and time-bounded tokens.

Email verification is validate-and-consume in one step: the token delete and
users.is_verified update share a transaction. Password reset splits the two:
validate_password_reset_token() only peeks, consume_password_reset_token()
deletes, so a reset token authorizes exactly one password change.

Store failures propagate to the caller, except in cleanup_expired_tokens(),
which is run by a scheduler and must keep working on the next tick.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import quote

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import BadRequestError, NotFoundError
from auth.models import CleanupResult, TokenKind, TokenValidationResult, VerificationToken
from auth.notifier import EmailNotifier, EmailVerificationData, PasswordResetData
from auth.schema import now_iso, to_iso
from auth.store import CredentialStore
from auth.token_store import TokenStore
from auth.tokens import generate_secure_token, hash_token
from core.config import Settings

logger = logging.getLogger("focipedia.auth.verification")

TOKEN_NOT_FOUND = "Token not found"
TOKEN_EXPIRED = "Token expired"


class VerificationTokenService:
    """Issues, validates, consumes and sweeps single-use tokens, and sends their emails."""

    def __init__(
        self,
        token_store: TokenStore,
        credential_store: CredentialStore,
        notifier: EmailNotifier,
        settings: Settings,
    ) -> None:
        self.token_store = token_store
        self.credential_store = credential_store
        self.notifier = notifier
        self.settings = settings

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_email_verification_token(self, user_id: str) -> str:
        """Replace any email-verification token for user_id and return the new raw token."""
        return self._create(user_id, TokenKind.EMAIL_VERIFICATION, self.settings.email_verification_expire_hours)

    async def create_password_reset_token(self, user_id: str) -> str:
        """Replace any password-reset token for user_id and return the new raw token."""
        return self._create(user_id, TokenKind.PASSWORD_RESET, self.settings.password_reset_expire_hours)

    async def resend_email_verification_token(self, user_id: str) -> str:
        """Issue a fresh verification token unless the user is already verified.

        Raises NotFoundError for an unknown user_id and BadRequestError when
        the account is already verified.
        """
        user = self.credential_store.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        if user.is_verified:
            raise BadRequestError("User is already verified")
        return await self.create_email_verification_token(user_id)

    def _create(self, user_id: str, kind: TokenKind, lifetime_hours: int) -> str:
        raw_token = generate_secure_token()
        expires_at = datetime.now(timezone.utc) + timedelta(hours=lifetime_hours)
        try:
            self.token_store.upsert_token(
                VerificationToken(
                    user_id=user_id,
                    kind=kind,
                    token_hash=hash_token(raw_token),
                    expires_at=to_iso(expires_at),
                )
            )
        except IntegrityError as e:
            # The only foreign key on the row is user_id.
            raise NotFoundError("User not found") from e
        logger.info("%s token created for user %s", kind.value, user_id)
        return raw_token

    # ------------------------------------------------------------------
    # Validation / consumption
    # ------------------------------------------------------------------

    async def validate_email_verification_token(self, token: str) -> TokenValidationResult:
        """Validate and consume: mark the user verified and delete the token atomically."""
        result, record = self._peek(token, TokenKind.EMAIL_VERIFICATION)
        if not result.is_valid:
            return result
        if not self.token_store.consume_email_verification(record.id, record.user_id):
            # A concurrent request consumed it between our read and our delete.
            return TokenValidationResult(is_valid=False, error=TOKEN_NOT_FOUND)
        logger.info("Email verified for user %s", record.user_id)
        return result

    async def validate_password_reset_token(self, token: str) -> TokenValidationResult:
        """Check a reset token without consuming it."""
        result, _ = self._peek(token, TokenKind.PASSWORD_RESET)
        return result

    async def consume_password_reset_token(self, token: str) -> TokenValidationResult:
        """Validate, then delete. Only one caller can ever receive is_valid=True for a token."""
        result, record = self._peek(token, TokenKind.PASSWORD_RESET)
        if not result.is_valid:
            return result
        if not self.token_store.delete_by_id(record.id):
            return TokenValidationResult(is_valid=False, error=TOKEN_NOT_FOUND)
        logger.info("Password reset token consumed for user %s", record.user_id)
        return result

    def _peek(self, token: str, kind: TokenKind) -> tuple[TokenValidationResult, VerificationToken | None]:
        """Look up token; delete it if expired. Never mutates a live token."""
        record = self.token_store.find_by_hash(hash_token(token), kind)
        if record is None:
            return TokenValidationResult(is_valid=False, error=TOKEN_NOT_FOUND), None
        if record.expires_at < now_iso():
            self.token_store.delete_by_id(record.id)
            logger.info("Expired %s token removed for user %s", kind.value, record.user_id)
            return TokenValidationResult(is_valid=False, error=TOKEN_EXPIRED), None
        return TokenValidationResult(is_valid=True, user_id=record.user_id), record

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    def build_verification_url(self, token: str) -> str:
        return f"{self.settings.frontend_url.rstrip('/')}/verify-email?token={quote(token, safe='')}"

    def build_reset_url(self, token: str) -> str:
        return f"{self.settings.frontend_url.rstrip('/')}/reset-password?token={quote(token, safe='')}"

    async def send_verification_email(self, email: str, display_name: str, token: str) -> None:
        await self.notifier.send_email_verification(
            EmailVerificationData(
                email=email,
                display_name=display_name,
                verification_url=self.build_verification_url(token),
                expiration_hours=self.settings.email_verification_expire_hours,
            )
        )

    async def send_password_reset_email(self, email: str, display_name: str, token: str) -> None:
        await self.notifier.send_password_reset(
            PasswordResetData(
                email=email,
                display_name=display_name,
                reset_url=self.build_reset_url(token),
                expiration_hours=self.settings.password_reset_expire_hours,
            )
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_expired_tokens(self) -> CleanupResult:
        """Batch-delete expired tokens of both kinds and expired refresh sessions.

        Each step runs in its own transaction. A failing step is logged and
        recorded in result.failed; the remaining steps still run and nothing
        is raised, so the next scheduled run starts from a clean slate.
        """
        now = now_iso()
        result = CleanupResult(failed=[])
        steps = (
            ("email_verification", lambda: self.token_store.delete_expired(TokenKind.EMAIL_VERIFICATION, now)),
            ("password_reset", lambda: self.token_store.delete_expired(TokenKind.PASSWORD_RESET, now)),
            ("refresh_sessions", lambda: self.token_store.delete_expired_sessions(now)),
        )
        for name, step in steps:
            try:
                setattr(result, name, step())
            except SQLAlchemyError:
                logger.exception("Token cleanup step '%s' failed", name)
                result.failed.append(name)
        logger.info(
            "Cleaned up expired tokens: %d email verification, %d password reset, %d refresh sessions",
            result.email_verification,
            result.password_reset,
            result.refresh_sessions,
        )
        return result


async def cleanup_loop(service: VerificationTokenService, interval_seconds: int) -> None:
    """Run cleanup_expired_tokens() every interval_seconds until cancelled.

    CancelledError from task.cancel() propagates out of asyncio.sleep and
    unwinds the coroutine cleanly.
    """
    while True:
        await service.cleanup_expired_tokens()
        await asyncio.sleep(interval_seconds)
