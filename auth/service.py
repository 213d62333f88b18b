"""
auth/service.py -- Account registration, login and session-token lifecycle.

AuthService is the single entry point the (excluded) HTTP layer calls. It
owns no state of its own: users live in CredentialStore, refresh sessions in
TokenStore, single-use tokens behind VerificationTokenService.

Security:
  [C1] login() verifies against _dummy_hash when the identifier is unknown,
       so response time does not reveal whether an account exists. Unknown
       identifier and wrong password raise the identical UnauthorizedError.
  [C2] forgot_password() returns the same message whether or not the email
       is registered.
  [C3] Refresh tokens are single-use. refresh_token() revokes the presented
       jti and records its successor in one transaction. Presenting an
       already-revoked jti revokes every session of that user, since only a
       copied token can be replayed after rotation.
  [C4] reset_password() revokes all refresh sessions, so a stolen session
       does not survive a password change.

Every refresh failure cause (expired, bad signature, wrong type, revoked,
unknown user) is logged with its reason and surfaces as one
UnauthorizedError("Invalid refresh token").

Store failures (SQLAlchemyError) propagate: an outage must fail closed.
logout() is the exception, it is idempotent and always reports success.

Threading: store calls are synchronous SQLAlchemy and run on the event-loop
thread, the same as every other coroutine over CredentialStore. They are
short indexed single-row statements. Only Argon2 work, which costs tens of
milliseconds per call, is moved to PasswordHasher's worker pool.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import BadRequestError, ConflictError, NotFoundError, UnauthorizedError
from auth.models import RefreshSession, User, UserWithProfile
from auth.notifier import EmailNotifier, LoggingEmailNotifier
from auth.passwords import PasswordHasher
from auth.responses import AuthResponse, MessageResponse, UserSummary
from auth.schema import create_db_engine, to_iso
from auth.store import CredentialStore
from auth.token_store import TokenStore
from auth.tokens import ACCESS, REFRESH, TokenCodec, TokenVerificationError
from auth.verification import VerificationTokenService
from core.config import Settings

logger = logging.getLogger("focipedia.auth")

USER_EXISTS = "User with this email or username already exists"
INVALID_CREDENTIALS = "Invalid credentials"
INVALID_REFRESH_TOKEN = "Invalid refresh token"
INVALID_ACCESS_TOKEN = "Invalid access token"
FORGOT_PASSWORD_MESSAGE = "Password reset email sent (if user exists)"


class AuthService:
    """Registration, login, token refresh/logout and the email-token flows.

    Usage:
        service = AuthService.from_settings(get_settings())
        tokens = await service.register("a@example.com", "Passw0rd!", "alice", "Alice")
        tokens = await service.refresh_token(tokens.refresh_token)
        service.close()
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        token_store: TokenStore,
        verification: VerificationTokenService,
        hasher: PasswordHasher,
        codec: TokenCodec,
        settings: Settings,
    ) -> None:
        self.credential_store = credential_store
        self.token_store = token_store
        self.verification = verification
        self.hasher = hasher
        self.codec = codec
        self.settings = settings
        # Same cost parameters as real hashes, so the [C1] dummy verify takes as long.
        self._dummy_hash = hasher.hash("focipedia_timing_dummy")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        notifier: EmailNotifier | None = None,
        engine: Engine | None = None,
    ) -> AuthService:
        """Wire stores, hasher, codec and verification service from one Settings object."""
        engine = engine or create_db_engine(settings.database_url)
        credential_store = CredentialStore(engine)
        token_store = TokenStore(engine)
        verification = VerificationTokenService(
            token_store,
            credential_store,
            notifier or LoggingEmailNotifier(),
            settings,
        )
        return cls(
            credential_store,
            token_store,
            verification,
            PasswordHasher.from_settings(settings),
            TokenCodec(settings.secret_key),
            settings,
        )

    def close(self) -> None:
        self.hasher.shutdown()
        self.credential_store.close()

    # ------------------------------------------------------------------
    # Registration / login
    # ------------------------------------------------------------------

    async def register(self, email: str, password: str, username: str, display_name: str) -> AuthResponse:
        """Create an unverified account, send the verification email and sign the user in.

        Raises ConflictError if the email or username is taken, including when
        a concurrent registration wins the race between our check and insert.
        """
        if self.credential_store.find_by_email_or_username(email, username) is not None:
            raise ConflictError(USER_EXISTS)

        password_hash = await self.hasher.hash_async(password)
        try:
            created = self.credential_store.create_user_with_profile(
                User(email=email, password_hash=password_hash),
                username,
                display_name,
            )
        except IntegrityError as e:
            logger.info("Registration lost a uniqueness race for %s", username)
            raise ConflictError(USER_EXISTS) from e

        logger.info("User registered: %s", created.user.id)
        token = await self.verification.create_email_verification_token(created.user.id)
        try:
            await self.verification.send_verification_email(
                created.user.email, _display_name(created), token
            )
        except Exception:
            # The token is committed; resend_email_verification is the retry path.
            logger.exception("Verification email delivery failed for user %s", created.user.id)

        return self._issue_token_pair(created)

    async def login(self, email_or_username: str, password: str) -> AuthResponse:
        """Authenticate by email or username.

        Unknown identifier and wrong password are indistinguishable by
        message and by timing [C1].
        """
        found = self.credential_store.find_by_email_or_username(email_or_username)
        if found is None:
            # Equalize timing -- do NOT return before running argon2 [C1]
            await self.hasher.verify_async(self._dummy_hash, password)
            logger.info("Login failed: unknown identifier")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        user = found.user
        if not await self.hasher.verify_async(user.password_hash, password):
            logger.info("Login failed: wrong password for user %s", user.id)
            raise UnauthorizedError(INVALID_CREDENTIALS)

        if self.hasher.needs_rehash(user.password_hash):
            self.credential_store.update_password_hash(user.id, await self.hasher.hash_async(password))
            logger.info("Password hash upgraded for user %s", user.id)

        logger.info("User logged in: %s", user.id)
        return self._issue_token_pair(found)

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    async def refresh_token(self, refresh_token: str) -> AuthResponse:
        """Exchange a live refresh token for a new pair, revoking the old one [C3]."""
        try:
            claims = self.codec.decode(refresh_token, REFRESH)
        except TokenVerificationError as e:
            logger.info("Refresh rejected: %s", e.reason)
            raise UnauthorizedError(INVALID_REFRESH_TOKEN) from None

        session = self.token_store.get_session(claims.jti)
        if session is None or session.user_id != claims.sub:
            logger.info("Refresh rejected: unknown session for user %s", claims.sub)
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)
        if session.revoked_at is not None:
            revoked = self.token_store.revoke_user_sessions(session.user_id)
            logger.warning(
                "Refresh rejected: revoked token replayed for user %s; %d live sessions revoked",
                session.user_id,
                revoked,
            )
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        found = self.credential_store.get_with_profile(claims.sub)
        if found is None:
            logger.info("Refresh rejected: user %s no longer exists", claims.sub)
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        return self._issue_token_pair(found, rotate_from=claims.jti)

    async def logout(self, user_id: str) -> MessageResponse:
        """Revoke every live refresh session of user_id. Idempotent, never raises."""
        try:
            revoked = self.token_store.revoke_user_sessions(user_id)
            logger.info("User %s logged out, %d sessions revoked", user_id, revoked)
        except SQLAlchemyError:
            logger.exception("Session revocation failed during logout for user %s", user_id)
        return MessageResponse(message="Logged out successfully")

    async def authenticate(self, access_token: str) -> User:
        """Resolve an access token to its user. Used by the HTTP layer's auth guard."""
        try:
            claims = self.codec.decode(access_token, ACCESS)
        except TokenVerificationError as e:
            logger.debug("Access token rejected: %s", e.reason)
            raise UnauthorizedError(INVALID_ACCESS_TOKEN) from None
        user = self.credential_store.get_by_id(claims.sub)
        if user is None:
            raise UnauthorizedError(INVALID_ACCESS_TOKEN)
        return user

    def _issue_token_pair(self, found: UserWithProfile, rotate_from: str | None = None) -> AuthResponse:
        """Sign access + refresh tokens and persist the refresh session.

        With rotate_from, the predecessor session is revoked in the same
        transaction; losing a concurrent rotation is reported as Unauthorized.
        """
        user = found.user
        access = self.codec.encode(user.id, user.email, ACCESS, self.settings.access_token_expire_seconds)
        refresh = self.codec.encode(user.id, user.email, REFRESH, self.settings.refresh_token_expire_seconds)
        session = RefreshSession(jti=refresh.jti, user_id=user.id, expires_at=to_iso(refresh.expires_at))

        if rotate_from is None:
            self.token_store.create_session(session)
        elif not self.token_store.rotate_session(rotate_from, session):
            logger.info("Refresh rejected: session for user %s already rotated", user.id)
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        profile = found.profile
        return AuthResponse(
            access_token=access.token,
            refresh_token=refresh.token,
            expires_in=self.settings.access_token_expire_seconds,
            user=UserSummary(
                id=user.id,
                email=user.email,
                username=profile.username if profile else "",
                display_name=profile.display_name if profile else "",
                is_verified=user.is_verified,
            ),
        )

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    async def verify_email(self, token: str) -> MessageResponse:
        result = await self.verification.validate_email_verification_token(token)
        if not result.is_valid:
            logger.info("Email verification rejected: %s", result.error)
            raise BadRequestError("Invalid or expired verification token")
        return MessageResponse(message="Email verified successfully")

    async def resend_email_verification(self, email: str) -> MessageResponse:
        """Issue a fresh verification token and email it.

        Unlike register(), a delivery failure here propagates: the caller
        asked for exactly this email and must learn it was not sent.
        """
        user = self.credential_store.get_by_email(email)
        if user is None:
            raise NotFoundError("User not found")
        if user.is_verified:
            raise BadRequestError("Email is already verified")

        token = await self.verification.resend_email_verification_token(user.id)
        profile = self.credential_store.get_profile(user.id)
        await self.verification.send_verification_email(
            user.email, profile.display_name if profile else user.email, token
        )
        return MessageResponse(message="Verification email sent successfully")

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def forgot_password(self, email: str) -> MessageResponse:
        """Start a password reset. The response never reveals whether email exists [C2]."""
        user = self.credential_store.get_by_email(email)
        if user is not None:
            token = await self.verification.create_password_reset_token(user.id)
            profile = self.credential_store.get_profile(user.id)
            try:
                await self.verification.send_password_reset_email(
                    user.email, profile.display_name if profile else user.email, token
                )
            except Exception:
                logger.exception("Password reset email delivery failed for user %s", user.id)
        return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)

    async def reset_password(self, token: str, new_password: str) -> MessageResponse:
        """Set a new password with a reset token, then end every session [C4].

        The token is peeked first so an invalid token costs no hashing, and
        consumed only after the new hash is ready. Of two concurrent resets
        with the same token, exactly one consumes it.
        """
        peek = await self.verification.validate_password_reset_token(token)
        if not peek.is_valid:
            logger.info("Password reset rejected: %s", peek.error)
            raise BadRequestError("Invalid or expired reset token")

        password_hash = await self.hasher.hash_async(new_password)

        consumed = await self.verification.consume_password_reset_token(token)
        if not consumed.is_valid:
            logger.info("Password reset rejected after hashing: %s", consumed.error)
            raise BadRequestError("Invalid or expired reset token")

        if not self.credential_store.update_password_hash(consumed.user_id, password_hash):
            raise NotFoundError("User not found")
        revoked = self.token_store.revoke_user_sessions(consumed.user_id)
        logger.info("Password reset for user %s, %d sessions revoked", consumed.user_id, revoked)
        return MessageResponse(message="Password reset successfully")

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def is_email_available(self, email: str) -> bool:
        return not self.credential_store.email_exists(email)

    async def is_username_available(self, username: str) -> bool:
        return not self.credential_store.username_exists(username)


def _display_name(found: UserWithProfile) -> str:
    return found.profile.display_name if found.profile else found.user.email
