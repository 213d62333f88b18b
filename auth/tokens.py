"""
auth/tokens.py -- Session token codec and opaque token generation.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens share one claim shape
       {sub, email, type, jti, iat, exp} and one signing secret; they differ
       only in "type" and "exp". The "type" claim stops a long-lived refresh
       token from being accepted where an access token is expected, and vice
       versa. "jti" keys the refresh_sessions table so refresh tokens can be
       revoked.

  Verification failures: decode() raises TokenVerificationError with a
       reason ("expired", "bad_signature", "malformed", "invalid_claims",
       "wrong_type"). Services log the reason and collapse every variant into
       one UnauthorizedError for the caller.

  Opaque tokens: secrets.token_hex(32) gives 256 bits of entropy and is not
       derived from anything a user can guess. Only hash_token(raw) (SHA-256)
       is stored, so a leaked token table cannot be replayed. A plain digest is
       enough here: the input already has full entropy, so the slowness
       Argon2 adds for passwords buys nothing.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import InternalError

logger = logging.getLogger("focipedia.auth.tokens")

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "email", "type", "jti", "iat", "exp")

ACCESS = "access"
REFRESH = "refresh"


class TokenVerificationError(Exception):
    """Raised by TokenCodec.decode(). reason is for logs only, never for clients."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass
class IssuedToken:
    token: str
    jti: str
    expires_at: datetime


@dataclass
class TokenClaims:
    sub: str
    email: str
    type: str
    jti: str
    iat: datetime
    exp: datetime


class TokenCodec:
    """Signs and verifies self-contained session tokens with a shared secret."""

    def __init__(self, secret_key: str, algorithm: str = _ALGORITHM) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm

    def encode(self, user_id: str, email: str, token_type: str, expires_in: int) -> IssuedToken:
        """Sign a token for user_id that expires expires_in seconds from now."""
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=expires_in)
        jti = uuid.uuid4().hex
        payload = {
            "sub": user_id,
            "email": email,
            "type": token_type,
            "jti": jti,
            "iat": now,
            "exp": expires_at,
        }
        try:
            token = jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
        except JWTError as e:
            logger.error("Token signing failed: %s", e)
            raise InternalError("Token signing failed") from e
        return IssuedToken(token=token, jti=jti, expires_at=expires_at)

    def decode(self, token: str, expected_type: str) -> TokenClaims:
        """Verify signature, expiry and shape; return the claims.

        Raises TokenVerificationError on any failure.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError as e:
            raise TokenVerificationError("expired") from e
        except JWTClaimsError as e:
            raise TokenVerificationError("invalid_claims") from e
        except JWTError as e:
            if "signature" in str(e).lower():
                raise TokenVerificationError("bad_signature") from e
            raise TokenVerificationError("malformed") from e

        if any(claim not in payload for claim in _REQUIRED_CLAIMS):
            raise TokenVerificationError("invalid_claims")
        if payload["type"] != expected_type:
            raise TokenVerificationError("wrong_type")

        return TokenClaims(
            sub=str(payload["sub"]),
            email=str(payload["email"]),
            type=payload["type"],
            jti=str(payload["jti"]),
            iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )


# ---------------------------------------------------------------------------
# Opaque single-use tokens
# ---------------------------------------------------------------------------


def generate_secure_token() -> str:
    """Return a 64-hex-char token carrying 256 bits of randomness."""
    return secrets.token_hex(32)


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest of raw_token, used as the lookup key in storage."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()
