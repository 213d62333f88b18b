"""
auth/errors.py -- Domain error taxonomy for the auth services.

Every error carries a stable machine-readable code and a human message, the
same {"code", "message"} shape the HTTP layer already puts in error bodies.
status_code is a hint for that layer; services never build HTTP responses.

Security-sensitive messages are deliberately uninformative: login failures and
refresh failures each collapse into a single UnauthorizedError message.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for errors raised by AuthService and VerificationTokenService."""

    code: str = "auth_error"
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ConflictError(AuthError):
    """Duplicate email or username at registration."""

    code = "conflict"
    status_code = 409


class UnauthorizedError(AuthError):
    """Bad credentials, or any refresh/access token verification failure."""

    code = "unauthorized"
    status_code = 401


class NotFoundError(AuthError):
    """An operation referenced a user with no backing record."""

    code = "not_found"
    status_code = 404


class BadRequestError(AuthError):
    """Invalid or expired verification/reset token, or a state that forbids the action."""

    code = "bad_request"
    status_code = 400


class InternalError(AuthError):
    """Hashing or signing failure. Store failures propagate as SQLAlchemyError."""

    code = "internal"
    status_code = 500
