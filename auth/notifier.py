"""
auth/notifier.py -- Outbound email contract used by the auth services.

The services build fully-formed notification requests (recipient, display
name, link, lifetime) and hand them to an EmailNotifier. Rendering templates
and SMTP delivery belong to the notifier implementation, not to this package.

LoggingEmailNotifier is the development implementation: when no mail
transport is wired in, it logs the link so a developer can click through the
flow locally. It never logs anything but the link, which is already
addressed to the recipient.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger("focipedia.auth.notifier")


@dataclass
class EmailVerificationData:
    email: str
    display_name: str
    verification_url: str
    expiration_hours: int


@dataclass
class PasswordResetData:
    email: str
    display_name: str
    reset_url: str
    expiration_hours: int


class EmailNotifier(Protocol):
    """Anything that can deliver the two auth emails. Async so SMTP/HTTP clients fit naturally."""

    async def send_email_verification(self, data: EmailVerificationData) -> None: ...

    async def send_password_reset(self, data: PasswordResetData) -> None: ...


class LoggingEmailNotifier:
    """Development notifier: logs the link instead of sending mail."""

    async def send_email_verification(self, data: EmailVerificationData) -> None:
        logger.info(
            "[DEV] Email verification link for %s (valid %dh): %s",
            data.email,
            data.expiration_hours,
            data.verification_url,
        )

    async def send_password_reset(self, data: PasswordResetData) -> None:
        logger.info(
            "[DEV] Password reset link for %s (valid %dh): %s",
            data.email,
            data.expiration_hours,
            data.reset_url,
        )
