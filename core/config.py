"""
core/config.py -- Settings for the Focipedia auth subsystem (pydantic-settings).

Every tunable of the auth services lives on Settings: the JWT signing key,
token lifetimes, Argon2 cost, the worker-pool size and the frontend base URL
used in emailed links. Services take a Settings instance in their
constructor; only the CLI entry point calls get_settings().

Sources, highest priority first: constructor kwargs (tests), environment
variables (ACCESS_TOKEN_EXPIRE_SECONDS for access_token_expire_seconds), then
a .env file in the working directory.

Lifetimes:
  access_token_expire_seconds both signs the access token and is reported as
  expires_in, so clients never see a lifetime the token does not have.
  Single-use token lifetimes are in hours (24 for email verification, 1 for
  password reset).

Layer rule: core/ never imports from auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("focipedia.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'focipedia_auth.db'}"


class Settings(BaseSettings):
    """Auth subsystem settings. Settings(debug=True) needs no environment at all."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # "" means unset; check_signing_key_and_lifetimes() fills or rejects it.
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    log_level: str = "INFO"

    # Base URL of the web frontend; verification and reset links point here.
    frontend_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)

    # ------------------------------------------------------------------
    # Single-use tokens
    # ------------------------------------------------------------------

    email_verification_expire_hours: int = Field(default=24, gt=0)
    password_reset_expire_hours: int = Field(default=1, gt=0)
    token_cleanup_interval_seconds: int = Field(default=3600, gt=0)

    # ------------------------------------------------------------------
    # Password hashing (Argon2id)
    # ------------------------------------------------------------------

    argon2_memory_cost: int = 65536  # KiB -> 64 MiB
    argon2_time_cost: int = 3
    argon2_parallelism: int = 1
    password_hash_workers: int = Field(default=4, gt=0)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def check_signing_key_and_lifetimes(self) -> "Settings":
        """Resolve the JWT signing key and sanity-check session lifetimes.

        With DEBUG=true and no SECRET_KEY, a throwaway key is generated: every
        access and refresh token issued before a restart stops verifying.
        Without DEBUG a missing key is fatal. Keys under 32 characters are
        rejected in both modes since HS256 is only as strong as the key.

        A refresh token that dies before its access token would make
        refresh_token() useless, so refresh must outlive access.
        """
        if not self.secret_key and self.debug:
            self.secret_key = secrets.token_hex(32)
            logger.warning("DEBUG: generated an ephemeral SECRET_KEY; issued sessions end when the process exits.")
        if not self.secret_key:
            raise ValueError("SECRET_KEY is not set. Session tokens cannot be signed; set it or run with DEBUG=true.")
        if len(self.secret_key) < 32:
            raise ValueError(f"SECRET_KEY is {len(self.secret_key)} characters; HS256 signing needs at least 32.")
        if self.refresh_token_expire_seconds <= self.access_token_expire_seconds:
            raise ValueError("REFRESH_TOKEN_EXPIRE_SECONDS must be greater than ACCESS_TOKEN_EXPIRE_SECONDS.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Process-wide Settings, built from the environment on first call.

    Tests that change environment variables call get_settings.cache_clear().
    """
    return Settings()
