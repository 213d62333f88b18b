#!/usr/bin/env python3
"""
Focipedia auth -- administrative command line for the credential subsystem.

Usage:
  python main.py init-db
  python main.py cleanup-tokens
  python main.py cleanup-tokens --loop
  python main.py create-user alice@example.com alice "Alice Example"
  python main.py create-user admin@example.com admin Admin --verified
  python main.py --db sqlite:///other.db init-db

Environment variables:
  SECRET_KEY     Signing key for session tokens (>= 32 chars). Required unless DEBUG=true.
  DATABASE_URL   SQLAlchemy URL. Defaults to focipedia_auth.db next to this file.
  DEBUG          Set to true for local development (auto-generated SECRET_KEY).
  LOG_LEVEL      Logging level, INFO by default.
"""

import argparse
import asyncio
import getpass
import logging
from typing import Optional

from auth.errors import AuthError
from auth.schema import create_db_engine
from auth.service import AuthService
from auth.verification import cleanup_loop
from core.config import Settings, get_settings

logger = logging.getLogger("focipedia.cli")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _build_service(settings: Settings, db_url: Optional[str]) -> AuthService:
    engine = create_db_engine(db_url or settings.database_url)
    return AuthService.from_settings(settings, engine=engine)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_init_db(settings: Settings, args: argparse.Namespace) -> int:
    url = args.db or settings.database_url
    engine = create_db_engine(url)
    engine.dispose()
    print(f"  Database ready: {url}")
    return 0


def cmd_cleanup_tokens(settings: Settings, args: argparse.Namespace) -> int:
    service = _build_service(settings, args.db)
    try:
        if args.loop:
            interval = args.interval or settings.token_cleanup_interval_seconds
            logger.info("Token cleanup loop started (every %ds)", interval)
            try:
                asyncio.run(cleanup_loop(service.verification, interval))
            except KeyboardInterrupt:
                logger.info("Token cleanup loop stopped")
            return 0

        result = asyncio.run(service.verification.cleanup_expired_tokens())
        print(
            f"  Removed {result.email_verification} email verification token(s), "
            f"{result.password_reset} password reset token(s), "
            f"{result.refresh_sessions} refresh session(s)."
        )
        if result.failed:
            print(f"  [!] Cleanup steps failed: {', '.join(result.failed)}")
            return 1
        return 0
    finally:
        service.close()


def cmd_create_user(settings: Settings, args: argparse.Namespace) -> int:
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Confirm password: "):
        print("  [!] Passwords do not match.")
        return 1

    service = _build_service(settings, args.db)
    try:
        created = asyncio.run(service.register(args.email, password, args.username, args.display_name))
        if args.verified:
            service.credential_store.set_verified(created.user.id)
    except AuthError as e:
        print(f"  [!] {e.message}")
        return 1
    finally:
        service.close()

    state = "verified" if args.verified else "unverified"
    print(f"  Created {state} user {created.user.username} ({created.user.id})")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="focipedia-auth",
        description="Focipedia credential and token-lifecycle administration",
    )
    parser.add_argument(
        "--db",
        metavar="URL",
        help="SQLAlchemy database URL (overrides DATABASE_URL)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create any missing auth tables")

    cleanup = sub.add_parser("cleanup-tokens", help="Delete expired single-use tokens and refresh sessions")
    cleanup.add_argument("--loop", action="store_true", help="Keep running and sweep periodically")
    cleanup.add_argument(
        "--interval",
        type=int,
        metavar="SECONDS",
        help="Sweep interval for --loop (default: TOKEN_CLEANUP_INTERVAL_SECONDS)",
    )

    create = sub.add_parser("create-user", help="Register an account (prompts for the password)")
    create.add_argument("email")
    create.add_argument("username")
    create.add_argument("display_name")
    create.add_argument("--verified", action="store_true", help="Mark the email as already verified")

    return parser


_COMMANDS = {
    "init-db": cmd_init_db,
    "cleanup-tokens": cmd_cleanup_tokens,
    "create-user": cmd_create_user,
}


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    _configure_logging(settings.log_level)
    return _COMMANDS[args.command](settings, args)


if __name__ == "__main__":
    raise SystemExit(main())
