"""
auth/store.py -- SQLAlchemy Core persistence for users, profiles and settings.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_user / _row_to_profile are the mappers. Services never touch SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

Transactions:
  create_user_with_profile() writes users + profiles + user_settings inside
  one engine.begin() block. Any failure (including a UNIQUE violation from a
  concurrent registration) rolls back all three inserts, so no partial row
  set is ever visible.

Case handling: emails are normalized to lower case on the way in and on
lookup. Usernames are matched exactly.
"""

from __future__ import annotations

import uuid

from sqlalchemy import case, func, or_, select
from sqlalchemy.engine import Engine

from auth.models import Profile, User, UserSettings, UserWithProfile
from auth.schema import now_iso, profiles, user_settings, users


def normalize_email(email: str) -> str:
    return email.strip().lower()


class CredentialStore:
    """Repository for User, Profile and UserSettings records.

    Usage:
        engine = create_db_engine("sqlite:///focipedia_auth.db")
        store = CredentialStore(engine)
        user = store.create_user_with_profile(User(email=..., password_hash=...), "alice", "Alice")
        found = store.find_by_email_or_username("alice")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_email_or_username(self, identifier: str, username: str | None = None) -> UserWithProfile | None:
        """Single OR-query over users.email and profiles.username.

        With one argument the same identifier is tried against both columns
        (login). An email match always wins over a username match, so a
        username that looks like someone else's email cannot shadow them.

        Registration passes the email and the requested username separately.
        The username is also checked against users.email, so a new username
        may not equal an existing account's email.
        """
        email = normalize_email(identifier)
        if username is None:
            condition = or_(users.c.email == email, profiles.c.username == identifier.strip())
        else:
            username = username.strip()
            condition = or_(
                users.c.email == email,
                users.c.email == normalize_email(username),
                profiles.c.username == username,
            )
        stmt = (
            select(users, profiles.c.username, profiles.c.display_name)
            .select_from(users.outerjoin(profiles, profiles.c.user_id == users.c.id))
            .where(condition)
            .order_by(case((users.c.email == email, 0), else_=1))
            .limit(1)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_user_with_profile(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_with_profile(self, user_id: str) -> UserWithProfile | None:
        """Return the user joined to its profile. Used by refresh to rebuild the summary."""
        stmt = (
            select(users, profiles.c.username, profiles.c.display_name)
            .select_from(users.outerjoin(profiles, profiles.c.user_id == users.c.id))
            .where(users.c.id == user_id)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_user_with_profile(row) if row is not None else None

    def get_profile(self, user_id: str) -> Profile | None:
        with self.engine.connect() as conn:
            row = conn.execute(profiles.select().where(profiles.c.user_id == user_id)).fetchone()
        return _row_to_profile(row) if row is not None else None

    def get_settings(self, user_id: str) -> UserSettings | None:
        with self.engine.connect() as conn:
            row = conn.execute(user_settings.select().where(user_settings.c.user_id == user_id)).fetchone()
        if row is None:
            return None
        return UserSettings(
            user_id=row.user_id,
            theme=row.theme,
            notifications_enabled=bool(row.notifications_enabled),
            privacy_level=row.privacy_level,
        )

    def email_exists(self, email: str) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count()).select_from(users).where(users.c.email == normalize_email(email))
            ).scalar()
        return (count or 0) > 0

    def username_exists(self, username: str) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count()).select_from(profiles).where(profiles.c.username == username.strip())
            ).scalar()
        return (count or 0) > 0

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(users)).scalar() or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user_with_profile(
        self,
        user: User,
        username: str,
        display_name: str,
        settings: UserSettings | None = None,
    ) -> UserWithProfile:
        """Insert user + profile + settings atomically and return the stored records.

        Raises sqlalchemy.exc.IntegrityError if the email or username is
        already taken. Callers treat that as a lost race with a concurrent
        registration.
        """
        user_id = str(uuid.uuid4())
        created_at = now_iso()
        email = normalize_email(user.email)
        defaults = settings or UserSettings(user_id=user_id)
        with self.engine.begin() as conn:
            conn.execute(
                users.insert().values(
                    id=user_id,
                    email=email,
                    password_hash=user.password_hash,
                    is_verified=user.is_verified,
                    created_at=created_at,
                )
            )
            conn.execute(
                profiles.insert().values(
                    user_id=user_id,
                    username=username.strip(),
                    display_name=display_name.strip(),
                )
            )
            conn.execute(
                user_settings.insert().values(
                    user_id=user_id,
                    theme=defaults.theme,
                    notifications_enabled=defaults.notifications_enabled,
                    privacy_level=defaults.privacy_level,
                )
            )
        stored = User(
            id=user_id,
            email=email,
            password_hash=user.password_hash,
            is_verified=user.is_verified,
            created_at=created_at,
        )
        return UserWithProfile(
            user=stored,
            profile=Profile(user_id=user_id, username=username.strip(), display_name=display_name.strip()),
        )

    def update_password_hash(self, user_id: str, password_hash: str) -> bool:
        """Replace the stored hash. Returns False if user_id was not found."""
        with self.engine.begin() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(password_hash=password_hash))
        return result.rowcount > 0

    def set_verified(self, user_id: str, is_verified: bool = True) -> bool:
        """Set users.is_verified. Returns False if user_id was not found."""
        with self.engine.begin() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(is_verified=is_verified))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
    )


def _row_to_profile(row) -> Profile:
    return Profile(user_id=row.user_id, username=row.username, display_name=row.display_name)


def _row_to_user_with_profile(row) -> UserWithProfile:
    # Outer join: username is NULL for a user whose profile was never created.
    profile = None
    if row.username is not None:
        profile = Profile(user_id=row.id, username=row.username, display_name=row.display_name)
    return UserWithProfile(user=_row_to_user(row), profile=profile)
