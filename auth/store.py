"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Service and route code never touches SQL directly.

Uniqueness:
  email, username and google_id each carry a UNIQUE constraint. The store
  still checks for an existing row before writing so callers get a precise
  DuplicateEmailError / DuplicateUsernameError, but two concurrent requests
  can both pass that check. The losing INSERT/UPDATE then fails with
  IntegrityError and _raise_conflict() re-reads the table to report which
  column collided. google_id is nullable; SQL treats NULLs as distinct, which
  is exactly "unique when present".

Cascades:
  SQLite only enforces FOREIGN KEY ... ON DELETE CASCADE when the connection
  has PRAGMA foreign_keys=ON, so the connect listener sets it on every pooled
  connection. Verification codes (auth/codes.py) hang off users.id and go away
  with the user row.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or accounts/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, Text, create_engine, event, or_, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import User
from core.errors import (
    DuplicateEmailError,
    DuplicateUsernameError,
    GoogleAccountLinkedError,
    UserNotFoundError,
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

# Shared with auth/codes.py so the code tables can declare foreign keys to
# users.id and be created by the same create_all().
metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("firstname", String(100), nullable=False),
    Column("lastname", String(100), nullable=False),
    Column("username", String(100), nullable=False, unique=True),
    Column("birth_date", String(32)),
    Column("google_id", String(255), unique=True),  # NULL until linked
    Column("email_verified", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False, index=True),
    Column("updated_at", String(32), nullable=False),
)

# Columns update_user() accepts. Anything else is a programming error.
_MUTABLE_FIELDS = frozenset(
    {"email", "password_hash", "firstname", "lastname", "username", "birth_date", "google_id", "email_verified"}
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journaling and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _configure_sqlite)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def iso(moment: datetime) -> str:
    """Render a datetime as fixed-width ISO 8601 UTC.

    timespec="microseconds" keeps the width constant (isoformat() drops the
    fraction when it is zero), so string comparison in SQL orders correctly.
    """
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///accounts.db")
        user_id = store.create_user(User(email=..., username=..., ...))
        user = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = create_db_engine(db_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises DuplicateEmailError / DuplicateUsernameError /
        GoogleAccountLinkedError when a unique column is already taken,
        whether detected by the pre-check or by the database constraint.
        """
        if self.get_by_email(user.email) is not None:
            raise DuplicateEmailError()
        if self.get_by_username(user.username) is not None:
            raise DuplicateUsernameError()
        if user.google_id and self.get_by_google_id(user.google_id) is not None:
            raise GoogleAccountLinkedError()

        now = iso(utcnow())
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    users.insert().values(
                        email=user.email,
                        password_hash=user.password_hash,
                        firstname=user.firstname,
                        lastname=user.lastname,
                        username=user.username,
                        birth_date=user.birth_date,
                        google_id=user.google_id,
                        email_verified=user.email_verified,
                        created_at=user.created_at or now,
                        updated_at=now,
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            self._raise_conflict(exc, email=user.email, username=user.username, google_id=user.google_id)
            raise

    def update_user(self, user_id: int, **fields) -> User:
        """Apply a partial update and return the fresh record.

        Uniqueness of email / username against *other* users is checked before
        the write. Raises UserNotFoundError if the row no longer exists.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")

        if "email" in fields:
            other = self.get_by_email(fields["email"])
            if other is not None and other.id != user_id:
                raise DuplicateEmailError()
        if "username" in fields:
            other = self.get_by_username(fields["username"])
            if other is not None and other.id != user_id:
                raise DuplicateUsernameError()

        fields["updated_at"] = iso(utcnow())
        try:
            with self.engine.connect() as conn:
                result = conn.execute(users.update().where(users.c.id == user_id).values(**fields))
                conn.commit()
        except IntegrityError as exc:
            self._raise_conflict(
                exc,
                email=fields.get("email"),
                username=fields.get("username"),
                google_id=fields.get("google_id"),
                exclude_id=user_id,
            )
            raise
        if result.rowcount == 0:
            raise UserNotFoundError()
        updated = self.get_by_id(user_id)
        if updated is None:
            raise UserNotFoundError()
        return updated

    def link_google(self, user_id: int, google_id: str) -> User:
        """Attach a Google identity to an existing account.

        Google vouches for the address, so the email counts as verified from
        here on.
        """
        return self.update_user(user_id, google_id=google_id, email_verified=True)

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user. Returns True if a row was removed.

        Idempotent: deleting an already-deleted id returns False. Verification
        codes are removed by the FK cascade.
        """
        with self.engine.connect() as conn:
            result = conn.execute(users.delete().where(users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def delete_unverified_user(self, user_id: int, cutoff: datetime) -> bool:
        """Delete the user only if still unverified and created before cutoff.

        The reaper's delete. A user who verifies after being selected keeps
        the account. Idempotent like delete_user().
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                users.delete().where(
                    (users.c.id == user_id)
                    & (users.c.email_verified.is_(False))
                    & (users.c.created_at < iso(cutoff))
                )
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> User | None:
        return self._fetch_one(users.c.id == user_id)

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive, as stored)."""
        return self._fetch_one(users.c.email == email)

    def get_by_username(self, username: str) -> User | None:
        return self._fetch_one(users.c.username == username)

    def get_by_google_id(self, google_id: str) -> User | None:
        return self._fetch_one(users.c.google_id == google_id)

    def get_by_google_id_or_email(self, google_id: str, email: str) -> User | None:
        """Resolve a Google identity to a local account.

        A row already linked to google_id wins over a row that merely shares
        the email address.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(
                users.select().where(or_(users.c.google_id == google_id, users.c.email == email))
            ).fetchall()
        if not rows:
            return None
        rows.sort(key=lambda r: r.google_id != google_id)
        return _row_to_user(rows[0])

    def list_unverified_before(self, cutoff: datetime) -> list[User]:
        """Return unverified accounts created strictly before cutoff, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(users)
                .where((users.c.email_verified.is_(False)) & (users.c.created_at < iso(cutoff)))
                .order_by(users.c.created_at)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fetch_one(self, condition) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(condition)).fetchone()
        return _row_to_user(row) if row is not None else None

    def _raise_conflict(
        self,
        exc: IntegrityError,
        email: str | None = None,
        username: str | None = None,
        google_id: str | None = None,
        exclude_id: int | None = None,
    ) -> None:
        """Translate a unique-constraint failure into the matching domain error.

        Returns normally when no known column collides; the caller re-raises
        the original IntegrityError in that case.
        """
        checks = (
            (email, self.get_by_email, DuplicateEmailError),
            (username, self.get_by_username, DuplicateUsernameError),
            (google_id, self.get_by_google_id, GoogleAccountLinkedError),
        )
        for value, lookup, error in checks:
            if value is None:
                continue
            existing = lookup(value)
            if existing is not None and existing.id != exclude_id:
                raise error() from exc


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        firstname=row.firstname,
        lastname=row.lastname,
        username=row.username,
        birth_date=row.birth_date,
        google_id=row.google_id,
        email_verified=bool(row.email_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
