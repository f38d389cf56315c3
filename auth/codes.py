"""
auth/codes.py -- One-time codes for email verification and password reset.

Two kinds of 6-digit codes, each in its own table:

  email_verification_codes -- owned by a user id (FK users.id ON DELETE
      CASCADE). Redeeming deletes the row.
  password_reset_codes     -- keyed by email address, carries a used flag.
      Checking a code never changes it; only the completed reset marks it
      used, so a user can mistype the new password without burning the code.

Both kinds: issuing a new code first deletes every earlier code for the same
owner, so at most one code per user / email is ever live. A code is valid
while expires_at > now (default lifetime 15 minutes).

CodeService is the only reader and writer of these tables. It takes a clock
callable so tests can move time without sleeping.

Layer rule: no imports from api/ or accounts/.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Table
from sqlalchemy.engine import Engine

from auth.models import EmailVerificationCode, PasswordResetCode
from auth.store import iso, metadata, utcnow
from core.errors import InvalidOrExpiredCodeError

_CODE_LENGTH = 6

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

verification_codes = Table(
    "email_verification_codes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("code", String(_CODE_LENGTH), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

reset_codes = Table(
    "password_reset_codes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, index=True),
    Column("code", String(_CODE_LENGTH), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)


def generate_code() -> str:
    """Return a 6-digit code drawn uniformly from 100000-999999.

    The range starts at 100000, so a code never has a leading zero.
    """
    return str(100000 + secrets.randbelow(900000))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CodeStore:
    """Row-level access to the two code tables.

    Shares the engine (and therefore the database) with UserStore so the
    foreign key to users.id and its cascade apply.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(self.engine)

    # -- email verification -------------------------------------------

    def replace_verification_code(self, user_id: int, code: str, expires_at: str, created_at: str) -> None:
        """Delete the user's existing codes and insert the new one."""
        with self.engine.begin() as conn:
            conn.execute(verification_codes.delete().where(verification_codes.c.user_id == user_id))
            conn.execute(
                verification_codes.insert().values(
                    user_id=user_id, code=code, expires_at=expires_at, created_at=created_at
                )
            )

    def find_live_verification_code(self, user_id: int, code: str, now: str) -> EmailVerificationCode | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                verification_codes.select().where(
                    (verification_codes.c.user_id == user_id)
                    & (verification_codes.c.code == code)
                    & (verification_codes.c.expires_at > now)
                )
            ).fetchone()
        return _row_to_verification_code(row) if row is not None else None

    def delete_verification_code(self, code_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(verification_codes.delete().where(verification_codes.c.id == code_id))
            conn.commit()
        return result.rowcount > 0

    def delete_verification_codes(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(verification_codes.delete().where(verification_codes.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def list_verification_codes(self, user_id: int) -> list[EmailVerificationCode]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                verification_codes.select()
                .where(verification_codes.c.user_id == user_id)
                .order_by(verification_codes.c.id)
            ).fetchall()
        return [_row_to_verification_code(r) for r in rows]

    # -- password reset -----------------------------------------------

    def replace_reset_code(self, email: str, code: str, expires_at: str, created_at: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(reset_codes.delete().where(reset_codes.c.email == email))
            conn.execute(
                reset_codes.insert().values(
                    email=email, code=code, expires_at=expires_at, used=False, created_at=created_at
                )
            )

    def find_live_reset_code(self, email: str, code: str, now: str) -> PasswordResetCode | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                reset_codes.select().where(
                    (reset_codes.c.email == email)
                    & (reset_codes.c.code == code)
                    & (reset_codes.c.expires_at > now)
                    & (reset_codes.c.used.is_(False))
                )
            ).fetchone()
        return _row_to_reset_code(row) if row is not None else None

    def mark_reset_code_used(self, code_id: int) -> bool:
        """Flip used to True. Returns False if the code was already used or is gone."""
        with self.engine.connect() as conn:
            result = conn.execute(
                reset_codes.update()
                .where((reset_codes.c.id == code_id) & (reset_codes.c.used.is_(False)))
                .values(used=True)
            )
            conn.commit()
        return result.rowcount > 0

    def list_reset_codes(self, email: str) -> list[PasswordResetCode]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                reset_codes.select().where(reset_codes.c.email == email).order_by(reset_codes.c.id)
            ).fetchall()
        return [_row_to_reset_code(r) for r in rows]

    # -- housekeeping -------------------------------------------------

    def delete_dead_codes(self, now: str) -> int:
        """Remove expired verification codes and expired or used reset codes."""
        with self.engine.begin() as conn:
            expired = conn.execute(verification_codes.delete().where(verification_codes.c.expires_at <= now))
            dead = conn.execute(
                reset_codes.delete().where((reset_codes.c.expires_at <= now) | (reset_codes.c.used.is_(True)))
            )
        return expired.rowcount + dead.rowcount


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class CodeService:
    """Issues, checks and consumes one-time codes.

    Usage:
        codes = CodeService(CodeStore(user_store.engine))
        code = codes.issue_verification_code(user.id)
        codes.redeem_verification_code(user.id, code)   # raises InvalidOrExpiredCodeError
    """

    def __init__(
        self,
        store: CodeStore,
        ttl_minutes: int = 15,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.ttl = timedelta(minutes=ttl_minutes)
        self._clock = clock

    def issue_verification_code(self, user_id: int) -> str:
        code = generate_code()
        now = self._clock()
        self.store.replace_verification_code(user_id, code, iso(now + self.ttl), iso(now))
        return code

    def redeem_verification_code(self, user_id: int, code: str) -> None:
        """Consume a verification code. Single use: the row is deleted."""
        row = self.store.find_live_verification_code(user_id, code, iso(self._clock()))
        if row is None or not self.store.delete_verification_code(row.id):
            raise InvalidOrExpiredCodeError()

    def revoke_verification_codes(self, user_id: int) -> int:
        """Drop every outstanding verification code for the user.

        Called when the account's email changes: a code mailed to the old
        address must not verify the new one.
        """
        return self.store.delete_verification_codes(user_id)

    def issue_reset_code(self, email: str) -> str:
        code = generate_code()
        now = self._clock()
        self.store.replace_reset_code(email, code, iso(now + self.ttl), iso(now))
        return code

    def check_reset_code(self, email: str, code: str) -> PasswordResetCode:
        """Return the live reset code or raise. Read-only; never consumes."""
        row = self.store.find_live_reset_code(email, code, iso(self._clock()))
        if row is None:
            raise InvalidOrExpiredCodeError()
        return row

    def consume_reset_code(self, email: str, code: str) -> None:
        """Re-check the reset code and mark it used."""
        row = self.check_reset_code(email, code)
        if not self.store.mark_reset_code_used(row.id):
            raise InvalidOrExpiredCodeError()

    def purge_expired(self) -> int:
        return self.store.delete_dead_codes(iso(self._clock()))


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_verification_code(row) -> EmailVerificationCode:
    return EmailVerificationCode(
        id=row.id,
        user_id=row.user_id,
        code=row.code,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


def _row_to_reset_code(row) -> PasswordResetCode:
    return PasswordResetCode(
        id=row.id,
        email=row.email,
        code=row.code,
        expires_at=row.expires_at,
        used=bool(row.used),
        created_at=row.created_at,
    )
