"""
auth/models.py -- Domain dataclasses for credentials and one-time codes.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own the shape.

Timestamps are ISO 8601 UTC strings with fixed microsecond precision (see
auth/store.py:iso), so comparing two of them as strings compares them as
instants.

Layer rule: no imports from api/ or accounts/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A registered account.

    password_hash is set for every account, Google registrations included --
    the Google completion form asks for a password too.

    google_id is None until the account signs in with Google for the first
    time (or is created through the Google completion flow).

    created_at may be supplied by the caller (imports, tests); otherwise the
    store stamps the current time on insert.
    """

    email: str
    username: str
    firstname: str
    lastname: str
    password_hash: str
    birth_date: str | None = None
    id: int | None = None
    google_id: str | None = None
    email_verified: bool = False
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class EmailVerificationCode:
    """A 6-digit code proving ownership of the owner's current email.

    At most one row exists per user_id; issuing a new code deletes the old one.
    Redeeming deletes the row.
    """

    user_id: int
    code: str
    expires_at: str
    id: int | None = None
    created_at: str | None = None


@dataclass
class PasswordResetCode:
    """A 6-digit code authorizing one password reset for an email address.

    Keyed by email rather than user id. Verifying the code does not consume
    it; the completed reset flips used to True and the row stays until the
    next issue for the same email or the housekeeping purge.
    """

    email: str
    code: str
    expires_at: str
    used: bool = False
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Identity carried inside a session token."""

    user_id: int
    email: str
    username: str
    expires_at: int  # Unix seconds
