"""
accounts/validation.py -- Field validators for registration and profile edits.

Each validator returns the value it accepted (stripped where that matters) or
raises the matching ValidationError subclass from core.errors. The patterns
are the ones the web client's forms were built against; do not tighten them
without updating the client.
"""

from __future__ import annotations

import re

from core.errors import (
    InvalidEmailError,
    InvalidNameError,
    InvalidUsernameError,
    MissingFieldError,
    WeakPasswordError,
)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Latin letters incl. the Latin-1 accented range, whitespace and hyphen.
NAME_RE = re.compile(r"^[a-zA-ZÀ-ÿ\s-]+$")

PASSWORD_SPECIALS = '!@#$%^&*(),.?":{}|<>'
PASSWORD_RE = re.compile(r'^(?=.*[a-z])(?=.*[A-Z])(?=.*[!@#$%^&*(),.?":{}|<>]).{8,}$')

MIN_USERNAME_LENGTH = 3
# bcrypt ignores everything past 72 bytes; refuse rather than truncate.
MAX_PASSWORD_BYTES = 72


def require(value: str | None, field: str) -> str:
    if value is None or not str(value).strip():
        raise MissingFieldError(f"{field} is required")
    return value


def validate_email(email: str) -> str:
    if not EMAIL_RE.fullmatch(email or ""):
        raise InvalidEmailError()
    return email


def validate_name(name: str) -> str:
    if not NAME_RE.fullmatch(name or ""):
        raise InvalidNameError()
    return name


def validate_names(firstname: str, lastname: str) -> None:
    validate_name(firstname)
    validate_name(lastname)


def validate_password(password: str) -> str:
    """At least 8 characters with an upper-case letter, a lower-case letter and a special character."""
    if not PASSWORD_RE.fullmatch(password or ""):
        raise WeakPasswordError()
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise WeakPasswordError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return password


def validate_username(username: str) -> str:
    username = (username or "").strip()
    if len(username) < MIN_USERNAME_LENGTH:
        raise InvalidUsernameError()
    return username
