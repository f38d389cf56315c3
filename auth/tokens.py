"""
auth/tokens.py -- Password hashing and signed token utilities.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper), fixed cost factor 12.
       bcrypt.checkpw compares in constant time. verify_password() fails
       closed: a malformed stored hash returns False instead of raising.
       The _DUMMY_HASH constant lets the login path run bcrypt even when the
       email is unknown, so response time does not reveal which accounts
       exist.

  Session tokens: python-jose with HS256. Tokens carry id, email, username,
       iat and exp. They are stateless and revocation-less -- logging out is
       the client discarding the token; rotating SECRET_KEY invalidates every
       outstanding token.

  Google signup tokens: same key, distinct "typ" claim, 15 minute lifetime.
       They let /auth/google/register prove that the googleId/email it is
       handed came out of a verified Google sign-in a moment ago, without
       keeping any server-side session between the two calls.

TokenIssuer receives its secret and lifetime at construction; nothing in this
module reads configuration on its own.

Layer rule: no imports from api/ or accounts/.
"""

from __future__ import annotations

import logging
from datetime import timedelta

import bcrypt
from jose import JWTError, jwt

from auth.models import TokenClaims, User
from auth.store import utcnow
from core.errors import InvalidGoogleCredentialError, InvalidTokenError

logger = logging.getLogger("bilogames.auth")

_ALGORITHM = "HS256"
_SIGNUP_TOKEN_TYPE = "google_signup"
_SIGNUP_TOKEN_SECONDS = 15 * 60

BCRYPT_ROUNDS = 12

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the plaintext password.

    bcrypt only looks at the first 72 bytes of its input. accounts/validation.py
    rejects anything over 72 UTF-8 bytes, so nothing is truncated.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Computed once at module load so the first failed login is not measurably
# slower than the rest.
_DUMMY_HASH: str = hash_password("bilogames_timing_dummy")


def check_password_equalized(plain: str, user: User | None) -> bool:
    """Verify a login password, spending bcrypt time even for unknown users."""
    if user is None:
        verify_password(plain, _DUMMY_HASH)
        return False
    return verify_password(plain, user.password_hash)


# ---------------------------------------------------------------------------
# Token issuer / verifier
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Signs and verifies bearer session tokens.

    Usage:
        issuer = TokenIssuer(settings.secret_key, settings.token_expire_seconds)
        token = issuer.issue(user)
        claims = issuer.verify(token)      # raises InvalidTokenError
    """

    def __init__(self, secret_key: str, expire_seconds: int = 7 * 24 * 3600) -> None:
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds

    def issue(self, user: User) -> str:
        """Encode a signed token for user with the configured lifetime."""
        now = utcnow()
        payload = {
            "id": user.id,
            "email": user.email,
            "username": user.username,
            "iat": now,
            "exp": now + timedelta(seconds=self.expire_seconds),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        """Decode and verify a session token.

        Raises InvalidTokenError for a bad signature, a malformed token, an
        expired token, or a token lacking the identity claims (signup tokens
        included).
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError as exc:
            raise InvalidTokenError() from exc
        if payload.get("typ") is not None:
            raise InvalidTokenError()
        try:
            return TokenClaims(
                user_id=int(payload["id"]),
                email=str(payload["email"]),
                username=str(payload["username"]),
                expires_at=int(payload["exp"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidTokenError() from exc

    # ------------------------------------------------------------------
    # Google signup handshake
    # ------------------------------------------------------------------

    def issue_google_signup(self, google_id: str, email: str) -> str:
        """Sign the Google identity that still needs a local account."""
        payload = {
            "typ": _SIGNUP_TOKEN_TYPE,
            "google_id": google_id,
            "email": email,
            "exp": utcnow() + timedelta(seconds=_SIGNUP_TOKEN_SECONDS),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify_google_signup(self, token: str) -> tuple[str, str]:
        """Return (google_id, email) from a signup token.

        Raises InvalidGoogleCredentialError when the token is forged, expired
        or is not a signup token.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError as exc:
            raise InvalidGoogleCredentialError("Google sign-up session expired, please sign in again") from exc
        if payload.get("typ") != _SIGNUP_TOKEN_TYPE or not payload.get("google_id") or not payload.get("email"):
            raise InvalidGoogleCredentialError()
        return str(payload["google_id"]), str(payload["email"])
