"""
auth/google.py -- Google identity resolution for "Sign in with Google".

The web client hands us whatever Google gave it: usually a signed ID token
from Google Identity Services, sometimes an OAuth access token from the popup
flow. GoogleIdentityBridge tries an ordered list of strategies and the first
one that yields an identity wins:

  1. IdTokenStrategy  -- verify the credential as a JWT signed by Google.
     Keys come from Google's JWKS document (cached for an hour); the token
     must name accounts.google.com as issuer and our client id as audience.
     Signature and claim checks use authlib's JOSE implementation.
  2. UserinfoStrategy -- treat the credential as an opaque access token and
     ask Google's userinfo endpoint who it belongs to.

If every strategy fails the bridge raises InvalidGoogleCredentialError. The
caller (accounts/service.py) decides whether the identity maps to an existing
account or needs the registration form.

Security notes:
  The email must be verified by Google. Accounts created or linked through
  Google are marked email_verified=true, so an address Google has not
  confirmed could hand someone else's mailbox a verified account.

Layer rule: no imports from api/ or accounts/.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import requests
from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import JoseError

from core.errors import InvalidGoogleCredentialError

logger = logging.getLogger("bilogames.auth.google")

GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"
GOOGLE_ISSUERS = ["accounts.google.com", "https://accounts.google.com"]

_JWKS_TTL_SECONDS = 3600
_HTTP_TIMEOUT = 10

# Google signs ID tokens with RS256 only.
_google_jwt = JsonWebToken(["RS256"])


@dataclass(frozen=True)
class GoogleIdentity:
    """A Google account as seen by this service."""

    google_id: str  # the stable "sub" claim
    email: str
    given_name: str = ""
    family_name: str = ""
    email_verified: bool = False


class IdentityStrategy(Protocol):
    name: str

    def resolve(self, credential: str) -> GoogleIdentity: ...


def _truthy(value: Any) -> bool:
    # Older Google tokens serialized email_verified as the string "true".
    return value is True or str(value).lower() == "true"


def _identity_from_claims(claims: dict, source: str) -> GoogleIdentity:
    subject = claims.get("sub")
    email = claims.get("email")
    if not subject or not email:
        raise InvalidGoogleCredentialError(f"Google {source}: missing sub or email claim")
    return GoogleIdentity(
        google_id=str(subject),
        email=str(email),
        given_name=str(claims.get("given_name") or ""),
        family_name=str(claims.get("family_name") or ""),
        email_verified=_truthy(claims.get("email_verified", False)),
    )


# ---------------------------------------------------------------------------
# Strategy 1: signed ID token
# ---------------------------------------------------------------------------


class IdTokenStrategy:
    """Verify a Google ID token against Google's published signing keys."""

    name = "id_token"

    def __init__(self, client_id: str, session: Optional[requests.Session] = None) -> None:
        self.client_id = client_id
        self._session = session or requests.Session()
        self._lock = threading.Lock()
        self._key_set = None
        self._fetched_at = 0.0

    def _keys(self, refresh: bool = False):
        """Return the cached JWKS key set, refetching when stale."""
        with self._lock:
            stale = time.monotonic() - self._fetched_at > _JWKS_TTL_SECONDS
            if self._key_set is None or stale or refresh:
                resp = self._session.get(GOOGLE_JWKS_URL, timeout=_HTTP_TIMEOUT)
                resp.raise_for_status()
                self._key_set = JsonWebKey.import_key_set(resp.json())
                self._fetched_at = time.monotonic()
            return self._key_set

    def _decode(self, credential: str, key_set):
        claims = _google_jwt.decode(
            credential,
            key_set,
            claims_options={
                "iss": {"essential": True, "values": GOOGLE_ISSUERS},
                "aud": {"essential": True, "value": self.client_id},
                "sub": {"essential": True},
                "exp": {"essential": True},
            },
        )
        claims.validate(leeway=60)
        return claims

    def resolve(self, credential: str) -> GoogleIdentity:
        if credential.count(".") != 2:
            raise InvalidGoogleCredentialError("Google id_token: not a JWT")
        try:
            try:
                claims = self._decode(credential, self._keys())
            except ValueError:
                # Unknown kid: Google rotated keys since our last fetch.
                claims = self._decode(credential, self._keys(refresh=True))
        except (JoseError, ValueError) as exc:
            raise InvalidGoogleCredentialError(f"Google id_token rejected: {exc}") from exc
        except requests.RequestException as exc:
            raise InvalidGoogleCredentialError("Google signing keys unavailable") from exc
        return _identity_from_claims(dict(claims), "id_token")


# ---------------------------------------------------------------------------
# Strategy 2: opaque access token
# ---------------------------------------------------------------------------


class UserinfoStrategy:
    """Resolve an OAuth access token through Google's userinfo endpoint."""

    name = "userinfo"

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self._session = session or requests.Session()

    def resolve(self, credential: str) -> GoogleIdentity:
        try:
            resp = self._session.get(
                GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {credential}"},
                timeout=_HTTP_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise InvalidGoogleCredentialError("Google userinfo unavailable") from exc
        if resp.status_code != 200:
            raise InvalidGoogleCredentialError(f"Google userinfo returned {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as exc:
            raise InvalidGoogleCredentialError("Google userinfo returned invalid JSON") from exc
        return _identity_from_claims(body, "userinfo")


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------


class GoogleIdentityBridge:
    """Run the strategies in order; first success wins."""

    def __init__(self, strategies: list[IdentityStrategy]) -> None:
        self.strategies = strategies

    def authenticate(self, credential: str) -> GoogleIdentity:
        """Return the verified Google identity behind credential.

        Raises InvalidGoogleCredentialError when no strategy accepts the
        credential or Google does not vouch for the email address.
        """
        if not credential:
            raise InvalidGoogleCredentialError()
        for strategy in self.strategies:
            try:
                identity = strategy.resolve(credential)
            except InvalidGoogleCredentialError as exc:
                logger.debug("Google strategy %s failed: %s", strategy.name, exc)
                continue
            if not identity.email_verified:
                logger.info("Google identity %s rejected: email not verified", identity.google_id)
                raise InvalidGoogleCredentialError("Google account email is not verified")
            return identity
        raise InvalidGoogleCredentialError()


def build_google_bridge(client_id: str, session: Optional[requests.Session] = None) -> GoogleIdentityBridge:
    """Build the default bridge for a Google OAuth client id.

    Without a client id the audience of an ID token cannot be checked, so only
    the userinfo strategy is enabled.
    """
    session = session or requests.Session()
    session.max_redirects = 3
    strategies: list[IdentityStrategy] = []
    if client_id:
        strategies.append(IdTokenStrategy(client_id, session=session))
    else:
        logger.warning("GOOGLE_CLIENT_ID not set -- Google ID tokens cannot be verified, userinfo only")
    strategies.append(UserinfoStrategy(session=session))
    return GoogleIdentityBridge(strategies)
