"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Sessions arrive as "Authorization: Bearer <token>". There are no cookies and
no server-side sessions: the token alone proves identity.

  get_token_claims()  -- verified claims, or TokenRequiredError (401) when no
                         Bearer header is present, or InvalidTokenError (403)
                         when the token is forged, malformed or expired.
  get_current_user()  -- the User row behind the claims, or
                         UserNotFoundError (404) when the account was deleted
                         after the token was issued.

The errors are core.errors classes, not HTTPException; api/main.py maps them
to the response envelope like every other service error.

Layer rule: may import from fastapi (this module is part of the dependency
injection system) but not from api/ or accounts/.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.models import TokenClaims, User
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.errors import TokenRequiredError, UserNotFoundError


def get_bearer_token(request: Request) -> str | None:
    """Return the raw token from the Authorization header, if any."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_token_claims(request: Request) -> TokenClaims:
    """Require a valid Bearer token.

    Use as a FastAPI dependency:
        @router.post("/protected")
        def route(claims: TokenClaims = Depends(get_token_claims)): ...
    """
    token = get_bearer_token(request)
    if token is None:
        raise TokenRequiredError()
    issuer: TokenIssuer = request.app.state.token_issuer
    return issuer.verify(token)


def get_current_user(request: Request, claims: TokenClaims = Depends(get_token_claims)) -> User:
    """Require a valid token whose account still exists."""
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(claims.user_id)
    if user is None:
        raise UserNotFoundError()
    return user
