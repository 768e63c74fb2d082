"""
auth/access.py -- Access control gate: authenticate, then authorize.

Two independent checks, composed by auth/dependencies.py:

  authenticate(header, issuer) -> Identity
      Unauthenticated (401) if no bearer token; otherwise whatever
      TokenIssuer.verify raises (TokenExpired / InvalidToken / IncompleteToken).

  authorize(identity, allowed_roles) -> Identity
      Forbidden (403) if identity.role is not allowed.

authorize() only ever sees an Identity, so a request that fails
authentication can never reach the role check.

Layer rule: no imports from api/. Framework-free so both checks can be unit
tested without a request object.
"""

from __future__ import annotations

from collections.abc import Iterable

from auth.models import Identity
from auth.tokens import TokenIssuer
from core.errors import Forbidden, Unauthenticated


def extract_bearer(header: str | None) -> str | None:
    """Return the token from an `Authorization: Bearer <token>` value, else None."""
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def authenticate(header: str | None, issuer: TokenIssuer) -> Identity:
    token = extract_bearer(header)
    if token is None:
        raise Unauthenticated()
    return issuer.verify(token)


def authorize(identity: Identity, allowed_roles: Iterable[str]) -> Identity:
    if identity.role not in set(allowed_roles):
        raise Forbidden()
    return identity
