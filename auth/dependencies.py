"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

get_identity() runs the access gate's authenticate() against the
Authorization: Bearer header and, when VERIFY_ACCOUNT_STATUS is on, re-reads
the account so a disabled or deleted account loses access immediately rather
than at token expiry.

require_roles(*roles) wraps get_identity() and adds authorize(). FastAPI
resolves the inner dependency first, so an unauthenticated request never
reaches the role check.

The verified Identity is stored on request.state.identity so the catch-all
exception handler can log which user hit an unexpected error.

Layer rule: auth/dependencies.py may import from fastapi (for Depends/Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.access import authenticate, authorize
from auth.models import Identity
from core.errors import AccountDisabled, InvalidToken


def get_identity(request: Request) -> Identity:
    """Require a valid bearer token. Raises Unauthenticated/TokenExpired/InvalidToken.

    Use as a FastAPI dependency:
        @router.post("/protected")
        def route(identity: Identity = Depends(get_identity)): ...
    """
    state = request.app.state
    identity = authenticate(request.headers.get("Authorization"), state.issuer)

    if state.settings.verify_account_status:
        user = state.store.find_user_by_id(identity.user_id)
        if user is None or user.external_id != identity.external_id:
            raise InvalidToken()
        if not user.is_active:
            raise AccountDisabled()

    request.state.identity = identity
    return identity


def require_roles(*roles: str) -> Callable[..., Identity]:
    """Build a dependency that requires one of `roles`. Raises Forbidden otherwise.

    Use as a FastAPI dependency:
        @router.post("/board-only")
        def route(identity: Identity = Depends(require_roles("board"))): ...
    """
    allowed = frozenset(roles)

    def dependency(identity: Identity = Depends(get_identity)) -> Identity:
        return authorize(identity, allowed)

    return dependency
