"""
auth/tokens.py -- Session token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry id, external_id, role, iat and
       exp. The signing key is handed to TokenIssuer explicitly (normally via
       from_settings), never read from a module global, so two issuers with
       different keys can coexist in one process (tests do exactly that).

  Expiry: jose's own exp check reads the wall clock. We disable it and
       compare exp against the issuer's injected clock instead, so expiry is
       deterministic under test and uses the same clock that stamped iat.

  Failure kinds: verify() raises one of three distinct errors because
       clients react differently to each --
         TokenExpired    (401) -> log in again
         InvalidToken    (403) -> forged/corrupt token, discard it
         IncompleteToken (403) -> signed by us but missing claims

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import Identity
from core.config import Settings
from core.errors import IncompleteToken, InvalidToken, TokenExpired

logger = logging.getLogger("vecindapp.auth")

ALGORITHM = "HS256"
DEFAULT_EXPIRE_SECONDS = 24 * 60 * 60

_REQUIRED_CLAIMS = ("id", "external_id", "role")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Creates and validates signed, time-limited identity assertions.

    Usage:
        issuer = TokenIssuer.from_settings(settings)
        token = issuer.issue(user_id=7, external_id="12345678-5", role="resident")
        identity = issuer.verify(token)
    """

    def __init__(
        self,
        secret_key: str,
        expire_seconds: int = DEFAULT_EXPIRE_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenIssuer requires a non-empty secret key.")
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], datetime] = utc_now) -> "TokenIssuer":
        return cls(settings.secret_key, settings.token_expire_seconds, clock)

    def issue(self, user_id: int, external_id: str, role: str) -> str:
        """Encode a signed JWT for the given identity, valid for expire_seconds."""
        now = self._clock()
        payload = {
            "id": user_id,
            "external_id": external_id,
            "role": role,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.expire_seconds)).timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def verify(self, token: str) -> Identity:
        """Check signature, then expiry, then claim completeness.

        Returns the Identity on success. Raises InvalidToken, TokenExpired or
        IncompleteToken -- never returns None.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            raise InvalidToken() from exc

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            raise IncompleteToken()
        if self._clock().timestamp() >= exp:
            raise TokenExpired()

        if any(not payload.get(claim) for claim in _REQUIRED_CLAIMS):
            raise IncompleteToken()
        user_id = payload["id"]
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise IncompleteToken()

        return Identity(user_id=user_id, external_id=str(payload["external_id"]), role=str(payload["role"]))
