"""
core/errors.py -- Typed service errors for the auth service.

Every operation-level failure is one of these classes. Each carries the HTTP
status and a stable machine-readable code, so the API layer renders all of
them with a single exception handler and clients can branch on `code`
(e.g. token_expired -> refresh login; invalid_token -> drop the token).

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Violation:
    """One failed input rule: which field, and a human-readable reason."""

    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class ServiceError(Exception):
    """Base class. Unknown subclasses render as a generic 500."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "Internal server error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(ServiceError):
    status_code = 400
    code = "validation_failed"
    default_message = "Validation failed."

    def __init__(self, violations: list[Violation], message: str | None = None) -> None:
        self.violations = list(violations)
        # Surface the first violation as the headline message.
        if message is None and self.violations:
            message = self.violations[0].message
        super().__init__(message)


class Conflict(ServiceError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists."


class DuplicateRequest(ServiceError):
    status_code = 400
    code = "duplicate_request"
    default_message = "A membership request is already pending."


class InvalidCredentials(ServiceError):
    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid credentials."


class AccountDisabled(ServiceError):
    status_code = 403
    code = "account_disabled"
    default_message = "User account is disabled."


class Unauthenticated(ServiceError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Authentication token not provided."


class TokenExpired(ServiceError):
    status_code = 401
    code = "token_expired"
    default_message = "Token expired."


class InvalidToken(ServiceError):
    status_code = 403
    code = "invalid_token"
    default_message = "Invalid token."


class IncompleteToken(InvalidToken):
    """Signature is valid but a required claim is missing or empty."""

    code = "incomplete_token"
    default_message = "Token is missing required claims."


class Forbidden(ServiceError):
    status_code = 403
    code = "forbidden"
    default_message = "You do not have permission to perform this action."


class NotFound(ServiceError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class PoolExhausted(ServiceError):
    status_code = 503
    code = "pool_exhausted"
    default_message = "Service temporarily unavailable. Try again shortly."
