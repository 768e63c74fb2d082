"""
API request and response models for the auth service REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py and
auth/workflow.py, which own the internal representation. Route handlers map
between the two.

Wire format is camelCase (externalId, requestId, ...); Python attributes stay
snake_case via the alias generator. Request fields are all optional on
purpose: presence and format rules live in core/validation.py so a missing
field is a 400 validation_failed from the workflow, not a 422 from Pydantic.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from auth.workflow import AuthResult, DecisionSummary, MembershipReceipt, Profile


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    """Request body for POST /api/auth/register."""

    external_id: Optional[str] = None
    given_name: Optional[str] = None
    surname: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class LoginRequest(_CamelModel):
    """Request body for POST /api/auth/login."""

    external_id: Optional[str] = None
    password: Optional[str] = None


class MembershipRequestBody(_CamelModel):
    """Request body for POST /api/auth/request-socio."""

    identity_document: Optional[str] = None
    residency_document: Optional[str] = None


class DecisionRequest(_CamelModel):
    """Request body for POST /api/auth/validate-socio-request."""

    request_id: Optional[int] = None
    decision: Optional[str] = None
    reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ProfileResponse(_CamelModel):
    """Non-sensitive user projection. There is no password field to leak."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    external_id: str
    given_name: str
    surname: str
    email: str
    role: str

    @classmethod
    def from_profile(cls, profile: Profile) -> "ProfileResponse":
        return cls(
            id=profile.id,
            external_id=profile.external_id,
            given_name=profile.given_name,
            surname=profile.surname,
            email=profile.email,
            role=profile.role,
        )


class AuthResponse(_CamelModel):
    """Response body for register (201) and login (200)."""

    message: str
    token: str
    profile: ProfileResponse

    @classmethod
    def from_result(cls, message: str, result: AuthResult) -> "AuthResponse":
        return cls(message=message, token=result.token, profile=ProfileResponse.from_profile(result.profile))


class MembershipReceiptResponse(_CamelModel):
    """Response body for POST /api/auth/request-socio."""

    message: str
    user_id: int
    request_id: int
    timestamp: str

    @classmethod
    def from_receipt(cls, receipt: MembershipReceipt) -> "MembershipReceiptResponse":
        return cls(
            message="Membership request submitted.",
            user_id=receipt.user_id,
            request_id=receipt.request_id,
            timestamp=receipt.submitted_at,
        )


class DecisionResponse(_CamelModel):
    """Response body for POST /api/auth/validate-socio-request."""

    message: str
    request_id: int
    decision: str
    timestamp: str

    @classmethod
    def from_summary(cls, summary: DecisionSummary) -> "DecisionResponse":
        return cls(
            message=f"Membership request {summary.decision}.",
            request_id=summary.request_id,
            decision=summary.decision,
            timestamp=summary.decided_at,
        )


class ErrorResponse(_CamelModel):
    """Uniform error envelope returned by every exception handler.

    errors is present only for validation failures; stack only in debug mode.
    """

    status: str = "error"
    status_code: int
    message: str
    code: str
    errors: Optional[list[dict[str, Any]]] = None
    stack: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    components: dict[str, str]


class ServiceInfo(BaseModel):
    message: str
    status: str = "active"
