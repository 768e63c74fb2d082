"""
api/routes/auth.py -- Registration, login and membership REST endpoints.

Routes:
  POST /api/auth/register                -- create a resident account; returns token
  POST /api/auth/login                   -- external id + password; returns token
  POST /api/auth/request-socio           -- submit a membership request (requires auth)
  POST /api/auth/validate-socio-request  -- approve/reject a request (requires board)

Handlers are plain `def`: Starlette runs them in its thread pool, so bcrypt
and blocking store calls never stall the event loop.

Handlers only translate HTTP <-> workflow dataclasses. Validation, ordering
and error selection live in auth/workflow.py; failures propagate as
ServiceError and are rendered by the handler in api/main.py.

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT, default 10/minute).
  Cache-Control: no-store on responses that carry a token.

No `from __future__ import annotations` here: the login handler is wrapped by
slowapi, and FastAPI resolves string annotations against the wrapper's module
globals, where these names do not exist.
"""

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter, login_rate_key, login_rate_limit
from api.models import (
    AuthResponse,
    DecisionRequest,
    DecisionResponse,
    LoginRequest,
    MembershipReceiptResponse,
    MembershipRequestBody,
    RegisterRequest,
)
from auth.dependencies import get_identity, require_roles
from auth.models import ROLE_BOARD, Identity, MembershipDocuments
from auth.workflow import AuthWorkflow, DecisionInput, LoginInput, RegistrationInput

# Auth policy:
# - POST /api/auth/register:               public
# - POST /api/auth/login:                  public, rate limited
# - POST /api/auth/request-socio:          requires auth, any role (get_identity)
# - POST /api/auth/validate-socio-request: requires role board (require_roles)
router = APIRouter(prefix="/auth")


def _workflow(request: Request) -> AuthWorkflow:
    return request.app.state.workflow


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(request: Request, response: Response, body: RegisterRequest) -> AuthResponse:
    """Register a new resident and return a session token plus profile."""
    result = _workflow(request).register(
        RegistrationInput(
            external_id=body.external_id,
            given_name=body.given_name,
            surname=body.surname,
            email=body.email,
            password=body.password,
            phone=body.phone,
            address=body.address,
        )
    )
    response.headers["Cache-Control"] = "no-store"
    return AuthResponse.from_result("User registered successfully.", result)


@router.post("/login", response_model=AuthResponse)
@limiter.limit(login_rate_limit, key_func=login_rate_key)  # router must register the limited wrapper
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Authenticate with external id and password.

    Unknown id and wrong password produce the same invalid_credentials error.
    """
    result = _workflow(request).login(LoginInput(external_id=body.external_id, password=body.password))
    response.headers["Cache-Control"] = "no-store"
    return AuthResponse.from_result("Login successful.", result)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/request-socio", response_model=MembershipReceiptResponse, status_code=201)
def request_socio(
    request: Request,
    body: MembershipRequestBody,
    identity: Identity = Depends(get_identity),
) -> MembershipReceiptResponse:
    """Submit a membership request for the authenticated user."""
    receipt = _workflow(request).request_membership(
        identity,
        MembershipDocuments(
            identity_document=body.identity_document,
            residency_document=body.residency_document,
        ),
    )
    return MembershipReceiptResponse.from_receipt(receipt)


@router.post("/validate-socio-request", response_model=DecisionResponse)
def validate_socio_request(
    request: Request,
    body: DecisionRequest,
    identity: Identity = Depends(require_roles(ROLE_BOARD)),
) -> DecisionResponse:
    """Approve or reject a pending membership request. Board only."""
    summary = _workflow(request).decide_membership(
        identity,
        DecisionInput(request_id=body.request_id, decision=body.decision, reason=body.reason),
    )
    return DecisionResponse.from_summary(summary)
