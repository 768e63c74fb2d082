"""
auth/workflow.py -- Registration, login and membership-request workflow.

AuthWorkflow orchestrates the hasher, the store and the token issuer into the
four public operations. Each operation runs its steps strictly in the order
below; a failing step raises a typed ServiceError and nothing after it runs.

  register            validate fields -> reject duplicate id/email ->
                      validate password -> hash -> insert resident -> token
  login               require fields -> lookup -> verify password ->
                      require active -> token
  request_membership  require documents -> reject if pending exists -> insert
  decide_membership   validate decision -> apply atomically -> 404 if no row

The workflow is transport-agnostic: it takes plain input dataclasses and
returns plain result dataclasses. api/routes/auth.py maps HTTP bodies onto
them. Role gating for decide_membership happens before the call, in the
access gate.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from auth.models import (
    DECISION_APPROVED,
    ROLE_RESIDENT,
    STATUS_ACTIVE,
    Identity,
    MembershipDocuments,
    User,
)
from auth.passwords import hash_password, verify_dummy, verify_password
from auth.store import IdentityStore
from auth.tokens import TokenIssuer, utc_now
from core.errors import AccountDisabled, Conflict, DuplicateRequest, InvalidCredentials, NotFound, ValidationFailed
from core.validation import (
    normalize_email,
    normalize_external_id,
    validate_decision,
    validate_login,
    validate_membership_documents,
    validate_password,
    validate_registration,
)

logger = logging.getLogger("vecindapp.workflow")


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass
class RegistrationInput:
    external_id: str | None = None
    given_name: str | None = None
    surname: str | None = None
    email: str | None = None
    password: str | None = None
    phone: str | None = None
    address: str | None = None


@dataclass
class LoginInput:
    external_id: str | None = None
    password: str | None = None


@dataclass
class DecisionInput:
    request_id: int | None = None
    decision: str | None = None
    reason: str | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Profile:
    """Outbound projection of a User. Deliberately has no password field."""

    id: int
    external_id: str
    given_name: str
    surname: str
    email: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> "Profile":
        return cls(
            id=user.id,
            external_id=user.external_id,
            given_name=user.given_name,
            surname=user.surname,
            email=user.email,
            role=user.role,
        )


@dataclass(frozen=True)
class AuthResult:
    token: str
    profile: Profile


@dataclass(frozen=True)
class MembershipReceipt:
    user_id: int
    request_id: int
    submitted_at: str


@dataclass(frozen=True)
class DecisionSummary:
    request_id: int
    decision: str
    decided_at: str


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


class AuthWorkflow:
    """The four auth operations over an IdentityStore and a TokenIssuer.

    Usage:
        workflow = AuthWorkflow(store, TokenIssuer.from_settings(settings))
        result = workflow.register(RegistrationInput(external_id="12345678-5", ...))
    """

    def __init__(
        self,
        store: IdentityStore,
        issuer: TokenIssuer,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.issuer = issuer
        self._clock = clock

    def _now_iso(self) -> str:
        return self._clock().isoformat()

    def _issue(self, user: User) -> str:
        return self.issuer.issue(user_id=user.id, external_id=user.external_id, role=user.role)

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    def register(self, data: RegistrationInput) -> AuthResult:
        violations = validate_registration(
            data.external_id,
            data.given_name,
            data.surname,
            data.email,
            data.password,
            data.phone,
            data.address,
        )
        if violations:
            raise ValidationFailed(violations)

        external_id = normalize_external_id(data.external_id)
        email = normalize_email(data.email)

        if self.store.find_user_by_external_id(external_id) is not None:
            raise Conflict("External id is already registered.")
        if self.store.find_user_by_email(email) is not None:
            raise Conflict("Email is already registered.")

        violations = validate_password(data.password)
        if violations:
            raise ValidationFailed(violations)

        user = User(
            external_id=external_id,
            given_name=data.given_name.strip(),
            surname=data.surname.strip(),
            email=email,
            password_hash=hash_password(data.password),
            role=ROLE_RESIDENT,
            status=STATUS_ACTIVE,
            phone=data.phone.strip() if data.phone and data.phone.strip() else None,
            address=data.address.strip() if data.address and data.address.strip() else None,
            registered_at=self._now_iso(),
        )
        user.id = self.store.insert_user(user)
        logger.info("Registered user id=%s external_id=%s", user.id, user.external_id)
        return AuthResult(token=self._issue(user), profile=Profile.from_user(user))

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, data: LoginInput) -> AuthResult:
        """Authenticate by external id and password.

        Unknown id and wrong password raise the same InvalidCredentials, and
        both pay for one bcrypt check, so neither the response nor its timing
        reveals whether the id is registered. The active-status check comes
        after the password so a disabled account is only disclosed to someone
        who knows its password.
        """
        violations = validate_login(data.external_id, data.password)
        if violations:
            raise ValidationFailed(violations)

        user = self.store.find_user_by_external_id(normalize_external_id(data.external_id))
        if user is None:
            verify_dummy(data.password)
            raise InvalidCredentials()
        if not verify_password(data.password, user.password_hash):
            logger.info("Failed login for user id=%s", user.id)
            raise InvalidCredentials()
        if user.status != STATUS_ACTIVE:
            logger.info("Login refused for disabled user id=%s", user.id)
            raise AccountDisabled()

        return AuthResult(token=self._issue(user), profile=Profile.from_user(user))

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def request_membership(self, identity: Identity, documents: MembershipDocuments) -> MembershipReceipt:
        violations = validate_membership_documents(documents.identity_document, documents.residency_document)
        if violations:
            raise ValidationFailed(violations)

        if self.store.find_pending_membership_request(identity.user_id) is not None:
            raise DuplicateRequest()

        submitted_at = self._now_iso()
        documents = MembershipDocuments(
            identity_document=documents.identity_document.strip(),
            residency_document=documents.residency_document.strip(),
        )
        request_id = self.store.insert_membership_request(identity.user_id, documents, submitted_at)
        logger.info("Membership request id=%s submitted by user id=%s", request_id, identity.user_id)
        return MembershipReceipt(user_id=identity.user_id, request_id=request_id, submitted_at=submitted_at)

    def decide_membership(self, identity: Identity, data: DecisionInput) -> DecisionSummary:
        """Approve or reject a pending request. Caller must already hold the board role."""
        violations = validate_decision(data.request_id, data.decision, data.reason)
        if violations:
            raise ValidationFailed(violations)

        decided_at = self._now_iso()
        reason = data.reason.strip() if data.reason else None
        affected = self.store.update_membership_decision(data.request_id, data.decision, decided_at, reason)
        if affected == 0:
            raise NotFound("Membership request not found.")

        logger.info(
            "Membership request id=%s %s by user id=%s%s",
            data.request_id,
            data.decision,
            identity.user_id,
            " (owner promoted to member)" if data.decision == DECISION_APPROVED else "",
        )
        return DecisionSummary(request_id=data.request_id, decision=data.decision, decided_at=decided_at)
