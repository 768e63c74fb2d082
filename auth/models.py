"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores map rows to
these; the workflow and routes do the work.

Timestamps are ISO 8601 UTC strings, the same representation the store
persists.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass

# Roles in ascending privilege. Only BOARD may decide membership requests.
ROLE_RESIDENT = "resident"
ROLE_MEMBER = "member"
ROLE_BOARD = "board"
ROLES = (ROLE_RESIDENT, ROLE_MEMBER, ROLE_BOARD)

STATUS_ACTIVE = "active"
STATUS_DISABLED = "disabled"

DECISION_PENDING = "pending"
DECISION_APPROVED = "approved"
DECISION_REJECTED = "rejected"


@dataclass
class User:
    """A registered resident.

    external_id is the national id (RUT), stored normalised ("1234567-K").
    It is the login key and is never changed after registration.

    password_hash is opaque. It never leaves the store/workflow boundary:
    profile projections are built field by field, never from asdict(user).
    """

    external_id: str
    given_name: str
    surname: str
    email: str
    password_hash: str
    role: str = ROLE_RESIDENT
    status: str = STATUS_ACTIVE
    phone: str | None = None
    address: str | None = None
    id: int | None = None
    registered_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE


@dataclass
class MembershipDocuments:
    """References (URLs / storage keys) to the proofs a resident submits."""

    identity_document: str
    residency_document: str


@dataclass
class MembershipRequest:
    """A resident's request to become a member (socio).

    decided_at is set only on approval; rejection_reason only on rejection.
    Once decision leaves "pending" the record is never updated again.
    """

    user_id: int
    identity_document: str
    residency_document: str
    decision: str = DECISION_PENDING
    submitted_at: str | None = None
    decided_at: str | None = None
    rejection_reason: str | None = None
    id: int | None = None


@dataclass(frozen=True)
class Identity:
    """The verified claim set carried by a session token."""

    user_id: int
    external_id: str
    role: str
