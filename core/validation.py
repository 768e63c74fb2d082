"""
core/validation.py -- Explicit input validators, one per operation.

Each validator takes plain values and returns a list of Violation objects
(empty list = valid). The workflow raises ValidationFailed with that list.
No decorators, no reflection: the rules for an operation are the code you
read in its validator, in the order they are checked.

The external-id and email patterns are domain rules, not API contracts --
every layer that validates an external id imports EXTERNAL_ID_PATTERN from
here.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

import re

from core.errors import Violation

# Chilean RUT: 7-8 digit body, dash, check character (digit or K).
EXTERNAL_ID_PATTERN = r"^\d{7,8}-[0-9K]$"
EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
PHONE_PATTERN = r"^\+?569\d{8}$"

_EXTERNAL_ID_RE = re.compile(EXTERNAL_ID_PATTERN)
_EMAIL_RE = re.compile(EMAIL_PATTERN)
_PHONE_RE = re.compile(PHONE_PATTERN)

NAME_MIN, NAME_MAX = 2, 50
ADDRESS_MIN, ADDRESS_MAX = 5, 100
PASSWORD_MIN = 8
# bcrypt only reads the first 72 bytes of its input.
PASSWORD_MAX_BYTES = 72

DECISIONS = ("approved", "rejected")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def normalize_external_id(value: str) -> str:
    """Strip whitespace and upper-case the check character ("k" -> "K")."""
    return value.strip().upper()


def normalize_email(value: str) -> str:
    return value.strip().lower()


def is_valid_external_id(value: str) -> bool:
    return bool(_EXTERNAL_ID_RE.match(normalize_external_id(value)))


def _required(fields: dict[str, object]) -> list[Violation]:
    return [Violation(name, f"{name} is required.") for name, value in fields.items() if is_blank(value)]


def _length(field: str, value: str, low: int, high: int) -> list[Violation]:
    if low <= len(value.strip()) <= high:
        return []
    return [Violation(field, f"{field} must be between {low} and {high} characters.")]


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------


def validate_registration(
    external_id: str | None,
    given_name: str | None,
    surname: str | None,
    email: str | None,
    password: str | None,
    phone: str | None = None,
    address: str | None = None,
) -> list[Violation]:
    """Presence and shape rules for registration, password strength excluded.

    Missing required fields are reported alone: shape checks on a partial
    payload would only add noise. Password strength is checked separately
    (validate_password) because registration rejects a duplicate external id
    before it looks at the password.
    """
    missing = _required(
        {
            "externalId": external_id,
            "givenName": given_name,
            "surname": surname,
            "email": email,
            "password": password,
        }
    )
    if missing:
        return missing

    violations: list[Violation] = []
    if not is_valid_external_id(external_id):
        violations.append(Violation("externalId", "Invalid external id format. Expected 12345678-9 or 1234567-K."))
    if not _EMAIL_RE.match(email.strip()):
        violations.append(Violation("email", "Invalid email format."))
    violations += _length("givenName", given_name, NAME_MIN, NAME_MAX)
    violations += _length("surname", surname, NAME_MIN, NAME_MAX)
    if not is_blank(phone) and not _PHONE_RE.match(phone.strip()):
        violations.append(Violation("phone", "Invalid phone format. Expected a Chilean mobile number (+569XXXXXXXX)."))
    if not is_blank(address):
        violations += _length("address", address, ADDRESS_MIN, ADDRESS_MAX)
    return violations


def validate_password(password: str) -> list[Violation]:
    """Registration password rule: 8-72 chars with upper, lower, digit and symbol."""
    violations: list[Violation] = []
    if len(password) < PASSWORD_MIN:
        violations.append(Violation("password", f"Password must be at least {PASSWORD_MIN} characters."))
    elif len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        violations.append(Violation("password", f"Password must be at most {PASSWORD_MAX_BYTES} bytes."))
    if not (
        any(c.islower() for c in password)
        and any(c.isupper() for c in password)
        and any(c.isdigit() for c in password)
        and any(not c.isalnum() and not c.isspace() for c in password)
    ):
        violations.append(
            Violation(
                "password",
                "Password must contain at least one uppercase letter, one lowercase letter, "
                "one number and one special character.",
            )
        )
    return violations


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


def validate_login(external_id: str | None, password: str | None) -> list[Violation]:
    """Presence only. Format errors on login would tell an attacker nothing new,
    but they would make a typo look different from a wrong password."""
    return _required({"externalId": external_id, "password": password})


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


def validate_membership_documents(identity_document: str | None, residency_document: str | None) -> list[Violation]:
    violations = _required({"identityDocument": identity_document, "residencyDocument": residency_document})
    if violations:
        # Single headline message for the common case of both missing.
        return [Violation(v.field, "Both identity and residency documents must be provided.") for v in violations]
    return []


def validate_decision(request_id: int | None, decision: str | None, reason: str | None) -> list[Violation]:
    if request_id is None or isinstance(request_id, bool) or not isinstance(request_id, int) or request_id <= 0:
        return [Violation("requestId", "requestId must be a positive integer.")]
    if decision not in DECISIONS:
        return [Violation("decision", "Invalid decision. Expected 'approved' or 'rejected'.")]
    if decision == "rejected" and is_blank(reason):
        return [Violation("reason", "A rejection reason must be provided.")]
    return []
