"""
auth/passwords.py -- bcrypt password hashing and verification.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

Cost factor is fixed at 10 rounds. bcrypt.checkpw compares the recomputed
digest in constant time, so verification has no early-exit timing leak.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import bcrypt

BCRYPT_ROUNDS = 10


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Registration validation caps passwords at 72 UTF-8 bytes, bcrypt's input
    limit, so nothing is silently truncated here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Any failure -- malformed or truncated stored hash, None, an over-long
    password that newer bcrypt releases refuse -- is a non-match, never an
    exception.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except Exception:
        return False


# Timing equalization dummy hash.
# Computed once at import so the first login attempt is not measurably
# slower than subsequent ones. Login runs verify_dummy() when the external id
# is unknown, so both failure paths pay for exactly one bcrypt check.
_DUMMY_HASH: str = hash_password("vecindapp_timing_dummy")


def verify_dummy(plain: str) -> None:
    verify_password(plain, _DUMMY_HASH)
