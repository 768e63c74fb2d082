"""
auth/store.py -- SQLAlchemy Core persistence layer for users and membership requests.

Pattern: Repository + Data Mapper. IdentityStore is the contract the workflow
depends on; SqlIdentityStore implements it. _row_to_user / _row_to_request are
the mappers. Workflow and route code never touches SQL directly, and tests can
hand the workflow any object that satisfies IdentityStore.

Security:
  All queries use bound parameters. No f-strings in SQL.

Atomicity:
  Every insert/update is a single statement in its own transaction, except
  update_membership_decision(): approving a request and promoting its owner
  to "member" share one engine.begin() block, so a failure in either step
  rolls back both.

Pooling:
  Server databases get a QueuePool capped at db_pool_size with no overflow and
  a bounded checkout wait. A checkout timeout surfaces as PoolExhausted (503)
  instead of hanging the request. SQLite keeps SQLAlchemy's default pool for
  its URL type (file: QueuePool, memory: SingletonThreadPool).

One-pending-request rule:
  Checked by the workflow, and enforced in the database with a partial unique
  index on (user_id) WHERE decision = 'pending' on the backends that support
  partial indexes (SQLite, PostgreSQL). Elsewhere the workflow check stands alone.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.models import (
    DECISION_APPROVED,
    DECISION_PENDING,
    DECISION_REJECTED,
    ROLE_MEMBER,
    ROLE_RESIDENT,
    MembershipDocuments,
    MembershipRequest,
    User,
)
from core.config import Settings
from core.errors import Conflict, DuplicateRequest, PoolExhausted

# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class IdentityStore(Protocol):
    """Persistence operations the auth workflow depends on."""

    def ping(self) -> bool: ...

    def create_schema(self) -> None: ...

    def close(self) -> None: ...

    def find_user_by_external_id(self, external_id: str) -> User | None: ...

    def find_user_by_email(self, email: str) -> User | None: ...

    def find_user_by_id(self, user_id: int) -> User | None: ...

    def insert_user(self, user: User) -> int: ...

    def set_user_status(self, user_id: int, status: str) -> int: ...

    def find_pending_membership_request(self, user_id: int) -> MembershipRequest | None: ...

    def find_membership_request(self, request_id: int) -> MembershipRequest | None: ...

    def insert_membership_request(self, user_id: int, documents: MembershipDocuments, submitted_at: str) -> int: ...

    def update_membership_decision(
        self, request_id: int, decision: str, decided_at: str, reason: str | None = None
    ) -> int: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("external_id", String(12), nullable=False, unique=True),
    Column("given_name", String(50), nullable=False),
    Column("surname", String(50), nullable=False),
    Column("email", String(254), nullable=False, unique=True),
    Column("phone", String(16)),
    Column("address", String(100)),
    Column("password_hash", String(60), nullable=False),
    Column("status", String(16), nullable=False, server_default="active"),
    Column("role", String(16), nullable=False, server_default="resident"),
    Column("registered_at", String(32), nullable=False),
)

_requests = Table(
    "membership_requests",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("submitted_at", String(32), nullable=False),
    Column("decision", String(16), nullable=False, server_default="pending"),
    Column("identity_document", Text, nullable=False),
    Column("residency_document", Text, nullable=False),
    Column("decided_at", String(32)),  # set only on approval
    Column("rejection_reason", Text),  # set only on rejection
)

Index(
    "uq_membership_requests_pending_user",
    _requests.c.user_id,
    unique=True,
    sqlite_where=_requests.c.decision == DECISION_PENDING,
    postgresql_where=_requests.c.decision == DECISION_PENDING,
).ddl_if(dialect=("sqlite", "postgresql"))


# ---------------------------------------------------------------------------
# SQLite tuning
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SqlIdentityStore:
    """IdentityStore backed by any SQLAlchemy-supported database.

    The constructor does not touch the database; call ping() and then
    create_schema() before first use.

    Usage:
        store = SqlIdentityStore.from_settings(settings)
        if store.ping():
            store.create_schema()
        user_id = store.insert_user(User(...))
        user = store.find_user_by_external_id("12345678-5")
        store.close()
    """

    def __init__(self, db_url: str, pool_size: int = 10, pool_timeout: float = 10.0) -> None:
        connect_args: dict = {}
        engine_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        else:
            engine_args.update(pool_size=pool_size, max_overflow=0, pool_timeout=pool_timeout, pool_pre_ping=True)
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SqlIdentityStore":
        return cls(settings.database_url, settings.db_pool_size, settings.db_pool_timeout)

    def create_schema(self) -> None:
        """Create missing tables and indexes. Idempotent; not a migration tool."""
        with self._connect() as conn:
            _metadata.create_all(conn)
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        try:
            with self.engine.connect() as conn:
                yield conn
        except PoolTimeoutError as exc:
            raise PoolExhausted() from exc

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        try:
            with self.engine.begin() as conn:
                yield conn
        except PoolTimeoutError as exc:
            raise PoolExhausted() from exc

    def ping(self) -> bool:
        """Return True if a pooled connection can run a trivial query."""
        try:
            with self._connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def find_user_by_external_id(self, external_id: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.external_id == external_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_user_by_email(self, email: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_user_by_id(self, user_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def insert_user(self, user: User) -> int:
        """Insert a new user and return its generated id.

        Raises Conflict if external_id or email is already taken. The workflow
        checks both first; this catches the race where two registrations for
        the same id pass the check concurrently.
        """
        try:
            with self._begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        external_id=user.external_id,
                        given_name=user.given_name,
                        surname=user.surname,
                        email=user.email,
                        phone=user.phone,
                        address=user.address,
                        password_hash=user.password_hash,
                        status=user.status,
                        role=user.role,
                        registered_at=user.registered_at or _now_iso(),
                    )
                )
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise Conflict("External id or email is already registered.") from exc

    def set_user_status(self, user_id: int, status: str) -> int:
        """Soft-enable/disable an account. Returns the affected row count."""
        with self._begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(status=status))
        return result.rowcount

    def set_user_role(self, user_id: int, role: str) -> int:
        """Administrative role assignment (board provisioning). Not used by the workflow."""
        with self._begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(role=role))
        return result.rowcount

    # ------------------------------------------------------------------
    # Membership requests
    # ------------------------------------------------------------------

    def find_pending_membership_request(self, user_id: int) -> MembershipRequest | None:
        with self._connect() as conn:
            row = conn.execute(
                _requests.select().where((_requests.c.user_id == user_id) & (_requests.c.decision == DECISION_PENDING))
            ).fetchone()
        return _row_to_request(row) if row is not None else None

    def find_membership_request(self, request_id: int) -> MembershipRequest | None:
        with self._connect() as conn:
            row = conn.execute(_requests.select().where(_requests.c.id == request_id)).fetchone()
        return _row_to_request(row) if row is not None else None

    def insert_membership_request(self, user_id: int, documents: MembershipDocuments, submitted_at: str) -> int:
        """Insert a pending request and return its id.

        Raises DuplicateRequest if the partial unique index reports another
        pending request for the same user.
        """
        try:
            with self._begin() as conn:
                result = conn.execute(
                    _requests.insert().values(
                        user_id=user_id,
                        submitted_at=submitted_at,
                        decision=DECISION_PENDING,
                        identity_document=documents.identity_document,
                        residency_document=documents.residency_document,
                    )
                )
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise DuplicateRequest() from exc

    def update_membership_decision(
        self, request_id: int, decision: str, decided_at: str, reason: str | None = None
    ) -> int:
        """Record the terminal decision for a pending request.

        Only pending rows are touched, so a decided request is never rewritten.
        decided_at is stored only on approval, reason only on rejection. On
        approval the owner is promoted resident -> member in the same
        transaction.

        Returns the affected row count: 0 means no pending request with that id.
        """
        if decision not in (DECISION_APPROVED, DECISION_REJECTED):
            raise ValueError(f"Unknown membership decision: {decision!r}")
        pending = (_requests.c.id == request_id) & (_requests.c.decision == DECISION_PENDING)
        with self._begin() as conn:
            row = conn.execute(select(_requests.c.user_id).where(pending)).fetchone()
            if row is None:
                return 0
            result = conn.execute(
                _requests.update()
                .where(pending)
                .values(
                    decision=decision,
                    decided_at=decided_at if decision == DECISION_APPROVED else None,
                    rejection_reason=reason if decision == DECISION_REJECTED else None,
                )
            )
            if result.rowcount and decision == DECISION_APPROVED:
                self._promote_to_member(conn, row.user_id)
            return result.rowcount

    def _promote_to_member(self, conn: Connection, user_id: int) -> None:
        # Residents only: a board account that was granted membership keeps its role.
        conn.execute(
            _users.update()
            .where((_users.c.id == user_id) & (_users.c.role == ROLE_RESIDENT))
            .values(role=ROLE_MEMBER)
        )

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        external_id=row.external_id,
        given_name=row.given_name,
        surname=row.surname,
        email=row.email,
        phone=row.phone,
        address=row.address,
        password_hash=row.password_hash,
        status=row.status,
        role=row.role,
        registered_at=row.registered_at,
    )


def _row_to_request(row) -> MembershipRequest:
    return MembershipRequest(
        id=row.id,
        user_id=row.user_id,
        submitted_at=row.submitted_at,
        decision=row.decision,
        identity_document=row.identity_document,
        residency_document=row.residency_document,
        decided_at=row.decided_at,
        rejection_reason=row.rejection_reason,
    )
