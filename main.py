#!/usr/bin/env python3
"""
VecindApp auth service -- operator command line.

Board accounts are never created through the public API: residents register,
members are promoted by board approval, and the board itself is provisioned
here by whoever operates the service.

Usage:
  python main.py init-db
  python main.py create-board-user --external-id 11111111-1 --given-name Rosa \\
      --surname Diaz --email rosa@example.com
  python main.py serve --port 3001

Environment variables (see core/config.py):
  SECRET_KEY     JWT signing key, 32+ chars. Required unless DEBUG=true.
  DATABASE_URL   SQLAlchemy URL. Default: SQLite file in the project root.
  BOARD_PASSWORD Password for create-board-user. Prompted for when unset.
"""

import argparse
import getpass
import os
import sys
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from auth.models import ROLE_BOARD, STATUS_ACTIVE, User
from auth.passwords import hash_password
from auth.store import SqlIdentityStore
from core.config import get_settings
from core.errors import ServiceError
from core.validation import normalize_email, normalize_external_id, validate_password, validate_registration


def provision_board_user(
    store: SqlIdentityStore,
    external_id: str,
    given_name: str,
    surname: str,
    email: str,
    password: Optional[str],
) -> tuple[int, bool]:
    """Create a board account, or promote an existing account to board.

    Returns (user_id, created). An existing account keeps its password; the
    password argument is only required when a new account is created.
    """
    existing = store.find_user_by_external_id(normalize_external_id(external_id))
    if existing is not None:
        store.set_user_role(existing.id, ROLE_BOARD)
        return existing.id, False

    violations = validate_registration(external_id, given_name, surname, email, password)
    if not violations:
        violations = validate_password(password)
    if violations:
        raise ValueError("; ".join(v.message for v in violations))

    user_id = store.insert_user(
        User(
            external_id=normalize_external_id(external_id),
            given_name=given_name.strip(),
            surname=surname.strip(),
            email=normalize_email(email),
            password_hash=hash_password(password),
            role=ROLE_BOARD,
            status=STATUS_ACTIVE,
        )
    )
    return user_id, True


def _open_store() -> Optional[SqlIdentityStore]:
    """Store with its schema in place, or None (after an [!] line) if unreachable."""
    store = SqlIdentityStore.from_settings(get_settings())
    if not store.ping():
        store.close()
        print("  [!] Could not connect to the database. Check DATABASE_URL.")
        return None
    try:
        store.create_schema()
    except SQLAlchemyError as exc:
        store.close()
        print(f"  [!] Could not create the schema: {exc}")
        return None
    return store


def _cmd_init_db(args: argparse.Namespace) -> int:
    store = _open_store()
    if store is None:
        return 1
    store.close()
    print("  Database reachable, schema up to date.")
    return 0


def _cmd_create_board_user(args: argparse.Namespace) -> int:
    store = _open_store()
    if store is None:
        return 1
    try:
        password = os.environ.get("BOARD_PASSWORD")
        if not password and store.find_user_by_external_id(normalize_external_id(args.external_id)) is None:
            password = getpass.getpass("  Password for new board user: ")
        try:
            user_id, created = provision_board_user(
                store, args.external_id, args.given_name, args.surname, args.email, password
            )
        except (ValueError, ServiceError) as exc:
            print(f"  [!] {exc}")
            return 1
        action = "Created" if created else "Promoted existing"
        print(f"  {action} board user id={user_id} ({normalize_external_id(args.external_id)}).")
        return 0
    finally:
        store.close()


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run("asgi:app", host=args.host, port=args.port or settings.port, reload=args.reload)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="vecindapp-auth",
        description="Operator commands for the VecindApp authentication service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    init_db = sub.add_parser("init-db", help="Create missing tables and check database connectivity")
    init_db.set_defaults(func=_cmd_init_db)

    board = sub.add_parser("create-board-user", help="Provision a board account (or promote an existing one)")
    board.add_argument("--external-id", required=True, metavar="RUT", help="National id, e.g. 12345678-5")
    board.add_argument("--given-name", required=True)
    board.add_argument("--surname", required=True)
    board.add_argument("--email", required=True)
    board.set_defaults(func=_cmd_create_board_user)

    serve = sub.add_parser("serve", help="Run the HTTP service with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=None, help="Default: PORT setting (3001)")
    serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes (development)")
    serve.set_defaults(func=_cmd_serve)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
