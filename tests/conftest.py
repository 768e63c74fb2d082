"""
tests/conftest.py -- Shared test fixtures for the auth service.

This module provides:
  - settings:  an explicit Settings object (debug mode, file logging off)
  - store:     a SqlIdentityStore on a throwaway SQLite file
  - issuer:    a TokenIssuer with a fixed test key
  - workflow:  AuthWorkflow wired to store + issuer
  - client:    TestClient around create_app(settings), lifespan included
  - board_token: bearer token for a provisioned board account

Design: each test gets its own SQLite file under tmp_path. A file DB (not
:memory:) is required for the client fixture because TestClient runs sync
route handlers in a thread pool, and every thread must see the same schema.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import create_app
from auth.models import ROLE_BOARD, User
from auth.passwords import hash_password
from auth.store import SqlIdentityStore
from auth.tokens import TokenIssuer
from auth.workflow import AuthWorkflow, RegistrationInput
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789-abcdefghij"

BOARD_EXTERNAL_ID = "11111111-1"
BOARD_PASSWORD = "Directiva#2024"


def registration(**overrides) -> RegistrationInput:
    """The canonical example resident, with optional field overrides."""
    data = {
        "external_id": "12345678-5",
        "given_name": "Ana",
        "surname": "Lopez",
        "email": "a@x.com",
        "password": "Secreta1!",
    }
    data.update(overrides)
    return RegistrationInput(**data)


def register_body(**overrides) -> dict:
    """JSON body for POST /api/auth/register (camelCase wire format)."""
    body = {
        "externalId": "12345678-5",
        "givenName": "Ana",
        "surname": "Lopez",
        "email": "a@x.com",
        "password": "Secreta1!",
    }
    body.update(overrides)
    return body


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        debug=True,
        secret_key=TEST_SECRET,
        database_url=f"sqlite:///{tmp_path / 'auth.db'}",
        log_dir="",
        login_rate_limit="1000/minute",
    )


@pytest.fixture
def store(tmp_path) -> Generator[SqlIdentityStore, None, None]:
    s = SqlIdentityStore(f"sqlite:///{tmp_path / 'store.db'}")
    s.create_schema()
    yield s
    s.close()


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(TEST_SECRET)


@pytest.fixture
def workflow(store: SqlIdentityStore, issuer: TokenIssuer) -> AuthWorkflow:
    return AuthWorkflow(store, issuer)


@pytest.fixture
def client(settings: Settings) -> Generator[TestClient, None, None]:
    """TestClient with the real lifespan: store, issuer and workflow on app.state."""
    limiter.reset()
    app = create_app(settings)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def board_token(client: TestClient) -> str:
    """Provision a board account directly in the store and return its token.

    Board accounts are never created through the public API, so the test
    inserts one the way the create-board-user CLI command does.
    """
    state = client.app.state
    uid = state.store.insert_user(
        User(
            external_id=BOARD_EXTERNAL_ID,
            given_name="Rosa",
            surname="Diaz",
            email="rosa@x.com",
            password_hash=hash_password(BOARD_PASSWORD),
            role=ROLE_BOARD,
        )
    )
    return state.issuer.issue(user_id=uid, external_id=BOARD_EXTERNAL_ID, role=ROLE_BOARD)


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
