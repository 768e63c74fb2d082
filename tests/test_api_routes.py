"""
tests/test_api_routes.py -- Integration tests for /api/auth/* endpoints.

Covers:
  - Full lifecycle: register -> login -> request-socio -> board approves ->
    next login carries role member
  - Error envelope {status, statusCode, message, code} on every failure
  - Authentication vs authorization: 401 without token, 403 for wrong role,
    token_expired vs invalid_token codes
  - Account disabled after token issue loses access immediately
  - Malformed JSON -> 400, unknown route -> 404, unexpected error -> 500
  - Security headers and Cache-Control: no-store on token responses
  - Login rate limit read from the app's own Settings; 429 rate_limited
    with Retry-After
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from fastapi.testclient import TestClient

from api import main as api_main
from api.limiter import limiter
from api.main import create_app
from auth.models import STATUS_DISABLED
from auth.tokens import TokenIssuer
from conftest import BOARD_EXTERNAL_ID, BOARD_PASSWORD, TEST_SECRET, bearer, register_body

_DOCS = {"identityDocument": "cedula.pdf", "residencyDocument": "boleta-luz.pdf"}


def _register(client: TestClient, **overrides) -> dict:
    resp = client.post("/api/auth/register", json=register_body(**overrides))
    assert resp.status_code == 201, resp.text
    return resp.json()


def _assert_error(resp, status_code: int, code: str) -> dict:
    assert resp.status_code == status_code, resp.text
    data = resp.json()
    assert data["status"] == "error"
    assert data["statusCode"] == status_code
    assert data["code"] == code
    assert data["message"]
    return data


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------


def test_register_returns_token_and_profile(client):
    resp = client.post("/api/auth/register", json=register_body())
    assert resp.status_code == 201
    assert resp.headers["cache-control"] == "no-store"
    data = resp.json()
    assert data["message"] == "User registered successfully."
    assert data["token"]
    assert data["profile"] == {
        "id": data["profile"]["id"],
        "externalId": "12345678-5",
        "givenName": "Ana",
        "surname": "Lopez",
        "email": "a@x.com",
        "role": "resident",
    }


def test_register_never_echoes_password(client):
    body = _register(client)
    assert "Secreta1!" not in str(body)
    assert "password" not in body["profile"]
    assert "passwordHash" not in body["profile"]


def test_register_missing_fields(client):
    resp = client.post("/api/auth/register", json={"externalId": "12345678-5"})
    data = _assert_error(resp, 400, "validation_failed")
    assert {e["field"] for e in data["errors"]} == {"givenName", "surname", "email", "password"}


def test_register_invalid_external_id(client):
    resp = client.post("/api/auth/register", json=register_body(externalId="12.345.678-5"))
    _assert_error(resp, 400, "validation_failed")


def test_register_weak_password(client):
    resp = client.post("/api/auth/register", json=register_body(password="secreta"))
    data = _assert_error(resp, 400, "validation_failed")
    assert data["errors"][0]["field"] == "password"


def test_register_duplicate_external_id(client):
    _register(client)
    resp = client.post("/api/auth/register", json=register_body(email="otra@x.com"))
    data = _assert_error(resp, 409, "conflict")
    assert data["message"] == "External id is already registered."


def test_register_duplicate_email(client):
    _register(client)
    resp = client.post("/api/auth/register", json=register_body(externalId="1234567-K"))
    _assert_error(resp, 409, "conflict")


def test_register_malformed_json(client):
    resp = client.post(
        "/api/auth/register",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    _assert_error(resp, 400, "validation_failed")


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


def test_login_success(client):
    registered = _register(client)
    resp = client.post("/api/auth/login", json={"externalId": "12345678-5", "password": "Secreta1!"})
    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "no-store"
    data = resp.json()
    assert data["message"] == "Login successful."
    assert data["profile"] == registered["profile"]


def test_login_failures_are_identical(client):
    _register(client)
    unknown = client.post("/api/auth/login", json={"externalId": "99999999-9", "password": "Secreta1!"})
    wrong = client.post("/api/auth/login", json={"externalId": "12345678-5", "password": "Secreta2!"})
    _assert_error(unknown, 401, "invalid_credentials")
    assert unknown.json() == wrong.json()
    assert unknown.status_code == wrong.status_code


def test_login_missing_password(client):
    resp = client.post("/api/auth/login", json={"externalId": "12345678-5"})
    _assert_error(resp, 400, "validation_failed")


def test_login_disabled_account(client):
    profile = _register(client)["profile"]
    client.app.state.store.set_user_status(profile["id"], STATUS_DISABLED)
    resp = client.post("/api/auth/login", json={"externalId": "12345678-5", "password": "Secreta1!"})
    _assert_error(resp, 403, "account_disabled")


def test_board_login(client, board_token):
    resp = client.post("/api/auth/login", json={"externalId": BOARD_EXTERNAL_ID, "password": BOARD_PASSWORD})
    assert resp.status_code == 200
    assert resp.json()["profile"]["role"] == "board"


# ---------------------------------------------------------------------------
# Membership lifecycle
# ---------------------------------------------------------------------------


def test_full_membership_lifecycle(client, board_token):
    token = _register(client)["token"]

    submitted = client.post("/api/auth/request-socio", json=_DOCS, headers=bearer(token))
    assert submitted.status_code == 201, submitted.text
    receipt = submitted.json()
    assert receipt["requestId"] > 0
    assert receipt["userId"] > 0
    assert receipt["timestamp"]

    decided = client.post(
        "/api/auth/validate-socio-request",
        json={"requestId": receipt["requestId"], "decision": "approved"},
        headers=bearer(board_token),
    )
    assert decided.status_code == 200, decided.text
    assert decided.json()["decision"] == "approved"
    assert decided.json()["message"] == "Membership request approved."

    relogin = client.post("/api/auth/login", json={"externalId": "12345678-5", "password": "Secreta1!"})
    assert relogin.json()["profile"]["role"] == "member"
    assert client.app.state.issuer.verify(relogin.json()["token"]).role == "member"


def test_duplicate_pending_request(client):
    token = _register(client)["token"]
    client.post("/api/auth/request-socio", json=_DOCS, headers=bearer(token))
    resp = client.post("/api/auth/request-socio", json=_DOCS, headers=bearer(token))
    _assert_error(resp, 400, "duplicate_request")


def test_request_missing_document(client):
    token = _register(client)["token"]
    resp = client.post("/api/auth/request-socio", json={"identityDocument": "cedula.pdf"}, headers=bearer(token))
    data = _assert_error(resp, 400, "validation_failed")
    assert data["message"] == "Both identity and residency documents must be provided."


def test_reject_requires_reason(client, board_token):
    token = _register(client)["token"]
    rid = client.post("/api/auth/request-socio", json=_DOCS, headers=bearer(token)).json()["requestId"]
    resp = client.post(
        "/api/auth/validate-socio-request",
        json={"requestId": rid, "decision": "rejected"},
        headers=bearer(board_token),
    )
    _assert_error(resp, 400, "validation_failed")


def test_decide_unknown_request(client, board_token):
    resp = client.post(
        "/api/auth/validate-socio-request",
        json={"requestId": 4242, "decision": "approved"},
        headers=bearer(board_token),
    )
    _assert_error(resp, 404, "not_found")


# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------


def test_request_socio_without_token(client):
    resp = client.post("/api/auth/request-socio", json=_DOCS)
    _assert_error(resp, 401, "unauthenticated")


def test_resident_cannot_decide(client):
    token = _register(client)["token"]
    resp = client.post(
        "/api/auth/validate-socio-request",
        json={"requestId": 1, "decision": "approved"},
        headers=bearer(token),
    )
    _assert_error(resp, 403, "forbidden")


def test_decide_without_token_is_401_not_403(client):
    resp = client.post("/api/auth/validate-socio-request", json={"requestId": 1, "decision": "approved"})
    _assert_error(resp, 401, "unauthenticated")


def test_expired_token(client):
    profile = _register(client)["profile"]
    two_days_ago = datetime.now(timezone.utc) - timedelta(days=2)
    stale = TokenIssuer(TEST_SECRET, clock=lambda: two_days_ago).issue(
        user_id=profile["id"], external_id=profile["externalId"], role=profile["role"]
    )
    resp = client.post("/api/auth/request-socio", json=_DOCS, headers=bearer(stale))
    _assert_error(resp, 401, "token_expired")


def test_invalid_token(client):
    resp = client.post("/api/auth/request-socio", json=_DOCS, headers=bearer("not.a.token"))
    _assert_error(resp, 403, "invalid_token")


def test_token_signed_with_other_key(client):
    profile = _register(client)["profile"]
    forged = TokenIssuer("some-other-secret-key-0123456789-xyz").issue(
        user_id=profile["id"], external_id=profile["externalId"], role="board"
    )
    resp = client.post(
        "/api/auth/validate-socio-request",
        json={"requestId": 1, "decision": "approved"},
        headers=bearer(forged),
    )
    _assert_error(resp, 403, "invalid_token")


def test_disabled_after_token_issue(client):
    body = _register(client)
    client.app.state.store.set_user_status(body["profile"]["id"], STATUS_DISABLED)
    resp = client.post("/api/auth/request-socio", json=_DOCS, headers=bearer(body["token"]))
    _assert_error(resp, 403, "account_disabled")


def test_token_for_deleted_account(client):
    ghost = TokenIssuer(TEST_SECRET).issue(user_id=777, external_id="7654321-0", role="resident")
    resp = client.post("/api/auth/request-socio", json=_DOCS, headers=bearer(ghost))
    _assert_error(resp, 403, "invalid_token")


# ---------------------------------------------------------------------------
# Cross-cutting
# ---------------------------------------------------------------------------


def test_unknown_route(client):
    resp = client.get("/api/auth/does-not-exist")
    data = _assert_error(resp, 404, "not_found")
    assert data["message"] == "Route not found."


def test_security_headers(client):
    resp = client.post("/api/auth/login", json={"externalId": "99999999-9", "password": "x"})
    assert resp.headers["x-content-type-options"] == "nosniff"
    assert resp.headers["x-frame-options"] == "DENY"
    assert resp.headers["cache-control"] == "no-store"


def test_typed_errors_carry_no_stack(client):
    resp = client.post("/api/auth/login", json={"externalId": "99999999-9", "password": "x"})
    assert "stack" not in resp.json()


def test_unexpected_error_is_500(settings):
    app = create_app(settings)
    with TestClient(app, raise_server_exceptions=False) as c:
        with patch.object(app.state.workflow, "login", side_effect=RuntimeError("boom")):
            resp = c.post("/api/auth/login", json={"externalId": "12345678-5", "password": "Secreta1!"})
    data = _assert_error(resp, 500, "internal_error")
    assert data["message"] == "Internal server error."
    assert "RuntimeError" in data["stack"]
    assert resp.headers["x-content-type-options"] == "nosniff"
    assert resp.headers["x-frame-options"] == "DENY"


def test_unexpected_error_hides_stack_outside_debug(settings):
    app = create_app(settings.model_copy(update={"debug": False}))
    with TestClient(app, raise_server_exceptions=False) as c:
        with patch.object(app.state.workflow, "login", side_effect=RuntimeError("boom")):
            resp = c.post("/api/auth/login", json={"externalId": "12345678-5", "password": "Secreta1!"})
    data = _assert_error(resp, 500, "internal_error")
    assert "stack" not in data
    assert "boom" not in resp.text


def test_unexpected_error_gets_access_log_line(settings):
    app = create_app(settings)
    with TestClient(app, raise_server_exceptions=False) as c:
        with patch.object(app.state.workflow, "login", side_effect=RuntimeError("boom")), patch.object(
            api_main, "_log_access"
        ) as log_access:
            c.post("/api/auth/login", json={"externalId": "12345678-5", "password": "Secreta1!"})
    statuses = [call.args[1] for call in log_access.call_args_list]
    assert statuses == [500]


# ---------------------------------------------------------------------------
# Login rate limit
# ---------------------------------------------------------------------------


def _bad_logins(c: TestClient, n: int) -> list:
    return [c.post("/api/auth/login", json={"externalId": "99999999-9", "password": "Nope#1234"}) for _ in range(n)]


def test_login_rate_limit_comes_from_app_settings(settings):
    limiter.reset()
    app = create_app(settings.model_copy(update={"login_rate_limit": "2/minute"}))
    with TestClient(app) as c:
        responses = _bad_logins(c, 3)
    assert [r.status_code for r in responses] == [401, 401, 429]
    data = _assert_error(responses[2], 429, "rate_limited")
    assert data["message"] == "Too many requests. Try again later."
    assert responses[2].headers["retry-after"] == "60"
    assert responses[2].headers["cache-control"] == "no-store"


def test_login_rate_limit_is_per_app(settings):
    limiter.reset()
    strict = create_app(settings.model_copy(update={"login_rate_limit": "1/minute"}))
    lenient = create_app(settings.model_copy(update={"login_rate_limit": "5/minute"}))
    with TestClient(strict) as c:
        assert [r.status_code for r in _bad_logins(c, 2)] == [401, 429]
    with TestClient(lenient) as c:
        assert [r.status_code for r in _bad_logins(c, 3)] == [401, 401, 401]


def test_rate_limit_applies_to_login_only(settings):
    limiter.reset()
    app = create_app(settings.model_copy(update={"login_rate_limit": "1/minute"}))
    with TestClient(app) as c:
        for _ in range(3):
            resp = c.post("/api/auth/register", json={"externalId": "12345678-5"})
            assert resp.status_code == 400
