"""
tests/test_api_routes.py -- Integration tests for the account and session routes.

These tests exercise the full stack: FastAPI routing -> request model
validation -> get_current_account dependency -> AuthService -> AccountStore
-> response model serialization and the error envelope. Unit testing the
route functions on their own would miss the cookie handling, the exception
handlers and the status mapping.

Coverage:
  - register/login: 201/200, session cookie + token body, 409 duplicate,
    401 with one message for unknown email and wrong password
  - /me: cookie auth, Bearer auth, 401 unauthorized / invalid_session
  - forgot/reset: emailed link, 404 unknown email, 502 delivery failure,
    400 mismatch, 400 reused token, login with the new password
  - password/update, me/update, questions toggle, logout
  - 422 validation_error envelope

Fixtures used (from conftest.py):
  - client: TestClient over the real app with an empty cookie jar
  - api_client: ApiHarness(client, mailer, store) for the same module-wide app.
    The database is shared across the module, so every test uses its own emails.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import ApiHarness


def _register(client: TestClient, email: str, password: str = "pw1234", name: str = "Tester") -> dict:
    resp = client.post("/api/v1/register", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 201, resp.text
    return resp.json()


def _error_code(resp) -> str:
    return resp.json()["error"]["code"]


class TestRegisterAndLogin:
    def test_register_sets_cookie_and_returns_user(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/register",
            json={"name": "Reg", "email": "Reg1@Example.com", "password": "pw1234"},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["success"] is True
        assert data["token"]
        assert data["user"]["email"] == "reg1@example.com"
        assert data["user"]["questions"] == []
        assert "password" not in str(data["user"]).lower()
        assert resp.cookies.get("token") == data["token"]
        assert resp.headers["cache-control"] == "no-store"

    def test_register_duplicate_is_409(self, client: TestClient) -> None:
        _register(client, "dup@example.com")
        client.cookies.clear()
        resp = client.post("/api/v1/register", json={"name": "Dup", "email": "DUP@example.com", "password": "pw1234"})
        assert resp.status_code == 409
        assert _error_code(resp) == "duplicate_account"

    def test_register_validation_is_422(self, client: TestClient) -> None:
        resp = client.post("/api/v1/register", json={"name": "Bad", "email": "not-an-email", "password": "pw1234"})
        assert resp.status_code == 422
        assert _error_code(resp) == "validation_error"

    def test_register_short_password_is_422(self, client: TestClient) -> None:
        resp = client.post("/api/v1/register", json={"name": "Short", "email": "short@example.com", "password": "pw"})
        assert resp.status_code == 422

    def test_login_success(self, client: TestClient) -> None:
        _register(client, "login@example.com")
        client.cookies.clear()
        resp = client.post("/api/v1/login", json={"email": "login@example.com", "password": "pw1234"})
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "login@example.com"
        assert resp.cookies.get("token")

    def test_login_failures_are_indistinguishable(self, client: TestClient) -> None:
        _register(client, "enum@example.com")
        client.cookies.clear()
        unknown = client.post("/api/v1/login", json={"email": "ghost@example.com", "password": "pw1234"})
        wrong = client.post("/api/v1/login", json={"email": "enum@example.com", "password": "nope12"})
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()
        assert _error_code(unknown) == "invalid_credentials"


class TestCurrentAccount:
    def test_me_with_cookie(self, client: TestClient) -> None:
        _register(client, "me-cookie@example.com", name="Cookie")
        resp = client.get("/api/v1/me")
        assert resp.status_code == 200
        assert resp.json()["user"]["name"] == "Cookie"

    def test_me_with_bearer(self, client: TestClient) -> None:
        token = _register(client, "me-bearer@example.com")["token"]
        client.cookies.clear()
        resp = client.get("/api/v1/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "me-bearer@example.com"

    def test_me_without_token(self, client: TestClient) -> None:
        resp = client.get("/api/v1/me")
        assert resp.status_code == 401
        assert resp.json()["error"] == {"code": "unauthorized", "message": "Login first to access this resource."}

    def test_me_with_forged_token(self, client: TestClient) -> None:
        resp = client.get("/api/v1/me", headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401
        assert _error_code(resp) == "invalid_session"


class TestPasswordReset:
    def test_full_reset_flow(self, api_client: ApiHarness, client: TestClient) -> None:
        _register(client, "reset@example.com")
        client.cookies.clear()

        resp = client.post("/api/v1/password/forgot", json={"email": "reset@example.com"})
        assert resp.status_code == 200
        assert resp.json()["message"] == "Email sent to reset@example.com"
        mail = api_client.mailer.last
        assert mail.to_address == "reset@example.com"
        assert "http://testserver/password/reset/" in mail.body

        resp = client.put(
            f"/api/v1/password/reset/{mail.reset_token}",
            json={"password": "newpw1", "confirmPassword": "newpw1"},
        )
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "reset@example.com"
        assert resp.cookies.get("token")

        client.cookies.clear()
        assert client.post("/api/v1/login", json={"email": "reset@example.com", "password": "newpw1"}).status_code == 200
        old = client.post("/api/v1/login", json={"email": "reset@example.com", "password": "pw1234"})
        assert old.status_code == 401

    def test_reused_token_is_400(self, api_client: ApiHarness, client: TestClient) -> None:
        _register(client, "reuse@example.com")
        client.post("/api/v1/password/forgot", json={"email": "reuse@example.com"})
        token = api_client.mailer.last.reset_token
        body = {"password": "newpw1", "confirmPassword": "newpw1"}
        assert client.put(f"/api/v1/password/reset/{token}", json=body).status_code == 200
        resp = client.put(f"/api/v1/password/reset/{token}", json=body)
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_or_expired_token"

    def test_mismatched_passwords_is_400(self, api_client: ApiHarness, client: TestClient) -> None:
        account_id = _register(client, "mismatch@example.com")["user"]["id"]
        client.post("/api/v1/password/forgot", json={"email": "mismatch@example.com"})
        token = api_client.mailer.last.reset_token
        resp = client.put(
            f"/api/v1/password/reset/{token}",
            json={"password": "newpw1", "confirmPassword": "newpw2"},
        )
        assert resp.status_code == 400
        assert _error_code(resp) == "password_mismatch"
        assert api_client.store.find_by_id(account_id).has_pending_reset

    def test_unknown_token_is_400(self, client: TestClient) -> None:
        resp = client.put(
            "/api/v1/password/reset/" + "f" * 64,
            json={"password": "newpw1", "confirmPassword": "newpw1"},
        )
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_or_expired_token"

    def test_forgot_unknown_email_is_404(self, api_client: ApiHarness, client: TestClient) -> None:
        sent_before = len(api_client.mailer.sent)
        resp = client.post("/api/v1/password/forgot", json={"email": "nobody@example.com"})
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "User not found with this email."
        assert len(api_client.mailer.sent) == sent_before

    def test_delivery_failure_is_502_and_rolled_back(self, api_client: ApiHarness, client: TestClient) -> None:
        account_id = _register(client, "undeliverable@example.com")["user"]["id"]
        api_client.mailer.fail = True
        resp = client.post("/api/v1/password/forgot", json={"email": "undeliverable@example.com"})
        assert resp.status_code == 502
        assert _error_code(resp) == "delivery_failed"
        assert api_client.store.find_by_id(account_id).has_pending_reset is False


class TestAuthenticatedUpdates:
    def test_update_password(self, client: TestClient) -> None:
        _register(client, "change@example.com")
        resp = client.put("/api/v1/password/update", json={"oldPassword": "pw1234", "password": "newpw1"})
        assert resp.status_code == 200
        assert resp.json()["token"]

        client.cookies.clear()
        assert client.post("/api/v1/login", json={"email": "change@example.com", "password": "newpw1"}).status_code == 200

    def test_update_password_wrong_old(self, client: TestClient) -> None:
        _register(client, "change-bad@example.com")
        resp = client.put("/api/v1/password/update", json={"oldPassword": "wrong1", "password": "newpw1"})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Old password is incorrect."

    def test_update_password_requires_auth(self, client: TestClient) -> None:
        resp = client.put("/api/v1/password/update", json={"oldPassword": "pw1234", "password": "newpw1"})
        assert resp.status_code == 401

    def test_update_profile(self, client: TestClient) -> None:
        _register(client, "profile@example.com", name="Before")
        resp = client.put("/api/v1/me/update", json={"name": "After", "email": "Profile2@example.com"})
        assert resp.status_code == 200
        assert resp.json()["user"]["name"] == "After"
        assert resp.json()["user"]["email"] == "profile2@example.com"
        assert client.get("/api/v1/me").json()["user"]["name"] == "After"

    def test_update_profile_taken_email_is_409(self, client: TestClient) -> None:
        _register(client, "taken@example.com")
        client.cookies.clear()
        _register(client, "taker@example.com")
        resp = client.put("/api/v1/me/update", json={"name": "Taker", "email": "taken@example.com"})
        assert resp.status_code == 409

    def test_toggle_question(self, client: TestClient) -> None:
        _register(client, "toggle@example.com")
        first = client.put("/api/v1/questions/two-sum")
        assert first.status_code == 200
        assert first.json() == {"success": True, "status": "added", "message": "You have done the question"}
        assert client.get("/api/v1/me").json()["user"]["questions"] == ["two-sum"]

        second = client.put("/api/v1/questions/two-sum")
        assert second.json()["status"] == "removed"
        assert second.json()["message"] == "You have undone the question"
        assert client.get("/api/v1/me").json()["user"]["questions"] == []

    def test_toggle_requires_auth(self, client: TestClient) -> None:
        assert client.put("/api/v1/questions/two-sum").status_code == 401


class TestLogout:
    def test_logout_clears_cookie(self, client: TestClient) -> None:
        _register(client, "logout@example.com")
        assert client.get("/api/v1/me").status_code == 200

        resp = client.get("/api/v1/logout")
        assert resp.status_code == 200
        assert resp.json()["message"] == "Logged out"
        assert "Max-Age=0" in resp.headers["set-cookie"]

        client.cookies.clear()
        assert client.get("/api/v1/me").status_code == 401

    def test_logout_without_session(self, client: TestClient) -> None:
        assert client.get("/api/v1/logout").status_code == 200
