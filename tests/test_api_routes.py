"""
tests/test_api_routes.py -- Integration tests for the auth and users API routes.

These tests exercise the full stack: FastAPI routing -> auth dependency injection
-> AuthFlows -> UserStore/RefreshTokenStore -> response model serialization,
including the exception handlers and camelCase aliases.

Coverage:
  - Register -> refresh -> replay scenario (replay is 401)
  - Login -> GET /me scenario
  - Identical 401 bodies for unknown email and wrong password
  - Validation (400), conflict (409), Cache-Control on token responses
  - Soft session endpoint, logout, change-password, owner/admin user routes

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- TestClient with an ADMIN access token.
    The fixture creates the admin with ADMIN_EMAIL / ADMIN_PASSWORD.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from tests.helpers import ADMIN_EMAIL

PASSWORD = "Secret123!"


def _register(client: TestClient, email: str, name: str = "Test User", password: str = PASSWORD) -> dict:
    resp = client.post("/api/v1/auth/register", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
    return resp.json()


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestRegisterRefreshScenario:
    """Register, refresh once, then replay the consumed refresh token."""

    def test_register_refresh_replay(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "Alice", "email": "alice@example.com", "password": PASSWORD},
        )
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["user"]["email"] == "alice@example.com"
        assert data["user"]["role"] == "USER"
        assert "passwordHash" not in data["user"] and "password_hash" not in data["user"]
        assert data["token"] and data["refreshToken"]
        assert data["expiresIn"] == 15 * 60

        refreshed = client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["refreshToken"]})
        assert refreshed.status_code == 200, f"Expected 200, got {refreshed.status_code}: {refreshed.text}"
        pair = refreshed.json()
        assert pair["refreshToken"] != data["refreshToken"]
        assert pair["token"]

        replay = client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["refreshToken"]})
        assert replay.status_code == 401, f"Replayed refresh token must be rejected, got {replay.status_code}"
        assert replay.json()["error"]["code"] == "token_unknown_or_reused"
        assert replay.headers["WWW-Authenticate"] == "Bearer"

        # The rotated token is still good exactly once.
        again = client.post("/api/v1/auth/refresh-token", json={"refreshToken": pair["refreshToken"]})
        assert again.status_code == 200

    def test_access_token_cannot_be_used_to_refresh(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        data = _register(client, "carol@example.com")
        resp = client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["token"]})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_unknown_or_reused"

    def test_refresh_rejections_are_identical(self, api_client: tuple[TestClient, str, int]) -> None:
        """A garbage token and a replayed token get the same status and body."""
        client, _token, _uid = api_client
        data = _register(client, "cora@example.com")
        client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["refreshToken"]})
        garbage = client.post("/api/v1/auth/refresh-token", json={"refreshToken": "not.a.token"})
        replay = client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["refreshToken"]})
        assert garbage.status_code == replay.status_code == 401
        assert garbage.json() == replay.json()


class TestLoginScenario:
    def test_login_then_me(self, api_client: tuple[TestClient, str, int]) -> None:
        """POST /login then GET /me with the returned access token must return the registered email."""
        client, _token, _uid = api_client
        _register(client, "bob@example.com", name="Bob")
        resp = client.post("/api/v1/auth/login", json={"email": "bob@example.com", "password": PASSWORD})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.headers["Cache-Control"] == "no-store"
        token = resp.json()["token"]

        me = client.get("/api/v1/auth/me", headers=_auth(token))
        assert me.status_code == 200, f"Expected 200, got {me.status_code}: {me.text}"
        assert me.json()["user"]["email"] == "bob@example.com"
        assert me.json()["user"]["isActive"] is True

    def test_login_errors_are_identical(self, api_client: tuple[TestClient, str, int]) -> None:
        """Unknown email and wrong password must produce the same status and body."""
        client, _token, _uid = api_client
        _register(client, "dave@example.com")
        unknown = client.post("/api/v1/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})
        wrong = client.post("/api/v1/auth/login", json={"email": "dave@example.com", "password": "Wrong123!"})
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()
        assert unknown.json()["error"]["code"] == "invalid_credentials"

    def test_me_without_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "missing_token"
        assert resp.headers["WWW-Authenticate"] == "Bearer"


class TestValidation:
    def test_missing_field_is_400(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/register", json={"email": "x@example.com", "password": PASSWORD})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_wrong_type_is_400(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/login", json={"email": 123, "password": ["x"]})
        assert resp.status_code == 400

    def test_weak_password(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "Weak", "email": "weak@example.com", "password": "password"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "weak_password"

    def test_bad_email(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/register", json={"name": "Bad", "email": "bad-email", "password": PASSWORD})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_input"

    def test_duplicate_email_is_409(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _register(client, "erin@example.com")
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "Erin Again", "email": "ERIN@example.com", "password": PASSWORD},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "email_taken"

    def test_snake_case_body_accepted(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        data = _register(client, "snake@example.com")
        resp = client.post("/api/v1/auth/refresh-token", json={"refresh_token": data["refreshToken"]})
        assert resp.status_code == 200


class TestSessionAndLogout:
    def test_session_anonymous(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/session")
        assert resp.status_code == 200
        assert resp.json()["authenticated"] is False
        assert resp.json().get("user") is None

    def test_session_with_bad_token_is_anonymous(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/session", headers=_auth("garbage"))
        assert resp.status_code == 200
        assert resp.json()["authenticated"] is False

    def test_session_authenticated(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.get("/api/v1/auth/session", headers=_auth(token))
        assert resp.json()["authenticated"] is True
        assert resp.json()["user"]["email"] == ADMIN_EMAIL

    def test_logout_consumes_refresh_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        data = _register(client, "frank@example.com")
        resp = client.post(
            "/api/v1/auth/logout",
            json={"refreshToken": data["refreshToken"]},
            headers=_auth(data["token"]),
        )
        assert resp.status_code == 200
        assert "message" in resp.json()
        after = client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["refreshToken"]})
        assert after.status_code == 401

    def test_logout_is_idempotent(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        data = _register(client, "grace@example.com")
        for _ in range(2):
            resp = client.post(
                "/api/v1/auth/logout",
                json={"refreshToken": data["refreshToken"]},
                headers=_auth(data["token"]),
            )
            assert resp.status_code == 200
        assert client.post("/api/v1/auth/logout", headers=_auth(data["token"])).status_code == 200

    def test_logout_requires_auth(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        assert client.post("/api/v1/auth/logout").status_code == 401


class TestChangePassword:
    def test_change_password_revokes_refresh_tokens(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        data = _register(client, "heidi@example.com")
        resp = client.put(
            "/api/v1/users/change-password",
            json={"currentPassword": PASSWORD, "newPassword": "NewSecret456"},
            headers=_auth(data["token"]),
        )
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        stale = client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["refreshToken"]})
        assert stale.status_code == 401
        login = client.post("/api/v1/auth/login", json={"email": "heidi@example.com", "password": "NewSecret456"})
        assert login.status_code == 200

    def test_wrong_current_password(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        data = _register(client, "ivan@example.com")
        resp = client.put(
            "/api/v1/users/change-password",
            json={"currentPassword": "Wrong123!", "newPassword": "NewSecret456"},
            headers=_auth(data["token"]),
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "current_password_incorrect"

    def test_same_password_rejected(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        data = _register(client, "judy@example.com")
        resp = client.put(
            "/api/v1/users/change-password",
            json={"currentPassword": PASSWORD, "newPassword": PASSWORD},
            headers=_auth(data["token"]),
        )
        assert resp.status_code == 400


class TestUserRoutes:
    def test_owner_can_read_self(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        data = _register(client, "karl@example.com")
        user_id = data["user"]["id"]
        resp = client.get(f"/api/v1/users/{user_id}", headers=_auth(data["token"]))
        assert resp.status_code == 200
        assert resp.json()["user"]["id"] == user_id

    def test_user_cannot_read_other_user(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, admin_id = api_client
        data = _register(client, "leo@example.com")
        resp = client.get(f"/api/v1/users/{admin_id}", headers=_auth(data["token"]))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "not_owner"

    def test_admin_can_read_any_user(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        data = _register(client, "mia@example.com")
        resp = client.get(f"/api/v1/users/{data['user']['id']}", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "mia@example.com"

    def test_admin_missing_user_is_404(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.get("/api/v1/users/99999", headers=_auth(token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "user_not_found"

    def test_non_integer_id_is_400(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        assert client.get("/api/v1/users/abc", headers=_auth(token)).status_code == 400

    def test_revoke_own_sessions(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        data = _register(client, "nina@example.com")
        client.post("/api/v1/auth/login", json={"email": "nina@example.com", "password": PASSWORD})
        resp = client.delete(f"/api/v1/users/{data['user']['id']}/sessions", headers=_auth(data["token"]))
        assert resp.status_code == 200
        assert resp.json()["revoked"] == 2
        stale = client.post("/api/v1/auth/refresh-token", json={"refreshToken": data["refreshToken"]})
        assert stale.status_code == 401

    def test_user_cannot_revoke_other_sessions(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, admin_id = api_client
        data = _register(client, "oscar@example.com")
        resp = client.delete(f"/api/v1/users/{admin_id}/sessions", headers=_auth(data["token"]))
        assert resp.status_code == 403

    def test_admin_can_revoke_any_sessions(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        data = _register(client, "pat@example.com")
        resp = client.delete(f"/api/v1/users/{data['user']['id']}/sessions", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()["revoked"] == 1
