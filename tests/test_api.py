"""
End-to-end tests for the portal API using FastAPI TestClient.
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from portal.errors import FatalStartupError
from web.api.main import boot, create_app


def auth_headers(token):
    return {"X-Session-Token": token}


class TestStartup:
    """Tests for the boot sequence."""

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_default_users_are_seeded(self, client, app):
        db = app.state.services.db

        assert db.get_user_by_email("employee@company.com") is not None
        assert db.get_user_by_email("admin@company.com")["is_admin"] == 1

    def test_restart_does_not_duplicate_seed(self, test_config, mailer):
        from fastapi.testclient import TestClient

        for _ in range(2):
            app = create_app(test_config, mailer=mailer)
            with TestClient(app):
                pass

        conn = sqlite3.connect(test_config["database"]["path"])
        try:
            count = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
        finally:
            conn.close()
        assert count == 2

    def test_failed_migration_aborts_startup(self, test_config, tmp_path):
        migrations_dir = tmp_path / "migrations"
        migrations_dir.mkdir()
        (migrations_dir / "0001_broken.sql").write_text("CREATE TABLE broken (;\n")
        test_config["database"]["migrations_dir"] = str(migrations_dir)
        app = create_app(test_config)

        with pytest.raises(FatalStartupError):
            boot(app, test_config)

        assert not hasattr(app.state, "dispatcher")


class TestLogin:
    """Tests for POST /api/auth/login."""

    def test_employee_login(self, client):
        response = client.post(
            "/api/auth/login",
            json={"email": "employee@company.com", "password": "password123"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["token"].startswith("session-")
        assert data["user"]["email"] == "employee@company.com"
        assert data["user"]["is_admin"] is False
        assert data["user"]["lastLoginAt"] is not None
        assert "password" not in data["user"]

    def test_email_is_case_insensitive(self, client):
        response = client.post(
            "/api/auth/login",
            json={"email": "Employee@Company.com", "password": "password123"},
        )

        assert response.status_code == 200

    def test_wrong_password(self, client):
        response = client.post(
            "/api/auth/login",
            json={"email": "employee@company.com", "password": "wrong"},
        )

        assert response.status_code == 401
        assert response.json() == {"message": "Невірні облікові дані"}

    def test_unknown_email(self, client):
        response = client.post(
            "/api/auth/login",
            json={"email": "nobody@company.com", "password": "password123"},
        )

        assert response.status_code == 401

    def test_missing_fields(self, client):
        response = client.post("/api/auth/login", json={"email": "employee@company.com"})

        assert response.status_code == 400
        assert response.json() == {"message": "Потрібні email та пароль"}

    def test_malformed_body(self, client):
        response = client.post(
            "/api/auth/login",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400

    def test_each_login_gets_a_new_session(self, login):
        assert login() != login()


class TestLogout:
    """Tests for POST /api/auth/logout."""

    def test_logout_revokes_session(self, client, employee_token):
        response = client.post("/api/auth/logout", json={"token": employee_token})

        assert response.status_code == 200
        assert response.json()["revoked"] is True
        assert client.get("/api/profile", headers=auth_headers(employee_token)).status_code == 401

    def test_logout_is_idempotent(self, client, employee_token):
        client.post("/api/auth/logout", json={"token": employee_token})

        response = client.post("/api/auth/logout", json={"token": employee_token})

        assert response.status_code == 200
        assert response.json()["revoked"] is False

    def test_logout_without_token(self, client):
        response = client.post("/api/auth/logout", json={})

        assert response.status_code == 200
        assert response.json()["revoked"] is False


class TestRegistration:
    """Tests for the register-request / complete-registration flow."""

    def test_full_flow(self, client, mailer):
        response = client.post(
            "/api/auth/register-request",
            json={"email": "new@company.com", "name": "Нова", "department": "QA"},
        )
        assert response.status_code == 200
        data = response.json()
        token = data["tokenPreview"]
        assert data["confirmationLink"].endswith(f"token={token}&email=new%40company.com")
        assert data["expiresAt"]
        assert mailer.outbox[-1].to == "new@company.com"

        response = client.post(
            "/api/auth/complete-registration",
            json={
                "email": "new@company.com",
                "token": token,
                "password": "strongpass",
                "confirmPassword": "strongpass",
            },
        )
        assert response.status_code == 200
        data = response.json()
        assert data["user"]["name"] == "Нова"
        assert data["user"]["is_admin"] is False

        profile = client.get("/api/profile", headers=auth_headers(data["token"]))
        assert profile.json()["email"] == "new@company.com"

    def test_new_user_can_log_in(self, client, login):
        token = client.post(
            "/api/auth/register-request", json={"email": "new@company.com"}
        ).json()["tokenPreview"]
        client.post(
            "/api/auth/complete-registration",
            json={"token": token, "password": "strongpass"},
        )

        assert login("new@company.com", "strongpass").startswith("session-")

    def test_numeric_token_is_accepted(self, client, app, monkeypatch):
        registration = app.state.services.registration
        monkeypatch.setattr(registration, "_random_code", lambda: "12345678")
        client.post("/api/auth/register-request", json={"email": "new@company.com"})

        response = client.post(
            "/api/auth/complete-registration",
            json={"token": 12345678, "password": "strongpass"},
        )

        assert response.status_code == 200

    def test_existing_email_conflicts(self, client):
        response = client.post(
            "/api/auth/register-request", json={"email": "employee@company.com"}
        )

        assert response.status_code == 409

    def test_invalid_email(self, client):
        response = client.post("/api/auth/register-request", json={"email": "not-an-email"})

        assert response.status_code == 400

    def test_reused_token_conflicts(self, client):
        token = client.post(
            "/api/auth/register-request", json={"email": "new@company.com"}
        ).json()["tokenPreview"]
        body = {"email": "new@company.com", "token": token, "password": "strongpass"}

        assert client.post("/api/auth/complete-registration", json=body).status_code == 200
        assert client.post("/api/auth/complete-registration", json=body).status_code == 409

    def test_expired_token(self, client, app):
        token = client.post(
            "/api/auth/register-request", json={"email": "new@company.com"}
        ).json()["tokenPreview"]
        registration = app.state.services.registration
        registration.now = lambda: datetime.now(timezone.utc) + timedelta(hours=25)

        response = client.post(
            "/api/auth/complete-registration",
            json={"email": "new@company.com", "token": token, "password": "x"},
        )

        assert response.status_code == 410

    def test_missing_fields(self, client):
        response = client.post("/api/auth/complete-registration", json={"token": "12345678"})

        assert response.status_code == 400


class TestProfile:
    """Tests for the signed-in user's profile."""

    def test_profile_requires_session(self, client):
        response = client.get("/api/profile")

        assert response.status_code == 401
        assert response.json() == {"message": "Потрібен токен сесії"}

    def test_profile_with_bearer(self, client, employee_token):
        response = client.get(
            "/api/profile", headers={"Authorization": f"Bearer {employee_token}"}
        )

        assert response.status_code == 200
        assert response.json()["email"] == "employee@company.com"

    def test_update_status(self, client, employee_token):
        response = client.post(
            "/api/profile/status",
            json={"status": "У відпустці"},
            headers=auth_headers(employee_token),
        )

        assert response.status_code == 200
        assert response.json()["status"] == "У відпустці"

    def test_empty_status(self, client, employee_token):
        response = client.post(
            "/api/profile/status", json={"status": "  "}, headers=auth_headers(employee_token)
        )

        assert response.status_code == 400


class TestAdmin:
    """Tests for the admin endpoints."""

    def test_overview_requires_token(self, client):
        response = client.get("/api/admin/overview")

        assert response.status_code == 401

    def test_overview_rejects_employee(self, client, employee_token):
        response = client.get("/api/admin/overview", headers=auth_headers(employee_token))

        assert response.status_code == 403
        assert response.json() == {"message": "Доступ дозволено лише адміністраторам"}

    def test_overview(self, client, admin_token):
        response = client.get("/api/admin/overview", headers=auth_headers(admin_token))

        assert response.status_code == 200
        data = response.json()
        assert data["stats"]["totalUsers"] == 2
        assert data["stats"]["activeSessions"] == 1
        assert len(data["users"]) == 2

    def test_list_users(self, client, admin_token):
        response = client.get("/api/admin/users", headers=auth_headers(admin_token))

        assert [user["email"] for user in response.json()] == [
            "employee@company.com",
            "admin@company.com",
        ]

    def test_create_user(self, client, admin_token, login):
        response = client.post(
            "/api/admin/users",
            json={
                "name": "Марія",
                "email": "maria@company.com",
                "password": "password123",
                "jobTitle": "QA Lead",
                "tags": "qa, automation",
            },
            headers=auth_headers(admin_token),
        )

        assert response.status_code == 201
        user = response.json()
        assert user["jobTitle"] == "QA Lead"
        assert user["tags"] == ["qa", "automation"]
        assert login("maria@company.com", "password123")

    def test_create_duplicate_user(self, client, admin_token):
        response = client.post(
            "/api/admin/users",
            json={"name": "Dup", "email": "EMPLOYEE@company.com", "password": "x"},
            headers=auth_headers(admin_token),
        )

        assert response.status_code == 409

    def test_create_user_missing_fields(self, client, admin_token):
        response = client.post(
            "/api/admin/users", json={"name": "Nameless"}, headers=auth_headers(admin_token)
        )

        assert response.status_code == 400

    def test_update_user(self, client, admin_token):
        users = client.get("/api/admin/users", headers=auth_headers(admin_token)).json()
        employee = users[0]

        response = client.put(
            f"/api/admin/users/{employee['id']}",
            json={"department": "Дизайн", "name": "", "is_admin": True},
            headers=auth_headers(admin_token),
        )

        assert response.status_code == 200
        updated = response.json()
        assert updated["department"] == "Дизайн"
        assert updated["name"] == employee["name"]
        assert updated["is_admin"] is True

    def test_update_to_taken_email(self, client, admin_token):
        users = client.get("/api/admin/users", headers=auth_headers(admin_token)).json()

        response = client.put(
            f"/api/admin/users/{users[0]['id']}",
            json={"email": "admin@company.com"},
            headers=auth_headers(admin_token),
        )

        assert response.status_code == 409

    def test_update_missing_user(self, client, admin_token):
        response = client.put(
            "/api/admin/users/999", json={"name": "Ghost"}, headers=auth_headers(admin_token)
        )

        assert response.status_code == 404

    def test_delete_user_ends_their_sessions(self, client, admin_token, employee_token):
        users = client.get("/api/admin/users", headers=auth_headers(admin_token)).json()

        response = client.delete(
            f"/api/admin/users/{users[0]['id']}", headers=auth_headers(admin_token)
        )

        assert response.status_code == 200
        assert response.json() == {"deleted": True}
        assert client.get("/api/profile", headers=auth_headers(employee_token)).status_code == 401

    def test_delete_missing_user(self, client, admin_token):
        response = client.delete("/api/admin/users/999", headers=auth_headers(admin_token))

        assert response.status_code == 404

    def test_non_numeric_id_is_not_found(self, client, admin_token):
        response = client.delete("/api/admin/users/abc", headers=auth_headers(admin_token))

        assert response.status_code == 404

    def test_oversized_id_is_not_found(self, client, admin_token):
        path = "/api/admin/users/99999999999999999999"

        updated = client.put(path, json={"name": "Ghost"}, headers=auth_headers(admin_token))
        deleted = client.delete(path, headers=auth_headers(admin_token))

        assert updated.status_code == 404
        assert updated.json() == {"message": "Користувача не знайдено"}
        assert deleted.status_code == 404


class TestTransport:
    """Tests for routing and CORS at the HTTP layer."""

    def test_unknown_route(self, client):
        response = client.get("/api/unknown")

        assert response.status_code == 404
        assert response.json() == {"message": "Not found"}

    def test_cors_headers(self, client):
        response = client.get("/api/health", headers={"Origin": "http://localhost:5173"})

        assert response.headers["access-control-allow-origin"] == "*"

    def test_preflight(self, client):
        response = client.options(
            "/api/admin/users",
            headers={
                "Origin": "http://localhost:5173",
                "Access-Control-Request-Method": "DELETE",
                "Access-Control-Request-Headers": "X-Session-Token",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"

    def test_bare_options(self, client):
        response = client.options("/api/anything")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_preflight_with_unlisted_header(self, client):
        response = client.options(
            "/api/auth/login",
            headers={
                "Origin": "http://localhost:5173",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type, x-requested-with",
            },
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert response.headers["access-control-allow-origin"] == "*"
        assert "X-Session-Token" in response.headers["access-control-allow-headers"]

    def test_error_responses_carry_cors_headers(self, client):
        response = client.get("/api/unknown", headers={"Origin": "http://localhost:5173"})

        assert response.status_code == 404
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["access-control-allow-methods"] == "GET,POST,PUT,DELETE,OPTIONS"
