# tests/test_api/test_account.py
"""Tests for the account view-model validation endpoint."""

from fastapi.testclient import TestClient


def test_valid_admin_user(client: TestClient):
    response = client.post(
        "/api/v1/account/validate/admin-user",
        json={"login": "admin", "email": "admin@localhost", "langKey": "en"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["model"] == "AdminUserDTO"
    assert data["valid"] is True
    assert data["violations"] == []


def test_admin_user_violations_reported_per_field(client: TestClient):
    response = client.post(
        "/api/v1/account/validate/admin-user",
        json={"login": "bad login!", "email": "not-an-email", "langKey": "x"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is False
    fields = {v["field"] for v in data["violations"]}
    assert {"login", "email", "langKey"} <= fields


def test_missing_login(client: TestClient):
    response = client.post("/api/v1/account/validate/admin-user", json={})
    data = response.json()
    assert data["valid"] is False
    assert [v["field"] for v in data["violations"]] == ["login"]


def test_password_change_accepts_anything(client: TestClient):
    response = client.post(
        "/api/v1/account/validate/password-change",
        json={"currentPassword": "", "newPassword": None},
    )
    assert response.json()["valid"] is True


def test_unknown_view_model(client: TestClient):
    response = client.post("/api/v1/account/validate/tenant", json={})
    assert response.status_code == 404
    assert "admin-user" in response.json()["detail"]
