from __future__ import annotations

from backend.rbac_module.security import create_access_token, create_refresh_token

from .conftest import PASSWORD


def login(client, email, password=PASSWORD):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


def test_login_returns_token_pair_and_profile(client, world):
    response = login(client, "ADMIN@sch001.test")
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["role"] == "ADMIN"
    assert body["user"]["email"] == "admin@sch001.test"

    me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["school"]["code"] == "SCH001"


def test_login_with_wrong_password_is_rejected(client, world):
    response = login(client, "admin@sch001.test", "Wrong1234")
    assert response.status_code == 401
    assert response.json()["success"] is False
    assert response.json()["error"]["message"] == "Invalid credentials"


def test_unknown_email_is_rejected(client, world):
    assert login(client, "ghost@sch001.test").status_code == 401


def test_account_locks_after_repeated_failures(client, world):
    for _ in range(5):
        assert login(client, "teacher@sch001.test", "Wrong1234").status_code == 401

    response = login(client, "teacher@sch001.test")
    assert response.status_code == 401
    assert response.json()["error"]["message"].startswith("Account locked")


def test_failed_logins_are_audited(client, world):
    login(client, "admin@sch001.test", "Wrong1234")
    logs = client.get("/api/v1/audit-logs/login-history", headers=world.admin_headers)
    assert logs.status_code == 200
    assert any(entry["success"] is False for entry in logs.json())


def test_refresh_issues_new_tokens(client, world):
    refresh_token = create_refresh_token(world.admin.id)
    response = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
    assert response.status_code == 200
    assert response.json()["user"]["id"] == world.admin.id


def test_access_token_cannot_be_used_to_refresh(client, world):
    access = create_access_token(world.admin.id, "ADMIN", school_id=world.school.id, email=world.admin.email)
    response = client.post("/api/v1/auth/refresh", json={"refresh_token": access})
    assert response.status_code == 401


def test_missing_or_malformed_authorization(client, world):
    assert client.get("/api/v1/auth/me").status_code == 401
    assert client.get("/api/v1/auth/me", headers={"Authorization": "Token abc"}).status_code == 401
    assert client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_expired_token_is_rejected(client, world):
    token = create_access_token(world.admin.id, "ADMIN", school_id=world.school.id, email=world.admin.email, expires_minutes=-1)
    response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_change_password_requires_matching_confirmation(client, world):
    payload = {"current_password": PASSWORD, "new_password": "NewSecret1", "confirm_password": "Different1"}
    response = client.post("/api/v1/auth/change-password", json=payload, headers=world.admin_headers)
    assert response.status_code == 400

    payload["confirm_password"] = "NewSecret1"
    response = client.post("/api/v1/auth/change-password", json=payload, headers=world.admin_headers)
    assert response.status_code == 200
    assert login(client, "admin@sch001.test", "NewSecret1").status_code == 200
