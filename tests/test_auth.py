"""Tests for login, sessions and admin user management."""

from datetime import timedelta

import database
from auth import hash_password, verify_password
from conftest import PASSWORD


def test_password_hash_roundtrip():
    stored = hash_password("hunter22")
    assert stored.startswith("pbkdf2$sha256$")
    assert verify_password("hunter22", stored)
    assert not verify_password("hunter23", stored)


def test_verify_password_rejects_unknown_formats():
    assert not verify_password("x", None)
    assert not verify_password("x", "plaintext")
    assert not verify_password("x", "pbkdf2$broken")


def test_login_success(client, admin_id):
    response = client.post("/auth/login", json={"email": "ADMIN@leadcrm.io", "password": PASSWORD})
    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == admin_id
    assert body["role"] == "admin"
    assert database.collection("sessions").count_documents({"token": body["token"]}) == 1


def test_login_wrong_password(client, admin_id):
    response = client.post("/auth/login", json={"email": "admin@leadcrm.io", "password": "nope"})
    assert response.status_code == 401


def test_login_inactive_user(client, agent_id):
    database.update_document("users", agent_id, {"active": False})
    response = client.post("/auth/login", json={"email": "ravi@leadcrm.io", "password": PASSWORD})
    assert response.status_code == 401


def test_missing_and_invalid_token(client):
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_expired_session(client, agent_headers):
    token = agent_headers["Authorization"].split(" ")[1]
    database.collection("sessions").update_one(
        {"token": token}, {"$set": {"expires_at": database.utc_naive(database.now() - timedelta(hours=1))}}
    )
    assert client.get("/auth/me", headers=agent_headers).status_code == 401
    assert database.collection("sessions").count_documents({"token": token}) == 0


def test_me_hides_secrets(client, agent_headers):
    body = client.get("/auth/me", headers=agent_headers).json()
    assert body["email"] == "ravi@leadcrm.io"
    assert "password_hash" not in body
    assert "fcm_tokens" not in body


def test_register_session_stores_device_token(client, agent_id, agent_headers):
    response = client.post("/auth/session", json={"device_id": "pixel-7", "fcm_token": "tok-1"}, headers=agent_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "success"
    user = database.get_document("users", agent_id)
    assert "tok-1" in user["fcm_tokens"]
    token = agent_headers["Authorization"].split(" ")[1]
    assert database.collection("sessions").find_one({"token": token})["device_id"] == "pixel-7"


def test_logout(client, agent_headers):
    assert client.post("/auth/logout", headers=agent_headers).status_code == 200
    assert client.get("/auth/me", headers=agent_headers).status_code == 401


def test_get_user_role(client, agent_id, agent_headers):
    assert client.get("/auth/role", headers=agent_headers).status_code == 400
    assert client.get("/auth/role", params={"uid": "0" * 24}, headers=agent_headers).status_code == 404
    body = client.get("/auth/role", params={"uid": agent_id}, headers=agent_headers).json()
    assert body == {"uid": agent_id, "role": "agent", "name": "Ravi Agent"}


def test_admin_create_user(client, admin_headers):
    payload = {"email": "new@leadcrm.io", "password": "pw123456", "name": "New Agent", "role": "agent", "phone": "99"}
    response = client.post("/admin/users", json=payload, headers=admin_headers)
    assert response.status_code == 200
    uid = response.json()["uid"]
    user = database.get_document("users", uid)
    assert user["active"] is True
    assert user["assigned_leads"] == 0
    assert user["closed_deals"] == 0
    assert client.post("/auth/login", json={"email": "new@leadcrm.io", "password": "pw123456"}).status_code == 200


def test_admin_create_user_validation(client, admin_headers, agent_id):
    assert client.post("/admin/users", json={"email": "a@leadcrm.io"}, headers=admin_headers).status_code == 400
    duplicate = {"email": "ravi@leadcrm.io", "password": "x", "name": "Dup", "role": "agent"}
    assert client.post("/admin/users", json=duplicate, headers=admin_headers).status_code == 409


def test_agent_cannot_manage_users(client, agent_headers):
    payload = {"email": "x@leadcrm.io", "password": "x", "name": "X", "role": "admin"}
    assert client.post("/admin/users", json=payload, headers=agent_headers).status_code == 403


def test_admin_set_password_revokes_sessions(client, admin_headers, agent_id, agent_headers):
    response = client.post(f"/admin/users/{agent_id}/password", json={"password": "changed99"}, headers=admin_headers)
    assert response.status_code == 200
    assert client.get("/auth/me", headers=agent_headers).status_code == 401
    assert client.post("/auth/login", json={"email": "ravi@leadcrm.io", "password": "changed99"}).status_code == 200
    missing = client.post(f"/admin/users/{'0' * 24}/password", json={"password": "x"}, headers=admin_headers)
    assert missing.status_code == 404


def test_admin_delete_user(client, admin_headers, agent_id):
    assert client.delete(f"/admin/users/{agent_id}", headers=admin_headers).status_code == 200
    assert database.get_document("users", agent_id) is None
    assert client.delete(f"/admin/users/{agent_id}", headers=admin_headers).status_code == 404


def test_toggle_agent_status(client, admin_headers, agent_id, agent_headers):
    response = client.patch(f"/admin/users/{agent_id}/active", json={"active": False}, headers=admin_headers)
    assert response.json() == {"success": True, "active": False}
    assert client.get("/auth/me", headers=agent_headers).status_code == 401


def test_default_admin_seeded(db, monkeypatch):
    import main

    monkeypatch.setenv("DEFAULT_ADMIN_EMAIL", "Boss@leadcrm.io")
    monkeypatch.setenv("DEFAULT_ADMIN_PASSWORD", "bootstrap1")
    main.ensure_default_admin()
    main.ensure_default_admin()
    assert database.collection("users").count_documents({"email": "boss@leadcrm.io", "role": "admin"}) == 1
