"""
Tests for sign-in, sessions and role management.
"""
from unittest.mock import patch

from conftest import auth_headers, make_account
from estimate_tracker.auth.bootstrap import bootstrap_admin_if_needed
from estimate_tracker.auth.models import UserRole
from estimate_tracker.auth.service import get_first_admin_id, get_roles, is_admin

LOGIN = "/api/v1/auth/login"
USERS = "/api/v1/users"


def test_login_returns_token_and_opens_session(client, admin, registry, feed):
    response = client.post(LOGIN, json={"email": "ADMIN@example.com", "password": "secret123"})

    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["account"]["is_admin"] is True
    assert registry.get(admin.id) is not None
    assert feed.subscription_count == 1

    me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.json()["user"]["email"] == "admin@example.com"


def test_login_twice_keeps_one_subscription(client, admin, feed):
    for _ in range(2):
        client.post(LOGIN, json={"email": "admin@example.com", "password": "secret123"})
    assert feed.subscription_count == 1


def test_login_with_wrong_password(client, admin):
    response = client.post(LOGIN, json={"email": "admin@example.com", "password": "wrong-password"})
    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Invalid credentials"}


def test_login_when_patients_cannot_be_loaded(client, admin, patient_store):
    patient_store.fail_on.add("select")

    response = client.post(LOGIN, json={"email": "admin@example.com", "password": "secret123"})

    assert response.status_code == 502
    assert response.json() == {"success": False, "error": "Patient data could not be loaded"}


def test_logout_closes_session(client, admin, admin_headers, registry, feed):
    client.post(LOGIN, json={"email": "admin@example.com", "password": "secret123"})

    response = client.post("/api/v1/auth/logout", headers=admin_headers)

    assert response.status_code == 200
    assert registry.get(admin.id) is None
    assert feed.subscription_count == 0


def test_me_requires_token(client):
    response = client.get("/api/v1/auth/me")
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_list_users_with_roles(client, admin, user, admin_headers):
    response = client.get(USERS, headers=admin_headers)

    assert response.status_code == 200
    users = {u["email"]: u for u in response.json()["users"]}
    assert users["admin@example.com"]["roles"] == ["admin"]
    assert users["admin@example.com"]["display_name"] == "Dr. Admin"
    assert users["assistant@example.com"]["roles"] == ["user"]
    assert users["assistant@example.com"]["display_name"] == "assistant@example.com"


def test_user_management_is_admin_only(client, user_headers):
    assert client.get(USERS, headers=user_headers).status_code == 403


def test_create_user(client, admin_headers):
    response = client.post(USERS, json={"email": "new@example.com", "password": "secret123"}, headers=admin_headers)

    assert response.status_code == 201
    assert response.json()["user"]["roles"] == ["user"]

    duplicate = client.post(USERS, json={"email": "new@example.com", "password": "secret123"}, headers=admin_headers)
    assert duplicate.status_code == 400


def test_assign_and_remove_role(client, db, user, admin_headers):
    assigned = client.post(f"{USERS}/{user.id}/roles", json={"role": "admin"}, headers=admin_headers)
    assert assigned.status_code == 200
    assert is_admin(db, user.id)

    again = client.post(f"{USERS}/{user.id}/roles", json={"role": "admin"}, headers=admin_headers)
    assert again.status_code == 200
    assert sorted(get_roles(db, user.id)) == ["admin", "user"]

    removed = client.delete(f"{USERS}/{user.id}/roles/admin", headers=admin_headers)
    assert removed.status_code == 200
    assert not is_admin(db, user.id)


def test_role_change_for_unknown_account(client, admin_headers):
    response = client.post(f"{USERS}/missing/roles", json={"role": "admin"}, headers=admin_headers)
    assert response.status_code == 404


def test_first_admin_is_oldest_assignment(db):
    assert get_first_admin_id(db) is None
    first = make_account(db, "first@example.com", role=UserRole.ADMIN)
    make_account(db, "second@example.com", role=UserRole.ADMIN)
    assert get_first_admin_id(db) == first.id


def test_token_for_deleted_account_is_rejected(client, db):
    account = make_account(db, "gone@example.com")
    headers = auth_headers(account)
    db.delete(account)
    db.commit()

    assert client.get("/api/v1/auth/me", headers=headers).status_code == 401


def test_bootstrap_creates_admin_once(db):
    with patch("estimate_tracker.auth.bootstrap.settings") as settings:
        settings.bootstrap_admin_email = "boot@example.com"
        settings.bootstrap_admin_password = "bootstrap-pass"
        bootstrap_admin_if_needed(db)
        bootstrap_admin_if_needed(db)

    admin_id = get_first_admin_id(db)
    assert admin_id is not None
    assert get_roles(db, admin_id) == ["admin"]
