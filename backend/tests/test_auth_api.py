"""
API tests for registration, login, profile and password change.
"""

import logging

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import models
from auth.roles import Role
from auth.security import token_service, verify_password
from tests.conftest import assert_error, bearer

logger = logging.getLogger(__name__)


def test_register_creates_user_with_default_role(client: TestClient, test_db: Session):
    response = client.post("/api/auth/register", json={"email": "new@example.com", "password": "password123"})

    assert response.status_code == 201, response.json()
    data = response.json()
    assert data["email"] == "new@example.com"
    assert data["role"] == "USER"
    assert data["is_enabled"] is True and data["is_locked"] is False
    assert "password_hash" not in data

    user = test_db.query(models.User).filter(models.User.email == "new@example.com").one()
    assert verify_password("password123", user.password_hash)
    logger.info("✓ Registration stores a hashed password and the default role")


def test_register_duplicate_email_is_conflict(client: TestClient, regular_user: models.User):
    response = client.post("/api/auth/register", json={"email": regular_user.email, "password": "password123"})
    assert_error(response, 409, "USR-001")


def test_register_validates_payload(client: TestClient):
    response = client.post("/api/auth/register", json={"email": "not-an-email", "password": "short"})

    assert_error(response, 400, "REQ-001")
    fields = {detail["field"] for detail in response.json()["details"]}
    assert fields == {"email", "password"}


def test_login_returns_working_token(client: TestClient, regular_user: models.User):
    response = client.post("/api/auth/login", json={"email": regular_user.email, "password": "user-pass-123"})

    assert response.status_code == 200, response.json()
    data = response.json()
    assert data["token_type"] == "bearer"
    assert token_service.subject_of(data["access_token"]) == regular_user.email

    me = client.get("/api/auth/me", headers=bearer(data["access_token"]))
    assert me.status_code == 200, me.json()
    assert me.json()["email"] == regular_user.email


def test_login_with_wrong_password(client: TestClient, regular_user: models.User):
    response = client.post("/api/auth/login", json={"email": regular_user.email, "password": "nope-nope"})
    assert_error(response, 401, "AUTH-001")


def test_login_with_unknown_email(client: TestClient):
    response = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "whatever1"})
    assert_error(response, 401, "AUTH-001")


def test_login_with_locked_account(client: TestClient, test_db: Session, regular_user: models.User):
    regular_user.is_locked = True
    test_db.commit()

    response = client.post("/api/auth/login", json={"email": regular_user.email, "password": "user-pass-123"})

    assert_error(response, 401, "AUTH-001")


def test_me_requires_authentication(client: TestClient):
    assert_error(client.get("/api/auth/me"), 401, "AUTH-001")


def test_me_reports_role(client: TestClient, admin_user: models.User, auth_headers):
    response = client.get("/api/auth/me", headers=auth_headers)
    assert response.json()["role"] == Role.ADMIN.value


def test_change_password(client: TestClient, test_db: Session, regular_user: models.User, user_auth_headers):
    response = client.patch(
        "/api/auth/me/password",
        json={"old_password": "user-pass-123", "new_password": "brand-new-pass"},
        headers=user_auth_headers,
    )

    assert response.status_code == 204
    test_db.refresh(regular_user)
    assert verify_password("brand-new-pass", regular_user.password_hash)

    login = client.post("/api/auth/login", json={"email": regular_user.email, "password": "brand-new-pass"})
    assert login.status_code == 200


def test_change_password_with_wrong_current_password(client: TestClient, user_auth_headers):
    response = client.patch(
        "/api/auth/me/password",
        json={"old_password": "wrong-password", "new_password": "brand-new-pass"},
        headers=user_auth_headers,
    )
    assert_error(response, 400, "USR-003")


def test_change_password_to_same_value(client: TestClient, user_auth_headers):
    response = client.patch(
        "/api/auth/me/password",
        json={"old_password": "user-pass-123", "new_password": "user-pass-123"},
        headers=user_auth_headers,
    )
    assert_error(response, 409, "USR-004")


def test_health(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_unknown_route_uses_error_body(client: TestClient):
    response = client.get("/api/nothing-here")
    assert_error(response, 404, "HTTP-404")
