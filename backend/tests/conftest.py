"""
Test configuration and fixtures for task tracker tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database dependency override
- Authentication helpers (bearer token generation)
- Common fixtures for users and tasks
"""

import os
import sys
import logging
from datetime import datetime, timedelta, timezone
from typing import Generator, Dict

# Environment must be set before the application modules read it at import time
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-with-at-least-32-bytes!!")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["BOOTSTRAP_ADMIN"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from main import app
import models
from auth.roles import Role
from auth.security import hash_password, create_access_token
from task_lifecycle import TaskStatus

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

TEST_SECRET = "s" * 32


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    logger.debug("Creating test database")

    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def client(test_db: Session) -> TestClient:
    """
    Create FastAPI test client with database dependency override.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def make_user(db: Session, email: str, password: str, role: Role = Role.USER, **kwargs) -> models.User:
    user = models.User(
        email=email,
        password_hash=hash_password(password),
        role=role,
        is_enabled=kwargs.pop("is_enabled", True),
        is_locked=kwargs.pop("is_locked", False),
        **kwargs
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created {role.value} user {email} with ID: {user.id}")
    return user


def make_task(db: Session, author: models.User, title: str = "Test task", **kwargs) -> models.Task:
    task = models.Task(
        title=title,
        description=kwargs.pop("description", None),
        status=kwargs.pop("status", TaskStatus.WAITING),
        priority=kwargs.pop("priority", models.TaskPriority.MEDIUM),
        author_id=author.id,
        **kwargs
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def make_comment(db: Session, task: models.Task, author: models.User, text: str = "A comment") -> models.Comment:
    comment = models.Comment(text=text, task_id=task.id, author_id=author.id)
    db.add(comment)
    db.commit()
    db.refresh(comment)
    return comment


@pytest.fixture(scope="function")
def admin_user(test_db: Session) -> models.User:
    """
    Create an admin user for testing.
    """
    return make_user(test_db, "admin@example.com", "admin-pass-123", Role.ADMIN)


@pytest.fixture(scope="function")
def regular_user(test_db: Session) -> models.User:
    """
    Create a regular user for testing.
    """
    return make_user(test_db, "user@example.com", "user-pass-123")


@pytest.fixture(scope="function")
def another_user(test_db: Session) -> models.User:
    """
    Create another user for testing multi-user scenarios.
    """
    return make_user(test_db, "another@example.com", "another-pass-123")


def create_auth_token(user: models.User) -> str:
    """
    Helper to create a bearer access token for a user.

    Args:
        user: User to create token for

    Returns:
        Access token string
    """
    logger.debug(f"Creating auth token for user {user.email}")
    return create_access_token(user.email)


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def auth_headers(admin_user: models.User) -> Dict[str, str]:
    """
    Create authorization headers with admin token.
    """
    return bearer(create_auth_token(admin_user))


@pytest.fixture(scope="function")
def user_auth_headers(regular_user: models.User) -> Dict[str, str]:
    """
    Create authorization headers for regular user.
    """
    return bearer(create_auth_token(regular_user))


@pytest.fixture(scope="function")
def another_user_auth_headers(another_user: models.User) -> Dict[str, str]:
    """
    Create authorization headers for another user.
    """
    return bearer(create_auth_token(another_user))


def assert_error(response, status_code: int, code: str) -> None:
    """Assert an error response with the shared body and a ``"<CODE>: ..."`` message."""
    assert response.status_code == status_code, response.json()
    body = response.json()
    assert body["status"] == status_code
    assert body["message"].startswith(f"{code}: "), body["message"]
    assert body["path"] == response.request.url.path
    assert "timestamp" in body and "error" in body


class FakeClock:
    """Injectable "now" for token tests; moves only when told to."""

    def __init__(self, now: datetime = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)
