"""Pytest configuration and fixtures"""
import os
from datetime import datetime
from typing import Any, Dict, Generator, List
from urllib.parse import parse_qs, urlparse

# Must be set before artplatform.config is imported
TEST_DATABASE_URL = "sqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["REVOCATION_BACKEND"] = "database"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_ACCESS_SECRET"] = "test-access-secret"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from artplatform.api.deps import get_notifications, get_revocation_store
from artplatform.database import Base, get_db
from artplatform.main import app
from artplatform.services.credentials import CredentialManager
from artplatform.services.mailer import NotificationService
from artplatform.services.revocation import DatabaseRevocationStore

engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class RecordingSender:
    """Message sender that keeps messages in memory instead of mailing them"""

    def __init__(self) -> None:
        self.messages: List[Dict[str, Any]] = []

    def send(self, recipient: str, subject: str, template: str, context: Dict[str, Any]) -> bool:
        self.messages.append(
            {"to": recipient, "subject": subject, "template": template, "context": context}
        )
        return True

    def for_template(self, template: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m["template"] == template]

    def token(self, template: str, index: int = -1) -> str:
        """Raw ``token`` query parameter of an emailed verification or reset link"""
        context = self.for_template(template)[index]["context"]
        link = context.get("verificationLink") or context["resetLink"]
        return parse_qs(urlparse(link).query)["token"][0]


class FakeClock:
    """Settable replacement for datetime.utcnow"""

    def __init__(self) -> None:
        self.now = datetime.utcnow()

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def outbox() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def notifications(outbox: RecordingSender) -> NotificationService:
    return NotificationService(outbox, "Art Platform")


@pytest.fixture
def revocations(db: Session) -> DatabaseRevocationStore:
    return DatabaseRevocationStore(TestingSessionLocal)


@pytest.fixture
def session_factory(db: Session) -> sessionmaker:
    """Factory for extra sessions on the test database, e.g. a second request"""
    return TestingSessionLocal


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manager(db: Session, revocations, notifications, clock) -> CredentialManager:
    return CredentialManager(db, revocations, notifications, clock=clock)


@pytest.fixture(scope="function")
def client(db: Session, revocations, notifications) -> Generator[TestClient, None, None]:
    """Create test client with database, revocation and mail overrides"""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_revocation_store] = lambda: revocations
    app.dependency_overrides[get_notifications] = lambda: notifications
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def sample_user_data() -> dict:
    """Sample registration data for tests"""
    return {
        "email": "a@x.com",
        "username": "alice",
        "password": "Secret123!",
    }


@pytest.fixture
def verified_user(manager: CredentialManager, outbox: RecordingSender, sample_user_data: dict) -> dict:
    """Register and verify a user through the manager; returns its public identity"""
    user = manager.register(
        sample_user_data["email"],
        sample_user_data["username"],
        sample_user_data["password"],
        "http://testserver",
    )
    manager.verify_email(outbox.token("verify-email"))
    return user
