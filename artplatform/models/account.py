"""Account model - user identity, credentials and lockout state"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from artplatform.database import Base


class UserRole(str, enum.Enum):
    USER = "user"
    ARTIST = "artist"
    ADMIN = "admin"


def _new_id() -> str:
    return str(uuid.uuid4())


class Account(Base):
    """A registered user.

    ``verification_token`` and ``reset_password_token`` hold the SHA-256 hex
    digest of the raw token mailed to the user; the raw value is never stored.
    ``account_locked_until`` in the past means the account is unlocked.
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.USER.value)  # user|artist|admin

    is_verified = Column(Boolean, default=False, nullable=False)
    verification_token = Column(String(64), nullable=True, index=True)
    verification_token_expires = Column(DateTime, nullable=True)

    reset_password_token = Column(String(64), nullable=True, index=True)
    reset_password_expires = Column(DateTime, nullable=True)

    failed_login_attempts = Column(Integer, default=0, nullable=False)
    account_locked_until = Column(DateTime, nullable=True)

    google_id = Column(String(255), unique=True, nullable=True)
    is_google_user = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")

    def is_locked(self, now: datetime) -> bool:
        return self.account_locked_until is not None and self.account_locked_until > now
