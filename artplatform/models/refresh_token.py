"""RefreshToken model - server-side record of every issued refresh token"""
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from artplatform.database import Base


class RefreshToken(Base):
    """One row per issued refresh token.

    All rows for a user are deleted when their password changes, which makes
    every outstanding refresh token unusable.
    """

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(Text, unique=True, nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    user = relationship("Account", back_populates="refresh_tokens")
