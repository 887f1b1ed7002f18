"""RevokedToken model - jti blocklist for the database revocation backend"""
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String

from artplatform.database import Base


class RevokedToken(Base):
    """Stores revoked JWT token IDs (jti claims).

    Used by ``DatabaseRevocationStore`` when Redis is not the revocation
    backend. expires_at mirrors the end of the revocation window so old rows
    can be ignored and pruned safely.
    """

    __tablename__ = "revoked_tokens"

    id = Column(Integer, primary_key=True, index=True)
    jti = Column(String(36), unique=True, nullable=False, index=True)
    revoked_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
