"""Database models"""
from artplatform.models.account import Account, UserRole
from artplatform.models.refresh_token import RefreshToken
from artplatform.models.revoked_token import RevokedToken

__all__ = ["Account", "RefreshToken", "RevokedToken", "UserRole"]
