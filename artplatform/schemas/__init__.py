"""Pydantic schemas for request/response validation"""
from artplatform.schemas.auth import (
    EmailRequest,
    LoginRequest,
    MessageResponse,
    PublicUser,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TokenPairResponse,
    UpdatePasswordRequest,
    VerifyEmailResponse,
)

__all__ = [
    "EmailRequest",
    "LoginRequest",
    "MessageResponse",
    "PublicUser",
    "RefreshRequest",
    "RegisterRequest",
    "RegisterResponse",
    "ResetPasswordRequest",
    "TokenPairResponse",
    "UpdatePasswordRequest",
    "VerifyEmailResponse",
]
