"""Auth request/response schemas"""
from typing import Optional

from pydantic import BaseModel, Field

from artplatform.utils.auth import PASSWORD_MAX_BYTES

# Counts characters, so it only catches the obvious cases; the byte limit is
# enforced by the credential manager.
PASSWORD_MAX_LENGTH = PASSWORD_MAX_BYTES


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=8, max_length=PASSWORD_MAX_LENGTH)


class LoginRequest(BaseModel):
    identifier: Optional[str] = Field(None, description="Email or username")
    password: Optional[str] = Field(None, max_length=PASSWORD_MAX_LENGTH)


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


class EmailRequest(BaseModel):
    """Body of forgot-password and resend-verification."""
    email: str = Field(..., min_length=3, max_length=255)


class ResetPasswordRequest(BaseModel):
    new_password: Optional[str] = Field(None, max_length=PASSWORD_MAX_LENGTH)
    confirm_password: Optional[str] = Field(None, max_length=PASSWORD_MAX_LENGTH)


class UpdatePasswordRequest(BaseModel):
    current_password: Optional[str] = Field(None, max_length=PASSWORD_MAX_LENGTH)
    new_password: str = Field(..., min_length=8, max_length=PASSWORD_MAX_LENGTH)


class PublicUser(BaseModel):
    id: str
    email: str
    username: str
    role: Optional[str] = None


class TokenPairResponse(BaseModel):
    success: bool = True
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class RegisterData(BaseModel):
    user: PublicUser


class RegisterResponse(MessageResponse):
    data: RegisterData


class TokensData(BaseModel):
    access_token: str
    refresh_token: str


class VerifyEmailData(BaseModel):
    user: PublicUser
    tokens: TokensData


class VerifyEmailResponse(MessageResponse):
    data: VerifyEmailData
