"""
Pydantic schemas for API responses and requests
"""
from identity_core.models.user import UserBase  # Re-export from models
from identity_core.schemas.auth import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    TokenResponse,
    VerifyEmailRequest,
)

__all__ = [
    "ChangePasswordRequest",
    "ForgotPasswordRequest",
    "LoginRequest",
    "LogoutRequest",
    "MeResponse",
    "MessageResponse",
    "RefreshRequest",
    "RegisterRequest",
    "RegisterResponse",
    "ResetPasswordRequest",
    "TokenResponse",
    "UserBase",
    "VerifyEmailRequest",
]
