"""
Authentication schemas for request/response validation.

This module defines Pydantic models for authentication-related API operations:
- Login, refresh and logout
- Registration and email verification
- Password change and reset
"""

from pydantic import BaseModel, EmailStr, Field, field_validator

from identity_core.core.security import validate_password_strength


def _strong_password(v: str) -> str:
    is_valid, error_message = validate_password_strength(v)
    if not is_valid:
        raise ValueError(error_message)
    return v


class LoginRequest(BaseModel):
    """Request schema for user login."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=255)
    remember_me: bool = False


class RegisterRequest(BaseModel):
    """Request schema for self-service registration (creates a new organization)."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=255)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    organization_name: str = Field(..., min_length=2, max_length=200)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _strong_password(v)


class RefreshRequest(BaseModel):
    """Refresh tokens travel in the JSON body only."""

    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    """Request schema for password change."""

    current_password: str = Field(..., min_length=1, max_length=255)  # Allow any length for current
    new_password: str = Field(..., min_length=1, max_length=255)

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        """Validate new password strength."""
        return _strong_password(v)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Request schema for password reset with token."""

    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1, max_length=255)

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        return _strong_password(v)


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    """Response schema for successful authentication."""

    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Access token expiration time in seconds from now")
    user_id: str
    email: str
    tenant_id: str
    tenant_role: str
    tenant_name: str


class RegisterResponse(BaseModel):
    user_id: str
    email: str
    tenant_id: str
    tenant_slug: str
    message: str = "Registration successful. Please check your email to verify your address."


class MeResponse(BaseModel):
    """Claims of the presented access token."""

    user_id: str
    email: str | None = None
    tenant_id: str | None = None
    tenant_role: str | None = None
    tenant_name: str | None = None
    tenant_slug: str | None = None


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
