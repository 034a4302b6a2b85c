"""
Authentication API endpoints.

This module provides endpoints for:
- Registration and email verification
- Login (access token + refresh token) and refresh with rotation
- Logout of one session or all sessions
- Password change, forgot password and reset

Refresh tokens travel in JSON bodies only.
"""

from fastapi import APIRouter, status

from identity_core.api.dependencies import Verifier
from identity_core.core.auth import ClientMeta, CurrentClaims
from identity_core.core.errors import Result, http_exception_for
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
from identity_core.services.credential_verifier import AuthTokens

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _raise_on_failure(result: Result) -> None:
    if result.error is not None:
        raise http_exception_for(result.error)


def _token_response(tokens: AuthTokens) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        expires_in=tokens.expires_in,
        user_id=tokens.user_id,
        email=tokens.email,
        tenant_id=tokens.tenant_id,
        tenant_role=tokens.tenant_role,
        tenant_name=tokens.tenant_name,
    )


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, verifier: Verifier, meta: ClientMeta) -> RegisterResponse:
    """
    Register a new user together with their organization.

    The user becomes TenantAdmin of the new tenant. A verification email is
    queued; login does not wait for it.
    """
    result = await verifier.register(
        body.email,
        body.password,
        body.first_name,
        body.last_name,
        body.organization_name,
        meta=meta,
    )
    _raise_on_failure(result)
    account = result.unwrap()
    return RegisterResponse(
        user_id=account.user.id,
        email=account.user.email,
        tenant_id=account.tenant.id,
        tenant_slug=account.tenant.slug,
    )


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, verifier: Verifier, meta: ClientMeta) -> TokenResponse:
    """
    Authenticate with email and password.

    Security:
    - Locks the email after repeated failures (423 with Retry-After)
    - Unknown email and wrong password produce the same 401
    """
    result = await verifier.login(
        body.email, body.password, remember_me=body.remember_me, meta=meta
    )
    _raise_on_failure(result)
    return _token_response(result.unwrap())


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, verifier: Verifier, meta: ClientMeta) -> TokenResponse:
    """
    Exchange a refresh token for a new access token and a new refresh token.

    The presented refresh token is revoked. Presenting it again revokes every
    token descended from the same login.
    """
    result = await verifier.refresh(body.refresh_token, meta=meta)
    _raise_on_failure(result)
    return _token_response(result.unwrap())


@router.post("/logout", response_model=MessageResponse)
async def logout(body: LogoutRequest, verifier: Verifier, meta: ClientMeta) -> MessageResponse:
    await verifier.logout(body.refresh_token, meta=meta)
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    claims: CurrentClaims, verifier: Verifier, meta: ClientMeta
) -> MessageResponse:
    """Revoke every refresh token of the caller. Access tokens expire on their own."""
    result = await verifier.logout_all(claims.subject, meta=meta)
    return MessageResponse(message=f"Logged out of {result.unwrap()} session(s)")


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    body: ChangePasswordRequest,
    claims: CurrentClaims,
    verifier: Verifier,
    meta: ClientMeta,
) -> MessageResponse:
    result = await verifier.change_password(
        claims.subject, body.current_password, body.new_password, meta=meta
    )
    _raise_on_failure(result)
    return MessageResponse(message="Password changed successfully. Please log in again.")


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    body: ForgotPasswordRequest, verifier: Verifier, meta: ClientMeta
) -> MessageResponse:
    """
    Request a password reset email.

    Always returns success to prevent email enumeration.
    """
    await verifier.forgot_password(body.email, meta=meta)
    return MessageResponse(
        message="If an account exists with that email, a password reset link has been sent."
    )


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest, verifier: Verifier, meta: ClientMeta
) -> MessageResponse:
    result = await verifier.reset_password(body.token, body.new_password, meta=meta)
    _raise_on_failure(result)
    return MessageResponse(message="Password has been reset successfully. Please log in.")


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(
    body: VerifyEmailRequest, verifier: Verifier, meta: ClientMeta
) -> MessageResponse:
    result = await verifier.verify_email(body.token, meta=meta)
    _raise_on_failure(result)
    return MessageResponse(message="Email verified successfully")


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(
    claims: CurrentClaims, verifier: Verifier, meta: ClientMeta
) -> MessageResponse:
    result = await verifier.resend_verification(claims.subject, meta=meta)
    _raise_on_failure(result)
    return MessageResponse(message="Verification email sent")


@router.get("/me", response_model=MeResponse)
async def me(claims: CurrentClaims) -> MeResponse:
    """Identity and tenant carried by the presented access token."""
    return MeResponse(
        user_id=claims.subject,
        email=claims.email,
        tenant_id=claims.tenant_id,
        tenant_role=claims.tenant_role,
        tenant_name=claims.tenant_name,
        tenant_slug=claims.tenant_slug,
    )
