"""
Credential verification and account flows.

Composes the password lifecycle manager, token issuer, refresh token manager
and login attempt tracker into login, refresh, logout, password change/reset,
registration and email verification. Every flow returns a Result and appends
exactly one audit event for its outcome.
"""

import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from identity_core.config import AuditAction, AuditOutcome, TenantRole, settings
from identity_core.core.errors import ErrorKind, Failure, Result
from identity_core.core.logging import get_logger
from identity_core.core.security import (
    Clock,
    as_utc,
    generate_token_secret,
    hash_token,
    utcnow,
)
from identity_core.models import (
    EmailVerificationTokens,
    PasswordResetTokens,
    Tenants,
    TenantUsers,
    Users,
)
from identity_core.services.lockout import LoginAttemptTracker, normalize_email
from identity_core.services.password_lifecycle import PasswordLifecycleManager
from identity_core.services.refresh_tokens import RefreshTokenManager
from identity_core.services.token_issuer import TokenIssuer
from identity_core.stores.base import (
    AuditEvent,
    AuditSink,
    CredentialStore,
    MailSender,
    OneTimeTokenStore,
    TenantStore,
)

logger = get_logger(__name__)

_FAR_FUTURE = datetime.max.replace(tzinfo=UTC)


@dataclass(frozen=True)
class RequestMeta:
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class AuthTokens:
    access_token: str
    refresh_token: str | None
    expires_in: int
    user_id: str
    email: str
    tenant_id: str
    tenant_role: str
    tenant_name: str
    token_type: str = "bearer"


@dataclass(frozen=True)
class RegisteredAccount:
    user: Users
    tenant: Tenants


def select_primary_membership(memberships: list[TenantUsers]) -> list[TenantUsers]:
    """
    Active memberships ordered by preference: earliest joined_at first, tenant id
    as tie-breaker. Never relies on store iteration order.
    """
    active = [m for m in memberships if m.is_active]
    return sorted(
        active,
        key=lambda m: (as_utc(m.joined_at) if m.joined_at else _FAR_FUTURE, m.tenant_id),
    )


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")
    return slug[:64].rstrip("-")


class CredentialVerifier:
    def __init__(
        self,
        *,
        credentials: CredentialStore,
        tenants: TenantStore,
        passwords: PasswordLifecycleManager,
        tokens: TokenIssuer,
        refresh_tokens: RefreshTokenManager,
        attempts: LoginAttemptTracker,
        reset_tokens: OneTimeTokenStore,
        verification_tokens: OneTimeTokenStore,
        audit: AuditSink,
        mail: MailSender,
        reset_ttl_minutes: int = settings.PASSWORD_RESET_EXPIRE_MINUTES,
        verification_ttl_hours: int = settings.EMAIL_VERIFICATION_EXPIRE_HOURS,
        clock: Clock = utcnow,
    ) -> None:
        self._credentials = credentials
        self._tenants = tenants
        self._passwords = passwords
        self._tokens = tokens
        self._refresh_tokens = refresh_tokens
        self._attempts = attempts
        self._reset_tokens = reset_tokens
        self._verification_tokens = verification_tokens
        self._audit_sink = audit
        self._mail = mail
        self.reset_ttl = timedelta(minutes=reset_ttl_minutes)
        self.verification_ttl = timedelta(hours=verification_ttl_hours)
        self._clock = clock
        # Compared against when the email is unknown so both paths pay for one bcrypt check
        self._timing_hash = passwords.hash(generate_token_secret(16))


    async def _audit(
        self,
        action: str,
        meta: RequestMeta,
        *,
        kind: ErrorKind | None = None,
        user_id: str | None = None,
        email: str | None = None,
        tenant_id: str | None = None,
        detail: str | None = None,
    ) -> None:
        await self._audit_sink.append(
            AuditEvent(
                action=action,
                outcome=AuditOutcome.FAILURE if kind else AuditOutcome.SUCCESS,
                user_id=user_id,
                email=email,
                tenant_id=tenant_id,
                error_kind=kind.value if kind else None,
                detail=detail,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
                occurred_at=self._clock(),
            )
        )

    async def _fail(
        self,
        action: str,
        meta: RequestMeta,
        kind: ErrorKind,
        *,
        message: str | None = None,
        retry_after: int | None = None,
        **fields: str | None,
    ) -> Result:
        await self._audit(action, meta, kind=kind, **fields)
        return Result.fail(kind, message, retry_after)

    async def _primary_tenant(self, user_id: str) -> tuple[TenantUsers, Tenants] | None:
        memberships = await self._tenants.list_memberships(user_id)
        for membership in select_primary_membership(memberships):
            tenant = await self._tenants.get_by_id(membership.tenant_id)
            if tenant is not None and tenant.is_active:
                return membership, tenant
        return None

    def _auth_tokens(
        self,
        user: Users,
        membership: TenantUsers,
        tenant: Tenants,
        refresh_token: str | None,
    ) -> AuthTokens:
        access_token = self._tokens.issue_access_token(
            user.id,
            tenant.id,
            membership.role,
            {"email": user.email, "tenant_name": tenant.name, "tenant_slug": tenant.slug},
        )
        return AuthTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self._tokens.ttl_seconds,
            user_id=user.id,
            email=user.email,
            tenant_id=tenant.id,
            tenant_role=membership.role,
            tenant_name=tenant.name,
        )

    async def _redeemable(
        self, store: OneTimeTokenStore, raw_token: str
    ) -> Result[PasswordResetTokens | EmailVerificationTokens]:
        """Look up a single-use token; used and expired tokens fail like unknown ones."""
        token = await store.get_by_hash(hash_token(raw_token)) if raw_token else None
        if token is None:
            return Result.fail(ErrorKind.TOKEN_NOT_FOUND)
        if token.used:
            return Result(value=token, error=Failure(ErrorKind.TOKEN_REVOKED))
        if as_utc(token.expires_at) <= self._clock():
            return Result(value=token, error=Failure(ErrorKind.TOKEN_EXPIRED))
        return Result.success(token)

    async def _store_new_password(self, user_id: str, password_hash: str) -> None:
        await self._credentials.update_password(user_id, password_hash, self._clock())
        await self._passwords.record_history(user_id, password_hash)
        await self._passwords.trim_history(user_id)

    async def _issue_verification(self, user: Users) -> None:
        now = self._clock()
        await self._verification_tokens.invalidate_for_user(user.id, now)
        raw = generate_token_secret(32)
        await self._verification_tokens.add(
            EmailVerificationTokens(
                user_id=user.id,
                email=user.email,
                token_hash=hash_token(raw),
                created_at=now,
                expires_at=now + self.verification_ttl,
            )
        )
        # Queued after the row is stored; delivery happens outside this request
        await self._mail.send_verification(user.email, user.first_name, raw)

    async def login(
        self,
        email: str,
        password: str,
        *,
        remember_me: bool = False,
        issue_refresh: bool = True,
        meta: RequestMeta = RequestMeta(),
    ) -> Result[AuthTokens]:
        """
        Authenticate by email and password.

        Order matters: the lockout check runs before any hash comparison, and an
        unknown email counts as a failure against that email.
        """
        email = normalize_email(email)
        failed = AuditAction.LOGIN_FAILED

        lock = await self._attempts.status(email)
        if lock.locked:
            logger.warning("login_rejected_locked", email=email, retry_after=lock.retry_after)
            return await self._fail(
                failed, meta, ErrorKind.ACCOUNT_LOCKED, retry_after=lock.retry_after, email=email
            )

        user = await self._credentials.get_by_email(email)
        if user is None:
            self._passwords.verify(password, self._timing_hash)
            await self._attempts.record_failure(email)
            return await self._fail(
                failed, meta, ErrorKind.INVALID_CREDENTIALS, email=email, detail="unknown email"
            )

        if not user.is_active:
            return await self._fail(
                failed, meta, ErrorKind.ACCOUNT_INACTIVE, user_id=user.id, email=email
            )

        if not self._passwords.verify(password, user.password_hash):
            await self._attempts.record_failure(email)
            return await self._fail(
                failed, meta, ErrorKind.INVALID_CREDENTIALS, user_id=user.id, email=email
            )

        primary = await self._primary_tenant(user.id)
        if primary is None:
            return await self._fail(
                failed,
                meta,
                ErrorKind.ACCOUNT_INACTIVE,
                user_id=user.id,
                email=email,
                detail="no active tenant membership",
            )
        membership, tenant = primary

        await self._attempts.clear(email)

        refresh_token = None
        if issue_refresh:
            refresh_token = await self._refresh_tokens.issue(
                user.id,
                remember_me,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
            )
        tokens = self._auth_tokens(user, membership, tenant, refresh_token)

        await self._credentials.update_login_metadata(user.id, self._clock())
        await self._audit(
            AuditAction.LOGGED_IN, meta, user_id=user.id, email=email, tenant_id=tenant.id
        )
        logger.info(
            "login_succeeded", user_id=user.id, tenant_id=tenant.id, remember_me=remember_me
        )
        return Result.success(tokens)

    async def refresh(
        self, raw_refresh_token: str, meta: RequestMeta = RequestMeta()
    ) -> Result[AuthTokens]:
        """Rotate the refresh token and mint a new access token for the primary tenant."""
        failed = AuditAction.TOKEN_REFRESH_FAILED
        rotated = await self._refresh_tokens.rotate(
            raw_refresh_token, ip_address=meta.ip_address, user_agent=meta.user_agent
        )
        if rotated.error is not None:
            return await self._fail(failed, meta, rotated.error.kind)

        new = rotated.unwrap()
        user_id = new.token.user_id
        user = await self._credentials.get_by_id(user_id)
        primary = await self._primary_tenant(user_id) if user and user.is_active else None
        if user is None or primary is None:
            await self._refresh_tokens.revoke_all(user_id)
            return await self._fail(failed, meta, ErrorKind.ACCOUNT_INACTIVE, user_id=user_id)

        membership, tenant = primary
        tokens = self._auth_tokens(user, membership, tenant, new.secret)
        await self._audit(AuditAction.TOKEN_REFRESHED, meta, user_id=user.id, tenant_id=tenant.id)
        return Result.success(tokens)

    async def logout(
        self, raw_refresh_token: str, meta: RequestMeta = RequestMeta()
    ) -> Result[None]:
        """Revoke one refresh token. Unknown or already revoked tokens are not an error."""
        token = await self._refresh_tokens.revoke(raw_refresh_token)
        await self._audit(AuditAction.LOGGED_OUT, meta, user_id=token.user_id if token else None)
        return Result.success(None)

    async def logout_all(self, user_id: str, meta: RequestMeta = RequestMeta()) -> Result[int]:
        count = await self._refresh_tokens.revoke_all(user_id)
        await self._audit(
            AuditAction.LOGGED_OUT_ALL, meta, user_id=user_id, detail=f"revoked={count}"
        )
        return Result.success(count)

    async def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
        meta: RequestMeta = RequestMeta(),
    ) -> Result[None]:
        """
        Change the password of an authenticated user.

        All refresh tokens are revoked afterwards, including the caller's.
        """
        failed = AuditAction.PASSWORD_CHANGE_FAILED
        user = await self._credentials.get_by_id(user_id)
        if user is None or not user.is_active:
            return await self._fail(failed, meta, ErrorKind.ACCOUNT_INACTIVE, user_id=user_id)

        if not self._passwords.verify(current_password, user.password_hash):
            return await self._fail(failed, meta, ErrorKind.INVALID_CREDENTIALS, user_id=user.id)

        checked = await self._passwords.prepare_new_password(
            user.id, new_password, current_hash=user.password_hash
        )
        if checked.error is not None:
            return await self._fail(
                failed, meta, checked.error.kind, message=checked.error.detail, user_id=user.id
            )

        await self._store_new_password(user.id, checked.unwrap())
        revoked = await self._refresh_tokens.revoke_all(user.id)
        await self._audit(
            AuditAction.PASSWORD_CHANGED,
            meta,
            user_id=user.id,
            detail=f"revoked_sessions={revoked}",
        )
        logger.info("password_changed", user_id=user.id, revoked_sessions=revoked)
        return Result.success(None)

    async def forgot_password(self, email: str, meta: RequestMeta = RequestMeta()) -> Result[None]:
        """
        Start a password reset.

        Always succeeds from the caller's point of view so the response never
        reveals whether the email belongs to an account.
        """
        email = normalize_email(email)
        user = await self._credentials.get_by_email(email)
        if user is None or not user.is_active or not user.email_verified:
            reason = "unknown email" if user is None else "account not eligible"
            logger.info("password_reset_request_ignored", email=email, reason=reason)
            await self._audit(
                AuditAction.PASSWORD_RESET_REQUESTED,
                meta,
                kind=ErrorKind.VALIDATION_ERROR,
                user_id=user.id if user else None,
                email=email,
                detail=reason,
            )
            return Result.success(None)

        now = self._clock()
        await self._reset_tokens.invalidate_for_user(user.id, now)
        raw = generate_token_secret(32)
        await self._reset_tokens.add(
            PasswordResetTokens(
                user_id=user.id,
                token_hash=hash_token(raw),
                created_at=now,
                expires_at=now + self.reset_ttl,
                ip_address=meta.ip_address,
            )
        )
        await self._mail.send_reset(user.email, user.first_name, raw)
        await self._audit(AuditAction.PASSWORD_RESET_REQUESTED, meta, user_id=user.id, email=email)
        return Result.success(None)

    async def reset_password(
        self,
        raw_token: str,
        new_password: str,
        meta: RequestMeta = RequestMeta(),
    ) -> Result[None]:
        """
        Redeem a reset token.

        The token is consumed (compare-and-set on its used flag) before the
        password is written, so concurrent redemptions cannot both succeed. A
        rejected password leaves the token usable.
        """
        failed = AuditAction.PASSWORD_RESET_FAILED
        redeemable = await self._redeemable(self._reset_tokens, raw_token)
        if redeemable.error is not None:
            owner = redeemable.value.user_id if redeemable.value else None
            return await self._fail(failed, meta, redeemable.error.kind, user_id=owner)
        token = redeemable.unwrap()

        user = await self._credentials.get_by_id(token.user_id)
        if user is None or not user.is_active:
            return await self._fail(failed, meta, ErrorKind.TOKEN_NOT_FOUND, user_id=token.user_id)

        checked = await self._passwords.prepare_new_password(
            user.id, new_password, current_hash=user.password_hash
        )
        if checked.error is not None:
            return await self._fail(
                failed, meta, checked.error.kind, message=checked.error.detail, user_id=user.id
            )

        if not await self._reset_tokens.consume(token.id, self._clock()):
            logger.warning("password_reset_token_race", token_id=token.id, user_id=user.id)
            return await self._fail(failed, meta, ErrorKind.TOKEN_REVOKED, user_id=user.id)

        await self._store_new_password(user.id, checked.unwrap())
        revoked = await self._refresh_tokens.revoke_all(user.id)
        await self._attempts.clear(user.email)
        await self._audit(
            AuditAction.PASSWORD_RESET, meta, user_id=user.id, detail=f"revoked_sessions={revoked}"
        )
        logger.info("password_reset_completed", user_id=user.id, revoked_sessions=revoked)
        return Result.success(None)

    async def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        organization_name: str,
        meta: RequestMeta = RequestMeta(),
    ) -> Result[RegisteredAccount]:
        """
        Create a user, their organization tenant and a TenantAdmin membership.

        A verification email is queued; login does not wait for verification.
        """
        email = normalize_email(email)
        failed = AuditAction.REGISTRATION_FAILED

        valid, message = self._passwords.check_strength(password)
        if not valid:
            return await self._fail(
                failed, meta, ErrorKind.PASSWORD_POLICY_VIOLATION, message=message, email=email
            )

        if await self._credentials.get_by_email(email) is not None:
            return await self._fail(
                failed,
                meta,
                ErrorKind.VALIDATION_ERROR,
                message="Email is already registered",
                email=email,
            )

        slug = slugify(organization_name)
        if not slug:
            return await self._fail(
                failed,
                meta,
                ErrorKind.VALIDATION_ERROR,
                message="Organization name is invalid",
                email=email,
            )
        if await self._tenants.get_by_slug(slug) is not None:
            return await self._fail(
                failed,
                meta,
                ErrorKind.VALIDATION_ERROR,
                message="Organization name is already taken",
                email=email,
            )

        now = self._clock()
        user = Users(
            email=email,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            password_hash=self._passwords.hash(password),
            password_changed_at=now,
            created_at=now,
        )
        tenant = Tenants(name=organization_name.strip(), slug=slug, created_at=now)
        membership = TenantUsers(
            tenant_id=tenant.id,
            user_id=user.id,
            role=TenantRole.TENANT_ADMIN,
            joined_at=now,
        )

        try:
            await self._credentials.create_account(user, tenant, membership)
        except ValueError:
            # Lost a race with a concurrent registration for the same email or slug
            return await self._fail(
                failed,
                meta,
                ErrorKind.VALIDATION_ERROR,
                message="Email or organization is already registered",
                email=email,
            )

        await self._passwords.record_history(user.id, user.password_hash)
        await self._issue_verification(user)
        await self._audit(
            AuditAction.REGISTERED, meta, user_id=user.id, email=email, tenant_id=tenant.id
        )
        logger.info("user_registered", user_id=user.id, tenant_id=tenant.id)
        return Result.success(RegisteredAccount(user=user, tenant=tenant))

    async def verify_email(self, raw_token: str, meta: RequestMeta = RequestMeta()) -> Result[None]:
        failed = AuditAction.EMAIL_VERIFICATION_FAILED
        redeemable = await self._redeemable(self._verification_tokens, raw_token)
        if redeemable.error is not None:
            owner = redeemable.value.user_id if redeemable.value else None
            return await self._fail(failed, meta, redeemable.error.kind, user_id=owner)
        token = redeemable.unwrap()

        if not await self._verification_tokens.consume(token.id, self._clock()):
            return await self._fail(failed, meta, ErrorKind.TOKEN_REVOKED, user_id=token.user_id)

        await self._credentials.mark_email_verified(token.user_id, self._clock())
        await self._audit(AuditAction.EMAIL_VERIFIED, meta, user_id=token.user_id)
        return Result.success(None)

    async def resend_verification(
        self, user_id: str, meta: RequestMeta = RequestMeta()
    ) -> Result[None]:
        failed = AuditAction.VERIFICATION_RESEND_FAILED
        user = await self._credentials.get_by_id(user_id)
        if user is None or not user.is_active:
            return await self._fail(failed, meta, ErrorKind.ACCOUNT_INACTIVE, user_id=user_id)
        if user.email_verified:
            return await self._fail(
                failed,
                meta,
                ErrorKind.VALIDATION_ERROR,
                message="Email is already verified",
                user_id=user.id,
            )

        await self._issue_verification(user)
        await self._audit(AuditAction.VERIFICATION_RESENT, meta, user_id=user.id)
        return Result.success(None)
