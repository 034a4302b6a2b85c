"""
Store contracts consumed by the identity services.

Each protocol has an in-memory implementation (single instance, tests) and a
durable one (SQL for tokens and credentials, Redis for shared counters).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from identity_core.models import (
    EmailVerificationTokens,
    PasswordResetTokens,
    RefreshTokens,
    Tenants,
    TenantUsers,
    Users,
)


@dataclass
class LoginAttemptState:
    """Consecutive login failures for one email. Absence means zero failures."""

    key: str
    failure_count: int
    last_failure_at: datetime


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    retry_after: int = 0


@dataclass(frozen=True)
class AuditEvent:
    action: str
    outcome: str
    user_id: str | None = None
    email: str | None = None
    tenant_id: str | None = None
    error_kind: str | None = None
    detail: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    occurred_at: datetime | None = field(default=None, compare=False)


class CredentialStore(Protocol):
    async def get_by_email(self, email: str) -> Users | None: ...

    async def get_by_id(self, user_id: str) -> Users | None: ...

    async def create_account(
        self, user: Users, tenant: Tenants, membership: TenantUsers
    ) -> Users:
        """Persist user, tenant and membership together or not at all."""
        ...

    async def update_password(
        self, user_id: str, password_hash: str, changed_at: datetime
    ) -> None: ...

    async def update_login_metadata(self, user_id: str, logged_in_at: datetime) -> None: ...

    async def mark_email_verified(self, user_id: str, verified_at: datetime) -> None: ...


class TenantStore(Protocol):
    async def get_by_id(self, tenant_id: str) -> Tenants | None: ...

    async def get_by_slug(self, slug: str) -> Tenants | None: ...

    async def list_memberships(self, user_id: str) -> list[TenantUsers]: ...


class RefreshTokenStore(Protocol):
    async def add(self, token: RefreshTokens) -> None: ...

    async def get_by_hash(self, token_hash: str) -> RefreshTokens | None: ...

    async def replace(self, old_id: str, new_token: RefreshTokens, revoked_at: datetime) -> bool:
        """
        Revoke ``old_id`` and insert ``new_token`` atomically.

        Returns False, inserting nothing, when ``old_id`` was already revoked.
        """
        ...

    async def revoke(self, token_id: str, revoked_at: datetime) -> bool: ...

    async def revoke_all_for_user(self, user_id: str, revoked_at: datetime) -> int: ...

    async def revoke_family(self, family_id: str, revoked_at: datetime) -> int: ...

    async def purge(self, expired_before: datetime, revoked_before: datetime) -> int: ...


class OneTimeTokenStore(Protocol):
    """Password reset and email verification tokens."""

    async def add(self, token: PasswordResetTokens | EmailVerificationTokens) -> None: ...

    async def get_by_hash(
        self, token_hash: str
    ) -> PasswordResetTokens | EmailVerificationTokens | None: ...

    async def consume(self, token_id: str, used_at: datetime) -> bool:
        """Mark used. Only the first caller for a given token gets True."""
        ...

    async def invalidate_for_user(self, user_id: str, used_at: datetime) -> int: ...

    async def purge(self, expired_before: datetime) -> int: ...


class PasswordHistoryStore(Protocol):
    async def append(self, user_id: str, password_hash: str, created_at: datetime) -> None: ...

    async def recent(self, user_id: str, limit: int) -> list[str]:
        """Newest first."""
        ...

    async def trim(self, user_id: str, keep: int) -> int: ...


class AttemptStore(Protocol):
    async def get(self, key: str) -> LoginAttemptState | None: ...

    async def record_failure(self, key: str, now: datetime, window: timedelta) -> LoginAttemptState:
        """
        Count one failure. A previous run of failures older than ``window`` is
        discarded first so the count restarts at 1.
        """
        ...

    async def clear(self, key: str) -> None: ...

    async def clear_if_unchanged(self, key: str, last_failure_at: datetime) -> bool:
        """Clear only if no failure was recorded after ``last_failure_at``."""
        ...


class RateLimitStore(Protocol):
    async def hit(
        self, key: str, now: datetime, window: timedelta, max_requests: int
    ) -> RateLimitDecision:
        """Prune, check and (when under the limit) record one request as a single step."""
        ...


class AuditSink(Protocol):
    async def append(self, event: AuditEvent) -> None: ...


class MailSender(Protocol):
    async def send_verification(self, email: str, name: str, token: str) -> None: ...

    async def send_reset(self, email: str, name: str, token: str) -> None: ...

    async def send_invitation(
        self, email: str, tenant_name: str, inviter_name: str, token: str
    ) -> None: ...
