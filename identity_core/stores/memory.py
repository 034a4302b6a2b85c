"""
In-memory stores for single-instance deployments and tests.

State lives in the store instance, never at module level, so each
IdentityServices container owns (and can discard) its own tables.
"""

from collections import deque
from datetime import datetime, timedelta

from identity_core.core.locks import KeyedLock
from identity_core.core.logging import get_logger
from identity_core.core.security import as_utc
from identity_core.models import (
    EmailVerificationTokens,
    PasswordResetTokens,
    RefreshTokens,
    Tenants,
    TenantUsers,
    Users,
)
from identity_core.stores.base import AuditEvent, LoginAttemptState, RateLimitDecision

logger = get_logger(__name__)

# Stale entries are swept at most this often, on the next write after it elapses
SWEEP_INTERVAL = timedelta(minutes=1)


class InMemoryCredentialStore:
    def __init__(self, tenants: "InMemoryTenantStore") -> None:
        self._users: dict[str, Users] = {}
        self._tenants = tenants

    async def get_by_email(self, email: str) -> Users | None:
        email = email.strip().lower()
        return next((u for u in self._users.values() if u.email == email), None)

    async def get_by_id(self, user_id: str) -> Users | None:
        return self._users.get(user_id)

    async def create_account(self, user: Users, tenant: Tenants, membership: TenantUsers) -> Users:
        if await self.get_by_email(user.email) is not None:
            raise ValueError(f"email already registered: {user.email}")
        self._tenants.add(tenant, membership)
        self._users[user.id] = user
        return user

    async def update_password(self, user_id: str, password_hash: str, changed_at: datetime) -> None:
        user = self._users[user_id]
        user.password_hash = password_hash
        user.password_changed_at = changed_at
        user.updated_at = changed_at

    async def update_login_metadata(self, user_id: str, logged_in_at: datetime) -> None:
        self._users[user_id].last_login_at = logged_in_at

    async def mark_email_verified(self, user_id: str, verified_at: datetime) -> None:
        user = self._users[user_id]
        user.email_verified = True
        user.email_verified_at = verified_at


class InMemoryTenantStore:
    def __init__(self) -> None:
        self._tenants: dict[str, Tenants] = {}
        self._memberships: list[TenantUsers] = []

    def add(self, tenant: Tenants, *memberships: TenantUsers) -> None:
        if any(t.slug == tenant.slug for t in self._tenants.values() if t.id != tenant.id):
            raise ValueError(f"slug already taken: {tenant.slug}")
        self._tenants[tenant.id] = tenant
        self._memberships.extend(memberships)

    def add_membership(self, membership: TenantUsers) -> None:
        self._memberships.append(membership)

    async def get_by_id(self, tenant_id: str) -> Tenants | None:
        return self._tenants.get(tenant_id)

    async def get_by_slug(self, slug: str) -> Tenants | None:
        return next((t for t in self._tenants.values() if t.slug == slug), None)

    async def list_memberships(self, user_id: str) -> list[TenantUsers]:
        return [m for m in self._memberships if m.user_id == user_id]


class InMemoryRefreshTokenStore:
    def __init__(self) -> None:
        self._tokens: dict[str, RefreshTokens] = {}
        self._by_hash: dict[str, str] = {}
        self._locks = KeyedLock()

    async def add(self, token: RefreshTokens) -> None:
        self._tokens[token.id] = token
        self._by_hash[token.token_hash] = token.id

    async def get_by_hash(self, token_hash: str) -> RefreshTokens | None:
        token_id = self._by_hash.get(token_hash)
        return self._tokens.get(token_id) if token_id else None

    async def replace(self, old_id: str, new_token: RefreshTokens, revoked_at: datetime) -> bool:
        async with self._locks.hold(old_id):
            old = self._tokens.get(old_id)
            if old is None or old.revoked:
                return False
            old.revoked = True
            old.revoked_at = revoked_at
            await self.add(new_token)
            return True

    async def revoke(self, token_id: str, revoked_at: datetime) -> bool:
        async with self._locks.hold(token_id):
            token = self._tokens.get(token_id)
            if token is None or token.revoked:
                return False
            token.revoked = True
            token.revoked_at = revoked_at
            return True

    async def revoke_all_for_user(self, user_id: str, revoked_at: datetime) -> int:
        ids = [t.id for t in self._tokens.values() if t.user_id == user_id and not t.revoked]
        return sum([await self.revoke(token_id, revoked_at) for token_id in ids])

    async def revoke_family(self, family_id: str, revoked_at: datetime) -> int:
        ids = [t.id for t in self._tokens.values() if t.family_id == family_id and not t.revoked]
        return sum([await self.revoke(token_id, revoked_at) for token_id in ids])

    async def purge(self, expired_before: datetime, revoked_before: datetime) -> int:
        doomed = [
            t
            for t in self._tokens.values()
            if as_utc(t.expires_at) < expired_before
            or (t.revoked and t.revoked_at is not None and as_utc(t.revoked_at) < revoked_before)
        ]
        for token in doomed:
            del self._tokens[token.id]
            self._by_hash.pop(token.token_hash, None)
        return len(doomed)


class InMemoryOneTimeTokenStore:
    """Backs both password reset and email verification tokens."""

    def __init__(self) -> None:
        self._tokens: dict[str, PasswordResetTokens | EmailVerificationTokens] = {}
        self._locks = KeyedLock()

    async def add(self, token: PasswordResetTokens | EmailVerificationTokens) -> None:
        self._tokens[token.id] = token

    async def get_by_hash(
        self, token_hash: str
    ) -> PasswordResetTokens | EmailVerificationTokens | None:
        return next((t for t in self._tokens.values() if t.token_hash == token_hash), None)

    async def consume(self, token_id: str, used_at: datetime) -> bool:
        async with self._locks.hold(token_id):
            token = self._tokens.get(token_id)
            if token is None or token.used:
                return False
            token.used = True
            token.used_at = used_at
            return True

    async def invalidate_for_user(self, user_id: str, used_at: datetime) -> int:
        ids = [t.id for t in self._tokens.values() if t.user_id == user_id and not t.used]
        return sum([await self.consume(token_id, used_at) for token_id in ids])

    async def purge(self, expired_before: datetime) -> int:
        doomed = [t.id for t in self._tokens.values() if as_utc(t.expires_at) < expired_before]
        for token_id in doomed:
            del self._tokens[token_id]
        return len(doomed)


class InMemoryPasswordHistoryStore:
    def __init__(self) -> None:
        self._entries: dict[str, list[tuple[datetime, str]]] = {}

    async def append(self, user_id: str, password_hash: str, created_at: datetime) -> None:
        self._entries.setdefault(user_id, []).append((created_at, password_hash))

    async def recent(self, user_id: str, limit: int) -> list[str]:
        # Newest first
        entries = list(reversed(self._entries.get(user_id, [])))
        return [password_hash for _, password_hash in entries[:limit]]

    async def trim(self, user_id: str, keep: int) -> int:
        entries = self._entries.get(user_id, [])
        removed = max(len(entries) - keep, 0)
        if removed:
            self._entries[user_id] = entries[removed:]
        return removed


class InMemoryAttemptStore:
    def __init__(self) -> None:
        self._states: dict[str, LoginAttemptState] = {}
        self._locks = KeyedLock()
        self._last_sweep: datetime | None = None

    async def get(self, key: str) -> LoginAttemptState | None:
        state = self._states.get(key)
        if state is None:
            return None
        return LoginAttemptState(state.key, state.failure_count, state.last_failure_at)

    async def record_failure(self, key: str, now: datetime, window: timedelta) -> LoginAttemptState:
        self._maybe_sweep(now, window)
        async with self._locks.hold(key):
            previous = self._states.get(key)
            count = 1
            if previous is not None and now - previous.last_failure_at <= window:
                count = previous.failure_count + 1
            state = LoginAttemptState(key, count, now)
            self._states[key] = state
            return LoginAttemptState(state.key, state.failure_count, state.last_failure_at)

    async def clear(self, key: str) -> None:
        async with self._locks.hold(key):
            self._states.pop(key, None)

    async def clear_if_unchanged(self, key: str, last_failure_at: datetime) -> bool:
        async with self._locks.hold(key):
            state = self._states.get(key)
            if state is None or state.last_failure_at != last_failure_at:
                return False
            del self._states[key]
            return True

    def prune(self, now: datetime, window: timedelta) -> int:
        """Drop entries whose last failure is older than ``window``."""
        stale = [k for k, s in self._states.items() if now - s.last_failure_at > window]
        for key in stale:
            del self._states[key]
        return len(stale)

    def _maybe_sweep(self, now: datetime, window: timedelta) -> None:
        if self._last_sweep is not None and now - self._last_sweep < SWEEP_INTERVAL:
            return
        self._last_sweep = now
        removed = self.prune(now, window)
        if removed:
            logger.debug("login_attempts_swept", removed=removed)

    def __len__(self) -> int:
        return len(self._states)


class InMemoryRateLimitStore:
    def __init__(self) -> None:
        # key -> (window, request timestamps oldest first)
        self._counters: dict[str, tuple[timedelta, deque[datetime]]] = {}
        self._locks = KeyedLock()
        self._last_sweep: datetime | None = None

    async def hit(
        self, key: str, now: datetime, window: timedelta, max_requests: int
    ) -> RateLimitDecision:
        self._maybe_sweep(now)
        async with self._locks.hold(key):
            _, stamps = self._counters.get(key, (window, deque()))
            cutoff = now - window
            while stamps and stamps[0] <= cutoff:
                stamps.popleft()

            if len(stamps) >= max_requests:
                # Rejected requests are not recorded
                if not stamps:
                    self._counters.pop(key, None)
                return RateLimitDecision(False, len(stamps), int(window.total_seconds()))

            stamps.append(now)
            self._counters[key] = (window, stamps)
            return RateLimitDecision(True, len(stamps))

    def prune(self, now: datetime) -> int:
        """Drop keys whose newest request has left its window."""
        stale = [
            key
            for key, (window, stamps) in self._counters.items()
            if not stamps or stamps[-1] <= now - window
        ]
        for key in stale:
            del self._counters[key]
        return len(stale)

    def _maybe_sweep(self, now: datetime) -> None:
        if self._last_sweep is not None and now - self._last_sweep < SWEEP_INTERVAL:
            return
        self._last_sweep = now
        removed = self.prune(now)
        if removed:
            logger.debug("rate_limit_keys_swept", removed=removed)

    def __len__(self) -> int:
        return len(self._counters)


class InMemoryAuditSink:
    """Keeps events in a list and mirrors them to the log."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    async def append(self, event: AuditEvent) -> None:
        self.events.append(event)
        logger.info(
            "audit_event",
            action=event.action,
            outcome=event.outcome,
            user_id=event.user_id,
            error_kind=event.error_kind,
        )
