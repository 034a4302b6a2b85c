"""
Explicit wiring of the identity components.

Every service receives its stores and clock through its constructor; nothing
is looked up globally. The app keeps one IdentityServices on ``app.state`` and
the worker keeps one in its ctx.
"""

from dataclasses import dataclass

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from identity_core.config import Settings
from identity_core.core.logging import get_logger
from identity_core.core.security import Clock, utcnow
from identity_core.models import EmailVerificationTokens, PasswordResetTokens
from identity_core.services.credential_verifier import CredentialVerifier
from identity_core.services.lockout import LoginAttemptTracker
from identity_core.services.mailer import QueuedMailSender
from identity_core.services.password_lifecycle import PasswordLifecycleManager
from identity_core.services.rate_limit import RateLimiter, default_route_limits
from identity_core.services.refresh_tokens import RefreshTokenManager
from identity_core.services.token_issuer import TokenIssuer
from identity_core.stores.base import (
    AttemptStore,
    AuditSink,
    CredentialStore,
    MailSender,
    OneTimeTokenStore,
    PasswordHistoryStore,
    RateLimitStore,
    RefreshTokenStore,
    TenantStore,
)
from identity_core.stores.memory import (
    InMemoryAttemptStore,
    InMemoryAuditSink,
    InMemoryCredentialStore,
    InMemoryOneTimeTokenStore,
    InMemoryPasswordHistoryStore,
    InMemoryRateLimitStore,
    InMemoryRefreshTokenStore,
    InMemoryTenantStore,
)
from identity_core.stores.redis import RedisAttemptStore, RedisRateLimitStore
from identity_core.stores.sql import (
    SqlAuditSink,
    SqlCredentialStore,
    SqlOneTimeTokenStore,
    SqlPasswordHistoryStore,
    SqlRefreshTokenStore,
    SqlTenantStore,
)

logger = get_logger(__name__)


@dataclass
class IdentityStores:
    credentials: CredentialStore
    tenants: TenantStore
    refresh_tokens: RefreshTokenStore
    reset_tokens: OneTimeTokenStore
    verification_tokens: OneTimeTokenStore
    password_history: PasswordHistoryStore
    attempts: AttemptStore
    rate_limits: RateLimitStore
    audit: AuditSink


@dataclass
class IdentityServices:
    stores: IdentityStores
    passwords: PasswordLifecycleManager
    tokens: TokenIssuer
    refresh_tokens: RefreshTokenManager
    attempts: LoginAttemptTracker
    rate_limiter: RateLimiter
    verifier: CredentialVerifier
    rate_limit_enabled: bool = True


def build_services(
    settings: Settings,
    stores: IdentityStores,
    *,
    mail: MailSender | None = None,
    clock: Clock = utcnow,
    bcrypt_rounds: int | None = None,
    token_clock: Clock = utcnow,
) -> IdentityServices:
    """
    Assemble the components over ``stores``.

    ``token_clock`` drives access token iat/exp. It defaults to the wall clock
    because the JWT library checks expiry against real time on decode.
    """
    passwords = PasswordLifecycleManager(
        stores.password_history,
        rounds=bcrypt_rounds or settings.BCRYPT_ROUNDS,
        min_length=settings.PASSWORD_MIN_LENGTH,
        max_length=settings.PASSWORD_MAX_LENGTH,
        history_size=settings.PASSWORD_HISTORY_SIZE,
        clock=clock,
    )
    tokens = TokenIssuer.from_settings(settings, clock=token_clock)
    refresh_tokens = RefreshTokenManager(
        stores.refresh_tokens,
        ttl_days=settings.REFRESH_TOKEN_EXPIRE_DAYS,
        remember_me_days=settings.REFRESH_TOKEN_REMEMBER_ME_DAYS,
        retention_days=settings.REFRESH_TOKEN_RETENTION_DAYS,
        clock=clock,
    )
    attempts = LoginAttemptTracker(
        stores.attempts,
        threshold=settings.LOCKOUT_THRESHOLD,
        window_minutes=settings.LOCKOUT_WINDOW_MINUTES,
        clock=clock,
    )
    rate_limiter = RateLimiter(stores.rate_limits, default_route_limits(settings), clock=clock)
    verifier = CredentialVerifier(
        credentials=stores.credentials,
        tenants=stores.tenants,
        passwords=passwords,
        tokens=tokens,
        refresh_tokens=refresh_tokens,
        attempts=attempts,
        reset_tokens=stores.reset_tokens,
        verification_tokens=stores.verification_tokens,
        audit=stores.audit,
        mail=mail or QueuedMailSender(),
        reset_ttl_minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES,
        verification_ttl_hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS,
        clock=clock,
    )
    return IdentityServices(
        stores=stores,
        passwords=passwords,
        tokens=tokens,
        refresh_tokens=refresh_tokens,
        attempts=attempts,
        rate_limiter=rate_limiter,
        verifier=verifier,
        rate_limit_enabled=settings.RATE_LIMIT_ENABLED,
    )


def memory_stores() -> IdentityStores:
    tenants = InMemoryTenantStore()
    return IdentityStores(
        credentials=InMemoryCredentialStore(tenants),
        tenants=tenants,
        refresh_tokens=InMemoryRefreshTokenStore(),
        reset_tokens=InMemoryOneTimeTokenStore(),
        verification_tokens=InMemoryOneTimeTokenStore(),
        password_history=InMemoryPasswordHistoryStore(),
        attempts=InMemoryAttemptStore(),
        rate_limits=InMemoryRateLimitStore(),
        audit=InMemoryAuditSink(),
    )


def sql_stores(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis_client: redis.Redis | None = None,  # type: ignore[type-arg]
) -> IdentityStores:
    """
    Durable stores for a deployment.

    Lockout counters and rate-limit windows go to Redis when STATE_BACKEND is
    "redis" so that every instance sees the same state.
    """
    attempts: AttemptStore
    rate_limits: RateLimitStore
    if settings.STATE_BACKEND == "redis":
        if redis_client is None:
            raise ValueError("STATE_BACKEND=redis requires a Redis client")
        attempts = RedisAttemptStore(redis_client, prefix=settings.STATE_KEY_PREFIX)
        rate_limits = RedisRateLimitStore(redis_client, prefix=settings.STATE_KEY_PREFIX)
    else:
        logger.warning("process_local_state_backend", backend=settings.STATE_BACKEND)
        attempts = InMemoryAttemptStore()
        rate_limits = InMemoryRateLimitStore()

    return IdentityStores(
        credentials=SqlCredentialStore(session_factory),
        tenants=SqlTenantStore(session_factory),
        refresh_tokens=SqlRefreshTokenStore(session_factory),
        reset_tokens=SqlOneTimeTokenStore(session_factory, PasswordResetTokens),
        verification_tokens=SqlOneTimeTokenStore(session_factory, EmailVerificationTokens),
        password_history=SqlPasswordHistoryStore(session_factory),
        attempts=attempts,
        rate_limits=rate_limits,
        audit=SqlAuditSink(session_factory),
    )
