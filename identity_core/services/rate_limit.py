"""
Sliding-window rate limiting for sensitive routes.

Counters are keyed by (route class, client identity). The store prunes,
checks and records in one critical section per key, so two concurrent
requests can never both take the last free slot. This is best-effort
throttling, not a security boundary; use the Redis store when running more
than one instance.
"""

from dataclasses import dataclass
from datetime import timedelta

from identity_core.config import Settings
from identity_core.core.errors import ErrorKind, Result
from identity_core.core.logging import get_logger
from identity_core.core.security import Clock, utcnow
from identity_core.stores.base import RateLimitDecision, RateLimitStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class RouteLimit:
    name: str
    max_requests: int
    window_minutes: int
    path_fragments: tuple[str, ...]

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)


def default_route_limits(settings: Settings) -> list[RouteLimit]:
    return [
        RouteLimit(
            "login",
            settings.LOGIN_RATE_LIMIT,
            settings.LOGIN_RATE_WINDOW_MINUTES,
            ("/auth/login",),
        ),
        RouteLimit(
            "register",
            settings.REGISTER_RATE_LIMIT,
            settings.REGISTER_RATE_WINDOW_MINUTES,
            ("/auth/register",),
        ),
        RouteLimit(
            "password_reset",
            settings.PASSWORD_RESET_RATE_LIMIT,
            settings.PASSWORD_RESET_RATE_WINDOW_MINUTES,
            ("/auth/forgot-password", "/auth/reset-password"),
        ),
        RouteLimit(
            "invitation",
            settings.INVITATION_RATE_LIMIT,
            settings.INVITATION_RATE_WINDOW_MINUTES,
            ("/users/invite",),
        ),
    ]


def client_identity(subject_id: str | None, ip_address: str | None) -> str:
    """Authenticated subject, else origin IP, else one shared bucket."""
    if subject_id:
        return f"user:{subject_id}"
    if ip_address:
        return f"ip:{ip_address}"
    return "unknown"


class RateLimiter:
    def __init__(
        self,
        store: RateLimitStore,
        limits: list[RouteLimit],
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self.limits = limits
        self._clock = clock

    def limit_for_path(self, path: str) -> RouteLimit | None:
        lowered = path.lower()
        for limit in self.limits:
            if any(fragment in lowered for fragment in limit.path_fragments):
                return limit
        return None

    async def check(self, identity: str, limit: RouteLimit) -> Result[RateLimitDecision]:
        """
        Count one request against ``limit`` for ``identity``.

        Rejected requests are not recorded, so hammering a limited route does
        not push the window further out.
        """
        decision = await self._store.hit(
            f"{limit.name}:{identity}",
            self._clock(),
            limit.window,
            limit.max_requests,
        )
        if decision.allowed:
            return Result.success(decision)

        logger.warning(
            "rate_limit_exceeded",
            route=limit.name,
            identity=identity,
            count=decision.count,
            max_requests=limit.max_requests,
            window_minutes=limit.window_minutes,
        )
        return Result.fail(
            ErrorKind.RATE_LIMIT_EXCEEDED,
            detail=f"Rate limit exceeded for {limit.name}",
            retry_after=decision.retry_after or int(limit.window.total_seconds()),
        )
