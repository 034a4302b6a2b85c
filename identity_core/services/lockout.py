"""
Account lockout state machine: Unlocked -> (failure)* -> Locked(timed) -> Unlocked.

State is keyed by the normalized submitted email (existing account or not) and
lives in an injected AttemptStore, so it can be process-local or shared.
"""

from dataclasses import dataclass
from datetime import timedelta
from math import ceil

from identity_core.config import settings
from identity_core.core.logging import get_logger
from identity_core.core.security import Clock, utcnow
from identity_core.stores.base import AttemptStore, LoginAttemptState

logger = get_logger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    failure_count: int = 0
    retry_after: int | None = None


class LoginAttemptTracker:
    def __init__(
        self,
        store: AttemptStore,
        *,
        threshold: int = settings.LOCKOUT_THRESHOLD,
        window_minutes: int = settings.LOCKOUT_WINDOW_MINUTES,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self.threshold = threshold
        self.window = timedelta(minutes=window_minutes)
        self._clock = clock

    async def status(self, email: str) -> LockStatus:
        """
        Check the lock before any password work.

        An entry whose last failure is older than the window is cleared here, so
        the account unlocks on its own once the window has elapsed.
        """
        key = normalize_email(email)
        state = await self._store.get(key)
        if state is None:
            return LockStatus(locked=False)

        elapsed = self._clock() - state.last_failure_at
        if elapsed > self.window:
            # A failure recorded since the read starts a new run and must survive
            await self._store.clear_if_unchanged(key, state.last_failure_at)
            logger.debug("login_attempts_expired", email=key)
            return LockStatus(locked=False)

        if state.failure_count >= self.threshold:
            remaining = ceil((self.window - elapsed).total_seconds())
            return LockStatus(
                locked=True,
                failure_count=state.failure_count,
                retry_after=max(remaining, 1),
            )
        return LockStatus(locked=False, failure_count=state.failure_count)

    async def record_failure(self, email: str) -> LoginAttemptState:
        key = normalize_email(email)
        state = await self._store.record_failure(key, self._clock(), self.window)
        if state.failure_count == self.threshold:
            logger.warning("account_locked", email=key, failure_count=state.failure_count)
        else:
            logger.info("login_failure_recorded", email=key, failure_count=state.failure_count)
        return state

    async def clear(self, email: str) -> None:
        await self._store.clear(normalize_email(email))
