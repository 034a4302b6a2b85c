"""
Password lifecycle: hashing, verification, strength rules and history.

bcrypt salts every hash, so two hashes of the same password never compare
equal. ``is_in_history`` is the exact-hash membership test; ``matches_history``
is what change/reset flows use to detect reuse of a plaintext password.
"""

from identity_core.config import settings
from identity_core.core.errors import ErrorKind, InvalidInputError, Result
from identity_core.core.logging import get_logger
from identity_core.core.security import (
    Clock,
    get_password_hash,
    utcnow,
    validate_password_strength,
    verify_password,
)
from identity_core.stores.base import PasswordHistoryStore

logger = get_logger(__name__)


class PasswordLifecycleManager:
    def __init__(
        self,
        history: PasswordHistoryStore,
        *,
        rounds: int = settings.BCRYPT_ROUNDS,
        min_length: int = settings.PASSWORD_MIN_LENGTH,
        max_length: int = settings.PASSWORD_MAX_LENGTH,
        history_size: int = settings.PASSWORD_HISTORY_SIZE,
        clock: Clock = utcnow,
    ) -> None:
        self._history = history
        self.rounds = rounds
        self.min_length = min_length
        self.max_length = max_length
        self.history_size = history_size
        self._clock = clock

    def hash(self, password: str) -> str:
        """Salted bcrypt hash; a new salt on every call."""
        if not password:
            raise InvalidInputError("password must not be empty")
        return get_password_hash(password, rounds=self.rounds)

    def verify(self, password: str, password_hash: str) -> bool:
        """False for any mismatch, empty input or malformed hash."""
        return verify_password(password, password_hash)

    def check_strength(self, password: str) -> tuple[bool, str | None]:
        return validate_password_strength(
            password, min_length=self.min_length, max_length=self.max_length
        )

    def validate_strength(self, password: str) -> bool:
        valid, _ = self.check_strength(password)
        return valid

    @staticmethod
    def is_in_history(new_hash: str, history_hashes: list[str]) -> bool:
        return new_hash in history_hashes

    def matches_history(self, password: str, history_hashes: list[str]) -> bool:
        return any(self.verify(password, old_hash) for old_hash in history_hashes)

    async def recent_history(self, user_id: str) -> list[str]:
        return await self._history.recent(user_id, self.history_size)

    async def record_history(self, user_id: str, new_hash: str) -> None:
        """Append only. Callers trim with ``trim_history`` once the new password is stored."""
        await self._history.append(user_id, new_hash, self._clock())

    async def trim_history(self, user_id: str) -> None:
        removed = await self._history.trim(user_id, self.history_size)
        if removed:
            logger.debug("password_history_trimmed", user_id=user_id, removed=removed)

    async def prepare_new_password(
        self, user_id: str, password: str, current_hash: str | None = None
    ) -> Result[str]:
        """
        Server-side gate for a replacement password.

        Re-checks strength (request validation can be bypassed), rejects any of
        the last ``history_size`` passwords (plus ``current_hash``, for accounts
        whose history predates tracking) and returns the new hash.
        """
        valid, message = self.check_strength(password)
        if not valid:
            return Result.fail(ErrorKind.PASSWORD_POLICY_VIOLATION, message)

        history = await self.recent_history(user_id)
        if current_hash and current_hash not in history:
            history.append(current_hash)
        if self.matches_history(password, history):
            logger.info("password_reuse_rejected", user_id=user_id)
            return Result.fail(ErrorKind.PASSWORD_REUSED)

        return Result.success(self.hash(password))
