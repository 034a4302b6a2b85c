"""
Refresh token management with rotation.

Lifecycle per token: issued -> validated* -> rotated | revoked | expired.
Only the SHA-256 hash of a secret is stored. Rotation revokes the presented
token and stores its successor in one atomic store operation, so two
concurrent rotations of the same secret yield exactly one winner.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from identity_core.config import settings
from identity_core.core.errors import ErrorKind, Failure, Result
from identity_core.core.logging import get_logger
from identity_core.core.security import Clock, as_utc, generate_token_secret, hash_token, utcnow
from identity_core.models import RefreshTokens
from identity_core.stores.base import RefreshTokenStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class RotatedToken:
    secret: str
    token: RefreshTokens


class RefreshTokenManager:
    def __init__(
        self,
        store: RefreshTokenStore,
        *,
        ttl_days: int = settings.REFRESH_TOKEN_EXPIRE_DAYS,
        remember_me_days: int = settings.REFRESH_TOKEN_REMEMBER_ME_DAYS,
        retention_days: int = settings.REFRESH_TOKEN_RETENTION_DAYS,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self.ttl = timedelta(days=ttl_days)
        self.remember_me_ttl = timedelta(days=remember_me_days)
        self.retention = timedelta(days=retention_days)
        self._clock = clock

    def _new_token(
        self,
        user_id: str,
        remember_me: bool,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
        family_id: str | None = None,
        parent_token_id: str | None = None,
    ) -> tuple[str, RefreshTokens]:
        secret = generate_token_secret()
        now = self._clock()
        token = RefreshTokens(
            user_id=user_id,
            token_hash=hash_token(secret),
            created_at=now,
            expires_at=now + (self.remember_me_ttl if remember_me else self.ttl),
            remember_me=remember_me,
            ip_address=ip_address,
            user_agent=user_agent[:255] if user_agent else None,
            parent_token_id=parent_token_id,
        )
        if family_id is not None:
            token.family_id = family_id
        return secret, token

    async def issue(
        self,
        user_id: str,
        remember_me: bool = False,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        """
        Issue a refresh token and return its raw secret.

        The raw secret is never stored; callers hand it to the client once.
        """
        secret, token = self._new_token(
            user_id, remember_me, ip_address=ip_address, user_agent=user_agent
        )
        await self._store.add(token)
        logger.info(
            "refresh_token_issued",
            user_id=user_id,
            token_id=token.id,
            family_id=token.family_id,
            remember_me=remember_me,
        )
        return secret

    async def validate(self, raw_secret: str) -> Result[RefreshTokens]:
        """
        Look up a secret by hash.

        Fails with TokenNotFound, TokenRevoked or TokenExpired. Clients see one
        generic message for all three; the kind is kept for logs and audit.
        """
        if not raw_secret:
            return Result.fail(ErrorKind.TOKEN_NOT_FOUND)

        token = await self._store.get_by_hash(hash_token(raw_secret))
        if token is None:
            logger.info("refresh_token_not_found")
            return Result.fail(ErrorKind.TOKEN_NOT_FOUND)

        if token.revoked:
            logger.warning(
                "refresh_token_revoked_presented", token_id=token.id, user_id=token.user_id
            )
            # Keep the row so rotate() can contain the replay
            return Result(value=token, error=Failure(ErrorKind.TOKEN_REVOKED))

        if as_utc(token.expires_at) <= self._clock():
            logger.info("refresh_token_expired", token_id=token.id, user_id=token.user_id)
            return Result.fail(ErrorKind.TOKEN_EXPIRED)

        return Result.success(token)

    async def rotate(
        self,
        raw_secret: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Result[RotatedToken]:
        """
        Exchange a valid secret for a new one with the same remember-me flag.

        Presenting a revoked secret revokes what is left of its family: either
        the secret leaked or a client is replaying it after rotation.
        """
        validated = await self.validate(raw_secret)
        if validated.error is not None:
            if validated.error.kind == ErrorKind.TOKEN_REVOKED and validated.value is not None:
                revoked = await self._store.revoke_family(validated.value.family_id, self._clock())
                logger.warning(
                    "refresh_token_reuse_detected",
                    token_id=validated.value.id,
                    family_id=validated.value.family_id,
                    user_id=validated.value.user_id,
                    revoked_count=revoked,
                )
            return Result(error=validated.error)

        old = validated.unwrap()
        secret, new_token = self._new_token(
            old.user_id,
            old.remember_me,
            ip_address=ip_address,
            user_agent=user_agent,
            family_id=old.family_id,
            parent_token_id=old.id,
        )

        if not await self._store.replace(old.id, new_token, self._clock()):
            # Another request rotated or revoked this token between validate and replace
            logger.warning("refresh_token_rotation_race", token_id=old.id, user_id=old.user_id)
            return Result.fail(ErrorKind.TOKEN_REUSED)

        logger.info(
            "refresh_token_rotated",
            user_id=old.user_id,
            old_token_id=old.id,
            new_token_id=new_token.id,
        )
        return Result.success(RotatedToken(secret=secret, token=new_token))

    async def revoke(self, raw_secret: str) -> RefreshTokens | None:
        """Revoke a single token (logout). Returns the token if this call revoked it."""
        token = await self._store.get_by_hash(hash_token(raw_secret)) if raw_secret else None
        if token is None:
            return None
        if not await self._store.revoke(token.id, self._clock()):
            return None
        logger.info("refresh_token_revoked", token_id=token.id, user_id=token.user_id)
        return token

    async def revoke_all(self, user_id: str) -> int:
        """Revoke every live token for a user; other sessions stop refreshing."""
        count = await self._store.revoke_all_for_user(user_id, self._clock())
        logger.info("refresh_tokens_revoked_all", user_id=user_id, revoked_count=count)
        return count

    def cutoff(self, now: datetime | None = None) -> datetime:
        return (now or self._clock()) - self.retention

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Delete rows past expiry (or revocation) plus the retention grace period."""
        cutoff = self.cutoff(now)
        count = await self._store.purge(expired_before=cutoff, revoked_before=cutoff)
        logger.info("refresh_tokens_purged", purged_count=count)
        return count
