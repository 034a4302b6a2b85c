import redis.asyncio as redis

from identity_core.config import settings


def create_redis_client(url: str | None = None) -> redis.Redis:  # type: ignore[type-arg]
    """Client shared by the Redis-backed lockout and rate-limit stores."""
    return redis.from_url(
        url or str(settings.REDIS_URL),
        encoding="utf-8",
        decode_responses=True,
    )

