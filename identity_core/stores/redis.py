"""
Redis-backed stores for state that must be shared across instances.

Each check-and-mutate runs as a single Lua script so concurrent requests on
any instance observe one consistent counter per key.
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import redis.asyncio as redis

from identity_core.core.logging import get_logger
from identity_core.stores.base import LoginAttemptState, RateLimitDecision

logger = get_logger(__name__)

# KEYS[1]=attempt hash; ARGV: now_ms, window_ms
_RECORD_FAILURE_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local count = tonumber(redis.call('HGET', key, 'count') or '0')
local last = tonumber(redis.call('HGET', key, 'last') or '0')
if count > 0 and now - last > window then
    count = 0
end
count = count + 1
redis.call('HSET', key, 'count', count, 'last', now)
redis.call('PEXPIRE', key, window)
return {count, now}
"""

# KEYS[1]=attempt hash; ARGV: last_failure_ms the caller observed
_CLEAR_IF_UNCHANGED_LUA = """
if redis.call('HGET', KEYS[1], 'last') == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

# KEYS[1]=sorted set of request timestamps; ARGV: now_ms, window_ms, max_requests, member
_SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
if count >= limit then
    return {0, count}
end
redis.call('ZADD', key, now, ARGV[4])
redis.call('PEXPIRE', key, window)
return {1, count + 1}
"""


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_ms(value: int | str) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=UTC)


class RedisAttemptStore:
    def __init__(
        self, client: redis.Redis, prefix: str = "identity"  # type: ignore[type-arg]
    ) -> None:
        self._client = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:login_attempts:{key}"

    async def get(self, key: str) -> LoginAttemptState | None:
        data = await self._client.hgetall(self._key(key))
        if not data or "count" not in data:
            return None
        return LoginAttemptState(
            key=key,
            failure_count=int(data["count"]),
            last_failure_at=_from_ms(data["last"]),
        )

    async def record_failure(self, key: str, now: datetime, window: timedelta) -> LoginAttemptState:
        count, last = await self._client.eval(
            _RECORD_FAILURE_LUA,
            1,
            self._key(key),
            _to_ms(now),
            int(window.total_seconds() * 1000),
        )
        return LoginAttemptState(key=key, failure_count=int(count), last_failure_at=_from_ms(last))

    async def clear(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def clear_if_unchanged(self, key: str, last_failure_at: datetime) -> bool:
        removed = await self._client.eval(
            _CLEAR_IF_UNCHANGED_LUA, 1, self._key(key), str(_to_ms(last_failure_at))
        )
        return int(removed) == 1


class RedisRateLimitStore:
    def __init__(
        self, client: redis.Redis, prefix: str = "identity"  # type: ignore[type-arg]
    ) -> None:
        self._client = client
        self._prefix = prefix

    async def hit(
        self, key: str, now: datetime, window: timedelta, max_requests: int
    ) -> RateLimitDecision:
        allowed, count = await self._client.eval(
            _SLIDING_WINDOW_LUA,
            1,
            f"{self._prefix}:rate_limit:{key}",
            _to_ms(now),
            int(window.total_seconds() * 1000),
            max_requests,
            f"{_to_ms(now)}:{uuid4().hex}",
        )
        if int(allowed) == 1:
            return RateLimitDecision(True, int(count))
        return RateLimitDecision(False, int(count), int(window.total_seconds()))
