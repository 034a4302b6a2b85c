"""Tests for the Redis-backed attempt and rate-limit stores (Redis mocked)."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from identity_core.stores.redis import RedisAttemptStore, RedisRateLimitStore

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
NOW_MS = int(NOW.timestamp() * 1000)


@pytest.fixture
def mock_redis():
    """eval, hgetall and delete are all coroutines on redis.asyncio clients."""
    return AsyncMock()


@pytest.mark.unit
class TestRedisAttemptStore:
    async def test_record_failure_runs_script(self, mock_redis):
        mock_redis.eval.return_value = [3, NOW_MS]
        store = RedisAttemptStore(mock_redis, prefix="test")

        state = await store.record_failure("a@example.com", NOW, timedelta(minutes=30))

        assert state.failure_count == 3
        assert state.last_failure_at == NOW
        args = mock_redis.eval.call_args[0]
        assert args[1] == 1
        assert args[2] == "test:login_attempts:a@example.com"
        assert args[3] == NOW_MS
        assert args[4] == 30 * 60 * 1000

    async def test_get_missing(self, mock_redis):
        mock_redis.hgetall.return_value = {}
        store = RedisAttemptStore(mock_redis)
        assert await store.get("a@example.com") is None

    async def test_get_existing(self, mock_redis):
        mock_redis.hgetall.return_value = {"count": "4", "last": str(NOW_MS)}
        store = RedisAttemptStore(mock_redis)

        state = await store.get("a@example.com")

        assert state.failure_count == 4
        assert state.last_failure_at == NOW
        mock_redis.hgetall.assert_awaited_once_with("identity:login_attempts:a@example.com")

    async def test_clear_deletes_key(self, mock_redis):
        store = RedisAttemptStore(mock_redis)
        await store.clear("a@example.com")
        mock_redis.delete.assert_awaited_once_with("identity:login_attempts:a@example.com")

    async def test_clear_if_unchanged_compares_last_failure(self, mock_redis):
        mock_redis.eval.return_value = 1
        store = RedisAttemptStore(mock_redis)

        assert await store.clear_if_unchanged("a@example.com", NOW) is True
        args = mock_redis.eval.call_args[0]
        assert args[2] == "identity:login_attempts:a@example.com"
        assert args[3] == str(NOW_MS)

    async def test_clear_if_unchanged_after_new_failure(self, mock_redis):
        mock_redis.eval.return_value = 0
        store = RedisAttemptStore(mock_redis)
        assert await store.clear_if_unchanged("a@example.com", NOW) is False


@pytest.mark.unit
class TestRedisRateLimitStore:
    async def test_allowed(self, mock_redis):
        mock_redis.eval.return_value = [1, 2]
        store = RedisRateLimitStore(mock_redis, prefix="test")

        decision = await store.hit("login:ip:1.2.3.4", NOW, timedelta(minutes=15), 5)

        assert decision.allowed is True
        assert decision.count == 2
        args = mock_redis.eval.call_args[0]
        assert args[2] == "test:rate_limit:login:ip:1.2.3.4"
        assert args[3] == NOW_MS
        assert args[4] == 15 * 60 * 1000
        assert args[5] == 5
        # Members are unique so simultaneous requests are all counted
        assert args[6].startswith(f"{NOW_MS}:")

    async def test_rejected_reports_window(self, mock_redis):
        mock_redis.eval.return_value = [0, 5]
        store = RedisRateLimitStore(mock_redis)

        decision = await store.hit("login:ip:1.2.3.4", NOW, timedelta(minutes=15), 5)

        assert decision.allowed is False
        assert decision.count == 5
        assert decision.retry_after == 15 * 60

    async def test_unique_members(self, mock_redis):
        mock_redis.eval.return_value = [1, 1]
        store = RedisRateLimitStore(mock_redis)
        await store.hit("k", NOW, timedelta(minutes=1), 5)
        await store.hit("k", NOW, timedelta(minutes=1), 5)
        first, second = (call[0][6] for call in mock_redis.eval.call_args_list)
        assert first != second
