"""Tests for the login lockout state machine."""

import asyncio
from datetime import timedelta

import pytest

from identity_core.services.lockout import LoginAttemptTracker, normalize_email
from identity_core.stores.memory import InMemoryAttemptStore


@pytest.fixture
def store() -> InMemoryAttemptStore:
    return InMemoryAttemptStore()


@pytest.fixture
def tracker(store, clock) -> LoginAttemptTracker:
    return LoginAttemptTracker(store, threshold=5, window_minutes=30, clock=clock)


@pytest.mark.unit
class TestLoginAttemptTracker:
    async def test_unknown_email_is_unlocked(self, tracker):
        status = await tracker.status("nobody@example.com")
        assert status.locked is False
        assert status.failure_count == 0

    async def test_locks_at_threshold(self, tracker):
        for _ in range(4):
            await tracker.record_failure("a@example.com")
        assert (await tracker.status("a@example.com")).locked is False

        await tracker.record_failure("a@example.com")
        status = await tracker.status("a@example.com")
        assert status.locked is True
        assert status.failure_count == 5
        assert status.retry_after == 30 * 60

    async def test_retry_after_counts_down(self, tracker, clock):
        for _ in range(5):
            await tracker.record_failure("a@example.com")
        clock.advance(minutes=10)
        assert (await tracker.status("a@example.com")).retry_after == 20 * 60

    async def test_unlocks_after_window(self, tracker, store, clock):
        for _ in range(5):
            await tracker.record_failure("a@example.com")
        clock.advance(minutes=30, seconds=1)

        assert (await tracker.status("a@example.com")).locked is False
        # The stale entry is cleared, not just ignored
        assert len(store) == 0

    async def test_failures_outside_window_restart_count(self, tracker, clock):
        for _ in range(4):
            await tracker.record_failure("a@example.com")
        clock.advance(minutes=31)
        state = await tracker.record_failure("a@example.com")
        assert state.failure_count == 1

    async def test_clear_resets(self, tracker):
        for _ in range(5):
            await tracker.record_failure("a@example.com")
        await tracker.clear("a@example.com")
        assert (await tracker.status("a@example.com")).locked is False

    async def test_email_is_normalized(self, tracker):
        for _ in range(5):
            await tracker.record_failure("  Alice@Example.COM ")
        assert (await tracker.status("alice@example.com")).locked is True
        assert normalize_email(" A@B.C ") == "a@b.c"

    async def test_concurrent_failures_are_all_counted(self, tracker):
        await asyncio.gather(*(tracker.record_failure("a@example.com") for _ in range(20)))
        assert (await tracker.status("a@example.com")).failure_count == 20


class RacingAttemptStore(InMemoryAttemptStore):
    """Records a new failure right after handing out a snapshot, once."""

    def __init__(self, clock) -> None:
        super().__init__()
        self._clock = clock
        self.race = False

    async def get(self, key):
        snapshot = await super().get(key)
        if self.race:
            self.race = False
            await self.record_failure(key, self._clock(), timedelta(minutes=30))
        return snapshot


@pytest.mark.unit
class TestStaleEntryCleanup:
    async def test_failure_recorded_after_stale_read_survives(self, clock):
        store = RacingAttemptStore(clock)
        tracker = LoginAttemptTracker(store, threshold=5, window_minutes=30, clock=clock)
        for _ in range(5):
            await tracker.record_failure("a@example.com")
        clock.advance(minutes=31)
        store.race = True

        assert (await tracker.status("a@example.com")).locked is False

        state = await store.get("a@example.com")
        assert state is not None
        assert state.failure_count == 1

    async def test_clear_if_unchanged(self, store, clock):
        first = await store.record_failure("a@example.com", clock(), timedelta(minutes=30))
        clock.advance(seconds=5)
        await store.record_failure("a@example.com", clock(), timedelta(minutes=30))

        assert await store.clear_if_unchanged("a@example.com", first.last_failure_at) is False
        assert len(store) == 1
        latest = await store.get("a@example.com")
        assert await store.clear_if_unchanged("a@example.com", latest.last_failure_at) is True
        assert len(store) == 0

    async def test_abandoned_emails_are_swept(self, tracker, store, clock):
        for i in range(1000):
            await tracker.record_failure(f"user{i}@example.com")
        assert len(store) == 1000

        clock.advance(days=1)
        await tracker.record_failure("someone@example.com")

        assert len(store) == 1

    async def test_prune_keeps_entries_inside_window(self, tracker, store, clock):
        await tracker.record_failure("old@example.com")
        clock.advance(minutes=20)
        await tracker.record_failure("new@example.com")
        clock.advance(minutes=11)

        assert store.prune(clock(), tracker.window) == 1
        assert (await store.get("new@example.com")).failure_count == 1
