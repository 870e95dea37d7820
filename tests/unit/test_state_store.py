"""
Unit tests for the in-memory state store and scoped locks.
"""

import asyncio

import pytest

from xp_engine.core.errors import ConcurrentFinalizationInProgressError, LockNotAcquiredError
from xp_engine.state.store import InMemoryStateStore, scoped_lock


class ManualTimer:
    """Monotonic clock stand-in."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_set_get_delete(self):
        store = InMemoryStateStore()
        await store.set("k", "v")
        assert await store.get("k") == "v"
        await store.delete("k")
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_ttl_expiry(self):
        timer = ManualTimer()
        store = InMemoryStateStore(clock=timer)
        await store.set("k", "v", ttl_seconds=10)
        timer.now += 9
        assert await store.get("k") == "v"
        timer.now += 1
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_lock_is_exclusive_and_token_owned(self):
        store = InMemoryStateStore()
        assert await store.acquire_lock("lock", "a", 30) is True
        assert await store.acquire_lock("lock", "b", 30) is False
        assert await store.release_lock("lock", "b") is False
        assert await store.release_lock("lock", "a") is True
        assert await store.acquire_lock("lock", "b", 30) is True

    @pytest.mark.asyncio
    async def test_expired_lock_can_be_taken(self):
        timer = ManualTimer()
        store = InMemoryStateStore(clock=timer)
        await store.acquire_lock("lock", "a", 30)
        timer.now += 31
        assert await store.acquire_lock("lock", "b", 30) is True
        assert await store.release_lock("lock", "a") is False


class TestScopedLock:
    @pytest.mark.asyncio
    async def test_released_on_exception(self):
        store = InMemoryStateStore()
        with pytest.raises(ValueError):
            async with scoped_lock(store, "lock"):
                raise ValueError("boom")
        assert store.keys() == []

    @pytest.mark.asyncio
    async def test_bounded_wait_raises(self):
        store = InMemoryStateStore()
        await store.acquire_lock("lock", "other", 30)
        with pytest.raises(ConcurrentFinalizationInProgressError) as exc:
            async with scoped_lock(
                store, "lock", wait_seconds=0.05, poll_interval=0.01,
                error_cls=ConcurrentFinalizationInProgressError, operation="finalize",
            ):
                pass
        assert isinstance(exc.value, LockNotAcquiredError)
        assert exc.value.key == "lock"
        assert exc.value.operation == "finalize"

    @pytest.mark.asyncio
    async def test_waiter_proceeds_after_release(self):
        store = InMemoryStateStore()
        order = []

        async def worker(name, hold):
            async with scoped_lock(store, "lock", wait_seconds=1.0, poll_interval=0.005):
                order.append(f"{name}-in")
                await asyncio.sleep(hold)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a", 0.03), worker("b", 0))
        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
