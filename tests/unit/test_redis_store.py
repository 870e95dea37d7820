"""
Unit tests for the Redis state store (client mocked).
"""

from unittest.mock import AsyncMock

import pytest

from xp_engine.state.redis_store import RedisStateStore


@pytest.fixture
def redis_client():
    client = AsyncMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.eval = AsyncMock(return_value=1)
    return client


class TestRedisStateStore:
    @pytest.mark.asyncio
    async def test_keys_are_prefixed(self, redis_client):
        store = RedisStateStore(redis_client)
        await store.set("assessment:current:u:r", "2", ttl_seconds=60)
        redis_client.set.assert_awaited_once_with("xp:assessment:current:u:r", "2", ex=60)

    @pytest.mark.asyncio
    async def test_set_without_ttl(self, redis_client):
        store = RedisStateStore(redis_client)
        await store.set("read-time:u:r", "{}")
        redis_client.set.assert_awaited_once_with("xp:read-time:u:r", "{}")

    @pytest.mark.asyncio
    async def test_get_decodes_bytes(self, redis_client):
        redis_client.get.return_value = b"3"
        store = RedisStateStore(redis_client)
        assert await store.get("k") == "3"

    @pytest.mark.asyncio
    async def test_acquire_uses_set_nx_ex(self, redis_client):
        store = RedisStateStore(redis_client)
        assert await store.acquire_lock("lock", "token-1", 30) is True
        redis_client.set.assert_awaited_once_with("xp:lock", "token-1", nx=True, ex=30)

    @pytest.mark.asyncio
    async def test_acquire_busy(self, redis_client):
        redis_client.set.return_value = None
        store = RedisStateStore(redis_client)
        assert await store.acquire_lock("lock", "token-1", 30) is False

    @pytest.mark.asyncio
    async def test_release_compares_token(self, redis_client):
        store = RedisStateStore(redis_client)
        assert await store.release_lock("lock", "token-1") is True
        args = redis_client.eval.await_args.args
        assert args[1:] == (1, "xp:lock", "token-1")

    @pytest.mark.asyncio
    async def test_release_of_foreign_lock(self, redis_client):
        redis_client.eval.return_value = 0
        store = RedisStateStore(redis_client)
        assert await store.release_lock("lock", "stale") is False
