"""
Redis-backed KeyValueStore.

Locks follow the SET NX EX pattern: a random token is stored under the
lock key with a TTL, and release deletes the key only while it still holds
that token, so an expired lock taken over by another worker is never
released by the holder that set it.
"""

from __future__ import annotations

from loguru import logger
from redis.asyncio import Redis

LOG_LOCK_ACQUIRED = "XP_LOCK key={} acquired"
LOG_LOCK_BUSY = "XP_LOCK key={} busy"
LOG_LOCK_RELEASED = "XP_LOCK key={} released"

# Compare-and-delete: only the owner may release.
_RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class RedisStateStore:
    """KeyValueStore on redis.asyncio."""

    def __init__(self, client: Redis, key_prefix: str = "xp:"):
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, redis_url: str, key_prefix: str = "xp:") -> RedisStateStore:
        """Create a store with its own connection pool."""
        return cls(Redis.from_url(redis_url, decode_responses=True), key_prefix=key_prefix)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self.client.aclose()

    async def get(self, key: str) -> str | None:
        value = await self.client.get(self._key(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        if ttl_seconds:
            await self.client.set(self._key(key), value, ex=ttl_seconds)
        else:
            await self.client.set(self._key(key), value)

    async def delete(self, key: str) -> None:
        await self.client.delete(self._key(key))

    async def acquire_lock(self, key: str, token: str, ttl_seconds: int) -> bool:
        ok = await self.client.set(self._key(key), token, nx=True, ex=ttl_seconds)
        if ok:
            logger.debug(LOG_LOCK_ACQUIRED, key)
            return True
        logger.debug(LOG_LOCK_BUSY, key)
        return False

    async def release_lock(self, key: str, token: str) -> bool:
        deleted = await self.client.eval(_RELEASE_SCRIPT, 1, self._key(key), token)
        if deleted:
            logger.debug(LOG_LOCK_RELEASED, key)
        return bool(deleted)
