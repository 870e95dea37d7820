"""
Keyed state store interface, scoped locks and the in-memory store.

Attempt and read-time state are shared across concurrent requests, so
they live behind KeyValueStore. Production uses RedisStateStore; tests and
the single-process CLI use InMemoryStateStore.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Protocol
from uuid import uuid4

from loguru import logger

from xp_engine.core.errors import LockNotAcquiredError


class KeyValueStore(Protocol):
    """String key/value store with TTLs and token locks."""

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def acquire_lock(self, key: str, token: str, ttl_seconds: int) -> bool:
        """Take the lock if free. Must be atomic (SET NX EX semantics)."""
        ...

    async def release_lock(self, key: str, token: str) -> bool:
        """Release the lock only if `token` still owns it."""
        ...


@asynccontextmanager
async def scoped_lock(
    store: KeyValueStore,
    key: str,
    ttl_seconds: int = 30,
    wait_seconds: float = 5.0,
    poll_interval: float = 0.1,
    error_cls: type[LockNotAcquiredError] = LockNotAcquiredError,
    operation: str | None = None,
) -> AsyncIterator[str]:
    """
    Hold a per-key lock for the duration of the block.

    Polls until the lock is free or `wait_seconds` elapses. The lock is
    released on every exit path.

    Raises:
        error_cls: When the lock stays held past the bounded wait
    """
    token = uuid4().hex
    started = time.monotonic()
    while not await store.acquire_lock(key, token, ttl_seconds):
        waited = time.monotonic() - started
        if waited >= wait_seconds:
            logger.warning("Lock {} still held after {:.1f}s", key, waited)
            raise error_cls(key, waited, operation=operation)
        await asyncio.sleep(poll_interval)

    logger.debug("Lock {} acquired", key)
    try:
        yield token
    finally:
        released = await store.release_lock(key, token)
        if released:
            logger.debug("Lock {} released", key)
        else:
            logger.warning("Lock {} expired before release", key)


class InMemoryStateStore:
    """Process-local KeyValueStore with TTL expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}
        self._guard = asyncio.Lock()

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl_seconds: int | None) -> float | None:
        return self._clock() + ttl_seconds if ttl_seconds else None

    async def get(self, key: str) -> str | None:
        async with self._guard:
            return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        async with self._guard:
            self._data[key] = (value, self._expiry(ttl_seconds))

    async def delete(self, key: str) -> None:
        async with self._guard:
            self._data.pop(key, None)

    async def acquire_lock(self, key: str, token: str, ttl_seconds: int) -> bool:
        async with self._guard:
            if self._live(key) is not None:
                return False
            self._data[key] = (token, self._expiry(ttl_seconds))
            return True

    async def release_lock(self, key: str, token: str) -> bool:
        async with self._guard:
            if self._live(key) != token:
                return False
            del self._data[key]
            return True

    def keys(self) -> list[str]:
        """Live keys."""
        return [key for key in list(self._data) if self._live(key) is not None]
