"""Read-time state repository: one record per user and passive resource."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager

from config import Settings, get_settings
from xp_engine.core.errors import LockNotAcquiredError
from xp_engine.state.models import ReadTimeState
from xp_engine.state.store import KeyValueStore, scoped_lock


def read_time_key(user_id: str, resource_id: str) -> str:
    return f"read-time:{user_id}:{resource_id}"


def read_time_lock_key(user_id: str, resource_id: str) -> str:
    return f"read-time:lock:{user_id}:{resource_id}"


class ReadTimeRepository:
    """Loads and stores ReadTimeState. Records have no TTL."""

    def __init__(
        self,
        store: KeyValueStore,
        lock_ttl_seconds: int = 120,
        lock_wait_seconds: float = 5.0,
        poll_interval: float = 0.1,
    ):
        self.store = store
        self.lock_ttl_seconds = lock_ttl_seconds
        self.lock_wait_seconds = lock_wait_seconds
        self.poll_interval = poll_interval

    @classmethod
    def from_settings(cls, store: KeyValueStore, settings: Settings | None = None) -> ReadTimeRepository:
        settings = settings or get_settings()
        return cls(
            store,
            lock_ttl_seconds=settings.finalize_lock_ttl_seconds,
            lock_wait_seconds=settings.finalize_lock_wait_seconds,
            poll_interval=settings.lock_poll_interval_seconds,
        )

    async def get(self, user_id: str, resource_id: str) -> ReadTimeState | None:
        raw = await self.store.get(read_time_key(user_id, resource_id))
        if raw is None:
            return None
        return ReadTimeState.model_validate_json(raw)

    async def save(self, user_id: str, resource_id: str, state: ReadTimeState) -> None:
        await self.store.set(read_time_key(user_id, resource_id), state.model_dump_json())

    def lock(
        self,
        user_id: str,
        resource_id: str,
        operation: str | None = None,
    ) -> AbstractAsyncContextManager[str]:
        return scoped_lock(
            self.store,
            read_time_lock_key(user_id, resource_id),
            ttl_seconds=self.lock_ttl_seconds,
            wait_seconds=self.lock_wait_seconds,
            poll_interval=self.poll_interval,
            error_cls=LockNotAcquiredError,
            operation=operation,
        )
