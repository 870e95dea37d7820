"""
Read-time accrual for articles and videos.

Heartbeat protocol:
- accumulate(): add a client-reported delta, clamped against server time
- finalize_partial(): report the not-yet-reported slice to analytics
- finalize(): report the remaining slice and close the resource for good

Every operation runs under the per-resource lock, so a late heartbeat can
never reopen a resource that finalize() has closed.
"""

from __future__ import annotations

import math

from loguru import logger

from config import Settings, get_settings
from xp_engine.core.clock import Clock, utc_now
from xp_engine.core.errors import (
    AnalyticsDispatchError,
    AssessmentValidationError,
    IdentityMismatchError,
)
from xp_engine.ports import ActivityContext, AnalyticsPort, IdentityPort, TimeSpentEvent
from xp_engine.state.models import ReadTimeState
from xp_engine.state.read_time import ReadTimeRepository
from xp_engine.state.store import KeyValueStore


class ReadTimeAccrualService:
    """Heartbeat accumulation and time-spent reporting for passive content."""

    def __init__(
        self,
        repository: ReadTimeRepository,
        analytics: AnalyticsPort,
        identity: IdentityPort,
        clock: Clock = utc_now,
        cadence_seconds: float = 5.0,
        max_growth_factor: float = 1.5,
    ):
        self.repository = repository
        self.analytics = analytics
        self.identity = identity
        self.clock = clock
        self.cadence_seconds = cadence_seconds
        self.max_growth_factor = max_growth_factor

    @classmethod
    def from_settings(
        cls,
        store: KeyValueStore,
        analytics: AnalyticsPort,
        identity: IdentityPort,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> ReadTimeAccrualService:
        settings = settings or get_settings()
        return cls(
            ReadTimeRepository.from_settings(store, settings),
            analytics,
            identity,
            clock=clock,
            cadence_seconds=settings.read_time_accumulation_cadence_seconds,
            max_growth_factor=settings.read_time_max_growth_factor,
        )

    async def _authorize(self, user_id: str, operation: str) -> None:
        caller_id = await self.identity.current_user_id()
        if caller_id != user_id:
            logger.bind(security=True).warning(
                "SECURITY identity mismatch on {}: caller={} user={}",
                operation, caller_id, user_id,
            )
            raise IdentityMismatchError(caller_id, user_id, operation=operation)

    def _clamp(self, state: ReadTimeState, delta_seconds: float) -> float:
        """Bound the delta by server time elapsed since the last sync."""
        if state.last_server_sync_at is None:
            return delta_seconds
        elapsed = max(0.0, (self.clock() - state.last_server_sync_at).total_seconds())
        allowed = max(elapsed * self.max_growth_factor, self.cadence_seconds / 2)
        if delta_seconds > allowed:
            logger.warning(
                "Read-time delta clamped: reported={:.1f}s elapsed={:.1f}s allowed={:.1f}s",
                delta_seconds, elapsed, allowed,
            )
            return allowed
        return delta_seconds

    async def accumulate(
        self,
        user_id: str,
        resource_id: str,
        delta_seconds: float,
        canonical_duration_seconds: float | None = None,
    ) -> ReadTimeState | None:
        """
        Add a heartbeat delta to the resource's cumulative read time.

        Args:
            user_id: Learner the session belongs to
            resource_id: Article or video id
            delta_seconds: Client-reported engagement since its last heartbeat
            canonical_duration_seconds: Optional authoritative cap (e.g. video length)

        Returns:
            Updated state, or the unchanged state when the delta was dropped

        Raises:
            IdentityMismatchError: Caller is not `user_id`
            AssessmentValidationError: Negative or non-finite delta
        """
        op = "accumulate_read_time"
        await self._authorize(user_id, op)
        if not math.isfinite(delta_seconds) or delta_seconds < 0:
            raise AssessmentValidationError(f"invalid delta {delta_seconds!r}", operation=op)

        async with self.repository.lock(user_id, resource_id, operation=op):
            state = await self.repository.get(user_id, resource_id) or ReadTimeState()
            if state.is_finalized:
                logger.debug("Resource {} already finalized for {}, heartbeat dropped", resource_id, user_id)
                return state
            if delta_seconds == 0:
                return state

            if canonical_duration_seconds is not None:
                state.canonical_duration_seconds = canonical_duration_seconds

            effective = self._clamp(state, delta_seconds)
            cumulative = state.cumulative_read_time_seconds + effective
            if state.canonical_duration_seconds is not None:
                cumulative = max(
                    state.cumulative_read_time_seconds,
                    min(cumulative, state.canonical_duration_seconds),
                )

            state.cumulative_read_time_seconds = cumulative
            state.last_server_sync_at = self.clock()
            await self.repository.save(user_id, resource_id, state)

        logger.debug(
            "Read-time accumulate {}: +{:.1f}s -> {:.1f}s",
            resource_id, effective, state.cumulative_read_time_seconds,
        )
        return state

    async def _report(
        self,
        user_id: str,
        resource_id: str,
        context: ActivityContext | None,
        close: bool,
        operation: str,
    ) -> int:
        await self._authorize(user_id, operation)
        async with self.repository.lock(user_id, resource_id, operation=operation):
            state = await self.repository.get(user_id, resource_id)
            if state is None:
                logger.debug("{}: no read-time state for {} / {}", operation, user_id, resource_id)
                return 0
            if state.is_finalized:
                logger.debug("{}: {} already finalized", operation, resource_id)
                return 0

            seconds = math.floor(state.unreported_seconds)
            if seconds < 1 and not close:
                return 0

            if seconds >= 1:
                event = TimeSpentEvent(
                    context=context or ActivityContext(user_id=user_id, resource_id=resource_id),
                    active_seconds=seconds,
                )
                try:
                    await self.analytics.send_time_spent_event(event)
                except Exception as e:
                    logger.error("{}: time-spent event failed for {}: {}", operation, resource_id, e)
                    raise AnalyticsDispatchError(
                        f"time-spent event for {resource_id} failed", operation=operation
                    ) from e
                logger.info("{}: reported {}s for {} / {}", operation, seconds, user_id, resource_id)

            state.reported_read_time_seconds = state.cumulative_read_time_seconds
            if close:
                state.finalized_at = self.clock()
            await self.repository.save(user_id, resource_id, state)
            return max(seconds, 0)

    async def finalize_partial(
        self,
        user_id: str,
        resource_id: str,
        context: ActivityContext | None = None,
    ) -> int:
        """Report the unreported slice without closing the resource. Returns seconds sent."""
        return await self._report(user_id, resource_id, context, close=False, operation="finalize_read_time_partial")

    async def finalize(
        self,
        user_id: str,
        resource_id: str,
        context: ActivityContext | None = None,
    ) -> int:
        """
        Report the remaining slice and close the resource.

        Duplicate or concurrent calls after the first are no-ops. If the
        analytics send fails, nothing is changed and the error propagates.
        """
        return await self._report(user_id, resource_id, context, close=True, operation="finalize_read_time")

    async def get_state(self, user_id: str, resource_id: str) -> ReadTimeState | None:
        return await self.repository.get(user_id, resource_id)
