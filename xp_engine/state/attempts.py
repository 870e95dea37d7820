"""
Attempt state repository.

Keys:
- assessment:current:{user}:{resource}          -> current attempt number
- assessment:state:{user}:{resource}:{attempt}  -> AttemptState JSON
- assessment:lock:{user}:{resource}             -> per-assessment lock
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Any

from loguru import logger

from config import Settings, get_settings
from xp_engine.core.clock import Clock, utc_now
from xp_engine.core.errors import (
    AssessmentValidationError,
    AttemptAlreadyFinalizedError,
    ConcurrentFinalizationInProgressError,
    LockNotAcquiredError,
    NotFinalizableError,
)
from xp_engine.core.scoring import QuestionOutcome
from xp_engine.state.models import AttemptState, QuestionState
from xp_engine.state.store import KeyValueStore, scoped_lock

DEFAULT_ATTEMPT_TTL_SECONDS = 7 * 24 * 60 * 60


def current_key(user_id: str, resource_id: str) -> str:
    return f"assessment:current:{user_id}:{resource_id}"


def state_key(user_id: str, resource_id: str, attempt_number: int) -> str:
    return f"assessment:state:{user_id}:{resource_id}:{attempt_number}"


def lock_key(user_id: str, resource_id: str) -> str:
    return f"assessment:lock:{user_id}:{resource_id}"


class AttemptStateRepository:
    """Reads and mutates AttemptState records in a KeyValueStore."""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock = utc_now,
        ttl_seconds: int = DEFAULT_ATTEMPT_TTL_SECONDS,
        lock_ttl_seconds: int = 120,
        lock_wait_seconds: float = 5.0,
        poll_interval: float = 0.1,
    ):
        self.store = store
        self.clock = clock
        self.ttl_seconds = ttl_seconds
        self.lock_ttl_seconds = lock_ttl_seconds
        self.lock_wait_seconds = lock_wait_seconds
        self.poll_interval = poll_interval

    @classmethod
    def from_settings(
        cls,
        store: KeyValueStore,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> AttemptStateRepository:
        settings = settings or get_settings()
        return cls(
            store,
            clock=clock,
            ttl_seconds=settings.attempt_state_ttl_seconds,
            lock_ttl_seconds=settings.finalize_lock_ttl_seconds,
            lock_wait_seconds=settings.finalize_lock_wait_seconds,
            poll_interval=settings.lock_poll_interval_seconds,
        )

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def lock(
        self,
        user_id: str,
        resource_id: str,
        error_cls: type[LockNotAcquiredError] = LockNotAcquiredError,
        operation: str | None = None,
    ) -> AbstractAsyncContextManager[str]:
        return scoped_lock(
            self.store,
            lock_key(user_id, resource_id),
            ttl_seconds=self.lock_ttl_seconds,
            wait_seconds=self.lock_wait_seconds,
            poll_interval=self.poll_interval,
            error_cls=error_cls,
            operation=operation,
        )

    def finalization_lock(self, user_id: str, resource_id: str) -> AbstractAsyncContextManager[str]:
        """Lock held while an attempt is being finalized."""
        return self.lock(
            user_id,
            resource_id,
            error_cls=ConcurrentFinalizationInProgressError,
            operation="finalize_assessment",
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def current_attempt_number(self, user_id: str, resource_id: str) -> int | None:
        raw = await self.store.get(current_key(user_id, resource_id))
        return int(raw) if raw is not None else None

    async def get(
        self,
        user_id: str,
        resource_id: str,
        attempt_number: int | None = None,
    ) -> AttemptState | None:
        """Load an attempt; the current one when no number is given."""
        if attempt_number is None:
            attempt_number = await self.current_attempt_number(user_id, resource_id)
            if attempt_number is None:
                return None
        raw = await self.store.get(state_key(user_id, resource_id, attempt_number))
        if raw is None:
            return None
        return AttemptState.model_validate_json(raw)

    async def save(self, user_id: str, resource_id: str, state: AttemptState) -> None:
        await self.store.set(
            state_key(user_id, resource_id, state.attempt_number),
            state.model_dump_json(),
            ttl_seconds=self.ttl_seconds,
        )

    # ------------------------------------------------------------------
    # Attempt lifecycle
    # ------------------------------------------------------------------

    async def start_attempt(self, user_id: str, resource_id: str, total_questions: int) -> AttemptState:
        """Begin a new attempt, superseding the current one."""
        if total_questions < 0:
            raise AssessmentValidationError(
                f"total_questions must be >= 0, got {total_questions}", operation="start_attempt"
            )
        async with self.lock(user_id, resource_id, operation="start_attempt"):
            previous = await self.current_attempt_number(user_id, resource_id)
            state = AttemptState(
                attempt_number=(previous or 0) + 1,
                started_at=self.clock(),
                total_questions=total_questions,
            )
            await self.save(user_id, resource_id, state)
            await self.store.set(
                current_key(user_id, resource_id),
                str(state.attempt_number),
                ttl_seconds=self.ttl_seconds,
            )
        logger.info(
            "Started attempt {} for user={} resource={} ({} questions)",
            state.attempt_number, user_id, resource_id, total_questions,
        )
        return state

    async def _record(
        self,
        user_id: str,
        resource_id: str,
        question_index: int,
        outcome: QuestionOutcome,
        response: Any,
        operation: str,
    ) -> AttemptState:
        async with self.lock(user_id, resource_id, operation=operation):
            state = await self.get(user_id, resource_id)
            if state is None:
                raise NotFinalizableError(
                    f"no attempt in progress for user={user_id} resource={resource_id}",
                    operation=operation,
                )
            if state.is_finalized:
                raise AttemptAlreadyFinalizedError(
                    f"attempt {state.attempt_number} is finalized", operation=operation
                )
            if not 0 <= question_index < state.total_questions:
                raise AssessmentValidationError(
                    f"question index {question_index} outside 0..{state.total_questions - 1}",
                    operation=operation,
                )
            state.questions[question_index] = QuestionState(outcome=outcome, response=response)
            state.current_question_index = question_index + 1
            await self.save(user_id, resource_id, state)
        return state

    async def record_answer(
        self,
        user_id: str,
        resource_id: str,
        question_index: int,
        is_correct: bool,
        response: Any = None,
    ) -> AttemptState:
        outcome = QuestionOutcome.CORRECT if is_correct else QuestionOutcome.INCORRECT
        return await self._record(user_id, resource_id, question_index, outcome, response, "record_answer")

    async def skip_question(self, user_id: str, resource_id: str, question_index: int) -> AttemptState:
        """Skipped questions count as incorrect."""
        return await self._record(
            user_id, resource_id, question_index, QuestionOutcome.INCORRECT, None, "skip_question"
        )

    async def report_question(
        self,
        user_id: str,
        resource_id: str,
        question_index: int,
        response: Any = None,
    ) -> AttemptState:
        """Flag a question as broken; it is excluded from scoring."""
        return await self._record(
            user_id, resource_id, question_index, QuestionOutcome.REPORTED, response, "report_question"
        )

    # ------------------------------------------------------------------
    # Finalization bookkeeping (caller holds the finalization lock)
    # ------------------------------------------------------------------

    async def mark_finalized(
        self,
        user_id: str,
        resource_id: str,
        state: AttemptState,
        summary: dict[str, Any],
    ) -> AttemptState:
        """Persist the committed marker on a copy of `state`; `state` itself is unchanged."""
        finalized = state.model_copy(
            update={"is_finalized": True, "finalization_error": None, "final_summary": summary}
        )
        await self.save(user_id, resource_id, finalized)
        return finalized

    async def update_final_summary(
        self,
        user_id: str,
        resource_id: str,
        state: AttemptState,
        summary: dict[str, Any],
    ) -> AttemptState:
        """Replace the summary of an already finalized attempt."""
        if not state.is_finalized:
            raise NotFinalizableError(
                f"attempt {state.attempt_number} is not finalized", operation="update_final_summary"
            )
        updated = state.model_copy(update={"final_summary": summary})
        await self.save(user_id, resource_id, updated)
        return updated

    async def mark_finalization_failed(
        self,
        user_id: str,
        resource_id: str,
        state: AttemptState,
        error: str,
    ) -> AttemptState:
        failed = state.model_copy(update={"finalization_error": error})
        await self.save(user_id, resource_id, failed)
        logger.warning(
            "Attempt {} for user={} resource={} marked finalization-failed: {}",
            state.attempt_number, user_id, resource_id, error,
        )
        return failed

    async def delete(self, user_id: str, resource_id: str, attempt_number: int | None = None) -> None:
        """Remove an attempt; the current pointer too when deleting the current one."""
        current = await self.current_attempt_number(user_id, resource_id)
        attempt_number = attempt_number or current
        if attempt_number is None:
            return
        await self.store.delete(state_key(user_id, resource_id, attempt_number))
        if attempt_number == current:
            await self.store.delete(current_key(user_id, resource_id))
