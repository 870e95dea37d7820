"""
Unit tests for the attempt state repository.
"""

import pytest

from xp_engine.core.errors import (
    AssessmentValidationError,
    AttemptAlreadyFinalizedError,
    NotFinalizableError,
)
from xp_engine.core.scoring import QuestionOutcome
from xp_engine.state.models import AttemptPhase


class TestAttemptLifecycle:
    @pytest.mark.asyncio
    async def test_start_attempt_increments_number(self, attempts, clock):
        first = await attempts.start_attempt("u", "quiz-1", 3)
        second = await attempts.start_attempt("u", "quiz-1", 3)
        assert first.attempt_number == 1
        assert second.attempt_number == 2
        assert second.started_at == clock()
        assert await attempts.current_attempt_number("u", "quiz-1") == 2

    @pytest.mark.asyncio
    async def test_record_answers_round_trip(self, attempts):
        await attempts.start_attempt("u", "ex-1", 3)
        await attempts.record_answer("u", "ex-1", 0, True, response={"choice": "a"})
        await attempts.skip_question("u", "ex-1", 1)
        await attempts.report_question("u", "ex-1", 2)

        state = await attempts.get("u", "ex-1")
        assert state.outcomes() == [
            QuestionOutcome.CORRECT,
            QuestionOutcome.INCORRECT,
            QuestionOutcome.REPORTED,
        ]
        assert state.questions[0].response == {"choice": "a"}
        assert state.current_question_index == 3
        assert state.phase is AttemptPhase.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_question_index_out_of_range(self, attempts):
        await attempts.start_attempt("u", "ex-1", 2)
        with pytest.raises(AssessmentValidationError):
            await attempts.record_answer("u", "ex-1", 2, True)

    @pytest.mark.asyncio
    async def test_no_attempt(self, attempts):
        with pytest.raises(NotFinalizableError):
            await attempts.record_answer("u", "missing", 0, True)

    @pytest.mark.asyncio
    async def test_finalized_attempt_is_frozen(self, attempts):
        state = await attempts.start_attempt("u", "ex-1", 2)
        await attempts.mark_finalized("u", "ex-1", state, {"xp": 10})
        with pytest.raises(AttemptAlreadyFinalizedError):
            await attempts.record_answer("u", "ex-1", 0, True)
        stored = await attempts.get("u", "ex-1")
        assert stored.phase is AttemptPhase.FINALIZED
        assert stored.final_summary == {"xp": 10}

    @pytest.mark.asyncio
    async def test_failed_then_finalized_clears_error(self, attempts):
        state = await attempts.start_attempt("u", "ex-1", 1)
        await attempts.mark_finalization_failed("u", "ex-1", state, "db down")
        assert (await attempts.get("u", "ex-1")).phase is AttemptPhase.FINALIZATION_FAILED
        await attempts.mark_finalized("u", "ex-1", state, {})
        stored = await attempts.get("u", "ex-1")
        assert stored.finalization_error is None
        assert stored.phase is AttemptPhase.FINALIZED

    @pytest.mark.asyncio
    async def test_mark_finalized_leaves_input_untouched(self, attempts):
        state = await attempts.start_attempt("u", "ex-1", 1)
        finalized = await attempts.mark_finalized("u", "ex-1", state, {"xp": 5})
        assert finalized.is_finalized is True
        assert state.is_finalized is False
        assert state.final_summary is None

    @pytest.mark.asyncio
    async def test_update_final_summary(self, attempts):
        state = await attempts.start_attempt("u", "ex-1", 1)
        finalized = await attempts.mark_finalized("u", "ex-1", state, {"xp": 5})
        await attempts.update_final_summary("u", "ex-1", finalized, {"xp": 5, "failed": ["a1"]})
        stored = await attempts.get("u", "ex-1")
        assert stored.phase is AttemptPhase.FINALIZED
        assert stored.final_summary == {"xp": 5, "failed": ["a1"]}

    @pytest.mark.asyncio
    async def test_update_final_summary_requires_finalized(self, attempts):
        state = await attempts.start_attempt("u", "ex-1", 1)
        with pytest.raises(NotFinalizableError):
            await attempts.update_final_summary("u", "ex-1", state, {})

    @pytest.mark.asyncio
    async def test_attempts_keyed_per_user_and_resource(self, attempts):
        await attempts.start_attempt("u1", "ex-1", 1)
        await attempts.start_attempt("u2", "ex-1", 1)
        await attempts.start_attempt("u1", "ex-2", 1)
        assert await attempts.current_attempt_number("u1", "ex-1") == 1
        assert await attempts.current_attempt_number("u2", "ex-1") == 1

    @pytest.mark.asyncio
    async def test_delete_current(self, attempts):
        await attempts.start_attempt("u", "ex-1", 1)
        await attempts.delete("u", "ex-1")
        assert await attempts.get("u", "ex-1") is None
        assert await attempts.current_attempt_number("u", "ex-1") is None

    @pytest.mark.asyncio
    async def test_negative_question_count(self, attempts):
        with pytest.raises(AssessmentValidationError):
            await attempts.start_attempt("u", "ex-1", -1)
