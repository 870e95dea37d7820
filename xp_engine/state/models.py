"""
Persisted state records.

Both records live in the shared keyed store as JSON, so they are pydantic
models rather than dataclasses.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from xp_engine.core.scoring import QuestionOutcome


class AttemptPhase(str, Enum):
    """Lifecycle phase of an attempt. Holding the attempt lock is 'finalizing'."""

    IN_PROGRESS = "in_progress"
    FINALIZED = "finalized"
    FINALIZATION_FAILED = "finalization_failed"


class QuestionState(BaseModel):
    """Outcome and raw response for one question."""

    outcome: QuestionOutcome
    response: Any = None


class AttemptState(BaseModel):
    """One user's attempt at one assessment."""

    attempt_number: int = Field(ge=1)
    started_at: datetime
    total_questions: int = Field(default=0, ge=0)
    current_question_index: int = 0
    questions: dict[int, QuestionState] = Field(default_factory=dict)
    is_finalized: bool = False
    finalization_error: str | None = None
    final_summary: dict[str, Any] | None = None

    @property
    def phase(self) -> AttemptPhase:
        if self.is_finalized:
            return AttemptPhase.FINALIZED
        if self.finalization_error:
            return AttemptPhase.FINALIZATION_FAILED
        return AttemptPhase.IN_PROGRESS

    def outcomes(self) -> list[QuestionOutcome]:
        """Question outcomes in question order."""
        return [self.questions[index].outcome for index in sorted(self.questions)]


class ReadTimeState(BaseModel):
    """Accrued engagement on one article or video."""

    cumulative_read_time_seconds: float = Field(default=0.0, ge=0)
    reported_read_time_seconds: float = Field(default=0.0, ge=0)
    canonical_duration_seconds: float | None = None
    last_server_sync_at: datetime | None = None
    finalized_at: datetime | None = None

    @model_validator(mode="after")
    def _reported_within_cumulative(self) -> ReadTimeState:
        if self.reported_read_time_seconds > self.cumulative_read_time_seconds:
            raise ValueError("reported_read_time_seconds cannot exceed cumulative_read_time_seconds")
        return self

    @property
    def is_finalized(self) -> bool:
        return self.finalized_at is not None

    @property
    def unreported_seconds(self) -> float:
        return self.cumulative_read_time_seconds - self.reported_read_time_seconds
