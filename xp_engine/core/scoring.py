"""Question outcomes and the accuracy summary derived from them."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum


class QuestionOutcome(str, Enum):
    """
    Outcome of a single question.

    REPORTED means the learner flagged the question as broken; it is
    neither correct nor incorrect and does not count toward accuracy.
    """

    CORRECT = "correct"
    INCORRECT = "incorrect"
    REPORTED = "reported"


@dataclass(frozen=True)
class ScoreSummary:
    """Counts and accuracy for one attempt."""

    correct: int
    scorable: int
    reported: int

    @property
    def accuracy_percent(self) -> float:
        """Accuracy 0-100. Zero when nothing was scorable."""
        if self.scorable == 0:
            return 0.0
        return self.correct / self.scorable * 100

    @property
    def incorrect(self) -> int:
        return self.scorable - self.correct

    @property
    def is_perfect(self) -> bool:
        return self.scorable > 0 and self.correct == self.scorable


def summarize_outcomes(outcomes: Iterable[QuestionOutcome]) -> ScoreSummary:
    """Fold question outcomes into counts, skipping reported questions."""
    correct = scorable = reported = 0
    for outcome in outcomes:
        if not isinstance(outcome, QuestionOutcome):
            raise TypeError(f"expected QuestionOutcome, got {outcome!r}")
        if outcome is QuestionOutcome.REPORTED:
            reported += 1
            continue
        scorable += 1
        if outcome is QuestionOutcome.CORRECT:
            correct += 1
    return ScoreSummary(correct=correct, scorable=scorable, reported=reported)
