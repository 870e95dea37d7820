"""
XP Calculator.

Pure scoring: accuracy -> multiplier -> retry decay -> rush penalty ->
round-half-up -> analytics gating by content type.

Design:
- XpRequest: validated inputs for one attempt
- XpAward: the computed award, folded into gradebook metadata
- LinearCurve / BandedCurve: accuracy to multiplier mappings
- XpCalculator: applies the rules in order
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

from loguru import logger

from config import Settings, get_settings
from xp_engine.core.content_types import ContentType, get_policy, parse_content_type
from xp_engine.core.errors import AssessmentValidationError
from xp_engine.core.mastery import MASTERY_THRESHOLD, requires_retry
from xp_engine.core.scoring import QuestionOutcome, ScoreSummary, summarize_outcomes

REASON_PERFECT_FIRST = "Perfect first attempt bonus"
REASON_STANDARD = "Accuracy-scaled XP"
REASON_RETRY = "Retry decay applied"
REASON_NO_XP = "Accuracy too low for XP"
REASON_NO_QUESTIONS = "No scorable questions"
REASON_RUSH = "Rush penalty: insincere effort detected"
REASON_RUSH_CAPPED = "Rush penalty: first attempt bonus removed"
REASON_FARMING = "XP farming prevention: user already proficient"


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# =============================================================================
# Multiplier curves
# =============================================================================


class MultiplierCurve(Protocol):
    """Maps accuracy and attempt number to an XP multiplier."""

    def multiplier(self, accuracy_percent: float, attempt_number: int) -> float:
        ...


@dataclass(frozen=True)
class LinearCurve:
    """
    Multiplier proportional to accuracy.

    A perfect first attempt earns the bonus; anything else earns
    accuracy/100. Retries get the first-attempt value times the decay.
    """

    first_attempt_bonus: float = 1.25
    retry_decay: float = 0.5

    def multiplier(self, accuracy_percent: float, attempt_number: int) -> float:
        if accuracy_percent >= 100:
            value = self.first_attempt_bonus
        else:
            value = max(0.0, accuracy_percent / 100)
        if attempt_number > 1:
            value *= self.retry_decay
        return value


@dataclass(frozen=True)
class BandedCurve:
    """
    Step function: nothing below the mastery threshold.

    First attempt: 100% -> bonus, >= threshold -> 1.0.
    Retries: 100% -> 1.0, >= threshold -> retry decay.
    """

    first_attempt_bonus: float = 1.25
    retry_decay: float = 0.5
    threshold: float = MASTERY_THRESHOLD

    def multiplier(self, accuracy_percent: float, attempt_number: int) -> float:
        if accuracy_percent < self.threshold:
            return 0.0
        if attempt_number <= 1:
            return self.first_attempt_bonus if accuracy_percent >= 100 else 1.0
        return 1.0 if accuracy_percent >= 100 else self.retry_decay


# =============================================================================
# Request / Award
# =============================================================================


@dataclass
class XpRequest:
    """Inputs for one attempt's XP calculation."""

    content_type: ContentType | str
    base_xp: int
    attempt_number: int
    outcomes: Sequence[QuestionOutcome]
    duration_seconds: float | None = None
    was_already_proficient: bool = False


@dataclass
class XpAward:
    """Computed award for one attempt."""

    final_xp: int
    multiplier: float
    penalty_applied: bool
    reason: str
    base_xp: int
    accuracy: float
    pre_penalty_xp: int
    analytics_xp: int
    requires_retry: bool
    mastered_units: int
    attempt_number: int
    correct_count: int
    scorable_count: int
    avg_seconds_per_question: float | None = None

    @property
    def penalty_xp(self) -> int:
        """XP lost to the rush penalty (0 when none applied)."""
        return self.pre_penalty_xp - self.final_xp if self.penalty_applied else 0

    def to_metadata(self) -> dict[str, Any]:
        """Gradebook metadata fields describing this award."""
        return {
            "xp": self.final_xp,
            "multiplier": self.multiplier,
            "accuracy": round(self.accuracy, 2),
            "penalty_applied": self.penalty_applied,
            "xp_reason": self.reason,
            "pre_penalty_xp": self.pre_penalty_xp,
            "requires_retry": self.requires_retry,
            "mastered_units": self.mastered_units,
            "attempt": self.attempt_number,
        }


# =============================================================================
# Calculator
# =============================================================================


class XpCalculator:
    """Computes XP awards. Stateless apart from its configuration."""

    def __init__(
        self,
        curve: MultiplierCurve | None = None,
        mastery_threshold: float = MASTERY_THRESHOLD,
        rush_min_seconds_per_question: float = 5.0,
    ):
        self.curve = curve or LinearCurve()
        self.mastery_threshold = mastery_threshold
        self.rush_min_seconds_per_question = rush_min_seconds_per_question

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> XpCalculator:
        """Build a calculator from application settings."""
        settings = settings or get_settings()
        curve: MultiplierCurve
        if settings.xp_multiplier_curve == "banded":
            curve = BandedCurve(
                first_attempt_bonus=settings.first_attempt_bonus_multiplier,
                retry_decay=settings.retry_decay_factor,
                threshold=settings.mastery_threshold,
            )
        else:
            curve = LinearCurve(
                first_attempt_bonus=settings.first_attempt_bonus_multiplier,
                retry_decay=settings.retry_decay_factor,
            )
        return cls(
            curve=curve,
            mastery_threshold=settings.mastery_threshold,
            rush_min_seconds_per_question=settings.rush_min_seconds_per_question,
        )

    def _validate(self, request: XpRequest) -> tuple[ContentType, ScoreSummary]:
        op = "calculate_xp"
        content_type = parse_content_type(request.content_type)
        if request.base_xp is None or request.base_xp < 0:
            raise AssessmentValidationError(f"base_xp must be >= 0, got {request.base_xp}", operation=op)
        if request.attempt_number is None or request.attempt_number < 1:
            raise AssessmentValidationError(
                f"attempt_number must be >= 1, got {request.attempt_number}", operation=op
            )
        if request.duration_seconds is not None and request.duration_seconds < 0:
            raise AssessmentValidationError(
                f"duration_seconds must be >= 0, got {request.duration_seconds}", operation=op
            )
        try:
            summary = summarize_outcomes(request.outcomes)
        except TypeError as e:
            raise AssessmentValidationError(str(e), operation=op) from e
        return content_type, summary

    def _is_rushed(self, summary: ScoreSummary, duration_seconds: float | None) -> tuple[bool, float | None]:
        if duration_seconds is None or summary.scorable == 0:
            return False, None
        avg = duration_seconds / summary.scorable
        return avg < self.rush_min_seconds_per_question, avg

    def calculate(self, request: XpRequest) -> XpAward:
        """
        Calculate the XP award for one attempt.

        Args:
            request: Attempt inputs

        Returns:
            XpAward with final, pre-penalty and analytics XP

        Raises:
            AssessmentValidationError: On malformed input
        """
        content_type, summary = self._validate(request)
        policy = get_policy(content_type)
        accuracy = summary.accuracy_percent
        retry = requires_retry(
            accuracy, summary.scorable, request.was_already_proficient, self.mastery_threshold
        )
        rushed, avg_spq = self._is_rushed(summary, request.duration_seconds)

        def award(final_xp: int, multiplier: float, reason: str, pre_penalty_xp: int, penalty: bool) -> XpAward:
            return XpAward(
                final_xp=final_xp,
                multiplier=multiplier,
                penalty_applied=penalty,
                reason=reason,
                base_xp=request.base_xp,
                accuracy=accuracy,
                pre_penalty_xp=pre_penalty_xp,
                analytics_xp=policy.analytics_xp(final_xp, summary, self.mastery_threshold),
                requires_retry=retry,
                mastered_units=policy.mastered_units(accuracy, self.mastery_threshold),
                attempt_number=request.attempt_number,
                correct_count=summary.correct,
                scorable_count=summary.scorable,
                avg_seconds_per_question=avg_spq,
            )

        if request.was_already_proficient:
            logger.info("XP blocked for {}: learner already proficient", content_type.value)
            return award(0, 0.0, REASON_FARMING, 0, False)

        if summary.scorable == 0:
            return award(0, 0.0, REASON_NO_QUESTIONS, 0, False)

        multiplier = self.curve.multiplier(accuracy, request.attempt_number)
        xp = round_half_up(request.base_xp * multiplier)

        if multiplier <= 0:
            reason = REASON_NO_XP
        elif request.attempt_number > 1:
            reason = REASON_RETRY
        elif summary.is_perfect:
            reason = REASON_PERFECT_FIRST
        else:
            reason = REASON_STANDARD

        if not rushed:
            return award(xp, multiplier, reason, xp, False)

        if accuracy < self.mastery_threshold:
            penalty_xp = -summary.scorable
            logger.info(
                "Rush penalty: {:.1f}s/question over {} questions, {} -> {} XP",
                avg_spq, summary.scorable, xp, penalty_xp,
            )
            return award(penalty_xp, multiplier, REASON_RUSH, xp, True)

        capped = min(xp, request.base_xp)
        if capped != xp:
            logger.info("Rush cap: {:.1f}s/question, {} -> {} XP", avg_spq, xp, capped)
            return award(capped, multiplier, REASON_RUSH_CAPPED, xp, True)
        return award(xp, multiplier, reason, xp, False)
