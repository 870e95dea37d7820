"""Inputs and outputs of assessment finalization."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from xp_engine.core.content_types import ContentType


@dataclass
class FinalizationOptions:
    """Identifies the attempt being finalized and its course context."""

    user_id: str
    resource_id: str
    course_id: str
    content_type: ContentType | str
    expected_xp: int
    unit_id: str | None = None
    lesson_id: str | None = None
    assessment_title: str | None = None
    assessment_path: str | None = None


@dataclass
class XpPenaltyInfo:
    """Explanation of a rush penalty for display to the learner."""

    penalty_xp: int
    pre_penalty_xp: int
    final_xp: int
    reason: str
    avg_seconds_per_question: float | None = None


@dataclass
class FinalizationResult:
    """
    Outcome of one successful finalization.

    assessment_xp is the attempt's own XP; banked_xp is reported
    separately, and total_xp is their sum as credited to the learner.
    analytics_xp is the content-type-gated value sent to analytics.
    banked_article_xp and banked_video_xp split banked_xp by resource kind.
    """

    result_id: str
    attempt_number: int
    content_type: ContentType
    score: float
    correct_count: int
    total_questions: int
    assessment_xp: int
    banked_xp: int
    banked_article_xp: int
    banked_video_xp: int
    total_xp: int
    analytics_xp: int
    multiplier: float
    requires_retry: bool
    mastered_units: int
    duration_seconds: int
    reason: str
    penalty: XpPenaltyInfo | None = None
    awarded_resource_ids: list[str] = field(default_factory=list)
    banked_awards: dict[str, int] = field(default_factory=dict)
    failed_banked_resource_ids: list[str] = field(default_factory=list)

    def to_summary(self) -> dict[str, Any]:
        """JSON-safe summary stored on the finalized attempt."""
        summary = asdict(self)
        summary["content_type"] = self.content_type.value
        return summary
