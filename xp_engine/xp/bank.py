"""
Banked XP resolver.

When a learner masters an exercise, the articles and videos they worked
through since the previous quiz are credited as banked XP:
- articles: one XP per started minute of read time, capped at expected XP
- videos: full expected XP once a perfect completion record exists

The resolver only reads state. Persisting the awards is the finalizer's job.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field

from loguru import logger

from config import Settings, get_settings
from xp_engine.core.content_types import ResourceKind
from xp_engine.ports import CourseContentPort, GradebookPort, GradebookResult, OutlineEntry
from xp_engine.state.read_time import ReadTimeRepository

BANKED_XP_REASON = "Banked XP"


@dataclass
class BankedXpResult:
    """Banked XP for one mastered exercise."""

    banked_xp: int = 0
    awarded_resource_ids: list[str] = field(default_factory=list)
    awards: dict[str, int] = field(default_factory=dict)
    lesson_ids: dict[str, str] = field(default_factory=dict)
    article_xp: int = 0
    video_xp: int = 0


def already_banked(result: GradebookResult | None) -> bool:
    """A passive resource whose gradebook result already carries banked XP."""
    if result is None:
        return False
    return result.xp > 0 or result.metadata.get("xp_reason") == BANKED_XP_REASON


class BankedXpResolver:
    """Computes banked XP for the passive span before an exercise."""

    def __init__(
        self,
        content: CourseContentPort,
        gradebook: GradebookPort,
        read_time: ReadTimeRepository,
        min_engagement_seconds: float = 20.0,
    ):
        self.content = content
        self.gradebook = gradebook
        self.read_time = read_time
        self.min_engagement_seconds = min_engagement_seconds

    @classmethod
    def from_settings(
        cls,
        content: CourseContentPort,
        gradebook: GradebookPort,
        read_time: ReadTimeRepository,
        settings: Settings | None = None,
    ) -> BankedXpResolver:
        settings = settings or get_settings()
        return cls(
            content,
            gradebook,
            read_time,
            min_engagement_seconds=settings.banking_min_engagement_seconds,
        )

    async def passive_span(self, course_id: str, resource_id: str) -> list[OutlineEntry]:
        """
        Passive resources between the previous quiz and `resource_id`.

        Entries are ordered by (lesson sort order, sort order). Without a
        previous quiz the span starts at the beginning of the unit.
        """
        outline = await self.content.get_unit_outline(course_id, resource_id)
        if outline is None:
            logger.warning("No unit outline for resource {} in course {}", resource_id, course_id)
            return []

        ordered = outline.ordered()
        index = next((i for i, entry in enumerate(ordered) if entry.resource_id == resource_id), None)
        if index is None:
            logger.warning("Resource {} not found in unit {}", resource_id, outline.unit_id)
            return []

        start = 0
        for i in range(index - 1, -1, -1):
            if ordered[i].kind is ResourceKind.QUIZ:
                start = i + 1
                break

        return [
            entry
            for entry in ordered[start:index]
            if entry.kind.is_passive and entry.expected_xp > 0
        ]

    def article_minutes(self, seconds: float) -> int:
        """Whole minutes credited for read time; nothing at or below the engagement floor."""
        if seconds <= self.min_engagement_seconds:
            return 0
        return math.ceil(seconds / 60)

    async def _award_for(self, user_id: str, entry: OutlineEntry) -> int:
        existing = await self.gradebook.get_result(user_id, entry.resource_id)
        if already_banked(existing):
            logger.debug("Resource {} already banked for {}", entry.resource_id, user_id)
            return 0

        if entry.kind is ResourceKind.VIDEO:
            if existing is not None and existing.score >= 100:
                return entry.expected_xp
            return 0

        state = await self.read_time.get(user_id, entry.resource_id)
        if state is None:
            return 0
        return min(self.article_minutes(state.cumulative_read_time_seconds), entry.expected_xp)

    async def resolve(self, user_id: str, course_id: str, exercise_resource_id: str) -> BankedXpResult:
        """
        Compute banked XP for a just-mastered exercise.

        Args:
            user_id: Learner id
            course_id: Course the exercise belongs to
            exercise_resource_id: The mastered exercise

        Returns:
            BankedXpResult with per-resource awards in course order
        """
        span = await self.passive_span(course_id, exercise_resource_id)
        if not span:
            return BankedXpResult()

        amounts = await asyncio.gather(*(self._award_for(user_id, entry) for entry in span))

        result = BankedXpResult()
        for entry, amount in zip(span, amounts):
            if amount <= 0:
                continue
            result.awards[entry.resource_id] = amount
            result.lesson_ids[entry.resource_id] = entry.lesson_id
            result.awarded_resource_ids.append(entry.resource_id)
            result.banked_xp += amount
            if entry.kind is ResourceKind.VIDEO:
                result.video_xp += amount
            else:
                result.article_xp += amount

        logger.info(
            "Banked XP for {} / {}: {} XP over {} of {} passive resources",
            user_id, exercise_resource_id, result.banked_xp,
            len(result.awarded_resource_ids), len(span),
        )
        return result
