"""
Narrow contracts for the engine's external collaborators.

The engine never talks to a concrete gradebook, analytics collector,
identity provider or course catalogue directly; it is handed objects
implementing these protocols. Shipped adapters live in
xp_engine.integrations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import uuid4

from xp_engine.core.clock import utc_now
from xp_engine.core.content_types import ResourceKind


def make_result_id(user_id: str, resource_id: str, attempt_number: int | None = None) -> str:
    """
    Natural key of a gradebook result.

    Assessment attempts get one result each; passive resources share a
    single result per user.
    """
    if attempt_number is None:
        return f"xp:{user_id}:{resource_id}"
    return f"xp:{user_id}:{resource_id}:attempt:{attempt_number}"


# =============================================================================
# Gradebook
# =============================================================================


@dataclass
class GradebookResult:
    """A persisted gradebook result."""

    result_id: str
    user_id: str
    resource_id: str
    course_id: str
    score: float
    correct_count: int
    total_count: int
    metadata: dict[str, Any] = field(default_factory=dict)
    attempt_number: int | None = None
    recorded_at: datetime | None = None

    @property
    def xp(self) -> int:
        return int(self.metadata.get("xp") or 0)


class GradebookPort(Protocol):
    """Authoritative result store. Fails loudly; idempotent per result id."""

    async def save_result(
        self,
        resource_id: str,
        score: float,
        correct_count: int,
        total_count: int,
        user_id: str,
        course_id: str,
        metadata: dict[str, Any],
        *,
        attempt_number: int | None = None,
    ) -> str:
        ...

    async def get_result(
        self,
        user_id: str,
        resource_id: str,
        attempt_number: int | None = None,
    ) -> GradebookResult | None:
        ...

    async def get_all_results(self, user_id: str, course_id: str | None = None) -> list[GradebookResult]:
        ...


# =============================================================================
# Analytics
# =============================================================================


@dataclass
class ActivityContext:
    """Who did what, where."""

    user_id: str
    resource_id: str
    course_id: str | None = None
    title: str | None = None
    path: str | None = None
    activity_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "resource_id": self.resource_id,
            "course_id": self.course_id,
            "title": self.title,
            "path": self.path,
            "activity_type": self.activity_type,
        }


@dataclass
class ActivityCompletedEvent:
    """Completion of an assessment, carrying analytics-visible XP only."""

    context: ActivityContext
    xp_earned: int
    total_questions: int
    correct_questions: int
    mastered_units: int = 0
    attempt_number: int = 1
    event_id: str = field(default_factory=lambda: uuid4().hex)
    occurred_at: datetime = field(default_factory=utc_now)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.event_id,
            "type": "ActivityCompleted",
            "event_time": self.occurred_at.isoformat(),
            "context": self.context.to_dict(),
            "generated": {
                "xp_earned": self.xp_earned,
                "total_questions": self.total_questions,
                "correct_questions": self.correct_questions,
                "mastered_units": self.mastered_units,
                "attempt": self.attempt_number,
            },
        }


@dataclass
class TimeSpentEvent:
    """Active engagement time in whole seconds."""

    context: ActivityContext
    active_seconds: int
    event_id: str = field(default_factory=lambda: uuid4().hex)
    occurred_at: datetime = field(default_factory=utc_now)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.event_id,
            "type": "TimeSpent",
            "event_time": self.occurred_at.isoformat(),
            "context": self.context.to_dict(),
            "generated": {"active_seconds": self.active_seconds},
        }


class AnalyticsPort(Protocol):
    async def send_activity_completed_event(self, event: ActivityCompletedEvent) -> None:
        ...

    async def send_time_spent_event(self, event: TimeSpentEvent) -> None:
        ...


# =============================================================================
# Identity and post-commit hooks
# =============================================================================


class IdentityPort(Protocol):
    async def current_user_id(self) -> str | None:
        """Stable id of the authenticated caller, None when anonymous."""
        ...


class StreakPort(Protocol):
    async def update(self, user_id: str, xp_earned: int) -> None:
        ...


class ProficiencyPort(Protocol):
    async def check_existing_proficiency(self, user_id: str, resource_id: str) -> bool:
        ...

    async def update_from_assessment(
        self,
        user_id: str,
        resource_id: str,
        course_id: str,
        accuracy_percent: float,
        mastered_units: int,
    ) -> None:
        ...


class ProgressCachePort(Protocol):
    async def invalidate(self, user_id: str, course_id: str) -> None:
        ...


# =============================================================================
# Course content
# =============================================================================


@dataclass(frozen=True)
class OutlineEntry:
    """One resource in a unit outline."""

    resource_id: str
    kind: ResourceKind
    lesson_id: str
    lesson_sort_order: int
    sort_order: int
    expected_xp: int = 0
    title: str | None = None

    @property
    def position(self) -> tuple[int, int]:
        return (self.lesson_sort_order, self.sort_order)


@dataclass
class UnitOutline:
    """Ordered resources of the unit containing an assessment."""

    unit_id: str
    entries: list[OutlineEntry] = field(default_factory=list)

    def ordered(self) -> list[OutlineEntry]:
        return sorted(self.entries, key=lambda entry: entry.position)


class CourseContentPort(Protocol):
    async def get_unit_outline(self, course_id: str, resource_id: str) -> UnitOutline | None:
        """Outline of the unit containing `resource_id`, None when unknown."""
        ...
