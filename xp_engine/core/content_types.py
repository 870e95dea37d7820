"""
Content types and their scoring policies.

Each assessment type (exercise, quiz, unit test, course challenge) has a
policy registered here with:
- analytics_xp(): XP visible to analytics for a computed award
- mastered_units(): units credited toward course mastery
- banks_xp: whether passive-content XP is banked on mastery
"""

from __future__ import annotations

from enum import Enum

from xp_engine.core.errors import AssessmentValidationError
from xp_engine.core.mastery import MASTERY_THRESHOLD
from xp_engine.core.scoring import ScoreSummary

TEST_MASTERY_THRESHOLD = 90


class ContentType(str, Enum):
    """Assessment types that can be finalized."""

    EXERCISE = "Exercise"
    QUIZ = "Quiz"
    TEST = "Test"
    COURSE_CHALLENGE = "CourseChallenge"


class ResourceKind(str, Enum):
    """Kinds of entries in a unit outline."""

    ARTICLE = "article"
    VIDEO = "video"
    EXERCISE = "exercise"
    QUIZ = "quiz"
    TEST = "test"
    COURSE_CHALLENGE = "course_challenge"

    @property
    def is_passive(self) -> bool:
        return self in (ResourceKind.ARTICLE, ResourceKind.VIDEO)


class ContentPolicy:
    """Base policy: XP is reported as computed."""

    content_type: ContentType
    banks_xp = False
    lesson_type = "assessment"

    def analytics_xp(
        self,
        final_xp: int,
        summary: ScoreSummary,
        threshold: float = MASTERY_THRESHOLD,
    ) -> int:
        return final_xp

    def mastered_units(self, accuracy_percent: float, threshold: float = MASTERY_THRESHOLD) -> int:
        return 1 if accuracy_percent >= threshold else 0


# Policy registry - populated by @register decorator
POLICIES: dict[ContentType, ContentPolicy] = {}


def register(content_type: ContentType):
    """Decorator to register a content policy."""
    def decorator(cls):
        cls.content_type = content_type
        POLICIES[content_type] = cls()
        return cls
    return decorator


@register(ContentType.EXERCISE)
class ExercisePolicy(ContentPolicy):
    """
    Exercises report their own XP only.

    Banked XP is sent as separate gradebook entries, so adding it here
    would be counted twice downstream.
    """

    banks_xp = True
    lesson_type = "exercise"


class GatedAssessmentPolicy(ContentPolicy):
    """Analytics only sees XP when the learner would not have to retry."""

    def analytics_xp(
        self,
        final_xp: int,
        summary: ScoreSummary,
        threshold: float = MASTERY_THRESHOLD,
    ) -> int:
        if summary.scorable == 0 or summary.accuracy_percent < threshold:
            return 0
        return final_xp


@register(ContentType.QUIZ)
class QuizPolicy(GatedAssessmentPolicy):
    lesson_type = "quiz"


@register(ContentType.TEST)
class UnitTestPolicy(GatedAssessmentPolicy):
    """Unit tests credit a mastered unit only at the stricter test threshold."""

    lesson_type = "unittest"

    def mastered_units(self, accuracy_percent: float, threshold: float = MASTERY_THRESHOLD) -> int:
        return 1 if accuracy_percent >= TEST_MASTERY_THRESHOLD else 0


@register(ContentType.COURSE_CHALLENGE)
class CourseChallengePolicy(GatedAssessmentPolicy):
    lesson_type = "coursechallenge"

    def mastered_units(self, accuracy_percent: float, threshold: float = MASTERY_THRESHOLD) -> int:
        return 0


def parse_content_type(value: str | ContentType) -> ContentType:
    """Accept enum members, values ("Quiz") or names ("course_challenge")."""
    if isinstance(value, ContentType):
        return value
    try:
        return ContentType(value)
    except ValueError:
        pass
    try:
        return ContentType[str(value).upper()]
    except KeyError:
        raise AssessmentValidationError(
            f"unknown content type {value!r}",
            operation="content_type",
        ) from None


def get_policy(content_type: str | ContentType) -> ContentPolicy:
    """Get the policy for a content type."""
    return POLICIES[parse_content_type(content_type)]
