"""
Unit tests for content-type policies and question scoring.
"""

import pytest

from xp_engine.core.content_types import (
    POLICIES,
    ContentType,
    ResourceKind,
    get_policy,
    parse_content_type,
)
from xp_engine.core.errors import AssessmentValidationError
from xp_engine.core.scoring import QuestionOutcome, summarize_outcomes

C, I, R = QuestionOutcome.CORRECT, QuestionOutcome.INCORRECT, QuestionOutcome.REPORTED


class TestScoring:
    """Reported questions are neither correct nor incorrect."""

    def test_reported_questions_excluded(self):
        summary = summarize_outcomes([C, C, R, I])
        assert summary.correct == 2
        assert summary.scorable == 3
        assert summary.reported == 1
        assert summary.accuracy_percent == pytest.approx(66.666, rel=1e-3)

    def test_all_reported_has_zero_accuracy(self):
        summary = summarize_outcomes([R, R])
        assert summary.scorable == 0
        assert summary.accuracy_percent == 0.0
        assert not summary.is_perfect

    def test_rejects_non_outcomes(self):
        with pytest.raises(TypeError):
            summarize_outcomes([True, False])


class TestRegistry:
    def test_every_content_type_has_a_policy(self):
        assert set(POLICIES) == set(ContentType)

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Exercise", ContentType.EXERCISE),
            ("CourseChallenge", ContentType.COURSE_CHALLENGE),
            ("course_challenge", ContentType.COURSE_CHALLENGE),
            (ContentType.TEST, ContentType.TEST),
        ],
    )
    def test_parse(self, raw, expected):
        assert parse_content_type(raw) is expected

    def test_unknown_type_is_validation_error(self):
        with pytest.raises(AssessmentValidationError):
            get_policy("Article")

    def test_passive_kinds(self):
        assert ResourceKind.ARTICLE.is_passive
        assert ResourceKind.VIDEO.is_passive
        assert not ResourceKind.QUIZ.is_passive


class TestAnalyticsGating:
    """Only exercises report XP below the mastery threshold."""

    def test_exercise_reports_computed_xp(self):
        summary = summarize_outcomes([C, I, I, I])
        assert get_policy(ContentType.EXERCISE).analytics_xp(25, summary) == 25

    @pytest.mark.parametrize("content_type", [ContentType.QUIZ, ContentType.TEST, ContentType.COURSE_CHALLENGE])
    def test_gated_below_threshold(self, content_type):
        summary = summarize_outcomes([C, I, I])
        assert get_policy(content_type).analytics_xp(40, summary) == 0

    @pytest.mark.parametrize("content_type", [ContentType.QUIZ, ContentType.TEST, ContentType.COURSE_CHALLENGE])
    def test_passes_at_threshold(self, content_type):
        summary = summarize_outcomes([C, C, C, C, I])
        assert get_policy(content_type).analytics_xp(80, summary) == 80

    def test_gated_with_no_scorable_questions(self):
        summary = summarize_outcomes([R])
        assert get_policy(ContentType.QUIZ).analytics_xp(10, summary) == 0


class TestMasteredUnits:
    def test_exercise_and_quiz_use_mastery_threshold(self):
        assert get_policy(ContentType.EXERCISE).mastered_units(80) == 1
        assert get_policy(ContentType.QUIZ).mastered_units(79) == 0

    def test_unit_test_requires_ninety(self):
        policy = get_policy(ContentType.TEST)
        assert policy.mastered_units(89) == 0
        assert policy.mastered_units(90) == 1

    def test_course_challenge_never_credits_units(self):
        assert get_policy(ContentType.COURSE_CHALLENGE).mastered_units(100) == 0

    def test_only_exercises_bank_xp(self):
        assert [ct for ct, p in POLICIES.items() if p.banks_xp] == [ContentType.EXERCISE]
