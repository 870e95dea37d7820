"""
Mastery/retry policy.

A learner must retry an assessment unless they demonstrated mastery on
this attempt or had already demonstrated it on an earlier one.
"""

from __future__ import annotations

MASTERY_THRESHOLD = 80


def requires_retry(
    accuracy_percent: float,
    total_scorable_questions: int,
    was_already_proficient: bool,
    threshold: float = MASTERY_THRESHOLD,
) -> bool:
    """
    Decide whether the learner has to retry.

    Args:
        accuracy_percent: Accuracy on this attempt, 0-100
        total_scorable_questions: Questions that were neither reported nor dropped
        was_already_proficient: Learner cleared the threshold on an earlier attempt
        threshold: Mastery threshold percent

    Returns:
        True when a retry is required
    """
    if total_scorable_questions <= 0:
        # Nothing answered, so mastery was not demonstrated.
        return True
    if accuracy_percent >= threshold:
        return False
    if was_already_proficient:
        return False
    return True


def is_mastered(accuracy_percent: float, threshold: float = MASTERY_THRESHOLD) -> bool:
    """Accuracy alone clears the threshold."""
    return accuracy_percent >= threshold
