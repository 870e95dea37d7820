"""
xp-engine: assessment finalization and XP award engine.

Turns a completed practice session into a persisted, analytics-correct,
idempotent outcome.
"""

__version__ = "1.0.0"
