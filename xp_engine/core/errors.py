"""
Error taxonomy for the XP engine.

Every error carries the operation that raised it so a caller several
layers up can tell a calculator failure from a gradebook failure.
"""

from __future__ import annotations


class XpEngineError(Exception):
    """Base class for all engine failures."""

    def __init__(self, message: str, *, operation: str | None = None):
        self.operation = operation
        if operation:
            message = f"{operation}: {message}"
        super().__init__(message)


class AssessmentValidationError(XpEngineError, ValueError):
    """Malformed input rejected before any computation."""
    pass


class NotFinalizableError(XpEngineError):
    """The attempt is missing or already finalized. Do not retry blindly."""
    pass


class AttemptAlreadyFinalizedError(NotFinalizableError):
    """The attempt was finalized earlier; its state is frozen."""
    pass


class LockNotAcquiredError(XpEngineError):
    """A per-key lock could not be taken within the bounded wait."""

    def __init__(self, key: str, waited_seconds: float, *, operation: str | None = None):
        self.key = key
        self.waited_seconds = waited_seconds
        super().__init__(
            f"lock {key!r} still held after {waited_seconds:.1f}s",
            operation=operation,
        )


class ConcurrentFinalizationInProgressError(LockNotAcquiredError):
    """Another finalization holds the attempt lock. Retry after a delay."""
    pass


class FinalizationError(XpEngineError):
    """A component failed before the gradebook write; nothing was committed."""
    pass


class GradebookWriteError(FinalizationError):
    """The authoritative gradebook write failed; no events were dispatched."""
    pass


class AnalyticsDispatchError(XpEngineError):
    """An analytics event could not be delivered."""
    pass


class IdentityMismatchError(XpEngineError, PermissionError):
    """The authenticated caller does not own the session being mutated."""

    def __init__(self, caller_id: str | None, user_id: str, *, operation: str | None = None):
        self.caller_id = caller_id
        self.user_id = user_id
        super().__init__(
            f"caller {caller_id!r} is not authorized to act for user {user_id!r}",
            operation=operation,
        )
