"""Error taxonomy shared by every reminder engine module."""

from __future__ import annotations


class ReminderError(Exception):
    """Base class for all reminder engine errors."""

    retryable = False


class ValidationError(ReminderError):
    """A rule payload is malformed or describes an impossible date."""

    def __init__(self, message: str, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class NotFoundError(ReminderError):
    """A referenced rule, target or instance does not exist for the owner."""


class ConflictError(ReminderError):
    """A transition was requested from an incompatible current status.

    Transitions never raise this; it is handed back by
    InstanceStateMachine.explain_miss so callers can say "already done".
    """

    def __init__(self, message: str, current_status: str | None = None) -> None:
        super().__init__(message)
        self.current_status = current_status


class StorageError(ReminderError):
    """A storage read or write failed. Safe to retry: all writes are idempotent."""

    retryable = True
