"""Autopilot kernel exception hierarchy and error kinds."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Machine-readable failure kinds so callers can pick retry vs fail-fast."""
    GENERATOR_UNAVAILABLE = "generator_unavailable"
    GENERATOR_MALFORMED = "generator_malformed"
    VALIDATION_FAILED = "validation_failed"
    CONFIG_INCOMPLETE = "config_incomplete"
    RESOURCE_EXHAUSTED = "resource_exhausted"


class AutopilotError(Exception):
    """Base exception for all autopilot kernel errors."""

    kind: ErrorKind | None = None


class ValidationError(AutopilotError):
    """Malformed candidate or confidence factor; rejected before the pipeline."""

    kind = ErrorKind.VALIDATION_FAILED

    def __init__(self, message: str, errors: list | None = None) -> None:
        self.errors = errors or []
        super().__init__(message)


class ConfigurationError(AutopilotError):
    """Threshold configuration is incomplete or invalid."""

    kind = ErrorKind.CONFIG_INCOMPLETE


class ResourceExhaustedError(AutopilotError):
    """An admission would exceed a rate limit window."""

    kind = ErrorKind.RESOURCE_EXHAUSTED

    def __init__(self, window: str, limit: int) -> None:
        self.window = window
        self.limit = limit
        super().__init__(f"Rate limit reached: {limit} admissions per {window}")


class GeneratorUnavailable(AutopilotError):
    """The upstream proposal generator could not be reached."""

    kind = ErrorKind.GENERATOR_UNAVAILABLE


class GeneratorMalformed(AutopilotError):
    """The upstream proposal generator returned output that fails the schema."""

    kind = ErrorKind.GENERATOR_MALFORMED


class QueueItemNotFoundError(AutopilotError):
    """No queue item with the given id."""

    def __init__(self, item_id: str) -> None:
        self.item_id = item_id
        super().__init__(f"Queue item not found: {item_id}")


class InvalidTransitionError(AutopilotError):
    """Requested status transition is not allowed by the lifecycle."""

    def __init__(self, item_id: str, from_status: str, to_status: str) -> None:
        self.item_id = item_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Queue item {item_id}: transition {from_status} -> {to_status} is not allowed"
        )


class TransitionConflictError(AutopilotError):
    """Compare-and-set lost: the item changed since the caller last read it."""

    def __init__(self, item_id: str, expected: str, actual: str) -> None:
        self.item_id = item_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Queue item {item_id}: expected status {expected}, found {actual}"
        )


class ExecutionWindowClosedError(AutopilotError):
    """Dispatch requested outside business hours or inside a blackout period."""

    def __init__(self, item_id: str, next_window: str) -> None:
        self.item_id = item_id
        self.next_window = next_window
        super().__init__(
            f"Queue item {item_id}: execution window closed until {next_window}"
        )
