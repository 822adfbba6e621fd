"""Typed failures raised by the contract workflow engine.

Every error is raised before a transaction commits, so callers never
observe a half-applied transition.
"""

from __future__ import annotations


class TransitionError(Exception):
    """Base class for every failure surfaced to callers."""

    kind = "TransitionError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(TransitionError):
    """Malformed or missing payload fields."""

    kind = "ValidationError"


class InvalidTransitionError(TransitionError):
    """Action is not legal from the contract's current status."""

    kind = "InvalidTransitionError"


class ConflictError(TransitionError):
    """Concurrent modification or duplicate renewal attempt."""

    kind = "ConflictError"


class NotFoundError(TransitionError):
    """Referenced contract, version, step or renewal does not exist."""

    kind = "NotFoundError"
