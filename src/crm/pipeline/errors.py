"""Error taxonomy for pipeline operations.

Services raise these; the API layer maps each class to one HTTP status so
the operator sees the message as a notification. None of them is retried
and none is fatal to the process.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(PipelineError, ValueError):
    """Bad input shape or value (blank name, non-positive sale value)."""


class NotFoundError(PipelineError, LookupError):
    """A referenced id does not resolve for the current user."""


class ConflictError(PipelineError):
    """The operation would break a referential invariant."""


class TransportError(PipelineError):
    """The persistence call itself failed."""
