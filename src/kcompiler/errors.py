"""Exception hierarchy for the knowledge compilation pipeline."""

from __future__ import annotations


class KcompilerError(Exception):
    """Base class for all pipeline errors."""


class ContentError(KcompilerError):
    """Raised when an ingestion source has no usable content."""


class GenerationError(KcompilerError):
    """Raised when the generation service fails or returns undecodable output.

    ``raw`` holds the response text when one was received.
    """

    def __init__(self, message: str, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class InvariantViolation(KcompilerError):
    """Raised when persisted state breaks a pipeline invariant."""


class PipelineInvariantViolation(InvariantViolation):
    """Raised by a stage in debug/strict mode when generation output is unusable."""

    def __init__(self, message: str, context: dict | None = None) -> None:
        super().__init__(message)
        self.context = context or {}


def truncate_error(message: object, limit: int = 1000) -> str:
    """Return ``str(message)`` cut to *limit* characters for storage."""
    text = str(message)
    return text[:limit]
