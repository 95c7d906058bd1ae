from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    """Closed set of completion-service failure categories."""

    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    OVERLOADED = "overloaded"
    FATAL = "fatal"

    @property
    def retryable(self) -> bool:
        return self is not FailureKind.FATAL


class CompletionError(RuntimeError):
    """Raised by the completion adapter; the message is the service's own."""

    def __init__(
        self,
        message: str,
        kind: FailureKind = FailureKind.FATAL,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class SynthesisError(RuntimeError):
    """Fatal output failure for artifacts that have no safe empty default."""


class SynthesisCancelled(RuntimeError):
    """The caller cancelled the call between pipeline stages."""


class ProveItStateError(RuntimeError):
    """Illegal transition on a prove-it session."""


def describe_failure(exc: BaseException) -> str:
    """Short user-facing message for a failed generation or grading call."""
    if isinstance(exc, CompletionError):
        if exc.kind is FailureKind.OVERLOADED:
            return "Model is overloaded. Please try again."
        if exc.kind in (FailureKind.UNAVAILABLE, FailureKind.RATE_LIMITED):
            return "Service temporarily unavailable. Please retry."
    if isinstance(exc, SynthesisCancelled):
        return "Cancelled."
    return "Something went wrong. Please try again."
