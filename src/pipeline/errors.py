"""Tagged error variants shared by every pipeline collaborator.

Collaborators translate SDK/HTTP failures into one of these at the boundary so
retry decisions are a switch on :class:`ErrorKind`, never string matching.
"""

from __future__ import annotations

from enum import StrEnum
from typing import ClassVar


class ErrorKind(StrEnum):
    TRANSIENT = "transient"
    FATAL = "fatal"
    QUOTA_EXCEEDED = "quota_exceeded"
    DATA_CORRUPTED = "data_corrupted"


class PipelineError(Exception):
    """Base for classified collaborator failures."""

    kind: ClassVar[ErrorKind] = ErrorKind.FATAL

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientError(PipelineError):
    """Timeouts, connection resets, 429/5xx, "temporarily unavailable"."""

    kind = ErrorKind.TRANSIENT


class FatalError(PipelineError):
    """Malformed input, non-rate-limit 4xx, missing identifiers."""

    kind = ErrorKind.FATAL


class QuotaExceededError(PipelineError):
    """The provider refuses this identity until its quota window resets."""

    kind = ErrorKind.QUOTA_EXCEEDED


class DataCorruptedError(PipelineError):
    """Cached data is unusable and must be re-fetched from the source."""

    kind = ErrorKind.DATA_CORRUPTED


class OperationCancelledError(Exception):
    """Raised when the worker is asked to stop while an operation is waiting."""


class InvalidTransitionError(ValueError):
    """A processing-log status or stage change that the state machine forbids."""


class ProcessingLogNotFoundError(LookupError):
    def __init__(self, item_id: str) -> None:
        super().__init__(f"No processing log for item {item_id!r}")
        self.item_id = item_id


def error_kind(error: BaseException) -> ErrorKind | None:
    if isinstance(error, PipelineError):
        return error.kind
    return None


def is_transient(error: BaseException) -> bool:
    """Default retry predicate: only errors tagged transient are retried."""
    match error_kind(error):
        case ErrorKind.TRANSIENT:
            return True
        case _:
            return False


def classify_http_status(status_code: int, message: str = "") -> PipelineError:
    """Map an HTTP status to the error variant a collaborator should raise."""
    detail = message or f"HTTP {status_code}"
    if status_code == 429 or status_code == 408 or status_code >= 500:
        return TransientError(detail, status_code=status_code)
    return FatalError(detail, status_code=status_code)
