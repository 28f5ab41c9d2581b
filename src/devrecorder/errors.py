"""Exception hierarchy shared by the record store, index and auditors."""

from __future__ import annotations


class RecorderError(Exception):
    """Base exception for all devrecorder errors."""


class NotFound(RecorderError, KeyError):
    """Raised when a record id is unknown to the store."""

    def __init__(self, doc_id: str, message: str = "") -> None:
        self.doc_id = doc_id
        super().__init__(message or f"Document not found: {doc_id}")

    def __str__(self) -> str:
        # KeyError would repr() the message
        return str(self.args[0])


class ValidationError(RecorderError, ValueError):
    """Raised when record metadata or config values are malformed."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")


class ExternalServiceUnavailable(RecorderError):
    """Raised by a summarizer/embedder adapter when its backend is unreachable.

    Chains catch it and answer through their fallback adapter.
    """

    def __init__(self, service: str, reason: str = "") -> None:
        self.service = service
        super().__init__(f"{service} unavailable" + (f": {reason}" if reason else ""))


class Conflict(RecorderError):
    """Raised when an operation cannot apply to the current state.

    Examples: merging fewer than two records, archiving an archived record.
    """


InvalidArgument = Conflict


class StorageError(RecorderError, OSError):
    """Raised when a write to the backing file store fails. Nothing was applied."""


class MergeAborted(RecorderError):
    """A merge stopped part-way. Stages already completed stay applied."""

    def __init__(self, stage: str, reason: str, merged_id: str | None = None) -> None:
        self.stage = stage
        self.reason = reason
        self.merged_id = merged_id
        super().__init__(f"Merge aborted during {stage}: {reason}")
