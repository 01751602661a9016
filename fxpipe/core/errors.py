"""Pipeline error taxonomy.

Per-sample problems are absorbed (skip + count); per-run problems abort the
ingestion transaction and propagate to the worker, which applies retry/backoff.
Exhausted retries become ``TerminalTaskFailure``.
"""

from __future__ import annotations

from typing import Any, Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    retryable: bool = True

    def __init__(self, message: str, source: Optional[str] = None, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.source = source
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "source": self.source,
            "details": self.details,
        }


class FetchError(PipelineError):
    """Provider could not be reached or answered with an error."""


class MalformedPayload(PipelineError):
    """Raw payload is structurally undecodable or carries no usable rate."""


class SymbolDecodeError(MalformedPayload):
    """Provider symbol does not follow the 3- or 6-character convention."""


class SnapshotNotFound(MalformedPayload):
    """Requested snapshot does not exist in the snapshot store."""


class SampleSkipped(PipelineError):
    """A single record inside a batch was unusable; counted, never fatal."""

    retryable = False


class PersistenceError(PipelineError):
    """Database write failed; the whole ingestion run was rolled back."""


class SnapshotImportError(PipelineError):
    """One or more snapshots of a ``latest`` import failed."""

    def __init__(self, message: str, source: Optional[str] = None, results: Optional[list[dict[str, Any]]] = None) -> None:
        super().__init__(message, source, {"results": results or []})
        self.results = results or []


class TerminalTaskFailure(PipelineError):
    """Retry budget exhausted; kept for the operator, never auto-recovered."""

    retryable = False

    def __init__(self, message: str, job_id: str, queue: str, attempts: int) -> None:
        super().__init__(message, details={"job_id": job_id, "queue": queue, "attempts": attempts})
        self.job_id = job_id
        self.queue = queue
        self.attempts = attempts
