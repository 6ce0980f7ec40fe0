"""
DOCBATCH Errors

One exception family for the whole engine. Per-file analysis failures
are captured into the error bucket instead of propagating; everything
else raises one of these.
"""

from __future__ import annotations

from pathlib import Path


class DocBatchError(Exception):
    """Base class for every docbatch error."""
    pass


class ValidationError(DocBatchError):
    """Bad input: malformed arguments, duplicate ids, unknown statuses."""
    pass


class InvalidTransitionError(ValidationError):
    """Raised when a state change is not allowed by the transition table."""

    def __init__(self, task_id: str, from_status: str | None, to_status: str):
        self.task_id = task_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid state transition for {task_id}: {from_status} -> {to_status}"
        )


class TaskNotFoundError(ValidationError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class PersistenceError(DocBatchError):
    """Disk I/O failure while saving or loading a snapshot."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)


class AnalysisError(DocBatchError):
    """Token or structure computation failed for a single file."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)


class CompletionError(DocBatchError):
    """Artifacts are still missing after the retry budget is spent."""

    def __init__(self, task_id: str, missing: list[str] | None = None):
        self.task_id = task_id
        self.missing = list(missing or [])
        detail = f": missing {', '.join(self.missing)}" if self.missing else ""
        super().__init__(f"Task {task_id} exhausted its retries{detail}")


class ConfigError(DocBatchError):
    """Unsupported step type or invalid configuration."""
    pass
