"""
Error types for tasktrail.

Validation errors are surfaced to the caller immediately and never retried.
Invariant violations are blocking errors that explain why the operation was
refused. Transient errors may be retried by the caller's retry wrapper.
"""

from typing import Optional


class TaskTrailError(Exception):
    """Base class for all tasktrail errors."""


class TaskValidationError(TaskTrailError):
    """Bad input: unknown status, missing file actions, bad priority."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class TaskNotFoundError(TaskValidationError):
    """A task, pruned-file record or decision does not exist in the project."""


class InvariantViolationError(TaskTrailError):
    """An operation would break a lifecycle invariant."""


class TerminalStatusError(InvariantViolationError):
    """Attempted to leave a terminal status (archived, rejected)."""

    def __init__(self, task_id: Optional[int], status: str):
        subject = f"Task {task_id}" if task_id is not None else "Task"
        super().__init__(
            f"{subject} is in terminal status '{status}'; "
            "no further status transitions are permitted"
        )
        self.task_id = task_id
        self.status = status


class InvalidTransitionError(InvariantViolationError):
    """The transition table does not allow this move."""


class ArchivePreconditionError(InvariantViolationError):
    """archive was requested for a task that is not in 'done'."""


class PruneSafetyError(InvariantViolationError):
    """Every linked file of a task is missing on disk."""

    def __init__(self, task_id: int, missing_count: int):
        super().__init__(
            f"Cannot prune files for task #{task_id}: ALL {missing_count} linked "
            "files are missing on disk. A task with no surviving evidence of "
            "work must not be completed automatically. Re-examine the task: "
            "fix its file links, or move it to 'rejected' if it is invalid."
        )
        self.task_id = task_id
        self.missing_count = missing_count


class PrunedFileAlreadyLinkedError(InvariantViolationError):
    """The pruned-file record already points at a decision."""


class DependencyCycleError(InvariantViolationError):
    """A new dependency would make a task block itself through a chain."""


class TransientStoreError(TaskTrailError):
    """Retryable store failure; the transaction has been rolled back."""


class TransitionConflictError(TransientStoreError):
    """The task status changed underneath a compare-and-set update."""


class GitProbeError(TaskTrailError):
    """A git subprocess failed or timed out."""

    def __init__(self, message: str, command: Optional[list[str]] = None, stderr: str = ""):
        super().__init__(message)
        self.command = command or []
        self.stderr = stderr
