"""
Task status model for tasktrail.

This module provides the TaskStatus enumeration and the bidirectional
mapping between statuses and the small integer ids stored in the database.
"""

from enum import Enum

from ..errors import TaskValidationError


class TaskStatus(str, Enum):
    """Lifecycle status of a task."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    WAITING_REVIEW = "waiting_review"
    BLOCKED = "blocked"
    DONE = "done"
    ARCHIVED = "archived"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def status_id(self) -> int:
        return STATUS_TO_ID[self]


STATUS_TO_ID: dict[TaskStatus, int] = {
    TaskStatus.TODO: 1,
    TaskStatus.IN_PROGRESS: 2,
    TaskStatus.WAITING_REVIEW: 3,
    TaskStatus.BLOCKED: 4,
    TaskStatus.DONE: 5,
    TaskStatus.ARCHIVED: 6,
    TaskStatus.REJECTED: 7,
}

ID_TO_STATUS: dict[int, TaskStatus] = {value: key for key, value in STATUS_TO_ID.items()}

TERMINAL_STATUSES = frozenset({TaskStatus.ARCHIVED, TaskStatus.REJECTED})

NON_TERMINAL_STATUSES = frozenset(
    {
        TaskStatus.TODO,
        TaskStatus.IN_PROGRESS,
        TaskStatus.WAITING_REVIEW,
        TaskStatus.BLOCKED,
        TaskStatus.DONE,
    }
)


def parse_status(value: "str | TaskStatus") -> TaskStatus:
    """Convert a status name into a TaskStatus, rejecting unknown names."""
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(status.value for status in TaskStatus)
        raise TaskValidationError(
            f"Invalid status: '{value}'. Must be one of: {valid}", field="status"
        ) from None


def status_from_id(status_id: int) -> TaskStatus:
    """Look up the status for a stored status id."""
    try:
        return ID_TO_STATUS[status_id]
    except KeyError:
        raise TaskValidationError(f"Unknown status id: {status_id}", field="status") from None
