"""
Task state machine for tasktrail.

Every non-terminal status may move to any other status; terminal statuses
(archived, rejected) allow no further transitions. A transition is applied
with a compare-and-set update on the status column and is audited in the
same transaction.
"""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .activity_log import ActivityLog
from .db.schema import Task, now_ts
from .errors import InvalidTransitionError, TaskNotFoundError, TerminalStatusError, TransitionConflictError
from .models.lifecycle import TransitionResult
from .models.task_status import TERMINAL_STATUSES, TaskStatus, parse_status, status_from_id

logger = logging.getLogger(__name__)


def _build_transitions() -> dict[TaskStatus, frozenset[TaskStatus]]:
    transitions = {}
    for source in TaskStatus:
        if source in TERMINAL_STATUSES:
            transitions[source] = frozenset()
        else:
            transitions[source] = frozenset(target for target in TaskStatus if target != source)
    return transitions


VALID_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = _build_transitions()


def can_transition(from_status: "TaskStatus | str", to_status: "TaskStatus | str") -> bool:
    return parse_status(to_status) in VALID_TRANSITIONS[parse_status(from_status)]


def validate_transition(
    from_status: "TaskStatus | str", to_status: "TaskStatus | str", task_id: Optional[int] = None
) -> None:
    """Raise if the move is not allowed. Unknown status names raise TaskValidationError."""
    source = parse_status(from_status)
    target = parse_status(to_status)
    if source in TERMINAL_STATUSES:
        raise TerminalStatusError(task_id, source.value)
    if target not in VALID_TRANSITIONS[source]:
        allowed = ", ".join(sorted(status.value for status in VALID_TRANSITIONS[source]))
        raise InvalidTransitionError(
            f"Invalid transition from '{source.value}' to '{target.value}'. "
            f"Valid transitions from '{source.value}': {allowed}"
        )


def load_task_for_update(session: Session, project_id: int, task_id: int) -> Task:
    """Re-read a task row, locking it where the backend supports row locks."""
    task = session.execute(
        select(Task)
        .where(Task.id == task_id, Task.project_id == project_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if task is None:
        raise TaskNotFoundError(f"Task with id {task_id} not found", field="task_id")
    return task


def apply_transition(
    session: Session,
    task: Task,
    to_status: "TaskStatus | str",
    agent: str,
    activity: Optional[ActivityLog] = None,
) -> TransitionResult:
    """
    Move a task to a new status inside the caller's transaction.

    Moving to the current status is a successful no-op with no audit row.
    """
    target = parse_status(to_status)
    source = status_from_id(task.status_id)

    if source == target:
        return TransitionResult(
            task_id=task.id,
            old_status=source,
            new_status=target,
            changed=False,
            message=f"Task {task.id} is already '{target.value}'",
        )

    validate_transition(source, target, task_id=task.id)

    ts = now_ts()
    values = {"status_id": target.status_id, "updated_ts": ts}
    if target == TaskStatus.DONE:
        values["completed_ts"] = ts

    result = session.execute(
        update(Task)
        .where(Task.id == task.id, Task.status_id == source.status_id)
        .values(**values)
    )
    if result.rowcount != 1:
        raise TransitionConflictError(
            f"Task {task.id} changed status concurrently (expected '{source.value}')"
        )

    for key, value in values.items():
        setattr(task, key, value)

    (activity or ActivityLog()).log_status_change(
        session, task.project_id, task.id, source.value, target.value, agent
    )
    logger.info("Task %s: %s -> %s (agent=%s)", task.id, source.value, target.value, agent)

    return TransitionResult(
        task_id=task.id,
        old_status=source,
        new_status=target,
        changed=True,
        message=f"Task {task.id} moved from '{source.value}' to '{target.value}'",
    )
