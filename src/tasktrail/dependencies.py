"""
Task dependencies for tasktrail.

A dependency records that a blocker task must land before the blocked task.
Edges never point a task at itself, never touch archived tasks and never
close a cycle.
"""

import logging
from collections import defaultdict, deque
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .db.schema import Task, TaskDependency, now_ts
from .errors import DependencyCycleError, InvariantViolationError, TaskNotFoundError, TaskValidationError
from .models.task_record import TaskDependencies, TaskSummary
from .models.task_status import TaskStatus
from .project_context import ProjectContext

logger = logging.getLogger(__name__)

MAX_CHAIN_DEPTH = 100


def _load_task(session: Session, ctx: ProjectContext, task_id: int, label: str, field: str) -> Task:
    task = session.execute(
        select(Task).where(Task.id == task_id, Task.project_id == ctx.project_id)
    ).scalar_one_or_none()
    if task is None:
        raise TaskNotFoundError(f"{label} #{task_id} not found", field=field)
    return task


def _edges(session: Session, ctx: ProjectContext) -> dict[int, list[int]]:
    edges = defaultdict(list)
    rows = session.execute(
        select(TaskDependency.blocker_task_id, TaskDependency.blocked_task_id).where(
            TaskDependency.project_id == ctx.project_id
        )
    )
    for blocker_id, blocked_id in rows:
        edges[blocker_id].append(blocked_id)
    return edges


def find_chain(edges: dict[int, list[int]], start: int, target: int) -> Optional[list[int]]:
    """Shortest chain of blocker -> blocked edges from ``start`` to ``target``."""
    previous = {start: None}
    queue = deque([(start, 0)])
    while queue:
        task_id, depth = queue.popleft()
        if task_id == target:
            chain = []
            while task_id is not None:
                chain.append(task_id)
                task_id = previous[task_id]
            return chain[::-1]
        if depth >= MAX_CHAIN_DEPTH:
            continue
        for blocked_id in edges.get(task_id, ()):
            if blocked_id not in previous:
                previous[blocked_id] = task_id
                queue.append((blocked_id, depth + 1))
    return None


def add_dependency(session: Session, ctx: ProjectContext, blocker_task_id: int, blocked_task_id: int) -> bool:
    """Record that one task blocks another. Returns False when the edge exists.

    Raises:
        TaskValidationError: The two ids are the same task
        TaskNotFoundError: Either task is not in the project
        InvariantViolationError: Either task is archived
        DependencyCycleError: The edge would close a cycle
    """
    if blocker_task_id == blocked_task_id:
        raise TaskValidationError("Self-dependency not allowed", field="blocked_task_id")

    blocker = _load_task(session, ctx, blocker_task_id, "Blocker task", "blocker_task_id")
    blocked = _load_task(session, ctx, blocked_task_id, "Blocked task", "blocked_task_id")
    for task in (blocker, blocked):
        if task.status_id == TaskStatus.ARCHIVED.status_id:
            raise InvariantViolationError(f"Cannot add dependency: Task #{task.id} is archived")

    edges = _edges(session, ctx)
    if blocked_task_id in edges.get(blocker_task_id, ()):
        return False
    if blocker_task_id in edges.get(blocked_task_id, ()):
        raise DependencyCycleError(
            f"Circular dependency detected: Task #{blocked_task_id} already blocks Task #{blocker_task_id}"
        )
    chain = find_chain(edges, blocked_task_id, blocker_task_id)
    if chain is not None:
        path = " -> ".join(f"#{task_id}" for task_id in [blocker_task_id, *chain])
        raise DependencyCycleError(f"Circular dependency detected: Task {path}")

    session.add(
        TaskDependency(
            project_id=ctx.project_id,
            blocker_task_id=blocker_task_id,
            blocked_task_id=blocked_task_id,
            created_ts=now_ts(),
        )
    )
    session.flush()
    logger.debug("Task %s now blocks task %s", blocker_task_id, blocked_task_id)
    return True


def remove_dependency(session: Session, ctx: ProjectContext, blocker_task_id: int, blocked_task_id: int) -> bool:
    result = session.execute(
        delete(TaskDependency).where(
            TaskDependency.project_id == ctx.project_id,
            TaskDependency.blocker_task_id == blocker_task_id,
            TaskDependency.blocked_task_id == blocked_task_id,
        )
    )
    return result.rowcount > 0


def _summaries(session: Session, ctx: ProjectContext, join_column, where_column, task_id: int) -> list[TaskSummary]:
    rows = session.execute(
        select(Task)
        .join(TaskDependency, Task.id == join_column)
        .where(
            TaskDependency.project_id == ctx.project_id,
            Task.project_id == ctx.project_id,
            where_column == task_id,
        )
        .order_by(Task.id)
    ).scalars()
    return [TaskSummary.from_row(task) for task in rows]


def get_dependencies(session: Session, ctx: ProjectContext, task_id: int) -> TaskDependencies:
    _load_task(session, ctx, task_id, "Task", "task_id")
    return TaskDependencies(
        task_id=task_id,
        blockers=_summaries(
            session, ctx, TaskDependency.blocker_task_id, TaskDependency.blocked_task_id, task_id
        ),
        blocking=_summaries(
            session, ctx, TaskDependency.blocked_task_id, TaskDependency.blocker_task_id, task_id
        ),
    )
