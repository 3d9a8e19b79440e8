"""
File link registry for tasktrail.

Links tie a task to the project files it is expected to touch. Paths are
stored in normalized project-relative POSIX form; a task links a given path
at most once.
"""

import logging
from collections import defaultdict
from typing import Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .db.schema import Task, TaskFileLink, now_ts
from .errors import TaskNotFoundError, TaskValidationError
from .models.task_file_action import VALID_FILE_ACTIONS, FileAction, normalize_path
from .models.task_status import NON_TERMINAL_STATUSES
from .project_context import ProjectContext

logger = logging.getLogger(__name__)

ACTIVE_STATUS_IDS = sorted(status.status_id for status in NON_TERMINAL_STATUSES)


def _outside_root(ctx: ProjectContext, path: str) -> TaskValidationError:
    return TaskValidationError(
        f"File {path} is outside the project root {ctx.project_root}", field="file_path"
    )


def _relative_path(ctx: ProjectContext, path: str) -> str:
    """Normalize a path and make absolute paths under the project root relative."""
    normalized = normalize_path(path)
    if not normalized:
        raise TaskValidationError("file path cannot be empty", field="file_path")
    if normalized.startswith("/"):
        root = ctx.project_root.as_posix().rstrip("/") + "/"
        if not normalized.startswith(root):
            raise _outside_root(ctx, path)
        normalized = normalized[len(root):]
    if normalized == ".." or normalized.startswith("../"):
        raise _outside_root(ctx, path)
    return normalized


def _ensure_task(session: Session, ctx: ProjectContext, task_id: int) -> None:
    exists = session.execute(
        select(Task.id).where(Task.id == task_id, Task.project_id == ctx.project_id)
    ).scalar_one_or_none()
    if exists is None:
        raise TaskNotFoundError(f"Task with id {task_id} not found", field="task_id")


def link_file(
    session: Session, ctx: ProjectContext, task_id: int, path: str, action: str = "edit"
) -> bool:
    """Link a file to a task. Returns False when the link already exists."""
    if action not in VALID_FILE_ACTIONS:
        raise TaskValidationError(
            f"Invalid file action: '{action}'. Must be one of: {', '.join(VALID_FILE_ACTIONS)}",
            field="action",
        )
    _ensure_task(session, ctx, task_id)
    file_path = _relative_path(ctx, path)

    existing = session.execute(
        select(TaskFileLink.id).where(
            TaskFileLink.project_id == ctx.project_id,
            TaskFileLink.task_id == task_id,
            TaskFileLink.file_path == file_path,
        )
    ).scalar_one_or_none()
    if existing is not None:
        return False

    session.add(
        TaskFileLink(
            project_id=ctx.project_id,
            task_id=task_id,
            file_path=file_path,
            action=action,
            linked_ts=now_ts(),
        )
    )
    session.flush()
    logger.debug("Linked %s to task %s (%s)", file_path, task_id, action)
    return True


def link_file_actions(
    session: Session, ctx: ProjectContext, task_id: int, file_actions: Optional[Iterable[FileAction]]
) -> list[str]:
    """Link every declared file action; returns the paths newly linked."""
    linked = []
    for file_action in file_actions or []:
        if link_file(session, ctx, task_id, file_action.path, file_action.action):
            linked.append(file_action.path)
    return linked


def unlink_file(session: Session, ctx: ProjectContext, task_id: int, path: str) -> bool:
    """Remove a link without recording a pruned-file row."""
    file_path = _relative_path(ctx, path)
    result = session.execute(
        delete(TaskFileLink).where(
            TaskFileLink.project_id == ctx.project_id,
            TaskFileLink.task_id == task_id,
            TaskFileLink.file_path == file_path,
        )
    )
    return result.rowcount > 0


def list_links(session: Session, ctx: ProjectContext, task_id: int) -> list[str]:
    return list(
        session.execute(
            select(TaskFileLink.file_path)
            .where(TaskFileLink.project_id == ctx.project_id, TaskFileLink.task_id == task_id)
            .order_by(TaskFileLink.file_path)
        ).scalars()
    )


def links_for_active_tasks(session: Session, project_id: int) -> dict[int, list[str]]:
    """Links of every non-terminal task in the project, keyed by task id."""
    rows = session.execute(
        select(TaskFileLink.task_id, TaskFileLink.file_path)
        .join(Task, Task.id == TaskFileLink.task_id)
        .where(TaskFileLink.project_id == project_id, Task.status_id.in_(ACTIVE_STATUS_IDS))
        .order_by(TaskFileLink.task_id, TaskFileLink.file_path)
    ).all()
    links: dict[int, list[str]] = defaultdict(list)
    for task_id, file_path in rows:
        links[task_id].append(file_path)
    return dict(links)
