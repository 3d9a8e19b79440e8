"""
Pruning and quality gate for tasktrail.

Before a task is completed automatically, links to files that no longer
exist are moved into the pruned-files audit table. A task whose linked
files are all gone is refused outright: there is nothing left to prove the
work happened.
"""

import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .db.schema import Decision, Task, TaskFileLink, TaskPrunedFile, now_ts
from .errors import PrunedFileAlreadyLinkedError, PruneSafetyError, TaskNotFoundError
from .models.pruned_file import PrunedFileRecord, PruneResult
from .project_context import ProjectContext

logger = logging.getLogger(__name__)

DEFAULT_PRUNED_LIMIT = 100


def prune_nonexistent_links(
    session: Session, ctx: ProjectContext, task_id: int, project_root: Optional[Path] = None
) -> PruneResult:
    """
    Move links whose files are missing on disk into task_pruned_files.

    Runs inside the caller's transaction so the link snapshot and any
    dependent status transition commit together.

    Raises:
        PruneSafetyError: every linked file is missing; links are left untouched
    """
    root = Path(project_root) if project_root is not None else ctx.project_root
    links = list(
        session.execute(
            select(TaskFileLink)
            .where(TaskFileLink.project_id == ctx.project_id, TaskFileLink.task_id == task_id)
            .order_by(TaskFileLink.file_path)
        ).scalars()
    )
    if not links:
        return PruneResult(task_id=task_id)

    missing = [link for link in links if not (root / link.file_path).exists()]
    if not missing:
        return PruneResult(task_id=task_id, remaining_count=len(links))

    if len(missing) == len(links):
        raise PruneSafetyError(task_id, len(missing))

    ts = now_ts()
    pruned_paths = []
    for link in missing:
        session.add(
            TaskPrunedFile(
                project_id=ctx.project_id,
                task_id=task_id,
                file_path=link.file_path,
                pruned_ts=ts,
            )
        )
        pruned_paths.append(link.file_path)

    session.execute(
        delete(TaskFileLink).where(TaskFileLink.id.in_([link.id for link in missing]))
    )
    session.flush()
    logger.info("Pruned %d missing file(s) from task %s: %s", len(pruned_paths), task_id, pruned_paths)

    return PruneResult(
        task_id=task_id,
        pruned_count=len(pruned_paths),
        remaining_count=len(links) - len(pruned_paths),
        pruned_paths=pruned_paths,
    )


def _to_record(row: TaskPrunedFile, decision_key: Optional[str], task_title: Optional[str]) -> PrunedFileRecord:
    return PrunedFileRecord(
        id=row.id,
        task_id=row.task_id,
        project_id=row.project_id,
        file_path=row.file_path,
        pruned_ts=row.pruned_ts,
        linked_decision=decision_key,
        task_title=task_title,
    )


def get_pruned_files(
    session: Session, ctx: ProjectContext, task_id: int, limit: int = DEFAULT_PRUNED_LIMIT
) -> list[PrunedFileRecord]:
    """Pruned-file records of one task, newest first."""
    return get_all_pruned_files(session, ctx, task_id=task_id, limit=limit)


def get_all_pruned_files(
    session: Session,
    ctx: ProjectContext,
    task_id: Optional[int] = None,
    linked_decision: Optional[str] = None,
    since: Optional[int] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> list[PrunedFileRecord]:
    """Pruned-file records of the project with optional filters, newest first."""
    query = (
        select(TaskPrunedFile, Decision.key, Task.title)
        .outerjoin(Decision, Decision.id == TaskPrunedFile.linked_decision_id)
        .join(Task, Task.id == TaskPrunedFile.task_id)
        .where(TaskPrunedFile.project_id == ctx.project_id)
    )
    if task_id is not None:
        query = query.where(TaskPrunedFile.task_id == task_id)
    if linked_decision is not None:
        query = query.where(Decision.key == linked_decision)
    if since is not None:
        query = query.where(TaskPrunedFile.pruned_ts >= since)
    query = query.order_by(TaskPrunedFile.pruned_ts.desc(), TaskPrunedFile.id.desc())
    if limit is not None:
        query = query.limit(limit)
    if offset is not None:
        query = query.offset(offset)

    return [_to_record(row, key, title) for row, key, title in session.execute(query).all()]


def link_pruned_file_to_decision(
    session: Session, ctx: ProjectContext, pruned_id: int, decision_key: str
) -> PrunedFileRecord:
    """Point a pruned-file record at the decision that explains the removal. Set once."""
    decision = session.execute(
        select(Decision).where(Decision.project_id == ctx.project_id, Decision.key == decision_key)
    ).scalar_one_or_none()
    if decision is None:
        raise TaskNotFoundError(f"Decision not found: {decision_key}", field="decision_key")

    pruned = session.execute(
        select(TaskPrunedFile).where(
            TaskPrunedFile.id == pruned_id, TaskPrunedFile.project_id == ctx.project_id
        )
    ).scalar_one_or_none()
    if pruned is None:
        raise TaskNotFoundError(f"Pruned file record not found: {pruned_id}", field="pruned_id")

    if pruned.linked_decision_id is not None:
        current = session.get(Decision, pruned.linked_decision_id)
        raise PrunedFileAlreadyLinkedError(
            f"Pruned file record {pruned_id} is already linked to decision "
            f"'{current.key if current else pruned.linked_decision_id}'"
        )

    pruned.linked_decision_id = decision.id
    session.flush()
    logger.info("Linked pruned file %s (%s) to decision %s", pruned_id, pruned.file_path, decision_key)

    title = session.execute(select(Task.title).where(Task.id == pruned.task_id)).scalar_one_or_none()
    return _to_record(pruned, decision.key, title)
