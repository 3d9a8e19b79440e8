"""
Two-step completion detector for tasktrail.

Staging every linked file of a task in ``waiting_review`` moves it to
``done``; committing them moves a ``done`` task to ``archived``. Each task
is handled in its own transaction, and a failure on one task never stops
the rest of the batch.
"""

import logging
from typing import Callable, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .activity_log import ActivityLog
from .config.settings import WorkflowSettings
from .db.engine import TaskStore
from .db.schema import Task, TaskFileLink
from .errors import TaskTrailError
from .file_links import list_links
from .file_pruning import prune_nonexistent_links
from .git_tool import GitTool
from .models.lifecycle import DetectionReport
from .models.task_status import TaskStatus
from .models.workflow_config import WorkflowConfig, load_workflow_config
from .project_context import ProjectContext
from .state_machine import apply_transition, load_task_for_update
from .utils.jsonl_logger import log_with_context
from .utils.retry import retry_with_backoff
from .watcher.file_watcher import FileWatcher

logger = logging.getLogger(__name__)

NOT_A_REPOSITORY = "not a git repository"


def files_satisfied(linked: Iterable[str], matched: set, require_all: bool) -> bool:
    """ALL linked files must match when require_all is set, otherwise ANY."""
    linked = set(linked)
    if not linked:
        return False
    if require_all:
        return linked <= matched
    return bool(linked & matched)


class CompletionDetector:
    """Applies git-driven status transitions to the tasks of one project."""

    def __init__(
        self,
        store: TaskStore,
        git_tool: GitTool,
        ctx: ProjectContext,
        watcher: Optional[FileWatcher] = None,
        activity: Optional[ActivityLog] = None,
        workflow_defaults: Optional[WorkflowSettings] = None,
        agent: str = "system",
    ):
        self.store = store
        self.git_tool = git_tool
        self.ctx = ctx
        self.watcher = watcher
        self.activity = activity or ActivityLog()
        self.workflow_defaults = workflow_defaults
        self.agent = agent

    def resolve_config(self) -> WorkflowConfig:
        with self.store.session() as session:
            return load_workflow_config(session, self.workflow_defaults)

    def detect_and_complete_on_staging(self, config: Optional[WorkflowConfig] = None) -> int:
        """Move waiting_review tasks whose linked files are staged to done."""
        config = config or self.resolve_config()
        if not config.git_auto_complete_on_stage:
            logger.debug("Auto-complete on stage disabled")
            return 0
        return self._run_pass(
            TaskStatus.WAITING_REVIEW,
            TaskStatus.DONE,
            self.git_tool.staged_set,
            config.require_all_files_staged,
        )

    def detect_and_archive_on_commit(self, config: Optional[WorkflowConfig] = None) -> int:
        """Move done tasks whose linked files are committed to archived."""
        config = config or self.resolve_config()
        if not config.git_auto_archive_on_commit:
            logger.debug("Auto-archive on commit disabled")
            return 0
        return self._run_pass(
            TaskStatus.DONE,
            TaskStatus.ARCHIVED,
            self.git_tool.committed_set,
            config.require_all_files_committed_for_archive,
        )

    def run_all(self) -> DetectionReport:
        """Run the staging pass, then the commit pass."""
        if not self.git_tool.is_git_repo():
            logger.info("%s is not a git repository; skipping detection", self.ctx.project_root)
            return DetectionReport(skipped_reason=NOT_A_REPOSITORY)

        config = self.resolve_config()
        return DetectionReport(
            completed_on_stage=self.detect_and_complete_on_staging(config),
            archived_on_commit=self.detect_and_archive_on_commit(config),
        )

    def _candidate_ids(self, session: Session, status: TaskStatus) -> list[int]:
        return list(
            session.execute(
                select(Task.id)
                .join(TaskFileLink, TaskFileLink.task_id == Task.id)
                .where(Task.project_id == self.ctx.project_id, Task.status_id == status.status_id)
                .distinct()
                .order_by(Task.id)
            ).scalars()
        )

    def _run_pass(
        self,
        from_status: TaskStatus,
        to_status: TaskStatus,
        probe: Callable[[Iterable[str]], set],
        require_all: bool,
    ) -> int:
        if not self.git_tool.is_git_repo():
            logger.info("%s is not a git repository; skipping detection", self.ctx.project_root)
            return 0

        with self.store.session() as session:
            candidates = self._candidate_ids(session, from_status)

        transitioned = 0
        for task_id in candidates:
            try:
                changed = retry_with_backoff(
                    lambda: self._process_task(task_id, from_status, to_status, probe, require_all)
                )
            except (TaskTrailError, SQLAlchemyError, OSError) as e:
                log_with_context(
                    logger,
                    logging.WARNING,
                    f"Skipping task {task_id} ({from_status.value} -> {to_status.value}): {e}",
                    task_id=task_id,
                    error=type(e).__name__,
                )
                continue
            if changed:
                transitioned += 1

        if transitioned:
            logger.info(
                "Moved %d task(s) from %s to %s", transitioned, from_status.value, to_status.value
            )
        return transitioned

    def _process_task(
        self,
        task_id: int,
        from_status: TaskStatus,
        to_status: TaskStatus,
        probe: Callable[[Iterable[str]], set],
        require_all: bool,
    ) -> bool:
        changed = False
        with self.store.transaction() as session:
            task = load_task_for_update(session, self.ctx.project_id, task_id)
            if task.status_id != from_status.status_id:
                return False

            pruned = prune_nonexistent_links(session, self.ctx, task_id)
            if pruned.pruned_count:
                self.activity.log_file_prune(
                    session, self.ctx.project_id, task_id, pruned.pruned_paths, self.agent
                )
            linked = list_links(session, self.ctx, task_id)
            if files_satisfied(linked, probe(linked), require_all):
                changed = apply_transition(session, task, to_status, self.agent, self.activity).changed

        status = to_status if changed else from_status
        if self.watcher is not None and (pruned.pruned_count or status.is_terminal):
            self.watcher.unregister_task(task_id)
            if linked and not status.is_terminal:
                self.watcher.register_task(task_id, linked)
        return changed
