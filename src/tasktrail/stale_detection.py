"""
Stale task detection for tasktrail.

An in_progress task that has not been updated for
``task_stale_hours_in_progress`` hours is moved to waiting_review so that a
reviewer (or the completion detector) picks it up.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from .activity_log import ActivityLog
from .config.settings import WorkflowSettings
from .db.engine import TaskStore
from .db.schema import Task, now_ts
from .errors import TaskTrailError
from .models.task_status import TaskStatus
from .models.workflow_config import WorkflowConfig, load_workflow_config
from .project_context import ProjectContext
from .state_machine import apply_transition, load_task_for_update
from .utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600


class StaleTaskDetector:
    """Moves idle in_progress tasks to waiting_review."""

    def __init__(
        self,
        store: TaskStore,
        ctx: ProjectContext,
        activity: Optional[ActivityLog] = None,
        workflow_defaults: Optional[WorkflowSettings] = None,
        agent: str = "system",
    ):
        self.store = store
        self.ctx = ctx
        self.activity = activity or ActivityLog()
        self.workflow_defaults = workflow_defaults
        self.agent = agent

    def detect_and_transition_stale(
        self, config: Optional[WorkflowConfig] = None, now: Optional[int] = None
    ) -> int:
        """Return the number of tasks moved to waiting_review."""
        if config is None:
            with self.store.session() as session:
                config = load_workflow_config(session, self.workflow_defaults)
        if not config.task_auto_stale_enabled:
            return 0

        cutoff = (now if now is not None else now_ts()) - config.task_stale_hours_in_progress * SECONDS_PER_HOUR
        with self.store.session() as session:
            stale_ids = list(
                session.execute(
                    select(Task.id)
                    .where(
                        Task.project_id == self.ctx.project_id,
                        Task.status_id == TaskStatus.IN_PROGRESS.status_id,
                        Task.updated_ts < cutoff,
                    )
                    .order_by(Task.id)
                ).scalars()
            )

        moved = 0
        for task_id in stale_ids:
            try:
                if retry_with_backoff(lambda: self._transition(task_id, cutoff)):
                    moved += 1
            except (TaskTrailError, SQLAlchemyError) as e:
                logger.warning("Skipping stale task %s: %s", task_id, e)

        if moved:
            logger.info(
                "Moved %d stale task(s) to waiting_review (idle > %dh)",
                moved, config.task_stale_hours_in_progress,
            )
        return moved

    def _transition(self, task_id: int, cutoff: int) -> bool:
        with self.store.transaction() as session:
            task = load_task_for_update(session, self.ctx.project_id, task_id)
            if task.status_id != TaskStatus.IN_PROGRESS.status_id or task.updated_ts >= cutoff:
                return False
            result = apply_transition(session, task, TaskStatus.WAITING_REVIEW, self.agent, self.activity)
        return result.changed
