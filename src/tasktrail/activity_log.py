"""
Activity log sink for tasktrail.

Rows are appended inside the caller's transaction so an audit entry exists
exactly when the change it describes was committed.
"""

import json
import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .db.schema import ActivityLogEntry, now_ts

logger = logging.getLogger(__name__)

STATUS_CHANGE = "task_status_change"
TASK_CREATE = "task_create"
TASK_UPDATE = "task_update"
FILE_PRUNE = "task_file_prune"
DEPENDENCY_ADD = "task_dependency_add"
DEPENDENCY_REMOVE = "task_dependency_remove"


class ActivityLog:
    """Appends audit rows to the activity_log table."""

    def log(
        self,
        session: Session,
        project_id: int,
        agent: str,
        action_type: str,
        target: str,
        details: Optional[dict[str, Any]] = None,
    ) -> ActivityLogEntry:
        entry = ActivityLogEntry(
            project_id=project_id,
            agent=agent or "system",
            action_type=action_type,
            target=target,
            details=json.dumps(details) if details is not None else None,
            ts=now_ts(),
        )
        session.add(entry)
        logger.debug("activity %s on %s by %s", action_type, target, entry.agent)
        return entry

    def log_status_change(
        self,
        session: Session,
        project_id: int,
        task_id: int,
        old_status: str,
        new_status: str,
        agent: str,
    ) -> ActivityLogEntry:
        return self.log(
            session,
            project_id,
            agent,
            STATUS_CHANGE,
            f"task:{task_id}",
            {"old_status": old_status, "new_status": new_status},
        )

    def log_task_create(self, session: Session, project_id: int, task_id: int, title: str, agent: str) -> ActivityLogEntry:
        return self.log(session, project_id, agent, TASK_CREATE, f"task:{task_id}", {"title": title})

    def log_task_update(
        self, session: Session, project_id: int, task_id: int, fields: list[str], agent: str
    ) -> ActivityLogEntry:
        return self.log(session, project_id, agent, TASK_UPDATE, f"task:{task_id}", {"fields": sorted(fields)})

    def log_file_prune(
        self, session: Session, project_id: int, task_id: int, paths: list[str], agent: str
    ) -> ActivityLogEntry:
        return self.log(session, project_id, agent, FILE_PRUNE, f"task:{task_id}", {"paths": paths})

    def log_dependency(
        self,
        session: Session,
        project_id: int,
        blocker_task_id: int,
        blocked_task_id: int,
        agent: str,
        removed: bool = False,
    ) -> ActivityLogEntry:
        """Recorded against the blocked task."""
        return self.log(
            session,
            project_id,
            agent,
            DEPENDENCY_REMOVE if removed else DEPENDENCY_ADD,
            f"task:{blocked_task_id}",
            {"blocker_task_id": blocker_task_id, "blocked_task_id": blocked_task_id},
        )

    def entries_for_task(self, session: Session, project_id: int, task_id: int) -> list[ActivityLogEntry]:
        """Audit rows for one task, oldest first."""
        return list(
            session.execute(
                select(ActivityLogEntry)
                .where(
                    ActivityLogEntry.project_id == project_id,
                    ActivityLogEntry.target == f"task:{task_id}",
                )
                .order_by(ActivityLogEntry.ts, ActivityLogEntry.id)
            ).scalars()
        )
