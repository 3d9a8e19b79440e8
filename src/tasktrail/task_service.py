"""
Task service for tasktrail.

TaskService is the entry point used by the CLI and git hooks. Every
mutation runs inside one store transaction, retried on transient store
errors, and the file watcher is brought in line with the committed state
afterwards.
"""

import json
import logging
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from .activity_log import ActivityLog
from .completion import CompletionDetector
from .config.settings import WorkflowSettings
from .db.engine import TaskStore
from .db.schema import Decision, Task, TaskDetails, TaskTag, now_ts
from .dependencies import add_dependency, get_dependencies, remove_dependency
from .errors import ArchivePreconditionError, TaskNotFoundError, TaskTrailError, TaskValidationError
from .file_links import link_file, link_file_actions, list_links, unlink_file
from .file_pruning import (
    DEFAULT_PRUNED_LIMIT,
    get_all_pruned_files,
    get_pruned_files,
    link_pruned_file_to_decision,
    prune_nonexistent_links,
)
from .git_tool import GitTool
from .models.lifecycle import DetectionReport, TransitionResult, WatcherStatus
from .models.pruned_file import PrunedFileRecord, PruneResult
from .models.task_params import (
    BATCH_MAX_ITEMS,
    TaskCreateParams,
    TaskUpdateParams,
    parse_params,
    process_acceptance_criteria,
)
from .models.task_record import (
    ActivityRecord,
    BatchCreateResult,
    BatchItemResult,
    TaskDependencies,
    TaskRecord,
    TaskSummary,
)
from .models.task_status import TaskStatus, parse_status, status_from_id
from .models.workflow_config import WorkflowConfig, load_workflow_config, set_config_value
from .project_context import ProjectContext
from .stale_detection import StaleTaskDetector
from .state_machine import apply_transition, load_task_for_update
from .utils.retry import retry_with_backoff
from .watcher.file_watcher import FileWatcher

logger = logging.getLogger(__name__)

T = TypeVar("T")

WATCH_ACTIONS = ("watch", "unwatch", "list")
DETAIL_FIELDS = ("description", "notes", "acceptance_criteria")
TASK_FIELDS = ("title", "priority", "assigned_agent", "layer")


class TaskService:
    """Task lifecycle operations for one project."""

    def __init__(
        self,
        store: TaskStore,
        ctx: ProjectContext,
        git_tool: Optional[GitTool] = None,
        watcher: Optional[FileWatcher] = None,
        activity: Optional[ActivityLog] = None,
        workflow_defaults: Optional[WorkflowSettings] = None,
        agent: str = "system",
    ):
        self.store = store
        self.ctx = ctx
        self.git_tool = git_tool or GitTool(ctx.project_root)
        self.watcher = watcher
        self.activity = activity or ActivityLog()
        self.workflow_defaults = workflow_defaults
        self.agent = agent

    def _mutate(self, operation: Callable[[Session], T]) -> T:
        """Run ``operation`` in one transaction, retrying transient failures."""

        def attempt() -> T:
            with self.store.transaction() as session:
                return operation(session)

        return retry_with_backoff(attempt)

    def _get_task(self, session: Session, task_id: int) -> Task:
        task = session.execute(
            select(Task).where(Task.id == task_id, Task.project_id == self.ctx.project_id)
        ).scalar_one_or_none()
        if task is None:
            raise TaskNotFoundError(f"Task with id {task_id} not found", field="task_id")
        return task

    def _sync_watcher(self, task_id: int) -> None:
        """Make the watcher reflect the committed links and status of a task."""
        if self.watcher is None:
            return
        with self.store.session() as session:
            task = self._get_task(session, task_id)
            paths = list_links(session, self.ctx, task_id)
            terminal = status_from_id(task.status_id).is_terminal
        self.watcher.unregister_task(task_id)
        if paths and not terminal:
            self.watcher.register_task(task_id, paths)

    # Task creation and update

    def create_task(self, params: "TaskCreateParams | dict[str, Any]") -> TaskRecord:
        """Create a task with its details, tags and file links."""
        params = parse_params(TaskCreateParams, params)
        task_id = self._mutate(lambda session: self._insert_task(session, params))
        logger.info("Created task %s: %s", task_id, params.title)
        self._sync_watcher(task_id)
        return self.get_task(task_id)

    def _insert_task(self, session: Session, params: TaskCreateParams) -> int:
        ts = now_ts()
        task = Task(
            project_id=self.ctx.project_id,
            title=params.title,
            status_id=params.status.status_id,
            priority=params.priority,
            assigned_agent=params.assigned_agent,
            created_by_agent=params.created_by_agent or self.agent,
            layer=params.layer,
            created_ts=ts,
            updated_ts=ts,
            completed_ts=ts if params.status == TaskStatus.DONE else None,
        )
        session.add(task)
        session.flush()

        criteria_text, criteria_json = process_acceptance_criteria(params.acceptance_criteria)
        if params.description or params.notes or criteria_text:
            session.add(
                TaskDetails(
                    task_id=task.id,
                    project_id=self.ctx.project_id,
                    description=params.description,
                    notes=params.notes,
                    acceptance_criteria=criteria_text,
                    acceptance_criteria_json=criteria_json,
                )
            )

        for tag in params.tags:
            session.add(TaskTag(project_id=self.ctx.project_id, task_id=task.id, tag=tag))

        link_file_actions(session, self.ctx, task.id, params.file_actions)
        self.activity.log_task_create(
            session, self.ctx.project_id, task.id, task.title, params.created_by_agent or self.agent
        )
        return task.id

    def create_tasks_batch(
        self, items: list["TaskCreateParams | dict[str, Any]"], atomic: bool = True
    ) -> BatchCreateResult:
        """
        Create up to 50 tasks.

        In atomic mode every item is validated first and all tasks are
        inserted in a single transaction, so any failure creates nothing.
        Otherwise each item is created on its own and failures are reported
        per item.
        """
        if not isinstance(items, list) or not items:
            raise TaskValidationError("items must be a non-empty array", field="items")
        if len(items) > BATCH_MAX_ITEMS:
            raise TaskValidationError(
                f"Batch operations are limited to {BATCH_MAX_ITEMS} items maximum "
                f"(received {len(items)})",
                field="items",
            )

        if atomic:
            parsed = []
            for index, item in enumerate(items):
                try:
                    parsed.append(parse_params(TaskCreateParams, item))
                except TaskValidationError as e:
                    raise TaskValidationError(f"Item {index}: {e}", field=e.field) from None

            task_ids = self._mutate(
                lambda session: [self._insert_task(session, params) for params in parsed]
            )
            for task_id in task_ids:
                self._sync_watcher(task_id)
            results = [
                BatchItemResult(title=params.title, success=True, task_id=task_id)
                for params, task_id in zip(parsed, task_ids)
            ]
            logger.info("Created %d task(s) in one batch", len(results))
            return BatchCreateResult(created=len(results), failed=0, results=results)

        results = []
        for index, item in enumerate(items):
            title = item.get("title", f"item {index}") if isinstance(item, dict) else getattr(item, "title", "")
            try:
                record = self.create_task(item)
            except TaskTrailError as e:
                results.append(BatchItemResult(title=str(title), success=False, error=str(e)))
                continue
            results.append(BatchItemResult(title=record.title, success=True, task_id=record.id))

        created = sum(1 for result in results if result.success)
        return BatchCreateResult(created=created, failed=len(results) - created, results=results)

    def update_task(self, task_id: int, params: "TaskUpdateParams | dict[str, Any]") -> TaskRecord:
        """Update the given fields. File actions are added to the existing links."""
        params = parse_params(TaskUpdateParams, params)
        changes = params.changes()
        changes.pop("watch_files", None)
        if params.file_actions is not None:
            changes["file_actions"] = params.file_actions
        if not changes:
            raise TaskValidationError("No fields to update", field="params")

        def operation(session: Session) -> None:
            task = self._get_task(session, task_id)
            for name in TASK_FIELDS:
                if name in changes:
                    value = changes[name]
                    if name in ("title", "priority") and value is None:
                        raise TaskValidationError(f"{name} cannot be cleared", field=name)
                    setattr(task, name, value)

            if any(name in changes for name in DETAIL_FIELDS):
                details = session.get(TaskDetails, task_id)
                if details is None:
                    details = TaskDetails(task_id=task_id, project_id=self.ctx.project_id)
                    session.add(details)
                if "description" in changes:
                    details.description = changes["description"]
                if "notes" in changes:
                    details.notes = changes["notes"]
                if "acceptance_criteria" in changes:
                    text, criteria_json = process_acceptance_criteria(changes["acceptance_criteria"])
                    details.acceptance_criteria = text
                    details.acceptance_criteria_json = criteria_json

            if "tags" in changes:
                for existing in session.execute(
                    select(TaskTag).where(TaskTag.task_id == task_id)
                ).scalars():
                    session.delete(existing)
                session.flush()
                for tag in changes["tags"] or []:
                    session.add(TaskTag(project_id=self.ctx.project_id, task_id=task_id, tag=tag))

            if params.file_actions:
                link_file_actions(session, self.ctx, task_id, params.file_actions)

            task.updated_ts = now_ts()
            self.activity.log_task_update(session, self.ctx.project_id, task_id, list(changes), self.agent)

        self._mutate(operation)
        self._sync_watcher(task_id)
        return self.get_task(task_id)

    # Status transitions

    def move_task(self, task_id: int, new_status: "TaskStatus | str", agent: Optional[str] = None) -> TransitionResult:
        target = parse_status(new_status)

        def operation(session: Session) -> TransitionResult:
            task = load_task_for_update(session, self.ctx.project_id, task_id)
            return apply_transition(session, task, target, agent or self.agent, self.activity)

        result = self._mutate(operation)
        if result.changed:
            self._sync_watcher(task_id)
        return result

    def archive_task(self, task_id: int, agent: Optional[str] = None) -> TransitionResult:
        """Archive a task. Only tasks in 'done' can be archived."""

        def operation(session: Session) -> TransitionResult:
            task = load_task_for_update(session, self.ctx.project_id, task_id)
            current = status_from_id(task.status_id)
            if current != TaskStatus.DONE:
                raise ArchivePreconditionError(
                    f"Task {task_id} must be in 'done' status to archive (current: {current.value})"
                )
            return apply_transition(session, task, TaskStatus.ARCHIVED, agent or self.agent, self.activity)

        result = self._mutate(operation)
        if self.watcher is not None:
            self.watcher.unregister_task(task_id)
        return result

    # Reads

    def get_task(self, task_id: int) -> TaskRecord:
        with self.store.session() as session:
            return self._to_record(session, self._get_task(session, task_id))

    def _to_record(self, session: Session, task: Task) -> TaskRecord:
        details = session.get(TaskDetails, task.id)
        tags = session.execute(
            select(TaskTag.tag).where(TaskTag.task_id == task.id).order_by(TaskTag.tag)
        ).scalars()
        checks = None
        if details is not None and details.acceptance_criteria_json:
            checks = json.loads(details.acceptance_criteria_json)
        return TaskRecord(
            id=task.id,
            project_id=task.project_id,
            title=task.title,
            status=status_from_id(task.status_id),
            priority=task.priority,
            assigned_agent=task.assigned_agent,
            created_by_agent=task.created_by_agent,
            layer=task.layer,
            description=details.description if details else None,
            notes=details.notes if details else None,
            acceptance_criteria=details.acceptance_criteria if details else None,
            acceptance_checks=checks,
            tags=list(tags),
            files=list_links(session, self.ctx, task.id),
            created_ts=task.created_ts,
            updated_ts=task.updated_ts,
            completed_ts=task.completed_ts,
        )

    def list_tasks(
        self,
        status: "TaskStatus | str | None" = None,
        layer: Optional[str] = None,
        assigned_agent: Optional[str] = None,
        tag: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[TaskSummary]:
        """List tasks, highest priority first."""
        query = select(Task).where(Task.project_id == self.ctx.project_id)
        if status is not None:
            query = query.where(Task.status_id == parse_status(status).status_id)
        if layer is not None:
            query = query.where(Task.layer == layer)
        if assigned_agent is not None:
            query = query.where(Task.assigned_agent == assigned_agent)
        if tag is not None:
            query = query.where(
                Task.id.in_(select(TaskTag.task_id).where(TaskTag.tag == tag))
            )
        query = query.order_by(Task.priority.desc(), Task.id)
        if limit is not None:
            query = query.limit(limit)
        if offset is not None:
            query = query.offset(offset)

        with self.store.session() as session:
            return [TaskSummary.from_row(task) for task in session.execute(query).scalars()]

    def task_history(self, task_id: int) -> list[ActivityRecord]:
        """Audit rows for a task, oldest first."""
        with self.store.session() as session:
            self._get_task(session, task_id)
            return [
                ActivityRecord(
                    id=entry.id,
                    agent=entry.agent,
                    action_type=entry.action_type,
                    details=json.loads(entry.details) if entry.details else {},
                    ts=entry.ts,
                )
                for entry in self.activity.entries_for_task(session, self.ctx.project_id, task_id)
            ]

    # File links

    def link_file(self, task_id: int, path: str, action: str = "edit") -> bool:
        linked = self._mutate(lambda session: link_file(session, self.ctx, task_id, path, action))
        if linked:
            self._sync_watcher(task_id)
        return linked

    def unlink_file(self, task_id: int, path: str) -> bool:
        def operation(session: Session) -> bool:
            self._get_task(session, task_id)
            return unlink_file(session, self.ctx, task_id, path)

        removed = self._mutate(operation)
        if removed:
            self._sync_watcher(task_id)
        return removed

    def list_links(self, task_id: int) -> list[str]:
        with self.store.session() as session:
            self._get_task(session, task_id)
            return list_links(session, self.ctx, task_id)

    def watch_files(self, task_id: int, action: str = "list", paths: Optional[list[str]] = None) -> list[str]:
        """Watch, unwatch or list the files of a task. Returns the current links."""
        if action not in WATCH_ACTIONS:
            raise TaskValidationError(
                f"Invalid action: '{action}'. Must be one of: {', '.join(WATCH_ACTIONS)}", field="action"
            )
        if action != "list" and not paths:
            raise TaskValidationError(f"file_paths is required for action '{action}'", field="file_paths")

        if action == "watch":
            self._mutate(
                lambda session: [link_file(session, self.ctx, task_id, path) for path in paths]
            )
            self._sync_watcher(task_id)
        elif action == "unwatch":

            def operation(session: Session) -> None:
                self._get_task(session, task_id)
                for path in paths:
                    unlink_file(session, self.ctx, task_id, path)

            self._mutate(operation)
            self._sync_watcher(task_id)

        return self.list_links(task_id)

    # Dependencies

    def add_dependency(self, blocker_task_id: int, blocked_task_id: int) -> bool:
        """Record that ``blocker_task_id`` blocks ``blocked_task_id``."""

        def operation(session: Session) -> bool:
            added = add_dependency(session, self.ctx, blocker_task_id, blocked_task_id)
            if added:
                self.activity.log_dependency(
                    session, self.ctx.project_id, blocker_task_id, blocked_task_id, self.agent
                )
            return added

        added = self._mutate(operation)
        if added:
            logger.info("Task %s now blocks task %s", blocker_task_id, blocked_task_id)
        return added

    def remove_dependency(self, blocker_task_id: int, blocked_task_id: int) -> bool:
        def operation(session: Session) -> bool:
            removed = remove_dependency(session, self.ctx, blocker_task_id, blocked_task_id)
            if removed:
                self.activity.log_dependency(
                    session, self.ctx.project_id, blocker_task_id, blocked_task_id, self.agent, removed=True
                )
            return removed

        return self._mutate(operation)

    def get_dependencies(self, task_id: int) -> TaskDependencies:
        with self.store.session() as session:
            return get_dependencies(session, self.ctx, task_id)

    # Pruning

    def prune_files(self, task_id: int) -> PruneResult:
        def operation(session: Session) -> PruneResult:
            self._get_task(session, task_id)
            result = prune_nonexistent_links(session, self.ctx, task_id)
            if result.pruned_count:
                self.activity.log_file_prune(
                    session, self.ctx.project_id, task_id, result.pruned_paths, self.agent
                )
            return result

        result = self._mutate(operation)
        if result.pruned_count:
            self._sync_watcher(task_id)
        return result

    def get_pruned_files(self, task_id: int, limit: int = DEFAULT_PRUNED_LIMIT) -> list[PrunedFileRecord]:
        with self.store.session() as session:
            self._get_task(session, task_id)
            return get_pruned_files(session, self.ctx, task_id, limit=limit)

    def get_all_pruned_files(self, **filters: Any) -> list[PrunedFileRecord]:
        with self.store.session() as session:
            return get_all_pruned_files(session, self.ctx, **filters)

    def link_pruned_file_to_decision(self, pruned_id: int, decision_key: str) -> PrunedFileRecord:
        return self._mutate(
            lambda session: link_pruned_file_to_decision(session, self.ctx, pruned_id, decision_key)
        )

    def record_decision(self, key: str, value: str = "") -> int:
        """Create or update a decision row and return its id."""
        key = (key or "").strip()
        if not key:
            raise TaskValidationError("Decision key cannot be empty", field="key")

        def operation(session: Session) -> int:
            decision = session.execute(
                select(Decision).where(Decision.project_id == self.ctx.project_id, Decision.key == key)
            ).scalar_one_or_none()
            if decision is None:
                decision = Decision(project_id=self.ctx.project_id, key=key, value=value, created_ts=now_ts())
                session.add(decision)
                session.flush()
            else:
                decision.value = value
            return decision.id

        return self._mutate(operation)

    # Configuration

    def get_workflow_config(self) -> WorkflowConfig:
        with self.store.session() as session:
            return load_workflow_config(session, self.workflow_defaults)

    def set_config(self, key: str, value: str) -> WorkflowConfig:
        self._mutate(lambda session: set_config_value(session, key, value))
        return self.get_workflow_config()

    # Detection

    def completion_detector(self) -> CompletionDetector:
        return CompletionDetector(
            self.store,
            self.git_tool,
            self.ctx,
            watcher=self.watcher,
            activity=self.activity,
            workflow_defaults=self.workflow_defaults,
            agent=self.agent,
        )

    def detect_and_complete_on_staging(self) -> int:
        return self.completion_detector().detect_and_complete_on_staging()

    def detect_and_archive_on_commit(self) -> int:
        return self.completion_detector().detect_and_archive_on_commit()

    def run_detection(self) -> DetectionReport:
        return self.completion_detector().run_all()

    def detect_stale(self) -> int:
        detector = StaleTaskDetector(
            self.store,
            self.ctx,
            activity=self.activity,
            workflow_defaults=self.workflow_defaults,
            agent=self.agent,
        )
        return detector.detect_and_transition_stale()

    def watcher_status(self) -> WatcherStatus:
        if self.watcher is None:
            return WatcherStatus(running=False, files_watched=0, tasks_watched=0)
        return self.watcher.get_status()
