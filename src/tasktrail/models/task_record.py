"""
Task record models for tasktrail.

This module provides read models returned by the task service.
"""

from typing import Any, Optional

from pydantic import BaseModel

from .task_status import TaskStatus, status_from_id


class TaskSummary(BaseModel):
    """Compact task row used by list views."""

    id: int
    title: str
    status: TaskStatus
    priority: int
    layer: Optional[str] = None
    assigned_agent: Optional[str] = None
    updated_ts: int

    @classmethod
    def from_row(cls, task) -> "TaskSummary":
        return cls(
            id=task.id,
            title=task.title,
            status=status_from_id(task.status_id),
            priority=task.priority,
            layer=task.layer,
            assigned_agent=task.assigned_agent,
            updated_ts=task.updated_ts,
        )


class TaskRecord(BaseModel):
    """Complete task view including details, tags and linked files."""

    id: int
    project_id: int
    title: str
    status: TaskStatus
    priority: int
    assigned_agent: Optional[str] = None
    created_by_agent: Optional[str] = None
    layer: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    acceptance_criteria: Optional[str] = None
    acceptance_checks: Optional[list[Any]] = None
    tags: list[str] = []
    files: list[str] = []
    created_ts: int
    updated_ts: int
    completed_ts: Optional[int] = None


class BatchItemResult(BaseModel):
    """Outcome of one item in a batch create."""

    title: str
    success: bool
    task_id: Optional[int] = None
    error: Optional[str] = None


class BatchCreateResult(BaseModel):
    """Outcome of a batch create."""

    created: int
    failed: int
    results: list[BatchItemResult]

    @property
    def success(self) -> bool:
        return self.failed == 0


class ActivityRecord(BaseModel):
    """One audit row from a task's history."""

    id: int
    agent: str
    action_type: str
    details: dict[str, Any] = {}
    ts: int


class TaskDependencies(BaseModel):
    """Tasks blocking a task and tasks it blocks."""

    task_id: int
    blockers: list[TaskSummary] = []
    blocking: list[TaskSummary] = []
