"""
Lifecycle result models for tasktrail.

This module provides the results of status transitions, detector runs and
watcher status queries.
"""

from typing import Optional

from pydantic import BaseModel

from .task_status import TaskStatus


class TransitionResult(BaseModel):
    """Outcome of applying a status transition."""

    task_id: int
    old_status: TaskStatus
    new_status: TaskStatus
    changed: bool
    message: str


class DetectionReport(BaseModel):
    """Counts from one run of both completion passes."""

    completed_on_stage: int = 0
    archived_on_commit: int = 0
    skipped_reason: Optional[str] = None


class WatcherStatus(BaseModel):
    """Snapshot of the file watcher registry."""

    running: bool
    files_watched: int
    tasks_watched: int
