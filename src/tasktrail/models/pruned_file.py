"""
Pruned file models for tasktrail.

This module provides the audit record for a file removed from a task's
links because it no longer exists on disk, and the result of a prune run.
"""

from typing import Optional

from pydantic import BaseModel


class PrunedFileRecord(BaseModel):
    """Immutable audit row for a pruned file link."""

    id: int
    task_id: int
    project_id: int
    file_path: str
    pruned_ts: int
    linked_decision: Optional[str] = None
    task_title: Optional[str] = None


class PruneResult(BaseModel):
    """Counts reported by a prune run."""

    task_id: int
    pruned_count: int = 0
    remaining_count: int = 0
    pruned_paths: list[str] = []
