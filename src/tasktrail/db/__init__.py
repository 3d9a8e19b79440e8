"""Relational store for tasktrail."""

from .engine import TaskStore
from .schema import (
    ActivityLogEntry,
    Base,
    ConfigEntry,
    Decision,
    Project,
    Task,
    TaskDetails,
    TaskFileLink,
    TaskPrunedFile,
    TaskTag,
    now_ts,
)

__all__ = [
    "TaskStore",
    "Base",
    "Project",
    "Task",
    "TaskDetails",
    "TaskTag",
    "TaskFileLink",
    "TaskPrunedFile",
    "Decision",
    "ConfigEntry",
    "ActivityLogEntry",
    "now_ts",
]
