"""
Models package for tasktrail.

This package contains the pydantic models used for task input, read views
and lifecycle results.
"""

from .lifecycle import DetectionReport, TransitionResult, WatcherStatus
from .pruned_file import PrunedFileRecord, PruneResult
from .task_file_action import FileAction, FileActionType, normalize_path
from .task_layer import FILE_OPTIONAL_LAYERS, FILE_REQUIRED_LAYERS, STANDARD_LAYERS
from .task_params import (
    BATCH_MAX_ITEMS,
    DEFAULT_PRIORITY,
    TaskCreateParams,
    TaskUpdateParams,
    parse_params,
)
from .task_record import (
    ActivityRecord,
    BatchCreateResult,
    BatchItemResult,
    TaskDependencies,
    TaskRecord,
    TaskSummary,
)
from .task_status import (
    ID_TO_STATUS,
    STATUS_TO_ID,
    TERMINAL_STATUSES,
    TaskStatus,
    parse_status,
    status_from_id,
)
from .workflow_config import WorkflowConfig, load_workflow_config

__all__ = [
    "TaskStatus",
    "STATUS_TO_ID",
    "ID_TO_STATUS",
    "TERMINAL_STATUSES",
    "parse_status",
    "status_from_id",
    "FileAction",
    "FileActionType",
    "normalize_path",
    "FILE_REQUIRED_LAYERS",
    "FILE_OPTIONAL_LAYERS",
    "STANDARD_LAYERS",
    "TaskCreateParams",
    "TaskUpdateParams",
    "parse_params",
    "BATCH_MAX_ITEMS",
    "DEFAULT_PRIORITY",
    "TaskRecord",
    "ActivityRecord",
    "TaskSummary",
    "TaskDependencies",
    "BatchCreateResult",
    "BatchItemResult",
    "PrunedFileRecord",
    "PruneResult",
    "TransitionResult",
    "DetectionReport",
    "WatcherStatus",
    "WorkflowConfig",
    "load_workflow_config",
]
