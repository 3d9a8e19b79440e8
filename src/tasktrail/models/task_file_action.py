"""
Task file action model for tasktrail.

This module provides the FileAction model describing a file a task expects
to touch. The action is informational and does not gate behavior.
"""

import posixpath
from typing import Literal

from pydantic import BaseModel, field_validator

FileActionType = Literal["create", "edit", "delete"]

VALID_FILE_ACTIONS: tuple[str, ...] = ("create", "edit", "delete")


def normalize_path(path: str) -> str:
    """Normalize a linked path to POSIX form with `.` and `..` segments collapsed."""
    cleaned = path.strip().replace("\\", "/")
    if not cleaned:
        return cleaned
    normalized = posixpath.normpath(cleaned)
    if normalized.startswith("//"):
        normalized = "/" + normalized.lstrip("/")
    return "" if normalized == "." else normalized


class FileAction(BaseModel):
    """A file a task will create, edit or delete."""

    action: FileActionType = "edit"
    path: str

    @field_validator("path")
    @classmethod
    def validate_path(cls, value: str) -> str:
        normalized = normalize_path(value)
        if not normalized:
            raise ValueError("path must be a non-empty string")
        return normalized


def file_actions_from_watch_files(watch_files: "list[str] | None") -> "list[FileAction] | None":
    """Convert the legacy watch_files list into edit actions."""
    if not watch_files:
        return None
    return [FileAction(action="edit", path=path) for path in watch_files]
