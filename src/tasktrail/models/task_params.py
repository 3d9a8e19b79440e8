"""
Task parameter models for tasktrail.

This module provides the input models for task creation and update, and the
layer policy that requires implementation tasks to declare their files.
"""

import json
from typing import Any, Optional, TypeVar, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..errors import TaskValidationError
from .task_file_action import FileAction, file_actions_from_watch_files
from .task_layer import STANDARD_LAYERS, is_file_required, layer_help
from .task_status import TaskStatus, parse_status

TITLE_MAX_LENGTH = 200
PRIORITY_MIN = 1
PRIORITY_MAX = 4
DEFAULT_PRIORITY = 2
BATCH_MAX_ITEMS = 50

PRIORITY_NAMES: dict[int, str] = {1: "low", 2: "medium", 3: "high", 4: "critical"}

ParamsT = TypeVar("ParamsT", bound=BaseModel)


def _validate_title(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if not value.strip():
        raise ValueError("title is required and cannot be empty")
    return value.strip()


def _validate_layer(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    layer = value.strip().lower()
    if layer not in STANDARD_LAYERS:
        raise ValueError(f"Invalid layer: '{value}'.\n{layer_help()}")
    return layer


def _require_file_actions(layer: Optional[str], file_actions: Optional[list[FileAction]]) -> None:
    if is_file_required(layer) and file_actions is None:
        raise ValueError(
            f"file_actions is required for layer '{layer}'.\n{layer_help()}\n"
            "Use [] for non-file tasks, or switch to a FILE_OPTIONAL layer."
        )


def _normalize_tags(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [part for part in value.split(",")]
    tags = []
    for tag in value:
        tag = str(tag).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


class TaskCreateParams(BaseModel):
    """Parameters accepted by task creation."""

    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = None
    notes: Optional[str] = None
    acceptance_criteria: Optional[Union[str, list[Any]]] = None
    priority: int = Field(default=DEFAULT_PRIORITY, ge=PRIORITY_MIN, le=PRIORITY_MAX)
    assigned_agent: Optional[str] = None
    created_by_agent: Optional[str] = None
    layer: Optional[str] = None
    tags: list[str] = []
    status: TaskStatus = TaskStatus.TODO
    file_actions: Optional[list[FileAction]] = None
    watch_files: Optional[list[str]] = None

    model_config = {"extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: Optional[str]) -> Optional[str]:
        return _validate_title(value)

    @field_validator("layer")
    @classmethod
    def validate_layer(cls, value: Optional[str]) -> Optional[str]:
        return _validate_layer(value)

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, value: Any) -> list[str]:
        return _normalize_tags(value)

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, value: Any) -> TaskStatus:
        try:
            return parse_status(value)
        except TaskValidationError as exc:
            raise ValueError(str(exc)) from None

    @field_validator("file_actions", mode="before")
    @classmethod
    def parse_file_actions(cls, value: Any) -> Any:
        # Agents frequently send the list as a JSON string.
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                raise ValueError(
                    "Invalid file_actions format. Expected a JSON array of {action, path} objects."
                ) from None
        return value

    @model_validator(mode="after")
    def apply_layer_policy(self) -> "TaskCreateParams":
        if self.file_actions is None and self.watch_files:
            self.file_actions = file_actions_from_watch_files(self.watch_files)
        _require_file_actions(self.layer, self.file_actions)
        return self


class TaskUpdateParams(BaseModel):
    """Parameters accepted by task update. Omitted fields stay unchanged."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = None
    notes: Optional[str] = None
    acceptance_criteria: Optional[Union[str, list[Any]]] = None
    priority: Optional[int] = Field(default=None, ge=PRIORITY_MIN, le=PRIORITY_MAX)
    assigned_agent: Optional[str] = None
    layer: Optional[str] = None
    tags: Optional[list[str]] = None
    file_actions: Optional[list[FileAction]] = None
    watch_files: Optional[list[str]] = None

    model_config = {"extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: Optional[str]) -> Optional[str]:
        return _validate_title(value)

    @field_validator("layer")
    @classmethod
    def validate_layer(cls, value: Optional[str]) -> Optional[str]:
        return _validate_layer(value)

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, value: Any) -> Optional[list[str]]:
        if value is None:
            return None
        return _normalize_tags(value)

    @field_validator("file_actions", mode="before")
    @classmethod
    def parse_file_actions(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                raise ValueError(
                    "Invalid file_actions format. Expected a JSON array of {action, path} objects."
                ) from None
        return value

    @model_validator(mode="after")
    def apply_layer_policy(self) -> "TaskUpdateParams":
        if self.file_actions is None and self.watch_files:
            self.file_actions = file_actions_from_watch_files(self.watch_files)
        if self.layer is not None:
            _require_file_actions(self.layer, self.file_actions)
        return self

    def changes(self) -> dict[str, Any]:
        """Fields explicitly provided by the caller."""
        return self.model_dump(exclude_unset=True)


def format_validation_error(exc: ValidationError) -> TaskValidationError:
    """Flatten a pydantic ValidationError into a TaskValidationError."""
    messages = []
    first_field = None
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = str(error.get("msg", "invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        if first_field is None and location:
            first_field = location
        messages.append(f"{location}: {message}" if location else message)
    return TaskValidationError("; ".join(messages), field=first_field)


def parse_params(model: type[ParamsT], data: "ParamsT | dict[str, Any]") -> ParamsT:
    """Build a params model from a dict, raising TaskValidationError on bad input."""
    if isinstance(data, model):
        return data
    if not isinstance(data, dict):
        raise TaskValidationError(f"{model.__name__} expects a mapping, got {type(data).__name__}")
    try:
        return model(**data)
    except ValidationError as exc:
        raise format_validation_error(exc) from None


def process_acceptance_criteria(criteria: "str | list[Any] | None") -> tuple[Optional[str], Optional[str]]:
    """
    Convert acceptance criteria into (text, json) columns.

    Lists (or JSON strings holding a list) of checks are stored as JSON, with
    a numbered human-readable summary in the text column. Other strings are
    stored as plain text.
    """
    if criteria is None or criteria == "" or criteria == []:
        return None, None

    checks: Optional[list[Any]] = None
    if isinstance(criteria, list):
        checks = criteria
    else:
        try:
            parsed = json.loads(criteria)
        except (json.JSONDecodeError, TypeError):
            parsed = None
        if isinstance(parsed, list):
            checks = parsed

    if checks is None:
        return str(criteria), None

    lines = []
    for index, check in enumerate(checks, start=1):
        if isinstance(check, dict):
            target = check.get("command") or check.get("file") or check.get("pattern") or ""
            lines.append(f"{index}. {check.get('type', 'check')}: {target}".rstrip())
        else:
            lines.append(f"{index}. {check}")
    return "\n".join(lines), json.dumps(checks)
