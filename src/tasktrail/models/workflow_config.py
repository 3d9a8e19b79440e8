"""
Workflow configuration for tasktrail.

WorkflowConfig is resolved once per invocation: defaults come from
``Settings.workflow`` and rows in the ``config`` table override them.
"""

from typing import Optional

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config.settings import WorkflowSettings
from ..db.schema import ConfigEntry
from ..errors import TaskValidationError


class WorkflowConfig(BaseModel):
    """Typed view of the workflow flags."""

    git_auto_complete_on_stage: bool = True
    git_auto_archive_on_commit: bool = True
    require_all_files_staged: bool = True
    require_all_files_committed_for_archive: bool = True
    task_auto_stale_enabled: bool = True
    task_stale_hours_in_progress: int = Field(default=2, ge=1)

    model_config = {"frozen": True}

    @classmethod
    def keys(cls) -> list[str]:
        return list(cls.model_fields)


def load_workflow_config(
    session: Session, defaults: Optional[WorkflowSettings] = None
) -> WorkflowConfig:
    """Merge settings defaults with overrides stored in the config table."""
    values = (defaults or WorkflowSettings()).model_dump()
    rows = session.execute(
        select(ConfigEntry.key, ConfigEntry.value).where(ConfigEntry.key.in_(WorkflowConfig.keys()))
    ).all()
    for key, value in rows:
        values[key] = value
    try:
        return WorkflowConfig(**values)
    except ValidationError as exc:
        raise TaskValidationError(f"Invalid workflow configuration: {exc}") from None


def set_config_value(session: Session, key: str, value: str) -> None:
    """Store a workflow override after checking that it parses."""
    if key not in WorkflowConfig.keys():
        valid = ", ".join(WorkflowConfig.keys())
        raise TaskValidationError(f"Unknown config key: '{key}'. Must be one of: {valid}", field="key")
    try:
        WorkflowConfig(**{key: value})
    except ValidationError as exc:
        raise TaskValidationError(f"Invalid value for {key}: {value!r} ({exc.errors()[0]['msg']})", field=key) from None
    entry = session.get(ConfigEntry, key)
    if entry is None:
        session.add(ConfigEntry(key=key, value=str(value)))
    else:
        entry.value = str(value)
