"""Tests for workflow configuration resolution."""

import pytest
from pydantic import ValidationError

from tasktrail.config.settings import WorkflowSettings
from tasktrail.errors import TaskValidationError
from tasktrail.models.workflow_config import WorkflowConfig, load_workflow_config, set_config_value


def test_defaults(store):
    with store.session() as session:
        config = load_workflow_config(session)

    assert config == WorkflowConfig()
    assert config.require_all_files_staged is True
    assert config.task_stale_hours_in_progress == 2


def test_settings_supply_defaults(store, monkeypatch):
    monkeypatch.setenv("TASKTRAIL_GIT_AUTO_ARCHIVE_ON_COMMIT", "false")

    with store.session() as session:
        config = load_workflow_config(session, WorkflowSettings())

    assert config.git_auto_archive_on_commit is False


def test_config_table_overrides_settings(store):
    with store.transaction() as session:
        set_config_value(session, "require_all_files_staged", "false")
        set_config_value(session, "task_stale_hours_in_progress", "6")

    with store.session() as session:
        config = load_workflow_config(session, WorkflowSettings(require_all_files_staged=True))

    assert config.require_all_files_staged is False
    assert config.task_stale_hours_in_progress == 6


def test_set_overwrites_existing_value(store):
    with store.transaction() as session:
        set_config_value(session, "git_auto_complete_on_stage", "false")
    with store.transaction() as session:
        set_config_value(session, "git_auto_complete_on_stage", "true")

    with store.session() as session:
        assert load_workflow_config(session).git_auto_complete_on_stage is True


def test_unknown_key_is_rejected(store):
    with store.transaction() as session:
        with pytest.raises(TaskValidationError) as exc_info:
            set_config_value(session, "auto_merge", "true")
    assert "Unknown config key" in str(exc_info.value)


def test_unparseable_value_is_rejected(store):
    with store.transaction() as session:
        with pytest.raises(TaskValidationError):
            set_config_value(session, "task_stale_hours_in_progress", "soon")


def test_config_is_immutable():
    config = WorkflowConfig()
    with pytest.raises(ValidationError):
        config.require_all_files_staged = False
