"""Tests for the task state machine."""

import json

import pytest
from sqlalchemy import select, update

from tasktrail.activity_log import STATUS_CHANGE, ActivityLog
from tasktrail.db.schema import ActivityLogEntry, Task
from tasktrail.errors import (
    InvariantViolationError,
    TaskNotFoundError,
    TaskValidationError,
    TerminalStatusError,
    TransientStoreError,
    TransitionConflictError,
)
from tasktrail.models.task_status import (
    ID_TO_STATUS,
    STATUS_TO_ID,
    TERMINAL_STATUSES,
    TaskStatus,
    parse_status,
    status_from_id,
)
from tasktrail.state_machine import (
    VALID_TRANSITIONS,
    apply_transition,
    can_transition,
    load_task_for_update,
    validate_transition,
)


def _status_rows(store, project_id, task_id):
    with store.session() as session:
        rows = session.execute(
            select(ActivityLogEntry).where(
                ActivityLogEntry.project_id == project_id,
                ActivityLogEntry.target == f"task:{task_id}",
                ActivityLogEntry.action_type == STATUS_CHANGE,
            )
        ).scalars()
        return [json.loads(row.details) for row in rows]


class TestStatusMapping:
    def test_every_status_has_a_distinct_id(self):
        assert sorted(STATUS_TO_ID.values()) == [1, 2, 3, 4, 5, 6, 7]
        assert len(ID_TO_STATUS) == len(TaskStatus)

    def test_mapping_is_bidirectional(self):
        for status in TaskStatus:
            assert status_from_id(status.status_id) is status

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {TaskStatus.ARCHIVED, TaskStatus.REJECTED}
        assert TaskStatus.ARCHIVED.is_terminal
        assert not TaskStatus.DONE.is_terminal

    def test_parse_status_accepts_names_case_insensitively(self):
        assert parse_status("In_Progress") is TaskStatus.IN_PROGRESS

    def test_parse_status_rejects_unknown(self):
        with pytest.raises(TaskValidationError) as exc_info:
            parse_status("finished")
        assert exc_info.value.field == "status"

    def test_unknown_status_id(self):
        with pytest.raises(TaskValidationError):
            status_from_id(42)


class TestTransitionTable:
    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.status_id))
    def test_terminal_statuses_allow_nothing(self, status):
        assert VALID_TRANSITIONS[status] == frozenset()
        for target in TaskStatus:
            assert not can_transition(status, target)

    @pytest.mark.parametrize(
        "status",
        [TaskStatus.TODO, TaskStatus.IN_PROGRESS, TaskStatus.WAITING_REVIEW, TaskStatus.BLOCKED, TaskStatus.DONE],
    )
    def test_non_terminal_statuses_reach_every_other_status(self, status):
        assert VALID_TRANSITIONS[status] == frozenset(s for s in TaskStatus if s != status)
        assert not can_transition(status, status)

    def test_validate_rejects_leaving_terminal_status(self):
        with pytest.raises(TerminalStatusError) as exc_info:
            validate_transition("archived", "todo", task_id=7)
        assert "terminal" in str(exc_info.value)
        assert isinstance(exc_info.value, InvariantViolationError)

    def test_validate_rejects_unknown_names(self):
        with pytest.raises(TaskValidationError):
            validate_transition("todo", "shipped")

    def test_validate_accepts_done_to_in_progress(self):
        validate_transition(TaskStatus.DONE, TaskStatus.IN_PROGRESS)


class TestApplyTransition:
    def test_transition_updates_status_and_audits(self, service, store, project):
        task = service.create_task({"title": "Write docs", "layer": "planning"})

        with store.transaction() as session:
            row = load_task_for_update(session, project.project_id, task.id)
            result = apply_transition(session, row, TaskStatus.IN_PROGRESS, "agent-1", ActivityLog())

        assert result.changed
        assert result.old_status is TaskStatus.TODO
        assert result.new_status is TaskStatus.IN_PROGRESS
        assert service.get_task(task.id).status is TaskStatus.IN_PROGRESS
        assert _status_rows(store, project.project_id, task.id) == [
            {"old_status": "todo", "new_status": "in_progress"}
        ]

    def test_same_status_is_a_no_op_without_audit(self, service, store, project):
        task = service.create_task({"title": "Idle", "layer": "planning"})

        with store.transaction() as session:
            row = load_task_for_update(session, project.project_id, task.id)
            result = apply_transition(session, row, "todo", "agent-1")

        assert not result.changed
        assert _status_rows(store, project.project_id, task.id) == []

    def test_done_sets_completed_ts(self, service, store, project):
        task = service.create_task({"title": "Finish", "layer": "planning"})
        assert task.completed_ts is None

        service.move_task(task.id, "done")

        assert service.get_task(task.id).completed_ts is not None

    def test_leaving_terminal_status_is_rejected(self, service):
        task = service.create_task({"title": "Dead end", "layer": "planning"})
        service.move_task(task.id, "rejected")

        with pytest.raises(TerminalStatusError):
            service.move_task(task.id, "todo")
        assert service.get_task(task.id).status is TaskStatus.REJECTED

    def test_compare_and_set_detects_concurrent_change(self, service, store, project):
        task = service.create_task({"title": "Contended", "layer": "planning"})

        with pytest.raises(TransitionConflictError) as exc_info:
            with store.transaction() as session:
                row = load_task_for_update(session, project.project_id, task.id)
                session.execute(
                    update(Task)
                    .where(Task.id == task.id)
                    .values(status_id=TaskStatus.BLOCKED.status_id)
                    .execution_options(synchronize_session=False)
                )
                apply_transition(session, row, TaskStatus.DONE, "agent-1")

        assert isinstance(exc_info.value, TransientStoreError)
        # The whole transaction rolled back.
        assert service.get_task(task.id).status is TaskStatus.TODO

    def test_load_missing_task(self, store, project):
        with store.transaction() as session:
            with pytest.raises(TaskNotFoundError):
                load_task_for_update(session, project.project_id, 999)
