"""Integration tests for TaskService operations."""

import json

import pytest
from sqlalchemy import select, update

from tasktrail.db.schema import ActivityLogEntry, Task
from tasktrail.errors import TaskNotFoundError, TaskValidationError
from tasktrail.models.task_params import BATCH_MAX_ITEMS
from tasktrail.models.task_status import TaskStatus
from tasktrail.task_service import TaskService
from tasktrail.watcher.file_watcher import FileWatcher


class QuietObserver:
    def schedule(self, handler, path, recursive=False):
        return object()

    def unschedule(self, watch):
        pass

    def unschedule_all(self):
        pass

    def start(self):
        pass

    def stop(self):
        pass

    def join(self, timeout=None):
        pass


class TestCreateAndRead:
    def test_create_full_task(self, service):
        task = service.create_task(
            {
                "title": "Add login form",
                "description": "Email and password",
                "notes": "Reuse the button component",
                "acceptance_criteria": [{"type": "tests_pass", "command": "pytest tests/ui"}],
                "priority": 3,
                "layer": "presentation",
                "tags": ["ui", "auth"],
                "assigned_agent": "frontend-bot",
                "file_actions": [
                    {"action": "create", "path": "ui/login.py"},
                    {"action": "edit", "path": "ui/app.py"},
                ],
            }
        )

        assert task.status is TaskStatus.TODO
        assert task.priority == 3
        assert task.tags == ["auth", "ui"]
        assert task.files == ["ui/app.py", "ui/login.py"]
        assert task.acceptance_criteria == "1. tests_pass: pytest tests/ui"
        assert task.acceptance_checks == [{"type": "tests_pass", "command": "pytest tests/ui"}]
        assert task.created_by_agent == "tester"
        assert service.get_task(task.id) == task

    def test_create_rejects_missing_file_actions(self, service):
        with pytest.raises(TaskValidationError):
            service.create_task({"title": "Refactor models", "layer": "data"})
        assert service.list_tasks() == []

    def test_get_missing_task(self, service):
        with pytest.raises(TaskNotFoundError):
            service.get_task(12345)

    def test_create_is_audited(self, service, store):
        task = service.create_task({"title": "Audit me", "layer": "planning"})

        with store.session() as session:
            actions = session.execute(
                select(ActivityLogEntry.action_type).where(ActivityLogEntry.target == f"task:{task.id}")
            ).scalars().all()
        assert actions == ["task_create"]

    def test_list_filters(self, service):
        service.create_task({"title": "Low", "priority": 1, "layer": "planning", "tags": ["x"]})
        high = service.create_task({"title": "High", "priority": 4, "layer": "review", "assigned_agent": "bot"})
        service.move_task(high.id, "in_progress")

        assert [task.title for task in service.list_tasks()] == ["High", "Low"]
        assert [task.title for task in service.list_tasks(status="in_progress")] == ["High"]
        assert [task.title for task in service.list_tasks(layer="planning")] == ["Low"]
        assert [task.title for task in service.list_tasks(assigned_agent="bot")] == ["High"]
        assert [task.title for task in service.list_tasks(tag="x")] == ["Low"]
        assert len(service.list_tasks(limit=1)) == 1

        with pytest.raises(TaskValidationError):
            service.list_tasks(status="shipped")


class TestBatch:
    def test_atomic_batch(self, service):
        result = service.create_tasks_batch(
            [{"title": "One", "layer": "planning"}, {"title": "Two", "layer": "planning"}]
        )

        assert result.success
        assert result.created == 2
        assert [item.task_id for item in result.results] == [task.id for task in sorted(service.list_tasks(), key=lambda t: t.id)]

    def test_atomic_batch_fails_as_a_whole(self, service):
        with pytest.raises(TaskValidationError) as exc_info:
            service.create_tasks_batch([{"title": "Fine", "layer": "planning"}, {"title": "Bad", "layer": "data"}])

        assert str(exc_info.value).startswith("Item 1:")
        assert service.list_tasks() == []

    def test_non_atomic_batch_reports_failures(self, service):
        result = service.create_tasks_batch(
            [{"title": "Fine", "layer": "planning"}, {"title": "Bad", "layer": "data"}], atomic=False
        )

        assert not result.success
        assert result.created == 1
        assert result.failed == 1
        assert result.results[1].title == "Bad"
        assert "file_actions is required" in result.results[1].error
        assert [task.title for task in service.list_tasks()] == ["Fine"]

    def test_batch_limit(self, service):
        items = [{"title": f"Task {i}", "layer": "planning"} for i in range(BATCH_MAX_ITEMS + 1)]
        with pytest.raises(TaskValidationError) as exc_info:
            service.create_tasks_batch(items)
        assert "limited to 50 items" in str(exc_info.value)

    def test_empty_batch(self, service):
        with pytest.raises(TaskValidationError):
            service.create_tasks_batch([])


class TestUpdate:
    def test_update_fields(self, service):
        task = service.create_task({"title": "Draft", "layer": "planning", "tags": ["a"], "description": "old"})

        updated = service.update_task(
            task.id, {"title": "Final", "priority": 4, "tags": ["b", "c"], "description": "new"}
        )

        assert updated.title == "Final"
        assert updated.priority == 4
        assert updated.tags == ["b", "c"]
        assert updated.description == "new"
        assert updated.updated_ts >= task.updated_ts

    def test_file_actions_are_added(self, service):
        task = service.create_task(
            {"title": "Code", "layer": "business", "file_actions": [{"path": "a.py"}]}
        )

        updated = service.update_task(task.id, {"file_actions": [{"path": "b.py"}]})

        assert updated.files == ["a.py", "b.py"]

    def test_watch_files_parameter_on_update(self, service):
        task = service.create_task({"title": "Code", "layer": "planning"})

        updated = service.update_task(task.id, {"watch_files": ["c.py"]})

        assert updated.files == ["c.py"]

    def test_moving_to_file_required_layer_needs_files(self, service):
        task = service.create_task({"title": "Idea", "layer": "planning"})

        with pytest.raises(TaskValidationError):
            service.update_task(task.id, {"layer": "business"})

        updated = service.update_task(task.id, {"layer": "business", "file_actions": []})
        assert updated.layer == "business"

    def test_nothing_to_update(self, service):
        task = service.create_task({"title": "Idle", "layer": "planning"})
        with pytest.raises(TaskValidationError):
            service.update_task(task.id, {})

    def test_update_missing_task(self, service):
        with pytest.raises(TaskNotFoundError):
            service.update_task(999, {"title": "Ghost"})


class TestLinksAndWatching:
    @pytest.fixture()
    def watched(self, store, project, git_tool):
        watcher = FileWatcher(project.project_root, lambda: {}, observer_factory=QuietObserver)
        watcher.start()
        return TaskService(store, project, git_tool=git_tool, watcher=watcher)

    def test_watch_unwatch_list(self, watched):
        task = watched.create_task({"title": "Watch me", "layer": "planning"})

        assert watched.watch_files(task.id, "watch", ["a.py", "b.py"]) == ["a.py", "b.py"]
        assert watched.watcher_status().files_watched == 2
        assert watched.watch_files(task.id, "unwatch", ["a.py"]) == ["b.py"]
        assert watched.watch_files(task.id, "list") == ["b.py"]
        assert watched.watcher.watched_files() == ["b.py"]

    def test_watch_requires_paths(self, watched):
        task = watched.create_task({"title": "Watch me", "layer": "planning"})
        with pytest.raises(TaskValidationError):
            watched.watch_files(task.id, "watch")
        with pytest.raises(TaskValidationError):
            watched.watch_files(task.id, "follow", ["a.py"])

    def test_terminal_move_unregisters(self, watched):
        task = watched.create_task({"title": "Drop", "layer": "planning", "file_actions": [{"path": "x.py"}]})
        assert watched.watcher_status().tasks_watched == 1

        watched.move_task(task.id, "rejected")

        assert watched.watcher_status().tasks_watched == 0

    def test_link_and_unlink(self, watched):
        task = watched.create_task({"title": "Links", "layer": "planning"})

        assert watched.link_file(task.id, "a.py") is True
        assert watched.link_file(task.id, "a.py") is False
        assert watched.watcher.tasks_for_path("a.py") == {task.id}
        assert watched.unlink_file(task.id, "a.py") is True
        assert watched.list_links(task.id) == []
        assert watched.watcher_status().tasks_watched == 0

    def test_status_without_watcher(self, service):
        status = service.watcher_status()
        assert not status.running
        assert status.files_watched == 0


class TestStaleDetection:
    def _age(self, store, task_id, hours):
        with store.transaction() as session:
            session.execute(
                update(Task).where(Task.id == task_id).values(updated_ts=Task.updated_ts - hours * 3600)
            )

    def test_idle_in_progress_task_moves_to_waiting_review(self, service, store):
        stale = service.create_task({"title": "Stuck", "layer": "planning", "status": "in_progress"})
        fresh = service.create_task({"title": "Busy", "layer": "planning", "status": "in_progress"})
        self._age(store, stale.id, 3)

        assert service.detect_stale() == 1

        assert service.get_task(stale.id).status is TaskStatus.WAITING_REVIEW
        assert service.get_task(fresh.id).status is TaskStatus.IN_PROGRESS

    def test_threshold_from_config(self, service, store):
        task = service.create_task({"title": "Slow", "layer": "planning", "status": "in_progress"})
        self._age(store, task.id, 3)
        service.set_config("task_stale_hours_in_progress", "4")

        assert service.detect_stale() == 0

    def test_disabled(self, service, store):
        task = service.create_task({"title": "Stuck", "layer": "planning", "status": "in_progress"})
        self._age(store, task.id, 10)
        service.set_config("task_auto_stale_enabled", "false")

        assert service.detect_stale() == 0
        assert service.get_task(task.id).status is TaskStatus.IN_PROGRESS


def test_prune_files_is_audited(service, store, temp_repo):
    (temp_repo / "keep.py").write_text("x")
    task = service.create_task(
        {"title": "Prune", "layer": "business", "file_actions": [{"path": "keep.py"}, {"path": "gone.py"}]}
    )

    result = service.prune_files(task.id)

    assert result.pruned_paths == ["gone.py"]
    with store.session() as session:
        details = session.execute(
            select(ActivityLogEntry.details).where(ActivityLogEntry.action_type == "task_file_prune")
        ).scalar_one()
    assert json.loads(details) == {"paths": ["gone.py"]}


def test_record_decision_upserts(service):
    first = service.record_decision("use-sqlite", "v1")
    second = service.record_decision("use-sqlite", "v2")
    assert first == second
    with pytest.raises(TaskValidationError):
        service.record_decision("  ")


def test_task_history(service):
    task = service.create_task({"title": "Track me", "layer": "planning"})
    service.move_task(task.id, "in_progress")
    service.update_task(task.id, {"priority": 3})

    history = service.task_history(task.id)

    assert [entry.action_type for entry in history] == ["task_create", "task_status_change", "task_update"]
    assert history[1].details == {"old_status": "todo", "new_status": "in_progress"}
    assert all(entry.agent == "tester" for entry in history)
    with pytest.raises(TaskNotFoundError):
        service.task_history(999)
