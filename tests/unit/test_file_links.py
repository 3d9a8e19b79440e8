"""Tests for the file link registry."""

from pathlib import Path

import pytest

from tasktrail.errors import TaskNotFoundError, TaskValidationError
from tasktrail.file_links import link_file, links_for_active_tasks, list_links, unlink_file


def _task(service, title="Linked task"):
    return service.create_task({"title": title, "layer": "planning"})


def test_link_is_idempotent(service, store, project):
    task = _task(service)

    with store.transaction() as session:
        assert link_file(session, project, task.id, "src/app.py", "create") is True
        assert link_file(session, project, task.id, "src/app.py", "edit") is False

    with store.session() as session:
        assert list_links(session, project, task.id) == ["src/app.py"]


def test_paths_are_normalized(service, store, project):
    task = _task(service)

    with store.transaction() as session:
        link_file(session, project, task.id, "./src/app.py")
        assert link_file(session, project, task.id, "src//app.py") is False
        link_file(session, project, task.id, str(project.project_root / "docs" / "guide.md"))

    with store.session() as session:
        assert list_links(session, project, task.id) == ["docs/guide.md", "src/app.py"]


def test_path_outside_project_is_rejected(service, store, project):
    task = _task(service)

    with store.transaction() as session:
        with pytest.raises(TaskValidationError):
            link_file(session, project, task.id, str(Path("/elsewhere/file.py")))


def test_dotdot_segments_are_collapsed(service, store, project):
    task = _task(service)

    with store.transaction() as session:
        assert link_file(session, project, task.id, "src/../a.ts") is True
        assert link_file(session, project, task.id, "a.ts") is False

    with store.session() as session:
        assert list_links(session, project, task.id) == ["a.ts"]


@pytest.mark.parametrize("path", ["../outside.ts", "src/../../outside.ts", ".."])
def test_relative_path_climbing_out_is_rejected(service, store, project, path):
    task = _task(service)

    with store.transaction() as session:
        with pytest.raises(TaskValidationError) as exc_info:
            link_file(session, project, task.id, path)
    assert exc_info.value.field == "file_path"
    assert "outside the project root" in str(exc_info.value)


def test_create_task_rejects_path_outside_project(service):
    with pytest.raises(TaskValidationError):
        service.create_task(
            {"title": "Escaping", "layer": "business", "watch_files": ["../outside.ts", "a.ts"]}
        )

    assert service.list_tasks() == []


def test_unknown_action_is_rejected(service, store, project):
    task = _task(service)

    with store.transaction() as session:
        with pytest.raises(TaskValidationError) as exc_info:
            link_file(session, project, task.id, "a.py", "rename")
    assert exc_info.value.field == "action"


def test_link_to_missing_task(store, project):
    with store.transaction() as session:
        with pytest.raises(TaskNotFoundError):
            link_file(session, project, 404, "a.py")


def test_unlink(service, store, project):
    task = _task(service)
    with store.transaction() as session:
        link_file(session, project, task.id, "a.py")
        link_file(session, project, task.id, "b.py")

    with store.transaction() as session:
        assert unlink_file(session, project, task.id, "a.py") is True
        assert unlink_file(session, project, task.id, "a.py") is False

    with store.session() as session:
        assert list_links(session, project, task.id) == ["b.py"]


def test_links_for_active_tasks_skip_terminal_tasks(service, store, project):
    active = _task(service, "active")
    done = _task(service, "done")
    rejected = _task(service, "rejected")
    for task in (active, done, rejected):
        service.link_file(task.id, f"{task.title}.py")
    service.move_task(done.id, "done")
    service.move_task(rejected.id, "rejected")

    with store.session() as session:
        links = links_for_active_tasks(session, project.project_id)

    assert links == {active.id: ["active.py"], done.id: ["done.py"]}
