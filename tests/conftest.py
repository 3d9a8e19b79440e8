"""
Pytest configuration and shared fixtures.
"""

import subprocess
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from tasktrail.db.engine import TaskStore
from tasktrail.git_tool import GitTool
from tasktrail.project_context import ProjectContext, resolve_project
from tasktrail.task_service import TaskService


def git(repo_path: Path, *args: str) -> str:
    """Run a git command inside the repo and return its stdout."""
    result = subprocess.run(
        ["git", *args], cwd=repo_path, check=True, capture_output=True, text=True
    )
    return result.stdout


def write_file(repo_path: Path, relative_path: str, content: str = "content\n") -> Path:
    """Helper to write content to a file inside the repo."""
    target = repo_path / relative_path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    return target


@pytest.fixture()
def temp_repo(tmp_path: Path) -> Path:
    """Create a temporary git repository for testing."""
    repo_path = tmp_path / "repo"
    repo_path.mkdir()
    git(repo_path, "init")
    git(repo_path, "config", "user.name", "Test User")
    git(repo_path, "config", "user.email", "test@example.com")
    git(repo_path, "config", "commit.gpgsign", "false")
    return repo_path


@pytest.fixture()
def store(tmp_path: Path) -> Generator[TaskStore, None, None]:
    """A file-backed SQLite store with the schema created."""
    task_store = TaskStore(f"sqlite:///{tmp_path / 'db' / 'tasktrail.db'}")
    task_store.create_all()
    yield task_store
    task_store.dispose()


@pytest.fixture()
def project(store: TaskStore, temp_repo: Path) -> ProjectContext:
    return resolve_project(store, "demo", temp_repo)


@pytest.fixture()
def git_tool(temp_repo: Path) -> GitTool:
    return GitTool(temp_repo)


@pytest.fixture()
def service(store: TaskStore, project: ProjectContext, git_tool: GitTool) -> TaskService:
    return TaskService(store, project, git_tool=git_tool, agent="tester")


# Pytest configuration
def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: mark test as slow running (takes more than 5 seconds)")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "cli: mark test as CLI test")


def pytest_collection_modifyitems(config: Any, items: list[Any]) -> None:
    """Modify test collection to add markers based on file location."""
    for item in items:
        path = str(item.fspath)
        if "unit" in path:
            item.add_marker(pytest.mark.unit)
        elif "integration" in path:
            item.add_marker(pytest.mark.integration)
        elif "cli" in path:
            item.add_marker(pytest.mark.cli)
