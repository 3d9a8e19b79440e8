"""
Project context for tasktrail.

Every operation is scoped to one project. The context is resolved once per
invocation and passed explicitly to each call.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sqlalchemy import select

from .db.engine import TaskStore
from .db.schema import Project
from .errors import TaskValidationError
from .git_tool import GitTool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectContext:
    """Identity and location of the project being tracked."""

    project_id: int
    project_name: str
    project_root: Path

    def resolve(self, relative_path: str) -> Path:
        """Absolute location of a project-relative path."""
        return self.project_root / relative_path


def resolve_project(
    store: TaskStore,
    name: Optional[str] = None,
    root: "Path | str | None" = None,
    git_tool: Optional[GitTool] = None,
) -> ProjectContext:
    """
    Look up the project by name, creating it on first use.

    When no name is given it is derived from the git remote or the project
    directory.
    """
    project_root = Path(root or Path.cwd()).resolve()
    if not name:
        name = (git_tool or GitTool(project_root)).extract_project_name()
    name = name.strip()
    if not name:
        raise TaskValidationError("Project name cannot be empty", field="project")

    with store.transaction() as session:
        project = session.execute(select(Project).where(Project.name == name)).scalar_one_or_none()
        if project is None:
            project = Project(name=name, root_path=str(project_root))
            session.add(project)
            session.flush()
            logger.info("Registered project %s (id=%s) at %s", name, project.id, project_root)
        elif project.root_path != str(project_root):
            project.root_path = str(project_root)
        return ProjectContext(project_id=project.id, project_name=project.name, project_root=project_root)
