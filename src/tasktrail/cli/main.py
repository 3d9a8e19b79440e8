"""
Command line interface for tasktrail.

Every command works against one project, resolved from ``--root`` (and
``--project`` when the name should not be derived from git).
"""

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import Settings, get_config_manager
from ..db.engine import TaskStore
from ..errors import TaskTrailError
from ..git_tool import GitTool
from ..models.task_params import PRIORITY_NAMES
from ..project_context import resolve_project
from ..task_service import TaskService
from ..utils.jsonl_logger import configure_logging

app = typer.Typer(name="tasktrail", help="Task lifecycle tracking for coding agents")
task_app = typer.Typer(name="task", help="Create, update and move tasks")
file_app = typer.Typer(name="file", help="Manage the files linked to a task")
pruned_app = typer.Typer(name="pruned", help="Inspect pruned file links")
decision_app = typer.Typer(name="decision", help="Record decisions")
hook_app = typer.Typer(name="hook", help="Git hook entry points")
config_app = typer.Typer(name="config", help="Show and change workflow flags")

app.add_typer(task_app)
app.add_typer(file_app)
app.add_typer(pruned_app)
app.add_typer(decision_app)
app.add_typer(hook_app)
app.add_typer(config_app)

console = Console()
err_console = Console(stderr=True)

HOOK_COMMANDS = {
    "pre-commit": "tasktrail hook on-stage || true",
    "post-commit": "tasktrail hook on-commit || true",
}


@dataclass
class CliState:
    root: Path
    project: Optional[str]
    db_url: Optional[str]
    agent: Optional[str]
    service: Optional[TaskService] = None
    settings: Optional[Settings] = None


def _service(ctx: typer.Context) -> TaskService:
    state: CliState = ctx.obj
    if state.service is not None:
        return state.service

    manager = get_config_manager()
    settings = manager.get_config()
    configure_logging(settings.logging)

    root = state.root.resolve()
    git_tool = GitTool(root, timeout=settings.git_timeout)
    store = TaskStore.from_settings(settings.database, manager.database_url(root, state.db_url))
    store.create_all()
    project = resolve_project(store, state.project or settings.project_name, root, git_tool=git_tool)

    state.settings = settings
    state.service = TaskService(
        store,
        project,
        git_tool=git_tool,
        workflow_defaults=settings.workflow,
        agent=state.agent or settings.agent,
    )
    return state.service


def _fail(error: Exception) -> None:
    err_console.print(f"[red]Error:[/red] {escape(str(error))}")
    raise typer.Exit(1)


def _parse_file_option(values: Optional[List[str]], no_files: bool) -> Optional[list]:
    """Turn ``--file action:path`` options into file action dicts."""
    if no_files:
        return []
    if not values:
        return None
    actions = []
    for value in values:
        action, sep, path = value.partition(":")
        if sep and action in ("create", "edit", "delete"):
            actions.append({"action": action, "path": path})
        else:
            actions.append({"action": "edit", "path": value})
    return actions


def _tags(value: Optional[str]) -> Optional[list]:
    if value is None:
        return None
    return [tag.strip() for tag in value.split(",") if tag.strip()]


@app.callback()
def main(
    ctx: typer.Context,
    root: Path = typer.Option(Path("."), "--root", "-r", help="Project root directory"),
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project name"),
    db: Optional[str] = typer.Option(None, "--db", help="SQLAlchemy database URL"),
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Agent name recorded on changes"),
):
    """Task lifecycle tracking for coding agents."""
    ctx.obj = CliState(root=root, project=project, db_url=db, agent=agent)


# Task commands

@task_app.command("create")
def task_create(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Task title"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    notes: Optional[str] = typer.Option(None, "--notes"),
    criteria: Optional[str] = typer.Option(None, "--criteria", help="Acceptance criteria (text or JSON list)"),
    priority: int = typer.Option(2, "--priority", help="1=low, 2=medium, 3=high, 4=critical"),
    layer: Optional[str] = typer.Option(None, "--layer", "-l"),
    tags: Optional[str] = typer.Option(None, "--tags", help="Comma-separated tags"),
    assign: Optional[str] = typer.Option(None, "--assign", help="Assigned agent"),
    status: str = typer.Option("todo", "--status"),
    files: Optional[List[str]] = typer.Option(None, "--file", "-f", help="[action:]path, repeatable"),
    no_files: bool = typer.Option(False, "--no-files", help="Declare that the task touches no files"),
):
    """Create a new task."""
    service = _service(ctx)
    params = {
        "title": title,
        "description": description,
        "notes": notes,
        "acceptance_criteria": criteria,
        "priority": priority,
        "layer": layer,
        "tags": _tags(tags) or [],
        "assigned_agent": assign,
        "created_by_agent": ctx.obj.agent,
        "status": status,
        "file_actions": _parse_file_option(files, no_files),
    }
    try:
        task = service.create_task(params)
    except TaskTrailError as e:
        _fail(e)
    typer.echo(f"Created task #{task.id}: {task.title} [{task.status.value}]")
    for path in task.files:
        typer.echo(f"  linked {path}")


@task_app.command("batch")
def task_batch(
    ctx: typer.Context,
    batch_file: Path = typer.Argument(..., help="JSON file holding a list of tasks"),
    atomic: bool = typer.Option(True, "--atomic/--non-atomic", help="All-or-nothing creation"),
):
    """Create up to 50 tasks from a JSON file."""
    service = _service(ctx)
    try:
        items = json.loads(batch_file.read_text())
        result = service.create_tasks_batch(items, atomic=atomic)
    except (OSError, json.JSONDecodeError, TaskTrailError) as e:
        _fail(e)
    for item in result.results:
        if item.success:
            typer.echo(f"  created #{item.task_id}: {item.title}")
        else:
            typer.echo(f"  failed {item.title}: {item.error}")
    typer.echo(f"Created {result.created}, failed {result.failed}")
    if not result.success:
        raise typer.Exit(1)


@task_app.command("update")
def task_update(
    ctx: typer.Context,
    task_id: int = typer.Argument(...),
    title: Optional[str] = typer.Option(None, "--title"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    notes: Optional[str] = typer.Option(None, "--notes"),
    criteria: Optional[str] = typer.Option(None, "--criteria"),
    priority: Optional[int] = typer.Option(None, "--priority"),
    layer: Optional[str] = typer.Option(None, "--layer", "-l"),
    tags: Optional[str] = typer.Option(None, "--tags"),
    assign: Optional[str] = typer.Option(None, "--assign"),
    files: Optional[List[str]] = typer.Option(None, "--file", "-f", help="[action:]path, repeatable"),
    no_files: bool = typer.Option(False, "--no-files"),
):
    """Update a task. Only the given options change."""
    service = _service(ctx)
    params = {
        "title": title,
        "description": description,
        "notes": notes,
        "acceptance_criteria": criteria,
        "priority": priority,
        "layer": layer,
        "tags": _tags(tags),
        "assigned_agent": assign,
        "file_actions": _parse_file_option(files, no_files),
    }
    params = {key: value for key, value in params.items() if value is not None}
    try:
        task = service.update_task(task_id, params)
    except TaskTrailError as e:
        _fail(e)
    typer.echo(f"Updated task #{task.id}: {task.title}")


@task_app.command("move")
def task_move(
    ctx: typer.Context,
    task_id: int = typer.Argument(...),
    status: str = typer.Argument(..., help="Target status"),
):
    """Move a task to another status."""
    service = _service(ctx)
    try:
        result = service.move_task(task_id, status)
    except TaskTrailError as e:
        _fail(e)
    typer.echo(result.message)


@task_app.command("archive")
def task_archive(ctx: typer.Context, task_id: int = typer.Argument(...)):
    """Archive a task in 'done' status."""
    service = _service(ctx)
    try:
        result = service.archive_task(task_id)
    except TaskTrailError as e:
        _fail(e)
    typer.echo(result.message)


@task_app.command("show")
def task_show(
    ctx: typer.Context,
    task_id: int = typer.Argument(...),
    as_json: bool = typer.Option(False, "--json", help="Print the task as JSON"),
):
    """Show a task with its details and linked files."""
    service = _service(ctx)
    try:
        task = service.get_task(task_id)
    except TaskTrailError as e:
        _fail(e)

    if as_json:
        typer.echo(task.model_dump_json(indent=2))
        return

    table = Table(title=f"Task #{task.id}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Title", escape(task.title))
    table.add_row("Status", task.status.value)
    table.add_row("Priority", PRIORITY_NAMES.get(task.priority, str(task.priority)))
    table.add_row("Layer", task.layer or "-")
    table.add_row("Assigned", task.assigned_agent or "-")
    table.add_row("Tags", ", ".join(task.tags) or "-")
    if task.description:
        table.add_row("Description", escape(task.description))
    if task.acceptance_criteria:
        table.add_row("Acceptance", escape(task.acceptance_criteria))
    table.add_row("Files", "\n".join(task.files) or "-")
    console.print(table)


@task_app.command("list")
def task_list(
    ctx: typer.Context,
    status: Optional[str] = typer.Option(None, "--status", "-s"),
    layer: Optional[str] = typer.Option(None, "--layer", "-l"),
    agent: Optional[str] = typer.Option(None, "--agent"),
    tag: Optional[str] = typer.Option(None, "--tag"),
    limit: Optional[int] = typer.Option(None, "--limit"),
):
    """List tasks, highest priority first."""
    service = _service(ctx)
    try:
        tasks = service.list_tasks(status=status, layer=layer, assigned_agent=agent, tag=tag, limit=limit)
    except TaskTrailError as e:
        _fail(e)

    if not tasks:
        typer.echo("No tasks found")
        return

    table = Table(title="Tasks")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Title")
    table.add_column("Status", style="green")
    table.add_column("Priority")
    table.add_column("Layer")
    table.add_column("Agent")
    for task in tasks:
        table.add_row(
            str(task.id),
            escape(task.title),
            task.status.value,
            PRIORITY_NAMES.get(task.priority, str(task.priority)),
            task.layer or "-",
            task.assigned_agent or "-",
        )
    console.print(table)


@task_app.command("history")
def task_history(ctx: typer.Context, task_id: int = typer.Argument(...)):
    """Show the audit trail of a task."""
    service = _service(ctx)
    try:
        entries = service.task_history(task_id)
    except TaskTrailError as e:
        _fail(e)

    table = Table(title=f"History of task #{task_id}")
    table.add_column("When", style="cyan")
    table.add_column("Agent")
    table.add_column("Action", style="green", no_wrap=True)
    table.add_column("Details")
    for entry in entries:
        table.add_row(
            datetime.fromtimestamp(entry.ts).strftime("%Y-%m-%d %H:%M:%S"),
            escape(entry.agent),
            entry.action_type,
            escape(json.dumps(entry.details, sort_keys=True)),
        )
    console.print(table)


@task_app.command("depend")
def task_depend(
    ctx: typer.Context,
    blocker_task_id: int = typer.Argument(..., help="Task that must land first"),
    blocked_task_id: int = typer.Argument(..., help="Task that waits on it"),
    remove: bool = typer.Option(False, "--remove", help="Remove the dependency instead"),
):
    """Record that one task blocks another."""
    service = _service(ctx)
    try:
        if remove:
            changed = service.remove_dependency(blocker_task_id, blocked_task_id)
        else:
            changed = service.add_dependency(blocker_task_id, blocked_task_id)
    except TaskTrailError as e:
        _fail(e)

    relation = f"Task #{blocker_task_id} blocks Task #{blocked_task_id}"
    if remove:
        typer.echo(f"Dependency removed: {relation}" if changed else f"No dependency: {relation}")
    else:
        typer.echo(f"Dependency added: {relation}" if changed else f"Dependency already exists: {relation}")


@task_app.command("deps")
def task_deps(
    ctx: typer.Context,
    task_id: int = typer.Argument(...),
    as_json: bool = typer.Option(False, "--json", help="Print the dependencies as JSON"),
):
    """Show the tasks blocking a task and the tasks it blocks."""
    service = _service(ctx)
    try:
        deps = service.get_dependencies(task_id)
    except TaskTrailError as e:
        _fail(e)

    if as_json:
        typer.echo(deps.model_dump_json(indent=2))
        return

    if not deps.blockers and not deps.blocking:
        typer.echo(f"Task #{task_id} has no dependencies")
        return

    table = Table(title=f"Dependencies of task #{task_id}")
    table.add_column("Relation", style="cyan")
    table.add_column("ID", justify="right")
    table.add_column("Title")
    table.add_column("Status", style="green")
    for relation, tasks in (("blocked by", deps.blockers), ("blocks", deps.blocking)):
        for task in tasks:
            table.add_row(relation, str(task.id), escape(task.title), task.status.value)
    console.print(table)


# File commands

@file_app.command("link")
def file_link(
    ctx: typer.Context,
    task_id: int = typer.Argument(...),
    path: str = typer.Argument(...),
    action: str = typer.Option("edit", "--action", help="create, edit or delete"),
):
    """Link a file to a task."""
    service = _service(ctx)
    try:
        linked = service.link_file(task_id, path, action)
    except TaskTrailError as e:
        _fail(e)
    typer.echo(f"Linked {path} to task #{task_id}" if linked else f"{path} already linked to task #{task_id}")


@file_app.command("unlink")
def file_unlink(ctx: typer.Context, task_id: int = typer.Argument(...), path: str = typer.Argument(...)):
    """Remove a file link without recording it as pruned."""
    service = _service(ctx)
    try:
        removed = service.unlink_file(task_id, path)
    except TaskTrailError as e:
        _fail(e)
    typer.echo(f"Unlinked {path} from task #{task_id}" if removed else f"{path} was not linked to task #{task_id}")


@file_app.command("list")
def file_list(ctx: typer.Context, task_id: int = typer.Argument(...)):
    """List the files linked to a task."""
    service = _service(ctx)
    try:
        paths = service.list_links(task_id)
    except TaskTrailError as e:
        _fail(e)
    if not paths:
        typer.echo(f"No files linked to task #{task_id}")
    for path in paths:
        typer.echo(path)


@file_app.command("watch")
def file_watch(
    ctx: typer.Context,
    task_id: int = typer.Argument(...),
    paths: Optional[List[str]] = typer.Argument(None),
    action: str = typer.Option("watch", "--action", help="watch, unwatch or list"),
):
    """Watch or unwatch files for a task."""
    service = _service(ctx)
    try:
        current = service.watch_files(task_id, action, paths)
    except TaskTrailError as e:
        _fail(e)
    typer.echo(f"Task #{task_id} watches {len(current)} file(s)")
    for path in current:
        typer.echo(f"  {path}")


@file_app.command("prune")
def file_prune(ctx: typer.Context, task_id: int = typer.Argument(...)):
    """Move links to missing files into the pruned-files audit."""
    service = _service(ctx)
    try:
        result = service.prune_files(task_id)
    except TaskTrailError as e:
        _fail(e)
    typer.echo(f"Pruned {result.pruned_count} file(s), {result.remaining_count} remaining")
    for path in result.pruned_paths:
        typer.echo(f"  pruned {path}")


# Pruned file commands

@pruned_app.command("list")
def pruned_list(
    ctx: typer.Context,
    task_id: Optional[int] = typer.Option(None, "--task", "-t"),
    decision: Optional[str] = typer.Option(None, "--decision"),
    limit: int = typer.Option(100, "--limit"),
):
    """List pruned file records, newest first."""
    service = _service(ctx)
    try:
        records = service.get_all_pruned_files(task_id=task_id, linked_decision=decision, limit=limit)
    except TaskTrailError as e:
        _fail(e)

    if not records:
        typer.echo("No pruned files")
        return

    table = Table(title="Pruned files")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Task", justify="right")
    table.add_column("Path")
    table.add_column("Decision")
    for record in records:
        table.add_row(str(record.id), str(record.task_id), escape(record.file_path), record.linked_decision or "-")
    console.print(table)


@pruned_app.command("link-decision")
def pruned_link_decision(
    ctx: typer.Context,
    pruned_id: int = typer.Argument(...),
    decision_key: str = typer.Argument(...),
):
    """Point a pruned file record at the decision that explains it."""
    service = _service(ctx)
    try:
        record = service.link_pruned_file_to_decision(pruned_id, decision_key)
    except TaskTrailError as e:
        _fail(e)
    typer.echo(f"Linked pruned file {record.file_path} to decision {record.linked_decision}")


@decision_app.command("add")
def decision_add(
    ctx: typer.Context,
    key: str = typer.Argument(...),
    value: str = typer.Argument(""),
):
    """Record a decision."""
    service = _service(ctx)
    try:
        decision_id = service.record_decision(key, value)
    except TaskTrailError as e:
        _fail(e)
    typer.echo(f"Recorded decision {key} (id {decision_id})")


# Hook commands

@hook_app.command("on-stage")
def hook_on_stage(ctx: typer.Context):
    """Complete waiting_review tasks whose files are staged."""
    service = _service(ctx)
    try:
        count = service.detect_and_complete_on_staging()
    except TaskTrailError as e:
        _fail(e)
    typer.echo(f"Completed {count} task(s)")


@hook_app.command("on-commit")
def hook_on_commit(ctx: typer.Context):
    """Archive done tasks whose files are committed."""
    service = _service(ctx)
    try:
        count = service.detect_and_archive_on_commit()
    except TaskTrailError as e:
        _fail(e)
    typer.echo(f"Archived {count} task(s)")


@hook_app.command("run")
def hook_run(ctx: typer.Context):
    """Run both completion passes."""
    service = _service(ctx)
    try:
        report = service.run_detection()
    except TaskTrailError as e:
        _fail(e)
    if report.skipped_reason:
        typer.echo(f"Skipped: {report.skipped_reason}")
        return
    typer.echo(f"Completed {report.completed_on_stage} task(s), archived {report.archived_on_commit} task(s)")


@hook_app.command("stale")
def hook_stale(ctx: typer.Context):
    """Move idle in_progress tasks to waiting_review."""
    service = _service(ctx)
    try:
        count = service.detect_stale()
    except TaskTrailError as e:
        _fail(e)
    typer.echo(f"Moved {count} stale task(s) to waiting_review")


@hook_app.command("install")
def hook_install(ctx: typer.Context):
    """Install pre-commit and post-commit hooks in the project repository."""
    git_tool = GitTool(ctx.obj.root.resolve())
    for name, body in HOOK_COMMANDS.items():
        result = git_tool.install_hook(name, body)
        if not result.success:
            _fail(TaskTrailError(result.error))
        typer.echo(result.output)


# Config commands

@config_app.command("show")
def config_show(ctx: typer.Context):
    """Show the effective workflow flags."""
    service = _service(ctx)
    try:
        config = service.get_workflow_config()
    except TaskTrailError as e:
        _fail(e)
    for key, value in config.model_dump().items():
        typer.echo(f"{key} = {value}")


@config_app.command("set")
def config_set(ctx: typer.Context, key: str = typer.Argument(...), value: str = typer.Argument(...)):
    """Override a workflow flag for this database."""
    service = _service(ctx)
    try:
        config = service.set_config(key, value)
    except TaskTrailError as e:
        _fail(e)
    typer.echo(f"{key} = {getattr(config, key)}")


@app.command()
def watch(ctx: typer.Context):
    """Watch linked files and run detection when the git index changes."""
    from ..file_links import links_for_active_tasks
    from ..watcher.file_watcher import FileWatcher
    from .watch_daemon import WatchDaemon, configure_daemon_logging

    service = _service(ctx)
    settings: Settings = ctx.obj.settings
    if not settings.watcher.enabled:
        typer.echo("File watcher is disabled (TASKTRAIL_WATCHER_ENABLED=false)")
        return
    configure_daemon_logging(settings.logging.level)

    def load_links():
        with service.store.session() as session:
            return links_for_active_tasks(session, service.ctx.project_id)

    watcher = FileWatcher(
        service.ctx.project_root,
        load_links,
        git_index_path=service.git_tool.get_git_path("index"),
    )
    service.watcher = watcher
    WatchDaemon(service, watcher, settings.watcher).start()


if __name__ == "__main__":
    app()
