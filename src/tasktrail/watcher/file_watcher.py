"""
File watcher registry for tasktrail.

Maps watched project files to the tasks that link them and listens for
filesystem changes with a watchdog observer. The watcher only reports
changes; it never mutates task state.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from watchdog.events import EVENT_TYPE_CREATED, EVENT_TYPE_MOVED, FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..models.lifecycle import WatcherStatus
from ..models.task_file_action import normalize_path

logger = logging.getLogger(__name__)

LinkLoader = Callable[[], Dict[int, List[str]]]


@dataclass(frozen=True)
class FileChangeEvent:
    """A change to a watched file and the tasks that link it."""

    path: str
    event_type: str
    task_ids: frozenset = field(default_factory=frozenset)


class _WatchdogHandler(FileSystemEventHandler):
    """Forwards watchdog events to the registry."""

    def __init__(self, watcher: "FileWatcher"):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            if event.event_type in (EVENT_TYPE_CREATED, EVENT_TYPE_MOVED):
                self.watcher.directory_created()
            return
        path = getattr(event, "dest_path", "") or event.src_path
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        self.watcher.notify(path, event.event_type)


class FileWatcher:
    """Watches the files linked to non-terminal tasks."""

    def __init__(
        self,
        project_root: Path,
        link_loader: LinkLoader,
        observer_factory: Callable[[], object] = Observer,
        git_index_path: Optional[Path] = None,
    ):
        self.project_root = Path(project_root).resolve()
        self.link_loader = link_loader
        self.observer_factory = observer_factory
        self.git_index_path = Path(git_index_path).resolve() if git_index_path else None

        self._lock = threading.RLock()
        self._observer = None
        self._handler = _WatchdogHandler(self)
        self._subscriptions: Dict[str, Set[int]] = {}
        self._task_paths: Dict[int, Set[str]] = {}
        self._scheduled: Dict[Path, object] = {}
        self._listeners: List[Callable[[FileChangeEvent], None]] = []
        self._git_index_listeners: List[Callable[[], None]] = []

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """Rebuild subscriptions from the store and start observing."""
        with self._lock:
            if self._observer is not None:
                return

            self._subscriptions.clear()
            self._task_paths.clear()
            for task_id, paths in self.link_loader().items():
                self._add_paths(task_id, paths)

            self._observer = self.observer_factory()
            self._sync_schedules()
            self._observer.start()

            logger.info(
                "File watcher started: %d file(s) for %d task(s)",
                len(self._subscriptions), len(self._task_paths),
            )

    def stop(self) -> None:
        """Unschedule every watch and stop the observer thread."""
        with self._lock:
            observer = self._observer
            if observer is None:
                return
            observer.unschedule_all()
            self._scheduled.clear()
            self._observer = None

        observer.stop()
        observer.join(timeout=5)
        logger.info("File watcher stopped")

    def register_task(self, task_id: int, paths: Iterable[str]) -> None:
        """Watch the given paths on behalf of a task."""
        with self._lock:
            added = self._add_paths(task_id, paths)
            if added and self._observer is not None:
                self._sync_schedules()
            if added:
                logger.debug("Task %s now watches %s", task_id, sorted(added))

    def unregister_task(self, task_id: int) -> bool:
        """Stop watching the paths of a task. Unknown tasks are a no-op."""
        with self._lock:
            paths = self._task_paths.pop(task_id, None)
            if not paths:
                return False

            for path in paths:
                task_ids = self._subscriptions.get(path)
                if task_ids is None:
                    continue
                task_ids.discard(task_id)
                if not task_ids:
                    del self._subscriptions[path]

            if self._observer is not None:
                self._sync_schedules()

            logger.debug("Task %s no longer watched", task_id)
            return True

    def get_status(self) -> WatcherStatus:
        with self._lock:
            return WatcherStatus(
                running=self.is_running,
                files_watched=len(self._subscriptions),
                tasks_watched=len(self._task_paths),
            )

    def tasks_for_path(self, path: str) -> Set[int]:
        with self._lock:
            return set(self._subscriptions.get(normalize_path(path), ()))

    def watched_files(self) -> List[str]:
        with self._lock:
            return sorted(self._subscriptions)

    def add_listener(self, callback: Callable[[FileChangeEvent], None]) -> None:
        """Call ``callback`` for every change to a watched file."""
        with self._lock:
            self._listeners.append(callback)

    def add_git_index_listener(self, callback: Callable[[], None]) -> None:
        """Call ``callback`` whenever the git index is rewritten."""
        with self._lock:
            self._git_index_listeners.append(callback)

    def notify(self, path: str, event_type: str = "modified") -> None:
        """Route a filesystem event to listeners. Called from the observer thread."""
        absolute = Path(path)
        if not absolute.is_absolute():
            absolute = self.project_root / absolute

        if self.git_index_path is not None and absolute == self.git_index_path:
            with self._lock:
                index_callbacks = list(self._git_index_listeners)
            for callback in index_callbacks:
                self._call(callback)
            return

        with self._lock:
            try:
                relative = absolute.relative_to(self.project_root).as_posix()
            except ValueError:
                return
            task_ids = self._subscriptions.get(relative)
            if not task_ids:
                return
            change = FileChangeEvent(path=relative, event_type=event_type, task_ids=frozenset(task_ids))
            callbacks = list(self._listeners)

        for callback in callbacks:
            self._call(callback, change)

    def directory_created(self) -> None:
        """Move watches down into directories that now exist.

        Watched files already present in a newly scheduled directory are
        reported as created.
        """
        with self._lock:
            if self._observer is None:
                return
            added = self._sync_schedules()
            if not added:
                return
            logger.debug("Now watching %s", sorted(str(directory) for directory in added))
            present = [
                path
                for path in self._subscriptions
                if self._directory_of(path) in added and (self.project_root / path).exists()
            ]
        for path in present:
            self.notify(path, EVENT_TYPE_CREATED)

    def _call(self, callback: Callable, *args) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception("File watcher listener %r failed", callback)

    def _add_paths(self, task_id: int, paths: Iterable[str]) -> Set[str]:
        added = set()
        for raw in paths:
            path = normalize_path(raw)
            if not path:
                continue
            self._subscriptions.setdefault(path, set()).add(task_id)
            task_paths = self._task_paths.setdefault(task_id, set())
            if path not in task_paths:
                task_paths.add(path)
                added.add(path)
        return added

    def _directory_of(self, path: str) -> Path:
        return (self.project_root / path).parent

    def _watch_target(self, directory: Path) -> Optional[Path]:
        """The directory itself, or its nearest existing ancestor inside the project."""
        while not directory.is_dir():
            if directory == self.project_root or self.project_root not in directory.parents:
                return None
            directory = directory.parent
        return directory

    def _directories_to_watch(self) -> Set[Path]:
        targets = {self._watch_target(self._directory_of(path)) for path in self._subscriptions}
        if self.git_index_path is not None and self.git_index_path.parent.is_dir():
            targets.add(self.git_index_path.parent)
        targets.discard(None)
        return targets

    def _sync_schedules(self) -> Set[Path]:
        """Schedule the directories now needed and drop the rest. Returns the new ones."""
        needed = self._directories_to_watch()
        for directory in list(self._scheduled):
            if directory not in needed:
                self._observer.unschedule(self._scheduled.pop(directory))
        added = set()
        for directory in needed - set(self._scheduled):
            self._scheduled[directory] = self._observer.schedule(self._handler, str(directory), recursive=False)
            added.add(directory)
        return added
