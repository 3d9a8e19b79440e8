"""
Watch daemon for tasktrail.

Keeps a file watcher running for one project. Rewrites of the git index
trigger the two-step completion detector after a short quiet period, and
stale in_progress tasks are checked on a fixed interval.
"""

import signal
import sys
import threading
import time
from typing import Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from ..config.settings import WatcherSettings
from ..errors import TaskTrailError
from ..task_service import TaskService
from ..watcher.file_watcher import FileChangeEvent, FileWatcher

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"


def configure_daemon_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)


class WatchDaemon:
    """Runs the file watcher and the detectors until interrupted."""

    def __init__(self, service: TaskService, watcher: FileWatcher, settings: WatcherSettings):
        self.service = service
        self.watcher = watcher
        self.settings = settings
        self.running = False
        self._timer: Optional[threading.Timer] = None
        self._timer_lock = threading.Lock()
        self._last_stale_check = 0.0

    def start(self) -> None:
        """Start the daemon and block until a shutdown signal arrives."""
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.watcher.add_listener(self._on_file_change)
        self.watcher.add_git_index_listener(self._on_git_index_change)
        self.watcher.start()
        self.running = True

        status = self.watcher.get_status()
        logger.info(
            f"Watching {status.files_watched} file(s) for {status.tasks_watched} task(s) "
            f"in {self.service.ctx.project_root}"
        )

        # Catch up on anything staged or committed while the daemon was down.
        self.run_detection()

        try:
            while self.running:
                self._maybe_check_stale()
                time.sleep(1)
        finally:
            self._cleanup()

    def run_detection(self) -> None:
        try:
            report = self.service.run_detection()
        except (TaskTrailError, SQLAlchemyError) as e:
            logger.error(f"Completion detection failed: {e}")
            return
        if report.skipped_reason:
            logger.warning(f"Completion detection skipped: {report.skipped_reason}")
        elif report.completed_on_stage or report.archived_on_commit:
            logger.info(
                f"Completed {report.completed_on_stage} task(s) on stage, "
                f"archived {report.archived_on_commit} task(s) on commit"
            )

    def _maybe_check_stale(self) -> None:
        interval = self.settings.stale_check_seconds
        if interval <= 0 or time.monotonic() - self._last_stale_check < interval:
            return
        self._last_stale_check = time.monotonic()
        try:
            moved = self.service.detect_stale()
        except (TaskTrailError, SQLAlchemyError) as e:
            logger.error(f"Stale task check failed: {e}")
            return
        if moved:
            logger.info(f"Moved {moved} stale task(s) to waiting_review")

    def _on_file_change(self, event: FileChangeEvent) -> None:
        task_list = ", ".join(f"#{task_id}" for task_id in sorted(event.task_ids))
        logger.debug(f"{event.path} {event.event_type} (tasks {task_list})")

    def _on_git_index_change(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.settings.debounce_seconds, self.run_detection)
            self._timer.daemon = True
            self._timer.start()

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signum}, shutting down...")
        self.running = False

    def _cleanup(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self.watcher.stop()
        logger.info("Watch daemon shutdown complete")
