"""Tests for the watch daemon's detection and debounce logic."""

from unittest.mock import Mock, patch

from sqlalchemy.exc import OperationalError

from tasktrail.cli.watch_daemon import WatchDaemon
from tasktrail.config.settings import WatcherSettings
from tasktrail.errors import GitProbeError
from tasktrail.models.lifecycle import DetectionReport


def make_daemon(**settings):
    service = Mock()
    watcher = Mock()
    return WatchDaemon(service, watcher, WatcherSettings(**settings)), service, watcher


def test_run_detection_calls_service():
    daemon, service, _ = make_daemon()
    service.run_detection.return_value = DetectionReport(completed_on_stage=1)

    daemon.run_detection()

    service.run_detection.assert_called_once()


def test_run_detection_survives_errors():
    daemon, service, _ = make_daemon()
    service.run_detection.side_effect = GitProbeError("git timed out")

    daemon.run_detection()

    service.run_detection.assert_called_once()


def test_run_detection_survives_database_errors():
    daemon, service, _ = make_daemon()
    service.run_detection.side_effect = OperationalError("SELECT tasks.id", {}, Exception("database is locked"))

    daemon.run_detection()

    service.run_detection.assert_called_once()


def test_stale_check_survives_database_errors():
    daemon, service, _ = make_daemon(stale_check_seconds=300.0)
    service.detect_stale.side_effect = OperationalError("UPDATE tasks", {}, Exception("database is locked"))

    with patch("tasktrail.cli.watch_daemon.time.monotonic", return_value=1000.0):
        daemon._maybe_check_stale()

    service.detect_stale.assert_called_once()


def test_git_index_changes_are_debounced():
    daemon, _, _ = make_daemon(debounce_seconds=5.0)

    with patch("tasktrail.cli.watch_daemon.threading.Timer") as timer_cls:
        first, second = Mock(), Mock()
        timer_cls.side_effect = [first, second]

        daemon._on_git_index_change()
        daemon._on_git_index_change()

    first.cancel.assert_called_once()
    second.start.assert_called_once()
    timer_cls.assert_called_with(5.0, daemon.run_detection)


def test_stale_check_respects_interval():
    daemon, service, _ = make_daemon(stale_check_seconds=300.0)
    service.detect_stale.return_value = 0

    with patch("tasktrail.cli.watch_daemon.time.monotonic", side_effect=[1000.0, 1000.0, 1100.0]):
        daemon._maybe_check_stale()
        daemon._maybe_check_stale()

    service.detect_stale.assert_called_once()


def test_stale_check_disabled():
    daemon, service, _ = make_daemon(stale_check_seconds=0)

    daemon._maybe_check_stale()

    service.detect_stale.assert_not_called()


def test_cleanup_stops_watcher_and_pending_timer():
    daemon, _, watcher = make_daemon()
    pending = Mock()
    daemon._timer = pending

    daemon._cleanup()

    pending.cancel.assert_called_once()
    watcher.stop.assert_called_once()
    assert daemon._timer is None
