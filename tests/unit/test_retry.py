"""Tests for the transient-error retry helper."""

import pytest
from sqlalchemy.exc import OperationalError

from tasktrail.errors import TaskValidationError, TransitionConflictError
from tasktrail.utils.retry import retry_with_backoff


def test_returns_first_success():
    assert retry_with_backoff(lambda: 42, sleep=lambda _: None) == 42


def test_retries_transient_errors():
    attempts = []
    delays = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise OperationalError("UPDATE tasks", {}, Exception("database is locked"))
        return "ok"

    assert retry_with_backoff(flaky, max_retries=3, base_delay=0.1, sleep=delays.append) == "ok"
    assert len(attempts) == 3
    assert len(delays) == 2
    assert 0.1 <= delays[0] <= 0.2
    assert 0.2 <= delays[1] <= 0.3


def test_gives_up_after_max_retries():
    def conflict():
        raise TransitionConflictError("status changed")

    with pytest.raises(TransitionConflictError):
        retry_with_backoff(conflict, max_retries=2, sleep=lambda _: None)


def test_validation_errors_are_not_retried():
    attempts = []

    def invalid():
        attempts.append(1)
        raise TaskValidationError("bad input")

    with pytest.raises(TaskValidationError):
        retry_with_backoff(invalid, sleep=lambda _: None)
    assert len(attempts) == 1
