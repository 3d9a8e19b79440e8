"""Tests for JSONL logging."""

import json
import logging

from tasktrail.config.settings import LoggingSettings
from tasktrail.utils.jsonl_logger import JSONLFormatter, configure_logging, log_with_context


def test_formatter_emits_one_json_object():
    record = logging.LogRecord("tasktrail.completion", logging.WARNING, __file__, 10, "skipped %s", ("x",), None)
    record.task_id = 7

    entry = json.loads(JSONLFormatter(service="tasktrail").format(record))

    assert entry["level"] == "WARNING"
    assert entry["msg"] == "skipped x"
    assert entry["task_id"] == 7
    assert entry["logger"] == "tasktrail.completion"


def test_configure_logging_writes_jsonl_file(tmp_path):
    logger = configure_logging(LoggingSettings(level="debug", format="json", dir=str(tmp_path)))

    log_with_context(
        logging.getLogger("tasktrail.test"), logging.INFO, "moved", task_id=3, context={"to": "done"}
    )
    for handler in logger.handlers:
        handler.flush()

    lines = (tmp_path / "tasktrail.jsonl").read_text().splitlines()
    entry = json.loads(lines[-1])
    assert entry["msg"] == "moved"
    assert entry["task_id"] == 3
    assert entry["context"] == {"to": "done"}

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
