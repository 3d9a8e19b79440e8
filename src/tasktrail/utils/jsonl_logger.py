"""
JSONL logging utility for tasktrail.

Every entry is one JSON object per line. ``configure_logging`` wires the
``tasktrail`` logger hierarchy from LoggingSettings: a console handler on
stderr (plain text or JSONL) and, when a log directory is set, a daily
rotating ``<service>.jsonl`` file.
"""

import json
import logging
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any

from ..config.settings import LoggingSettings

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Attributes passed through ``extra=`` that end up in the JSON entry.
CONTEXT_FIELDS = ("task_id", "error", "context")

RETENTION_DAYS = 30


class JSONLFormatter(logging.Formatter):
    """Render a log record as a single JSON line."""

    def __init__(self, service: str | None = None):
        super().__init__()
        self.service = service or "tasktrail"

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None and value != "":
                entry[name] = value
        if record.exc_info:
            entry["stack"] = self.formatException(record.exc_info)
        entry["file"] = record.filename
        entry["line"] = record.lineno
        if record.funcName:
            entry["func"] = record.funcName
        return json.dumps(entry, ensure_ascii=False, default=str)


class JSONLHandler(TimedRotatingFileHandler):
    """Writes ``<log_dir>/<service>.jsonl``, rotated at midnight to ``<service>-YYYY-MM-DD.jsonl``."""

    def __init__(self, log_dir: str, service: str, level: int = logging.INFO):
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        super().__init__(
            filename=str(directory / f"{service}.jsonl"),
            when="midnight",
            backupCount=RETENTION_DAYS,
            encoding="utf-8",
        )
        self.service = service
        self.namer = self._dated_name
        self.setFormatter(JSONLFormatter(service=service))
        self.setLevel(level)

    def _dated_name(self, default_name: str) -> str:
        # TimedRotatingFileHandler appends ".YYYY-MM-DD" to the base filename.
        date_suffix = default_name.rsplit(".", 1)[-1]
        return str(Path(self.baseFilename).with_name(f"{self.service}-{date_suffix}.jsonl"))


def configure_logging(settings: LoggingSettings, service: str = "tasktrail") -> logging.Logger:
    """Configure the ``tasktrail`` logger and return it."""
    level = getattr(logging, settings.level)
    logger = logging.getLogger("tasktrail")
    logger.setLevel(level)

    # Reconfiguring replaces earlier handlers instead of stacking them.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    if settings.format == "json":
        console.setFormatter(JSONLFormatter(service=service))
    else:
        console.setFormatter(logging.Formatter(TEXT_FORMAT))
    logger.addHandler(console)

    if settings.dir:
        logger.addHandler(JSONLHandler(settings.dir, service, level))

    logger.propagate = False
    return logger


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    task_id: int | None = None,
    error: str | None = None,
    context: dict[str, Any] | None = None,
) -> None:
    """
    Log a message with structured context.

    Args:
        logger: Logger instance
        level: Log level (e.g., logging.INFO, logging.WARNING)
        message: Log message
        task_id: Task the message is about
        error: Error name or message
        context: Additional context dictionary
    """
    extra = {
        name: value
        for name, value in (("task_id", task_id), ("error", error), ("context", context))
        if value
    }
    logger.log(level, message, extra=extra)
