"""Utilities for tasktrail."""

from .jsonl_logger import JSONLFormatter, JSONLHandler, configure_logging, log_with_context
from .retry import retry_with_backoff

__all__ = [
    "JSONLFormatter",
    "JSONLHandler",
    "configure_logging",
    "log_with_context",
    "retry_with_backoff",
]
