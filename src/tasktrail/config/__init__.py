"""
Configuration management for tasktrail.

This module provides a centralized configuration system that:
- Provides type-safe configuration access
- Supports environment variable and .env overrides
- Validates configuration values
"""

from .config_manager import ConfigManager, get_config, get_config_manager, reload_config
from .settings import (
    DatabaseSettings,
    LoggingSettings,
    Settings,
    WatcherSettings,
    WorkflowSettings,
)

__all__ = [
    "ConfigManager",
    "get_config",
    "get_config_manager",
    "reload_config",
    "Settings",
    "DatabaseSettings",
    "LoggingSettings",
    "WorkflowSettings",
    "WatcherSettings",
]
