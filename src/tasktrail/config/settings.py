"""
Pydantic settings model for tasktrail configuration.

This module defines the configuration schema using pydantic-settings for
validation and environment variable overrides.
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database configuration settings."""

    model_config = SettingsConfigDict(env_prefix="TASKTRAIL_DB_")

    url: str = Field(
        default="sqlite:///.tasktrail/tasktrail.db",
        description="SQLAlchemy database URL",
    )
    echo: bool = Field(default=False, description="Log every SQL statement")
    busy_timeout: float = Field(
        default=30.0, description="Seconds to wait on a locked SQLite database"
    )


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="TASKTRAIL_LOG_")

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format (text or json)")
    dir: str | None = Field(default=None, description="Directory for JSONL log files")

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        valid_formats = ["text", "json"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()


class WorkflowSettings(BaseSettings):
    """Defaults for the workflow flags; rows in the config table override them."""

    model_config = SettingsConfigDict(env_prefix="TASKTRAIL_")

    git_auto_complete_on_stage: bool = True
    git_auto_archive_on_commit: bool = True
    require_all_files_staged: bool = True
    require_all_files_committed_for_archive: bool = True
    task_auto_stale_enabled: bool = True
    task_stale_hours_in_progress: int = Field(default=2, ge=1)


class WatcherSettings(BaseSettings):
    """File watcher configuration settings."""

    model_config = SettingsConfigDict(env_prefix="TASKTRAIL_WATCHER_")

    enabled: bool = Field(default=True, description="Start the file watcher in the daemon")
    debounce_seconds: float = Field(
        default=2.0, description="Quiet period before a git index change triggers detection"
    )
    stale_check_seconds: float = Field(
        default=300.0, description="Interval between stale task checks; 0 disables them"
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TASKTRAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    project_root: str = Field(default=".", description="Root directory of the tracked project")
    project_name: str | None = Field(
        default=None, description="Project name; detected from git when unset"
    )
    agent: str = Field(default="system", description="Agent recorded on automatic transitions")
    git_timeout: float = Field(default=5.0, description="Seconds before a git command is abandoned")
    environment: str = Field(default="development", description="Environment name")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    watcher: WatcherSettings = Field(default_factory=WatcherSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_environments = ["development", "testing", "staging", "production"]
        if v.lower() not in valid_environments:
            raise ValueError(f"Environment must be one of {valid_environments}")
        return v.lower()

    @field_validator("project_root")
    @classmethod
    def validate_project_root(cls, v: str) -> str:
        if not Path(v).exists():
            raise ValueError(f"Project root does not exist: {v}")
        return v

    @property
    def project_path(self) -> Path:
        return Path(self.project_root).resolve()
