"""
Configuration manager for tasktrail.

Settings are loaded once per process and cached; ``reload_config`` drops
the cache so environment changes are picked up.
"""

import os
from pathlib import Path

from pydantic import ValidationError

from .settings import Settings

SQLITE_PREFIX = "sqlite:///"


class ConfigManager:
    """Loads and caches Settings for one environment."""

    def __init__(self, environment: str | None = None, env_file: str | Path | None = None):
        """
        Args:
            environment: development, testing, staging or production.
                        Defaults to TASKTRAIL_ENVIRONMENT, then development.
            env_file: .env file to read instead of ./.env
        """
        self.environment = environment or os.getenv("TASKTRAIL_ENVIRONMENT", "development")
        self.env_file = Path(env_file) if env_file else None
        self._settings: Settings | None = None

    def load_config(self) -> Settings:
        """Return the cached Settings, loading them on first use.

        Raises:
            pydantic.ValidationError: If a setting fails validation
        """
        if self._settings is None:
            overrides = {"environment": self.environment}
            if self.env_file is not None and self.env_file.exists():
                overrides["_env_file"] = str(self.env_file)
            self._settings = Settings(**overrides)
        return self._settings

    get_config = load_config

    def reload_config(self) -> Settings:
        self._settings = None
        return self.load_config()

    def database_url(self, project_root: Path, url: str | None = None) -> str:
        """Database URL with relative SQLite paths placed under ``project_root``."""
        url = url or self.get_config().database.url
        if url.startswith(SQLITE_PREFIX):
            path = url[len(SQLITE_PREFIX):]
            if path and path != ":memory:" and not Path(path).is_absolute():
                return SQLITE_PREFIX + str(Path(project_root) / path)
        return url

    def is_testing(self) -> bool:
        return self.environment == "testing"

    def validate_config(self) -> bool:
        """Load the settings, turning validation failures into ValueError."""
        try:
            self.load_config()
        except ValidationError as e:
            raise ValueError(f"Configuration validation failed: {e}") from e
        return True


_config_manager: ConfigManager | None = None


def get_config_manager(environment: str | None = None) -> ConfigManager:
    """Return the process-wide manager, replacing it when the environment changes."""
    global _config_manager
    if _config_manager is None or (environment and _config_manager.environment != environment):
        _config_manager = ConfigManager(environment)
    return _config_manager


def get_config(environment: str | None = None) -> Settings:
    return get_config_manager(environment).get_config()


def reload_config(environment: str | None = None) -> Settings:
    return get_config_manager(environment).reload_config()
