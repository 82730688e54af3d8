"""Configuration settings for sage-vbranch.

This module provides a Settings class that wraps the ConfigManager,
providing property-based access to configuration values with environment
variable fallbacks when no manager has been attached.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from sage_vbranch.config.constants import DEFAULT_GLOBAL_CONFIG_DIR
from sage_vbranch.config.defaults import get_default_config
from sage_vbranch.config.manager import ConfigManager


class Settings:
    """Application settings.

    Lookup order: attached ConfigManager, then environment variable, then
    the built-in default.
    """

    def __init__(self, config_manager: ConfigManager | None = None):
        self._config_manager = config_manager
        self._defaults = get_default_config()

    def attach(self, config_manager: ConfigManager) -> None:
        self._config_manager = config_manager

    def _default(self, key: str) -> Any:
        node: Any = self._defaults
        for part in key.split("."):
            node = node[part]
        return node

    def _get(self, key: str, env_key: str | None = None) -> Any:
        """Get config value from manager, fallback to env, then default."""
        default = self._default(key)
        if self._config_manager and self._config_manager.loaded:
            return self._config_manager.get(key, default)
        # Fallback to environment variable
        if env_key and (env_val := os.getenv(env_key)):
            # Type conversion based on default type
            if isinstance(default, bool):
                return env_val.lower() in ("true", "1", "yes", "on")
            elif isinstance(default, int):
                return int(env_val)
            elif isinstance(default, list):
                return [p.strip() for p in env_val.split(",") if p.strip()]
            return env_val
        return default

    @staticmethod
    def global_config_dir() -> Path:
        return Path(
            os.getenv("SAGE_CONFIG_DIR", DEFAULT_GLOBAL_CONFIG_DIR)
        ).expanduser()

    # Logging Configuration
    @property
    def log_level(self) -> str:
        return self._get("log_level", "LOG_LEVEL")

    @property
    def log_format(self) -> str:
        return self._get("log_format", "LOG_FORMAT")

    @property
    def log_colors(self) -> bool:
        return self._get("log_colors", "LOG_COLORS")

    # Watcher
    @property
    def watcher_queue_size(self) -> int:
        return self._get("watcher.queue_size", "SAGE_WATCHER_QUEUE_SIZE")

    @property
    def watcher_respect_gitignore(self) -> bool:
        return self._get("watcher.respect_gitignore", "SAGE_WATCHER_RESPECT_GITIGNORE")

    @property
    def watcher_ignore_patterns(self) -> list[str]:
        return list(self._get("watcher.ignore_patterns", "SAGE_WATCHER_IGNORE"))

    # Stash
    @property
    def stash_auto_restore(self) -> bool:
        return self._get("stash.auto_restore", "SAGE_STASH_AUTO_RESTORE")

    # Materialize
    @property
    def materialize_commit_message(self) -> str:
        return self._get("materialize.commit_message", "SAGE_COMMIT_MESSAGE")

    @property
    def materialize_signoff(self) -> bool:
        return self._get("materialize.signoff", "SAGE_SIGNOFF")

    # Daemon
    def pid_file(self, state_dir: Path) -> Path:
        configured = Path(self._get("daemon.pid_file", "SAGE_PID_FILE")).expanduser()
        return configured if configured.is_absolute() else state_dir / configured


# Global settings instance
settings = Settings()
