"""Configuration manager over layered JSON providers."""

from __future__ import annotations

from pathlib import Path
from typing import Any, TypeVar

from sage_vbranch.config.constants import CONFIG_FILE_NAME
from sage_vbranch.config.providers import (
    ConfigProvider,
    LayeredConfigProvider,
    LocalFileConfigProvider,
)
from sage_vbranch.config.schema import deep_merge, validate_config
from sage_vbranch.utils.logger import get_logger

logger = get_logger("config.manager")

T = TypeVar("T")


class ConfigManager:
    """Manages application configuration loaded from one or more providers.

    Values are validated against ``AppConfig`` on load; nested sections are
    addressed with dot paths (``stash.auto_restore``).
    """

    def __init__(self, provider: ConfigProvider):
        self.provider = provider
        self._config: dict[str, Any] = {}
        self._loaded = False

    def initialize(self) -> None:
        """Load and validate the configuration.

        Raises:
            ConfigValidationError: If the merged configuration is invalid.
        """
        self._config = validate_config(self.provider.load())
        self._loaded = True
        logger.debug("Configuration initialized", config_keys=list(self._config.keys()))

    @property
    def loaded(self) -> bool:
        return self._loaded

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key; dots descend into sections."""
        node: Any = self._config
        for part in key.split("."):
            if isinstance(node, dict) and part in node:
                node = node[part]
            else:
                return default
        return node

    def get_typed(self, key: str, expected_type: type[T], default: T) -> T:
        """Get a typed configuration value with validation."""
        value = self.get(key, default)
        if not isinstance(value, expected_type):
            logger.warning(
                "Config type mismatch, using default",
                key=key,
                expected=expected_type.__name__,
                actual=type(value).__name__,
            )
            return default
        return value

    def get_str(self, key: str, default: str = "") -> str:
        return self.get_typed(key, str, default)

    def get_int(self, key: str, default: int = 0) -> int:
        return self.get_typed(key, int, default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        return self.get_typed(key, bool, default)

    def get_list(self, key: str) -> list[Any]:
        return self.get_typed(key, list, [])

    def update(self, updates: dict[str, Any]) -> None:
        """Validate, apply and persist ``updates`` through the primary provider."""
        candidate = validate_config(deep_merge(self._config, updates))

        user_cfg: dict[str, Any] = {}
        primary = self.provider
        if isinstance(primary, LayeredConfigProvider):
            primary = primary.providers[primary.primary_index]
        if isinstance(primary, LocalFileConfigProvider) and primary._user_config:
            user_cfg = primary._user_config
        self.provider.save(deep_merge(user_cfg, updates))

        self._config = candidate
        logger.info("Configuration updated", keys=list(updates.keys()))

    def get_all(self) -> dict[str, Any]:
        """Get the entire configuration dictionary."""
        return self._config.copy()


def create_config_manager(
    global_config_dir: Path,
    *,
    local_config_path: Path | None = None,
    defaults: dict[str, Any] | None = None,
    write_local: bool = False,
) -> ConfigManager:
    """Create a config manager over the global and repository config files.

    Args:
        global_config_dir: Directory holding the user-wide config.json
        local_config_path: Optional repository-scoped config.json for overrides
        defaults: Default configuration values
        write_local: Persist updates to the repository layer instead of the global one
    """
    config_path = global_config_dir / CONFIG_FILE_NAME
    base_provider = LocalFileConfigProvider(config_path, defaults=defaults)
    providers: list[ConfigProvider] = [base_provider]
    if local_config_path:
        providers.append(LocalFileConfigProvider(local_config_path, defaults={}))

    if len(providers) == 1:
        provider: ConfigProvider = base_provider
    else:
        provider = LayeredConfigProvider(
            providers, primary_index=1 if write_local else 0
        )

    logger.debug(
        "Config manager created",
        config_path=str(config_path),
        local_config_path=str(local_config_path) if local_config_path else None,
    )
    return ConfigManager(provider)
