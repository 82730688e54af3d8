"""Configuration module for sage-vbranch."""

from .defaults import get_default_config
from .manager import ConfigManager, create_config_manager
from .providers import (
    ConfigProvider,
    LayeredConfigProvider,
    LocalFileConfigProvider,
)
from .schema import ConfigValidationError
from .settings import Settings, settings

__all__ = [
    "settings",
    "Settings",
    "ConfigManager",
    "ConfigValidationError",
    "create_config_manager",
    "ConfigProvider",
    "LayeredConfigProvider",
    "LocalFileConfigProvider",
    "get_default_config",
]
