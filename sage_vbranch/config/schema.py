from __future__ import annotations

from copy import deepcopy
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


def deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge updates into base without mutating inputs.

    - Keys present in updates with non-None values are merged/overwritten
    - Keys present in updates with None values are skipped (preserve base value)
    - Keys not present in updates are preserved from base
    """
    result = deepcopy(base)
    for key, value in updates.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        elif key in result and value is None:
            # Treat None as "not provided" so lower layers keep their values
            continue
        else:
            result[key] = value
    return result


class WatcherConfig(BaseModel):
    queue_size: int = Field(default=1024, ge=1)
    respect_gitignore: bool = True
    ignore_patterns: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class StashConfig(BaseModel):
    auto_restore: bool = True

    model_config = ConfigDict(extra="ignore")


class MaterializeConfig(BaseModel):
    commit_message: str = "Materialized virtual branch {name}"
    signoff: bool = False

    model_config = ConfigDict(extra="ignore")

    @field_validator("commit_message")
    @classmethod
    def check_template(cls, value: str) -> str:
        try:
            value.format(name="x", base="y", changes=0)
        except (KeyError, IndexError, ValueError) as exc:
            raise ValueError(
                f"commit_message template is invalid ({exc}); "
                "allowed fields: {name}, {base}, {changes}"
            ) from exc
        return value


class DaemonConfig(BaseModel):
    pid_file: str = "daemon.pid"

    model_config = ConfigDict(extra="ignore")


class AppConfig(BaseModel):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    log_format: Literal["pretty", "json"] = "pretty"
    log_colors: bool = True

    watcher: WatcherConfig = Field(default_factory=WatcherConfig)
    stash: StashConfig = Field(default_factory=StashConfig)
    materialize: MaterializeConfig = Field(default_factory=MaterializeConfig)
    daemon: DaemonConfig = Field(default_factory=DaemonConfig)

    model_config = ConfigDict(extra="ignore")


class ConfigValidationError(Exception):
    """Structured configuration validation error."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """Validate configuration using Pydantic schema.

    Raises:
        ConfigValidationError: With structured list of human-readable error messages.
    """
    try:
        app_config = AppConfig.model_validate(config)
        return app_config.model_dump(mode="json")
    except ValidationError as e:
        errors = _extract_validation_errors(e)
        raise ConfigValidationError(errors) from e


def _extract_validation_errors(exc: ValidationError) -> list[str]:
    """Convert Pydantic ValidationError to list of human-readable messages."""
    errors = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err["loc"]) if err["loc"] else "config"
        msg = err["msg"]

        # Strip Pydantic's "Value error, " prefix from our custom messages
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, ") :]

        if err["type"] == "missing":
            errors.append(f"Missing required field: {loc}")
        elif err["type"] == "string_type":
            errors.append(f"Expected string at '{loc}'")
        elif err["type"] in ("int_type", "int_parsing"):
            errors.append(f"Expected integer at '{loc}'")
        elif err["type"] in ("bool_type", "bool_parsing"):
            errors.append(f"Expected boolean at '{loc}'")
        elif err["type"] in ("dict_type", "model_type"):
            errors.append(f"Expected object at '{loc}'")
        elif err["type"] == "list_type":
            errors.append(f"Expected list at '{loc}'")
        else:
            errors.append(f"{loc}: {msg}")

    return errors if errors else ["Invalid configuration"]
