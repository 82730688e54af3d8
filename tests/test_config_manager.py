"""Tests for configuration manager."""

import json

import pytest

from sage_vbranch.config import (
    ConfigManager,
    ConfigValidationError,
    LayeredConfigProvider,
    LocalFileConfigProvider,
    Settings,
    create_config_manager,
    get_default_config,
)
from sage_vbranch.config.schema import deep_merge, validate_config

# =============================================================================
# Tests for deep_merge
# =============================================================================


def test_deep_merge_basic():
    """Test basic deep merge behavior."""
    base = {"a": 1, "b": {"c": 2, "d": 3}}
    updates = {"b": {"c": 10, "e": 5}}

    result = deep_merge(base, updates)

    assert result == {"a": 1, "b": {"c": 10, "d": 3, "e": 5}}


def test_deep_merge_none_preserves_value():
    """None in updates means "not provided"."""
    base = {"stash": {"auto_restore": False}}

    result = deep_merge(base, {"stash": {"auto_restore": None}})

    assert result["stash"]["auto_restore"] is False


def test_deep_merge_does_not_mutate_inputs():
    base = {"watcher": {"ignore_patterns": ["a"]}}
    updates = {"watcher": {"queue_size": 5}}

    deep_merge(base, updates)

    assert base == {"watcher": {"ignore_patterns": ["a"]}}
    assert updates == {"watcher": {"queue_size": 5}}


# =============================================================================
# Tests for validation
# =============================================================================


def test_validate_defaults():
    assert validate_config(get_default_config()) == get_default_config()


def test_validate_reports_field_paths():
    with pytest.raises(ConfigValidationError) as exc_info:
        validate_config({"watcher": {"queue_size": "lots"}, "stash": {"auto_restore": "maybe"}})

    errors = exc_info.value.errors
    assert "Expected integer at 'watcher.queue_size'" in errors
    assert "Expected boolean at 'stash.auto_restore'" in errors


def test_validate_rejects_zero_queue():
    with pytest.raises(ConfigValidationError, match="watcher.queue_size"):
        validate_config({"watcher": {"queue_size": 0}})


def test_validate_rejects_unknown_template_field():
    with pytest.raises(ConfigValidationError, match="allowed fields"):
        validate_config({"materialize": {"commit_message": "Ship {ticket}"}})


def test_validate_accepts_template_fields():
    config = validate_config(
        {"materialize": {"commit_message": "{name}: {changes} files from {base}"}}
    )

    assert config["materialize"]["commit_message"] == "{name}: {changes} files from {base}"


# =============================================================================
# Tests for LocalFileConfigProvider
# =============================================================================


def test_local_file_provider_missing_file_returns_defaults(tmp_path):
    config_path = tmp_path / "config.json"
    provider = LocalFileConfigProvider(config_path, defaults={"log_level": "INFO"})

    assert provider.load() == {"log_level": "INFO"}
    assert not config_path.exists()


def test_local_file_provider_create_if_missing(tmp_path):
    config_path = tmp_path / "nested" / "config.json"
    provider = LocalFileConfigProvider(
        config_path, defaults={"log_level": "INFO"}, create_if_missing=True
    )

    provider.load()

    assert json.loads(config_path.read_text(encoding="utf-8")) == {"log_level": "INFO"}


def test_local_file_provider_merges_over_defaults(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"stash": {"auto_restore": False}}), encoding="utf-8")

    provider = LocalFileConfigProvider(config_path, defaults=get_default_config())
    config = provider.load()

    assert config["stash"]["auto_restore"] is False
    assert config["materialize"]["signoff"] is False


def test_local_file_provider_invalid_json_falls_back(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"log_level": "DEBUG"}), encoding="utf-8")
    provider = LocalFileConfigProvider(config_path, defaults={"log_level": "WARNING"})
    assert provider.load()["log_level"] == "DEBUG"

    config_path.write_text("{broken", encoding="utf-8")

    # last valid configuration wins over defaults
    assert provider.load()["log_level"] == "DEBUG"


def test_local_file_provider_non_object_uses_defaults(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]", encoding="utf-8")

    provider = LocalFileConfigProvider(config_path, defaults={"log_level": "WARNING"})

    assert provider.load() == {"log_level": "WARNING"}


def test_local_file_provider_save_is_atomic(tmp_path):
    config_path = tmp_path / "config.json"
    provider = LocalFileConfigProvider(config_path)

    provider.save({"materialize": {"signoff": True}})

    assert json.loads(config_path.read_text(encoding="utf-8")) == {
        "materialize": {"signoff": True}
    }
    assert not config_path.with_suffix(".tmp").exists()


# =============================================================================
# Tests for LayeredConfigProvider and ConfigManager
# =============================================================================


def test_layered_provider_requires_layers():
    with pytest.raises(ValueError):
        LayeredConfigProvider([])


def test_layered_provider_rejects_bad_primary(tmp_path):
    provider = LocalFileConfigProvider(tmp_path / "config.json")

    with pytest.raises(ValueError):
        LayeredConfigProvider([provider], primary_index=1)


def test_repository_config_overrides_global(tmp_path):
    global_dir = tmp_path / "global"
    global_dir.mkdir()
    (global_dir / "config.json").write_text(
        json.dumps({"stash": {"auto_restore": False}, "materialize": {"signoff": True}}),
        encoding="utf-8",
    )
    local_path = tmp_path / "repo-config.json"
    local_path.write_text(json.dumps({"stash": {"auto_restore": True}}), encoding="utf-8")

    manager = create_config_manager(
        global_dir, local_config_path=local_path, defaults=get_default_config()
    )
    manager.initialize()

    assert manager.get("stash.auto_restore") is True
    assert manager.get("materialize.signoff") is True
    assert manager.get("watcher.queue_size") == 1024


def test_initialize_rejects_invalid_file(tmp_path):
    (tmp_path / "config.json").write_text(
        json.dumps({"log_level": "LOUD"}), encoding="utf-8"
    )
    manager = create_config_manager(tmp_path, defaults=get_default_config())

    with pytest.raises(ConfigValidationError):
        manager.initialize()
    assert manager.loaded is False


def test_get_missing_key_returns_default(tmp_path):
    manager = create_config_manager(tmp_path, defaults=get_default_config())
    manager.initialize()

    assert manager.get("watcher.nope", "fallback") == "fallback"
    assert manager.get("log_level.deeper") is None


def test_typed_getters(tmp_path):
    manager = create_config_manager(tmp_path, defaults=get_default_config())
    manager.initialize()

    assert manager.get_int("watcher.queue_size") == 1024
    assert manager.get_bool("stash.auto_restore") is True
    assert manager.get_list("watcher.ignore_patterns") == []
    # type mismatch falls back to the supplied default
    assert manager.get_int("log_level", 7) == 7


def test_update_writes_global_layer_by_default(tmp_path):
    global_dir = tmp_path / "global"
    local_path = tmp_path / "repo" / "config.json"
    manager = create_config_manager(
        global_dir, local_config_path=local_path, defaults=get_default_config()
    )
    manager.initialize()

    manager.update({"materialize": {"signoff": True}})

    assert manager.get("materialize.signoff") is True
    saved = json.loads((global_dir / "config.json").read_text(encoding="utf-8"))
    assert saved == {"materialize": {"signoff": True}}
    assert not local_path.exists()


def test_update_writes_repository_layer(tmp_path):
    global_dir = tmp_path / "global"
    local_path = tmp_path / "repo" / "config.json"
    local_path.parent.mkdir()
    local_path.write_text(json.dumps({"log_level": "INFO"}), encoding="utf-8")
    manager = create_config_manager(
        global_dir,
        local_config_path=local_path,
        defaults=get_default_config(),
        write_local=True,
    )
    manager.initialize()

    manager.update({"stash": {"auto_restore": False}})

    saved = json.loads(local_path.read_text(encoding="utf-8"))
    assert saved == {"log_level": "INFO", "stash": {"auto_restore": False}}
    assert not (global_dir / "config.json").exists()
    assert manager.get("stash.auto_restore") is False


def test_update_rejects_invalid_values(tmp_path):
    manager = create_config_manager(tmp_path, defaults=get_default_config())
    manager.initialize()

    with pytest.raises(ConfigValidationError):
        manager.update({"watcher": {"queue_size": -1}})

    assert manager.get("watcher.queue_size") == 1024
    assert not (tmp_path / "config.json").exists()


def test_get_all_returns_copy(tmp_path):
    manager = ConfigManager(LocalFileConfigProvider(tmp_path / "config.json"))
    manager.initialize()

    snapshot = manager.get_all()
    snapshot["log_level"] = "ERROR"

    assert manager.get("log_level") == "WARNING"


# =============================================================================
# Tests for Settings
# =============================================================================


def test_settings_defaults_without_manager(monkeypatch):
    monkeypatch.delenv("SAGE_STASH_AUTO_RESTORE", raising=False)
    settings = Settings()

    assert settings.stash_auto_restore is True
    assert settings.materialize_commit_message == "Materialized virtual branch {name}"
    assert settings.watcher_queue_size == 1024


def test_settings_env_fallback(monkeypatch):
    monkeypatch.setenv("SAGE_STASH_AUTO_RESTORE", "false")
    monkeypatch.setenv("SAGE_WATCHER_QUEUE_SIZE", "16")
    monkeypatch.setenv("SAGE_WATCHER_IGNORE", "dist/, *.tmp")
    settings = Settings()

    assert settings.stash_auto_restore is False
    assert settings.watcher_queue_size == 16
    assert settings.watcher_ignore_patterns == ["dist/", "*.tmp"]


def test_settings_prefers_attached_manager(monkeypatch, tmp_path):
    monkeypatch.setenv("SAGE_SIGNOFF", "true")
    manager = create_config_manager(tmp_path, defaults=get_default_config())
    manager.initialize()
    settings = Settings()

    settings.attach(manager)

    assert settings.materialize_signoff is False


def test_settings_pid_file_resolution(tmp_path, monkeypatch):
    monkeypatch.delenv("SAGE_PID_FILE", raising=False)
    settings = Settings()
    assert settings.pid_file(tmp_path) == tmp_path / "daemon.pid"

    absolute = tmp_path / "run" / "sage.pid"
    monkeypatch.setenv("SAGE_PID_FILE", str(absolute))
    assert settings.pid_file(tmp_path / "state") == absolute


def test_global_config_dir_follows_env(temp_global_config_dir):
    assert Settings.global_config_dir() == temp_global_config_dir
