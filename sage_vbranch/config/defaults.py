"""Default configuration values for sage-vbranch."""

from typing import Any


def get_default_config() -> dict[str, Any]:
    """Return the default configuration dictionary."""
    return {
        # Logging Configuration
        "log_level": "WARNING",
        "log_format": "pretty",
        "log_colors": True,
        # Filesystem watcher (daemon)
        "watcher": {
            "queue_size": 1024,
            # Merge the repository's .gitignore into the fixed ignore list
            "respect_gitignore": True,
            "ignore_patterns": [],
        },
        # Stash handling when switching branches
        "stash": {
            # Re-apply a branch's stash automatically when it becomes active
            "auto_restore": True,
        },
        # Materialization into a real Git branch
        "materialize": {
            "commit_message": "Materialized virtual branch {name}",
            "signoff": False,
        },
        "daemon": {
            # Relative paths resolve against the state directory
            "pid_file": "daemon.pid",
        },
    }
