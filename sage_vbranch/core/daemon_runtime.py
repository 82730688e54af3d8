"""PID file and singleton handling for the watcher daemon."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from sage_vbranch.config.settings import settings

from .repository import Repository
from .status_manager import RUNNING_STATES, DaemonStatus, StatusManager


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists but owned by another user
        return True


def get_status_manager(repository: Repository) -> StatusManager:
    return StatusManager(repository.daemon_status_file)


def pid_file_path(repository: Repository) -> Path:
    return settings.pid_file(repository.state_dir)


def read_pid(path: Path) -> int | None:
    try:
        return int(path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


def daemon_info(repository: Repository) -> dict[str, Any]:
    """Status document, with a dead recorded process reported as crashed."""
    manager = get_status_manager(repository)
    doc = manager.get_status()
    pid = doc.get("pid")
    if isinstance(pid, int) and doc.get("status") in RUNNING_STATES and not _pid_alive(pid):
        doc = dict(doc, status=DaemonStatus.CRASHED.value, alive=False)
    else:
        doc["alive"] = isinstance(pid, int) and _pid_alive(pid)
    return doc


def ensure_singleton(repository: Repository) -> StatusManager:
    """Make sure no other daemon watches this repository, then claim it.

    - A live PID in a running state raises RuntimeError.
    - A dead PID in a running state is recorded as crashed first.
    On success the PID file is written and the status set to starting.
    """
    manager = get_status_manager(repository)
    existing = manager.get_status()
    existing_pid = existing.get("pid")
    existing_status = existing.get("status")

    if isinstance(existing_pid, int) and existing_status in RUNNING_STATES:
        if _pid_alive(existing_pid):
            raise RuntimeError(
                f"daemon already running for {repository.root} "
                f"(pid {existing_pid}, status {existing_status})"
            )
        manager.update(
            DaemonStatus.CRASHED,
            error=f"daemon (pid {existing_pid}) terminated unexpectedly while '{existing_status}'",
        )

    pid_path = pid_file_path(repository)
    pid_path.parent.mkdir(parents=True, exist_ok=True)
    pid_path.write_text(f"{os.getpid()}\n", encoding="utf-8")
    manager.update(DaemonStatus.STARTING, pid=os.getpid(), root=str(repository.root))
    return manager


def release(repository: Repository) -> None:
    """Remove our PID file and mark the daemon stopped."""
    pid_path = pid_file_path(repository)
    if read_pid(pid_path) == os.getpid():
        try:
            pid_path.unlink()
        except FileNotFoundError:
            pass
    get_status_manager(repository).update(DaemonStatus.STOPPED)
