"""Atomic status document for the background watcher daemon.

CLI invocations read this to tell whether a daemon is watching the
repository and which branch it last saw as active.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any


class DaemonStatus(str, Enum):
    """Daemon status states."""

    STARTING = "starting"  # Process started, watcher not yet running
    WATCHING = "watching"  # Watcher running
    STOPPING = "stopping"  # Shutting down after a signal
    STOPPED = "stopped"  # Stopped normally
    ERROR = "error"  # Failed to start
    CRASHED = "crashed"  # Recorded as running but the process is gone


RUNNING_STATES = {
    DaemonStatus.STARTING.value,
    DaemonStatus.WATCHING.value,
    DaemonStatus.STOPPING.value,
}


class StatusManager:
    """Thread-safe atomic updates of ``daemon.json``."""

    def __init__(self, status_path: Path):
        self.path = status_path
        self._lock = Lock()

    def _read(self) -> dict[str, Any]:
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return {}

    def _write(self, doc: dict[str, Any]) -> None:
        """Write via temp file + rename."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(doc, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def update(
        self,
        status: DaemonStatus | str,
        *,
        pid: int | None = None,
        root: str | None = None,
        error: str | None = None,
    ) -> None:
        """Atomically update the daemon status fields.

        Args:
            status: Status enum value or string
            pid: Daemon PID (recorded on starting)
            root: Watched working tree (recorded on starting)
            error: Error message for error/crashed states
        """
        if isinstance(status, str):
            status = DaemonStatus(status)

        with self._lock:
            doc = self._read()
            doc["status"] = status.value
            doc["updated_at"] = datetime.now(UTC).isoformat()

            if status == DaemonStatus.STARTING:
                doc["started_at"] = doc["updated_at"]
                if pid is not None:
                    doc["pid"] = pid
                if root is not None:
                    doc["root"] = root
                doc.pop("error", None)
            elif status in (DaemonStatus.ERROR, DaemonStatus.CRASHED):
                doc.pop("pid", None)
                if error is not None:
                    doc["error"] = error
            elif status == DaemonStatus.STOPPED:
                doc.pop("pid", None)
                doc.pop("started_at", None)
                doc.pop("error", None)
            else:
                doc.pop("error", None)

            self._write(doc)

    def get_status(self) -> dict[str, Any]:
        with self._lock:
            return self._read()
