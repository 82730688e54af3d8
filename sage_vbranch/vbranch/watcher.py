"""Filesystem watcher that records edits into the active virtual branch.

Ignore semantics for the watched tree:

1. DEFAULT_IGNORES (below): VCS metadata, dependency and tool caches, editor
   swap/backup files and logs. Always applied.
2. The repository's top-level .gitignore, when ``respect_gitignore`` is on.
3. Extra patterns from the ``watcher.ignore_patterns`` setting.

All three are combined into one gitignore-style pathspec. Ignored directories
are never scheduled with the observer, so their events never arrive.

Threading: watchdog's observer thread only enqueues events into a bounded
queue. A single worker thread drains it, computes per-file diffs and hands
them to the branch manager.
"""

from __future__ import annotations

import os
import queue
import threading
from pathlib import Path
from typing import Any

import pathspec
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from sage_vbranch.config.settings import settings
from sage_vbranch.utils.logger import watcher_logger as logger
from sage_vbranch.vbranch.errors import ChangeNotFoundError, WatcherError
from sage_vbranch.vbranch.manager import BranchManager
from sage_vbranch.vbranch.models import Change
from sage_vbranch.vbranch.patch import addition_diff, strip_file_headers
from sage_vbranch.vcs.service import GitService

DEFAULT_IGNORES = [
    # Version control
    ".git/",
    ".svn/",
    ".hg/",
    # Dependencies and caches
    "node_modules/",
    "__pycache__/",
    "*.pyc",
    "*.pyo",
    ".venv/",
    ".pytest_cache/",
    ".mypy_cache/",
    ".ruff_cache/",
    ".tox/",
    # Editors
    ".idea/",
    ".vscode/",
    ".DS_Store",
    "*.swp",
    "*.swo",
    "*.swx",
    "*~",
    ".#*",
    "4913",
    # Logs
    "*.log",
]

_STOP = object()


def build_ignore_spec(
    root: Path, *, respect_gitignore: bool = True, extra: list[str] | None = None
) -> pathspec.PathSpec:
    """Build PathSpec from DEFAULT_IGNORES, .gitignore and extra patterns."""
    patterns = list(DEFAULT_IGNORES)
    gitignore = root / ".gitignore"
    if respect_gitignore and gitignore.is_file():
        for line in gitignore.read_text(encoding="utf-8", errors="replace").splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            patterns.append(line)
    patterns.extend(extra or [])
    return pathspec.PathSpec.from_lines("gitwildmatch", patterns)


class _EventForwarder(FileSystemEventHandler):
    def __init__(self, watcher: Watcher):
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        self.watcher._enqueue(event)


class Watcher:
    """Turns filesystem events into ``Change`` records for the active branch.

    With ``follow_store`` the active branch is read from the state store for
    every event instead of from ``set_active_branch``; the daemon uses this
    so switches made by other processes are picked up.
    """

    def __init__(
        self,
        manager: BranchManager,
        git: GitService,
        root: Path,
        *,
        queue_size: int | None = None,
        respect_gitignore: bool | None = None,
        ignore_patterns: list[str] | None = None,
        follow_store: bool = False,
    ):
        self.manager = manager
        self.git = git
        self.root = Path(root).resolve()
        self.follow_store = follow_store
        self.spec = build_ignore_spec(
            self.root,
            respect_gitignore=(
                settings.watcher_respect_gitignore
                if respect_gitignore is None
                else respect_gitignore
            ),
            extra=(
                settings.watcher_ignore_patterns
                if ignore_patterns is None
                else ignore_patterns
            ),
        )
        self._events: queue.Queue[Any] = queue.Queue(
            maxsize=queue_size or settings.watcher_queue_size
        )
        self._active_branch: str | None = None
        self._branch_lock = threading.Lock()
        self._observer: Any = None
        self._handler = _EventForwarder(self)
        self._worker: threading.Thread | None = None
        self._watched: set[str] = set()

    # ---- active branch ----
    def set_active_branch(self, name: str | None) -> None:
        with self._branch_lock:
            self._active_branch = name
        logger.debug("Watcher target changed", branch=name)

    @property
    def active_branch(self) -> str | None:
        if self.follow_store:
            return self.manager.active_branch_name()
        with self._branch_lock:
            return self._active_branch

    # ---- paths ----
    def relative(self, path: str | bytes) -> str | None:
        text = os.fsdecode(path)
        rel = os.path.relpath(os.path.abspath(text), self.root)
        if rel == "." or rel.startswith(".."):
            return None
        return Path(rel).as_posix()

    def is_ignored(self, rel: str, *, is_dir: bool = False) -> bool:
        if is_dir:
            return self.spec.match_file(rel.rstrip("/") + "/")
        return self.spec.match_file(rel)

    # ---- lifecycle ----
    def _schedule_tree(self, top: Path) -> None:
        def _raise(exc: OSError) -> None:
            raise exc

        for dirpath, dirnames, _ in os.walk(top, onerror=_raise):
            rel = self.relative(dirpath)
            if rel is not None and self.is_ignored(rel, is_dir=True):
                dirnames[:] = []
                continue
            dirnames[:] = [
                d
                for d in dirnames
                if not self.is_ignored(
                    (f"{rel}/{d}" if rel else d), is_dir=True
                )
            ]
            if dirpath not in self._watched:
                self._observer.schedule(self._handler, dirpath, recursive=False)
                self._watched.add(dirpath)

    def start(self) -> None:
        """Schedule every non-ignored directory and start processing events.

        Raises:
            WatcherError: If the tree cannot be walked or watched.
        """
        if self._observer is not None:
            return
        self._observer = Observer()
        try:
            self._schedule_tree(self.root)
        except OSError as exc:
            self._observer = None
            self._watched.clear()
            raise WatcherError(f"cannot watch {self.root}: {exc}") from exc

        self._observer.start()
        self._worker = threading.Thread(
            target=self._run, name="sage-watcher", daemon=True
        )
        self._worker.start()
        logger.info(
            "Watcher started", root=str(self.root), directories=len(self._watched)
        )

    def stop(self) -> None:
        """Stop observing and wait for the worker to finish. Idempotent."""
        observer, worker = self._observer, self._worker
        self._observer = None
        self._worker = None
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)
        if worker is not None:
            self._events.put(_STOP)
            worker.join()
        if observer is not None or worker is not None:
            self._watched.clear()
            logger.info("Watcher stopped", root=str(self.root))

    # ---- event flow ----
    def _enqueue(self, event: FileSystemEvent) -> None:
        try:
            self._events.put_nowait(event)
        except queue.Full:
            logger.warning(
                "Event queue full, dropping event",
                event_type=event.event_type,
                path=os.fsdecode(event.src_path),
            )

    def _run(self) -> None:
        while True:
            event = self._events.get()
            if event is _STOP:
                break
            try:
                self.dispatch(event)
            except Exception as exc:
                logger.error(
                    "Failed to handle filesystem event",
                    event_type=getattr(event, "event_type", None),
                    path=os.fsdecode(getattr(event, "src_path", "")),
                    error=str(exc),
                    exc_info=True,
                )

    def dispatch(self, event: FileSystemEvent) -> None:
        """Route one filesystem event."""
        if event.is_directory:
            if event.event_type in ("created", "moved") and self._observer is not None:
                target = event.dest_path if event.event_type == "moved" else event.src_path
                rel = self.relative(target)
                if rel is not None and not self.is_ignored(rel, is_dir=True):
                    self._schedule_tree(Path(os.fsdecode(target)))
            return

        if event.event_type == "modified":
            paths = [event.src_path]
        elif event.event_type == "deleted":
            paths = [event.src_path]
        elif event.event_type == "moved":
            paths = [event.dest_path, event.src_path]
        else:
            return

        branch = self.active_branch
        if branch is None:
            return
        if self.manager.operation_in_progress():
            logger.debug("Operation in progress, skipping event", path=os.fsdecode(event.src_path))
            return

        for path in paths:
            rel = self.relative(path)
            if rel is None or self.is_ignored(rel):
                continue
            self.record(branch, rel)

    def _diff_for(self, rel: str) -> str | None:
        """Current diff of ``rel`` against HEAD; None when it should be skipped."""
        if self.git.is_tracked(rel):
            return strip_file_headers(self.git.diff_path(rel))

        full = self.root / rel
        if not full.exists():
            return ""
        if full.is_dir():
            return None
        data = full.read_bytes()
        if not data or b"\0" in data:
            return None
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            return None
        return addition_diff(text)

    def record(self, branch: str, rel: str) -> None:
        """Bring ``branch``'s change for ``rel`` in line with the file on disk."""
        diff = self._diff_for(rel)
        if diff is None:
            logger.debug("Skipping non-text or empty file", path=rel)
            return
        if diff:
            self.manager.add_change(branch, Change(path=rel, diff=diff, staged=False))
            return
        try:
            self.manager.remove_change(branch, rel)
        except ChangeNotFoundError:
            pass
