"""Repository discovery and state-directory ownership.

A Repository pins down the three directories every other component needs:
the working tree root, the git metadata directory, and the private state
directory inside it where virtual branch state, config overrides and daemon
bookkeeping live.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from git import Repo
from git.exc import InvalidGitRepositoryError, NoSuchPathError

from sage_vbranch.config.constants import (
    CONFIG_FILE_NAME,
    DAEMON_STATUS_FILE_NAME,
    OPERATION_MARKER_NAME,
    STATE_DIR_MODE,
    STATE_DIR_NAME,
    STATE_FILE_NAME,
)
from sage_vbranch.utils.logger import get_logger
from sage_vbranch.vbranch.errors import (
    PersistenceFailedError,
    RepositoryNotFoundError,
)

logger = get_logger("repository")


@dataclass
class Repository:
    """A git working tree and the sage state stored under its metadata dir.

    Attributes:
        root: Absolute path to the working tree.
        git_dir: Absolute path to the repository's git metadata directory.
        state_dir: Absolute path to the private ``sage`` state directory.
    """

    root: Path
    git_dir: Path
    state_dir: Path

    @classmethod
    def discover(cls, start: Path | str | None = None) -> Repository:
        """Find the repository containing ``start`` (default: cwd)."""
        start_path = Path(start or os.getcwd()).resolve()
        try:
            repo = Repo(str(start_path), search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as exc:
            raise RepositoryNotFoundError(start_path) from exc
        if repo.bare or not repo.working_tree_dir:
            raise RepositoryNotFoundError(start_path)

        git_dir = Path(repo.git_dir).resolve()
        return cls(
            root=Path(repo.working_tree_dir).resolve(),
            git_dir=git_dir,
            state_dir=git_dir / STATE_DIR_NAME,
        )

    def ensure_state_dir(self) -> None:
        """Create the private state directory on first use.

        Raises:
            PersistenceFailedError: If the directory cannot be created.
        """
        if self.state_dir.is_dir():
            return
        try:
            self.state_dir.mkdir(mode=STATE_DIR_MODE, parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceFailedError(
                f"cannot create state directory {self.state_dir}: {exc}"
            ) from exc
        logger.info("Created state directory", path=str(self.state_dir))

    @property
    def state_file(self) -> Path:
        return self.state_dir / STATE_FILE_NAME

    @property
    def config_file(self) -> Path:
        return self.state_dir / CONFIG_FILE_NAME

    @property
    def operation_marker(self) -> Path:
        return self.state_dir / OPERATION_MARKER_NAME

    @property
    def daemon_status_file(self) -> Path:
        return self.state_dir / DAEMON_STATUS_FILE_NAME

    def relative_path(self, path: Path | str) -> str | None:
        """Repository-relative, forward-slash form of ``path``.

        Returns None for paths outside the working tree.
        """
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        try:
            rel = Path(os.path.abspath(candidate)).relative_to(self.root)
        except ValueError:
            return None
        text = rel.as_posix()
        return None if text in ("", ".") else text
