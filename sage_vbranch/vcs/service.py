"""Git Service capability consumed by the virtual branch engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path


class GitOperationError(Exception):
    """A git invocation exited non-zero."""

    def __init__(self, args: tuple[str, ...] | list[str], returncode: int, stderr: str):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        super().__init__(
            f"git {' '.join(self.args_list)} failed ({returncode}): {self.stderr}"
        )


class GitService(ABC):
    """Primitive operations on the repository the engine manages.

    Implementations may shell out to git or simulate a repository for tests.
    All paths are repository-relative with forward slashes.
    """

    @abstractmethod
    def is_clean(self) -> bool:
        """True iff the working tree has no uncommitted changes (untracked included)."""

    @abstractmethod
    def get_diff(self) -> str:
        """Unified diff of the tracked and staged changes against HEAD."""

    @abstractmethod
    def run(self, *args: str) -> str:
        """Run an arbitrary git subcommand and return its stdout."""

    @abstractmethod
    def run_interactive(self, *args: str) -> None:
        """Run an arbitrary git subcommand with inherited stdio."""

    @abstractmethod
    def apply_patch(
        self, patch_path: Path, *, reverse: bool = False, three_way: bool = True
    ) -> None:
        """Apply (or reverse-apply) a patch file to the working tree."""

    @abstractmethod
    def reset_hard(self, ref: str = "HEAD") -> None:
        """Put the index and working tree back to ``ref`` without moving history."""

    @abstractmethod
    def create_branch(self, name: str) -> None:
        """Create a real branch at HEAD and check it out, keeping local changes."""

    @abstractmethod
    def stage_all(self) -> None:
        """Stage every change in the working tree, untracked files included."""

    @abstractmethod
    def commit(self, message: str, allow_empty: bool = False, signoff: bool = False) -> None:
        """Commit the index."""

    @abstractmethod
    def current_branch(self) -> str:
        """Name of the checked-out branch."""

    @abstractmethod
    def branch_exists(self, name: str) -> bool:
        """True if a local branch called ``name`` exists."""

    @abstractmethod
    def is_tracked(self, path: str) -> bool:
        """True if ``path`` is present in the index."""

    @abstractmethod
    def diff_path(self, path: str) -> str:
        """Diff of one path between HEAD and the working tree."""
