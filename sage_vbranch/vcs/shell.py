"""GitService backed by the git binary through GitPython."""

from __future__ import annotations

import subprocess
import time
from pathlib import Path

from git import Repo
from git.exc import GitCommandError

from sage_vbranch.vcs.service import GitOperationError, GitService
from sage_vbranch.utils.logger import git_log, git_logger


def _clean_stderr(exc: GitCommandError) -> str:
    """Strip GitPython's ``stderr: '...'`` decoration from an error."""
    text = str(exc.stderr or "").strip()
    if text.startswith("stderr: "):
        text = text[len("stderr: ") :]
    if len(text) >= 2 and text[0] == "'" and text[-1] == "'":
        text = text[1:-1]
    return text.strip()


def _with_newline(output: str) -> str:
    # GitPython drops the final newline of stdout; patches need it back
    if output and not output.endswith("\n"):
        return output + "\n"
    return output


class ShellGitService(GitService):
    """Runs git commands inside one repository's working tree."""

    def __init__(self, repo_root: Path | str):
        self.repo = Repo(str(repo_root))
        self.root = Path(self.repo.working_tree_dir or repo_root).resolve()

    def _git(self, *args: str) -> str:
        started = time.monotonic()
        try:
            output = self.repo.git.execute(["git", *args])
        except GitCommandError as exc:
            stderr = _clean_stderr(exc)
            git_log(
                git_logger,
                args,
                exc.status if isinstance(exc.status, int) else -1,
                (time.monotonic() - started) * 1000,
                stderr=stderr,
            )
            raise GitOperationError(
                args, exc.status if isinstance(exc.status, int) else -1, stderr
            ) from exc
        git_log(git_logger, args, 0, (time.monotonic() - started) * 1000)
        return str(output)

    # ---- queries ----
    def is_clean(self) -> bool:
        return not self.repo.is_dirty(index=True, working_tree=True, untracked_files=True)

    def get_diff(self) -> str:
        return _with_newline(self._git("diff", "HEAD", "--binary"))

    def current_branch(self) -> str:
        return self._git("rev-parse", "--abbrev-ref", "HEAD").strip()

    def branch_exists(self, name: str) -> bool:
        return any(head.name == name for head in self.repo.heads)

    def is_tracked(self, path: str) -> bool:
        try:
            self._git("ls-files", "--error-unmatch", "--", path)
        except GitOperationError:
            return False
        return True

    def diff_path(self, path: str) -> str:
        return _with_newline(self._git("diff", "HEAD", "--", path))

    # ---- commands ----
    def run(self, *args: str) -> str:
        return self._git(*args)

    def run_interactive(self, *args: str) -> None:
        git_logger.debug("Running interactive git command", args=list(args))
        completed = subprocess.run(["git", *args], cwd=self.root, check=False)
        if completed.returncode != 0:
            raise GitOperationError(args, completed.returncode, "")

    def apply_patch(
        self, patch_path: Path, *, reverse: bool = False, three_way: bool = True
    ) -> None:
        args = ["apply"]
        if three_way:
            args.append("--3way")
        if reverse:
            args.append("--reverse")
        args.append(str(patch_path))
        self._git(*args)

    def reset_hard(self, ref: str = "HEAD") -> None:
        self._git("reset", "--hard", ref)

    def create_branch(self, name: str) -> None:
        self._git("checkout", "-b", name)

    def stage_all(self) -> None:
        self._git("add", "-A")

    def commit(self, message: str, allow_empty: bool = False, signoff: bool = False) -> None:
        args = ["commit", "-m", message]
        if allow_empty:
            args.append("--allow-empty")
        if signoff:
            args.append("--signoff")
        self._git(*args)
