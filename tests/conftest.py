"""Shared pytest fixtures for all tests."""

import shutil
from pathlib import Path

import pytest
from git import Repo

from sage_vbranch.config import settings
from sage_vbranch.core.repository import Repository
from sage_vbranch.vbranch import BranchManager
from sage_vbranch.vcs import GitOperationError, GitService, ShellGitService

A_GO = "package main\n\nfunc main() {\n}\n"

A_GO_THREE_LINES = (
    "@@ -1,4 +1,7 @@\n"
    " package main\n"
    " \n"
    " func main() {\n"
    "+\ta := 1\n"
    "+\tb := 2\n"
    "+\tprintln(a + b)\n"
    " }\n"
)

A_GO_AFTER = "package main\n\nfunc main() {\n\ta := 1\n\tb := 2\n\tprintln(a + b)\n}\n"


@pytest.fixture(autouse=True)
def temp_global_config_dir(monkeypatch, tmp_path_factory):
    """Use a temporary directory for global config during tests."""
    config_dir = Path(tmp_path_factory.mktemp("global_config"))
    monkeypatch.setenv("SAGE_CONFIG_DIR", str(config_dir))
    return config_dir


@pytest.fixture(autouse=True)
def detach_settings():
    """Keep a config manager attached by one test from leaking into the next."""
    yield
    settings._config_manager = None


class FakeGitService(GitService):
    """In-memory stand-in for git that records what the manager asks of it.

    ``dirty`` models whether the working tree has uncommitted changes;
    ``residual`` is what remains dirty after a reverse apply.
    """

    def __init__(self):
        self.calls: list[tuple] = []
        self.applied: list[tuple[bool, str]] = []
        self.commits: list[tuple[str, bool]] = []
        self.dirty = False
        self.residual = ""
        self.fail_apply = False
        self.on_apply = None
        self.branch = "main"
        self.branches = {"main"}
        self.tracked: set[str] = set()
        self.path_diffs: dict[str, str] = {}

    def is_clean(self) -> bool:
        return not self.dirty

    def get_diff(self) -> str:
        return self.residual

    def run(self, *args: str) -> str:
        self.calls.append(("run", args))
        return ""

    def run_interactive(self, *args: str) -> None:
        self.calls.append(("run_interactive", args))

    def apply_patch(self, patch_path, *, reverse=False, three_way=True):
        text = Path(patch_path).read_text(encoding="utf-8")
        self.calls.append(("apply", reverse))
        if self.on_apply is not None:
            self.on_apply(reverse, text)
        if self.fail_apply:
            raise GitOperationError(
                ["apply", str(patch_path)], 1, "error: patch failed: a.go:1"
            )
        self.applied.append((reverse, text))
        self.dirty = bool(self.residual) if reverse else True

    def reset_hard(self, ref: str = "HEAD") -> None:
        self.calls.append(("reset_hard", ref))
        self.dirty = False
        self.residual = ""

    def create_branch(self, name: str) -> None:
        if name in self.branches:
            raise GitOperationError(
                ["checkout", "-b", name], 128, f"fatal: a branch named '{name}' already exists"
            )
        self.calls.append(("create_branch", name))
        self.branches.add(name)
        self.branch = name

    def stage_all(self) -> None:
        self.calls.append(("stage_all",))

    def commit(self, message: str, allow_empty: bool = False, signoff: bool = False) -> None:
        self.calls.append(("commit", message))
        self.commits.append((message, signoff))
        self.dirty = False

    def current_branch(self) -> str:
        return self.branch

    def branch_exists(self, name: str) -> bool:
        return name in self.branches

    def is_tracked(self, path: str) -> bool:
        return path in self.tracked

    def diff_path(self, path: str) -> str:
        return self.path_diffs.get(path, "")


@pytest.fixture
def fake_git():
    return FakeGitService()


@pytest.fixture
def fake_manager(fake_git, tmp_path):
    """Manager over a fake git and a temporary state directory."""
    return BranchManager(fake_git, tmp_path / "state", auto_restore=True)


@pytest.fixture
def git_repo(tmp_path):
    """A real repository on branch ``main`` with ``a.go`` and ``c.txt`` committed."""
    if shutil.which("git") is None:
        pytest.skip("git binary not available")

    root = (tmp_path / "repo").resolve()
    root.mkdir()
    repo = Repo.init(root)
    repo.git.symbolic_ref("HEAD", "refs/heads/main")
    repo.git.config("user.name", "Test User")
    repo.git.config("user.email", "test@example.com")
    repo.git.config("commit.gpgsign", "false")

    (root / "a.go").write_text(A_GO, encoding="utf-8")
    (root / "c.txt").write_text("one\ntwo\n", encoding="utf-8")
    repo.git.add("a.go", "c.txt")
    repo.git.commit("-m", "initial")
    return repo


@pytest.fixture
def repository(git_repo):
    return Repository.discover(git_repo.working_tree_dir)


@pytest.fixture
def real_manager(repository):
    """Manager over the real repository with stashes kept until popped."""
    repository.ensure_state_dir()
    git = ShellGitService(repository.root)
    return BranchManager(git, repository.state_dir, auto_restore=False)
