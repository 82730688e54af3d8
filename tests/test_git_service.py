"""Tests for the GitPython-backed git service."""

from pathlib import Path

import pytest

from sage_vbranch.vcs import GitOperationError, ShellGitService


@pytest.fixture
def git(git_repo):
    return ShellGitService(git_repo.working_tree_dir)


def test_clean_and_dirty(git):
    assert git.is_clean() is True

    (git.root / "scratch.txt").write_text("x\n", encoding="utf-8")

    assert git.is_clean() is False


def test_current_branch_and_exists(git):
    assert git.current_branch() == "main"
    assert git.branch_exists("main") is True
    assert git.branch_exists("feat-x") is False


def test_is_tracked(git):
    (git.root / "scratch.txt").write_text("x\n", encoding="utf-8")

    assert git.is_tracked("a.go") is True
    assert git.is_tracked("scratch.txt") is False


def test_diffs_keep_final_newline(git):
    (git.root / "c.txt").write_text("one\nTWO\n", encoding="utf-8")

    whole = git.get_diff()
    single = git.diff_path("c.txt")

    assert whole.endswith("+TWO\n")
    assert single.startswith("diff --git a/c.txt b/c.txt\n")
    assert "-two\n+TWO\n" in single


def test_apply_patch_and_reverse(git, tmp_path):
    patch = tmp_path / "change.patch"
    patch.write_text(
        "diff --git a/c.txt b/c.txt\n--- a/c.txt\n+++ b/c.txt\n"
        "@@ -1,2 +1,2 @@\n one\n-two\n+dos\n",
        encoding="utf-8",
    )

    git.apply_patch(patch)
    assert (git.root / "c.txt").read_text(encoding="utf-8") == "one\ndos\n"

    git.apply_patch(patch, reverse=True)
    assert (git.root / "c.txt").read_text(encoding="utf-8") == "one\ntwo\n"


def test_failed_command_raises(git, tmp_path):
    patch = tmp_path / "bad.patch"
    patch.write_text(
        "diff --git a/c.txt b/c.txt\n--- a/c.txt\n+++ b/c.txt\n"
        "@@ -1,2 +1,2 @@\n-uno\n+eins\n two\n",
        encoding="utf-8",
    )

    with pytest.raises(GitOperationError) as exc_info:
        git.apply_patch(patch, three_way=False)

    assert exc_info.value.returncode != 0
    assert exc_info.value.stderr
    assert exc_info.value.args_list[0] == "apply"


def test_create_branch_and_commit(git, git_repo):
    git.create_branch("feat-x")
    (git.root / "c.txt").write_text("one\n", encoding="utf-8")
    git.stage_all()
    git.commit("Trim c.txt", signoff=True)

    assert git.current_branch() == "feat-x"
    message = git_repo.head.commit.message
    assert message.startswith("Trim c.txt")
    assert "Signed-off-by: Test User <test@example.com>" in message
    assert git.is_clean() is True

    with pytest.raises(GitOperationError):
        git.create_branch("feat-x")


def test_reset_hard_discards_changes(git):
    (git.root / "a.go").write_text("changed\n", encoding="utf-8")

    git.reset_hard()

    assert (git.root / "a.go").read_text(encoding="utf-8").startswith("package main")


def test_root_is_working_tree(git, git_repo):
    assert git.root == Path(git_repo.working_tree_dir).resolve()
