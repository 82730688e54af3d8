"""Branch manager: the orchestrator of virtual branch state.

Every public method takes the manager lock, reloads the branch map from the
state store, mutates it and saves it before returning. Methods that rewrite
the working tree additionally hold an operation marker file in the state
directory so a watcher process can ignore the churn they cause.

Switching away from a branch "parks" it: the tree is staged, the branch's own
patch is reverse-applied, and whatever is still dirty afterwards becomes the
branch's stash before the tree is reset to HEAD.
"""

from __future__ import annotations

import os
import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sage_vbranch.config.constants import (
    MAX_BRANCH_NAME_LENGTH,
    OPERATION_MARKER_NAME,
    STATE_DIR_MODE,
)
from sage_vbranch.config.settings import settings
from sage_vbranch.utils.logger import vbranch_logger as logger
from sage_vbranch.vbranch.errors import (
    BranchAlreadyExistsError,
    BranchNotActiveError,
    BranchNotFoundError,
    ChangeNotFoundError,
    DirtyWithNoOwnerError,
    NoActiveBranchError,
    PatchApplyFailedError,
    StashNotFoundError,
    StashOccupiedError,
    VirtualBranchError,
)
from sage_vbranch.vbranch.models import Change, VirtualBranch, utcnow
from sage_vbranch.vbranch.patch import build_patch, patch_file, split_patch, strip_file_headers
from sage_vbranch.vbranch.store import StateStore
from sage_vbranch.vcs.service import GitOperationError, GitService

_INVALID_REF = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")
_SLUG_PREFIXES = ("feat-", "fix-", "chore-", "docs-")


def validate_branch_name(name: str) -> str:
    """Reject names git would refuse as a branch name."""
    if (
        not name
        or _INVALID_REF.search(name)
        or ".." in name
        or "@{" in name
        or "//" in name
        or name == "@"
        or name.startswith(("-", "/", "."))
        or name.endswith(("/", ".", ".lock"))
        or "/." in name
    ):
        raise ValueError(f"invalid branch name: {name!r}")
    return name


def slugify_branch_name(description: str) -> str:
    """Turn a free-text description into a conventional branch name."""
    slug = description.strip().lower()
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"[^a-z0-9./-]", "", slug)
    slug = re.sub(r"-{2,}", "-", slug).strip("-./")
    if not slug:
        raise ValueError("description does not contain any usable characters")
    if not slug.startswith(_SLUG_PREFIXES):
        slug = "feat-" + slug
    return slug[:MAX_BRANCH_NAME_LENGTH].rstrip("-./")


class BranchManager:
    """Creates, applies, parks, moves and materializes virtual branches."""

    def __init__(
        self,
        git: GitService,
        state_dir: Path,
        *,
        store: StateStore | None = None,
        auto_restore: bool | None = None,
        commit_message: str | None = None,
        signoff: bool | None = None,
    ):
        self.git = git
        self.state_dir = Path(state_dir)
        self.store = store or StateStore(self.state_dir)
        self.marker_path = self.state_dir / OPERATION_MARKER_NAME
        self._auto_restore = auto_restore
        self._commit_message = commit_message
        self._signoff = signoff
        self._lock = threading.Lock()

    # ---- configuration ----
    @property
    def auto_restore(self) -> bool:
        if self._auto_restore is not None:
            return self._auto_restore
        return settings.stash_auto_restore

    @property
    def commit_message_template(self) -> str:
        return self._commit_message or settings.materialize_commit_message

    @property
    def signoff(self) -> bool:
        if self._signoff is not None:
            return self._signoff
        return settings.materialize_signoff

    # ---- internals ----
    def _load(self) -> dict[str, VirtualBranch]:
        return self.store.load()

    def _save(self, branches: dict[str, VirtualBranch]) -> None:
        self.store.save(branches)

    @staticmethod
    def _require(branches: dict[str, VirtualBranch], name: str) -> VirtualBranch:
        branch = branches.get(name)
        if branch is None:
            raise BranchNotFoundError(name)
        return branch

    @staticmethod
    def _active(branches: dict[str, VirtualBranch]) -> VirtualBranch | None:
        for branch in branches.values():
            if branch.active:
                return branch
        return None

    @contextmanager
    def _operation(self, name: str) -> Iterator[None]:
        """Hold the on-disk marker while the working tree is being rewritten."""
        self.state_dir.mkdir(mode=STATE_DIR_MODE, parents=True, exist_ok=True)
        self.marker_path.write_text(f"{os.getpid()} {name}\n", encoding="utf-8")
        try:
            yield
        finally:
            try:
                self.marker_path.unlink()
            except FileNotFoundError:
                pass

    def operation_in_progress(self) -> bool:
        return self.marker_path.exists()

    def _apply_text(self, name: str, text: str, *, reverse: bool = False) -> None:
        if not text:
            return
        with patch_file(text, self.state_dir) as path:
            try:
                self.git.apply_patch(path, reverse=reverse, three_way=True)
            except GitOperationError as exc:
                raise PatchApplyFailedError(name, exc.stderr or str(exc)) from exc

    def _park(self, branch: VirtualBranch) -> None:
        """Take ``branch`` out of the working tree, stashing leftovers."""
        patch = build_patch(branch.changes)
        self.git.stage_all()
        self._apply_text(branch.name, patch, reverse=True)

        if not self.git.is_clean():
            residual = self.git.get_diff()
            if residual.strip():
                if branch.stashed_diff:
                    held = {path for path, _ in split_patch(branch.stashed_diff)}
                    overlap = sorted(held & {path for path, _ in split_patch(residual)})
                    if overlap:
                        self._apply_text(branch.name, patch)
                        raise StashOccupiedError(branch.name, overlap)
                    residual = branch.stashed_diff + residual
                branch.stashed_diff = residual
                logger.info(
                    "Stashed leftover changes",
                    branch=branch.name,
                    bytes=len(residual),
                )
            self.git.reset_hard("HEAD")

        branch.active = False
        branch.touch()
        logger.info("Parked virtual branch", branch=branch.name)

    def _apply_branch(self, branches: dict[str, VirtualBranch], name: str) -> VirtualBranch:
        branch = self._require(branches, name)
        if branch.active:
            return branch

        current = self._active(branches)
        if not self.git.is_clean():
            if current is None:
                raise DirtyWithNoOwnerError()
            self._park(current)
            self._save(branches)
        elif current is not None:
            # clean tree: the active branch's patch is not in it
            logger.info(
                "Deactivated branch without reverse-applying, tree clean",
                branch=current.name,
                target=name,
            )
            current.active = False
            current.touch()

        self._apply_text(name, build_patch(branch.changes))

        stash_error: PatchApplyFailedError | None = None
        if branch.stashed_diff and self.auto_restore:
            try:
                self._apply_text(name, branch.stashed_diff)
                branch.stashed_diff = None
            except PatchApplyFailedError as exc:
                logger.warning(
                    "Stashed changes did not apply; keeping stash",
                    branch=name,
                    error=exc.detail,
                )
                stash_error = exc

        branch.active = True
        branch.touch()
        self._save(branches)
        logger.info("Applied virtual branch", branch=name, changes=len(branch.changes))
        if stash_error is not None:
            raise stash_error
        return branch

    # ---- queries ----
    def list_virtual_branches(self) -> list[VirtualBranch]:
        with self._lock:
            return [b.model_copy(deep=True) for b in self._load().values()]

    def get_virtual_branch(self, name: str) -> VirtualBranch:
        with self._lock:
            return self._require(self._load(), name).model_copy(deep=True)

    def get_active_branch(self) -> VirtualBranch:
        with self._lock:
            branch = self._active(self._load())
            if branch is None:
                raise NoActiveBranchError()
            return branch.model_copy(deep=True)

    def active_branch_name(self) -> str | None:
        with self._lock:
            branch = self._active(self._load())
            return branch.name if branch else None

    def has_stashed_changes(self, name: str) -> bool:
        with self._lock:
            return bool(self._require(self._load(), name).stashed_diff)

    # ---- lifecycle ----
    def create_virtual_branch(self, name: str, base_branch: str | None = None) -> VirtualBranch:
        validate_branch_name(name)
        with self._lock:
            branches = self._load()
            if name in branches:
                raise BranchAlreadyExistsError(name)
            base = base_branch or self.git.current_branch()
            branch = VirtualBranch(name=name, base_branch=base)
            branches[name] = branch
            self._save(branches)
            logger.info("Created virtual branch", branch=name, base=base)
            return branch.model_copy(deep=True)

    def apply_virtual_branch(self, name: str) -> VirtualBranch:
        with self._lock, self._operation(name):
            branches = self._load()
            return self._apply_branch(branches, name).model_copy(deep=True)

    def unapply_virtual_branch(self, name: str) -> VirtualBranch:
        with self._lock, self._operation(name):
            branches = self._load()
            branch = self._require(branches, name)
            if branch.active:
                self._park(branch)
                self._save(branches)
            return branch.model_copy(deep=True)

    def materialize_branch(self, name: str, message: str | None = None) -> str:
        """Fold a virtual branch into a real branch with a single commit.

        The virtual branch is deleted once the commit exists. Returns the
        commit message used.
        """
        with self._lock, self._operation(name):
            branches = self._load()
            branch = self._require(branches, name)
            if not branch.changes and not branch.stashed_diff:
                raise VirtualBranchError(f"virtual branch {name!r} has no changes to materialize")
            if self.git.branch_exists(name):
                raise VirtualBranchError(f"git branch {name!r} already exists")
            if not branch.active and self._active(branches) is None and not self.git.is_clean():
                raise DirtyWithNoOwnerError()

            previous = self.git.current_branch()
            self.git.create_branch(name)
            try:
                self._apply_branch(branches, name)
                self.git.stage_all()

                text = message or self.commit_message_template.format(
                    name=name, base=branch.base_branch, changes=len(branch.changes)
                )
                self.git.commit(text, signoff=self.signoff)
            except Exception:
                self._drop_real_branch(name, previous)
                raise

            del branches[name]
            self._save(branches)
            logger.info("Materialized virtual branch", branch=name)
            return text

    def _drop_real_branch(self, name: str, previous: str) -> None:
        """Return to ``previous`` and delete the branch a failed materialize created."""
        if previous == "HEAD":
            # detached; go back to the same commit
            previous = self.git.run("rev-parse", "HEAD").strip()
        try:
            self.git.run("checkout", previous)
            self.git.run("branch", "-D", name)
        except GitOperationError as exc:
            logger.error(
                "Could not roll back git branch after failed materialize",
                branch=name,
                previous=previous,
                error=exc.stderr or str(exc),
            )
            return
        logger.info("Rolled back git branch", branch=name, previous=previous)

    def adopt_working_tree(self, name: str) -> list[str]:
        """Attribute the current uncommitted changes to ``name`` and activate it.

        Only possible while no branch is active. Returns the adopted paths.
        """
        with self._lock, self._operation(name):
            branches = self._load()
            branch = self._require(branches, name)
            current = self._active(branches)
            if current is not None and current.name != name:
                raise VirtualBranchError(
                    f"working tree already belongs to active virtual branch {current.name!r}"
                )

            # untracked files only show up in `git diff HEAD` once intent-to-add
            listing = self.git.run("ls-files", "--others", "--exclude-standard", "-z")
            untracked = [p for p in listing.split("\0") if p]
            if untracked:
                self.git.run("add", "--intent-to-add", "--", *untracked)

            adopted: list[str] = []
            for path, hunks in split_patch(self.git.get_diff()):
                self._put_change(branch, Change(path=path, diff=hunks))
                adopted.append(path)
            branch.active = True
            branch.touch()
            self._save(branches)
            logger.info("Adopted working tree", branch=name, paths=adopted)
            return adopted

    # ---- changes ----
    @staticmethod
    def _put_change(branch: VirtualBranch, change: Change) -> None:
        for idx, existing in enumerate(branch.changes):
            if existing.path == change.path:
                branch.changes[idx] = change
                return
        branch.changes.append(change)

    def add_change(self, branch_name: str, change: Change) -> None:
        """Record ``change``, replacing any earlier change to the same path."""
        hunks = strip_file_headers(change.diff)
        if not hunks:
            raise ValueError(f"change for {change.path!r} has no hunks")
        with self._lock:
            branches = self._load()
            branch = self._require(branches, branch_name)
            self._put_change(branch, change.model_copy(update={"diff": hunks}))
            branch.touch()
            self._save(branches)
            logger.debug("Recorded change", branch=branch_name, path=change.path)

    def remove_change(self, branch_name: str, path: str) -> None:
        with self._lock:
            branches = self._load()
            branch = self._require(branches, branch_name)
            if branch.find_change(path) is None:
                raise ChangeNotFoundError(branch_name, path)
            branch.changes = [c for c in branch.changes if c.path != path]
            branch.touch()
            self._save(branches)
            logger.debug("Removed change", branch=branch_name, path=path)

    def move_changes(self, from_branch: str, to_branch: str, paths: list[str]) -> list[str]:
        """Move the changes for ``paths`` between branches.

        Unknown paths are skipped. Returns the paths that moved.
        """
        if from_branch == to_branch:
            raise ValueError("source and target branch are the same")
        with self._lock:
            branches = self._load()
            source = self._require(branches, from_branch)
            target = self._require(branches, to_branch)

            moved: list[str] = []
            for path in dict.fromkeys(paths):
                change = source.find_change(path)
                if change is None:
                    logger.warning("Path not in source branch", branch=from_branch, path=path)
                    continue
                source.changes = [c for c in source.changes if c.path != path]
                self._put_change(target, change)
                moved.append(path)

            now = utcnow()
            source.last_updated = now
            target.last_updated = now
            self._save(branches)
            logger.info("Moved changes", source=from_branch, target=to_branch, paths=moved)
            return moved

    # ---- stash ----
    def pop_stashed_changes(self, name: str) -> None:
        with self._lock, self._operation(name):
            branches = self._load()
            branch = self._require(branches, name)
            if not branch.active:
                raise BranchNotActiveError(name)
            if not branch.stashed_diff:
                raise StashNotFoundError(name)
            self._apply_text(name, branch.stashed_diff)
            branch.stashed_diff = None
            branch.touch()
            self._save(branches)
            logger.info("Popped stashed changes", branch=name)

    def drop_stashed_changes(self, name: str) -> None:
        with self._lock:
            branches = self._load()
            branch = self._require(branches, name)
            if not branch.stashed_diff:
                raise StashNotFoundError(name)
            branch.stashed_diff = None
            branch.touch()
            self._save(branches)
            logger.info("Dropped stashed changes", branch=name)
