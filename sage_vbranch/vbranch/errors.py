"""Error taxonomy for virtual branch operations."""

from __future__ import annotations


class VirtualBranchError(Exception):
    """Base class for every failure the engine reports to callers."""


class NotFoundError(VirtualBranchError):
    """A named entity does not exist."""


class BranchNotFoundError(NotFoundError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"virtual branch {name!r} not found")


class ChangeNotFoundError(NotFoundError):
    def __init__(self, branch: str, path: str):
        self.branch = branch
        self.path = path
        super().__init__(f"no change for {path!r} in virtual branch {branch!r}")


class StashNotFoundError(NotFoundError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"virtual branch {name!r} has no stashed changes")


class NoActiveBranchError(NotFoundError):
    def __init__(self):
        super().__init__("no virtual branch is active")


class BranchAlreadyExistsError(VirtualBranchError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"virtual branch {name!r} already exists")


class BranchNotActiveError(VirtualBranchError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"virtual branch {name!r} is not active")


class DirtyWithNoOwnerError(VirtualBranchError):
    def __init__(self):
        super().__init__(
            "working tree has uncommitted changes that belong to no virtual branch; "
            "commit, stash or create a branch for them first"
        )


class PatchApplyFailedError(VirtualBranchError):
    """``git apply`` rejected a branch patch or a stash."""

    def __init__(self, name: str, detail: str):
        self.name = name
        self.detail = detail
        super().__init__(f"failed to apply changes of {name!r}: {detail}")


class PersistenceFailedError(VirtualBranchError):
    """The state file could not be read, decoded or written."""


class RepositoryNotFoundError(VirtualBranchError):
    def __init__(self, start):
        self.start = start
        super().__init__(f"not a git repository (or any parent up to root): {start}")


class StashOccupiedError(VirtualBranchError):
    """Parking would stash over paths the branch already has stashed."""

    def __init__(self, name: str, paths: list[str]):
        self.name = name
        self.paths = paths
        super().__init__(
            f"virtual branch {name!r} already has stashed changes for "
            f"{', '.join(paths)}; pop or drop them first"
        )


class WatcherError(VirtualBranchError):
    """The filesystem watcher could not be started."""
