"""Virtual branch engine: models, persistence, patching, orchestration, watching."""

from .errors import (
    BranchAlreadyExistsError,
    BranchNotActiveError,
    BranchNotFoundError,
    ChangeNotFoundError,
    DirtyWithNoOwnerError,
    NoActiveBranchError,
    NotFoundError,
    PatchApplyFailedError,
    PersistenceFailedError,
    RepositoryNotFoundError,
    StashNotFoundError,
    StashOccupiedError,
    VirtualBranchError,
    WatcherError,
)
from .manager import BranchManager, slugify_branch_name, validate_branch_name
from .models import Change, VirtualBranch
from .store import StateStore
from .watcher import Watcher

__all__ = [
    "BranchManager",
    "Change",
    "StateStore",
    "VirtualBranch",
    "Watcher",
    "slugify_branch_name",
    "validate_branch_name",
    "VirtualBranchError",
    "NotFoundError",
    "BranchNotFoundError",
    "ChangeNotFoundError",
    "StashNotFoundError",
    "NoActiveBranchError",
    "BranchAlreadyExistsError",
    "BranchNotActiveError",
    "DirtyWithNoOwnerError",
    "PatchApplyFailedError",
    "PersistenceFailedError",
    "RepositoryNotFoundError",
    "StashOccupiedError",
    "WatcherError",
]
