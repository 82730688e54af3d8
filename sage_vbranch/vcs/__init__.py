"""Git Service: the primitive repository operations the engine relies on."""

from .service import GitOperationError, GitService
from .shell import ShellGitService

__all__ = ["GitOperationError", "GitService", "ShellGitService"]
