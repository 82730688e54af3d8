"""Persistent data model for virtual branches."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(UTC)


class Change(BaseModel):
    """One file's pending modification, owned by exactly one branch.

    ``diff`` holds hunks only (``@@`` headers onward); file headers are
    added back when a patch is assembled.
    """

    path: str
    diff: str
    timestamp: datetime = Field(default_factory=utcnow)
    staged: bool = False

    @field_validator("path")
    @classmethod
    def _relative_path(cls, v: str) -> str:
        v = v.replace("\\", "/")
        if not v or v.startswith("/"):
            raise ValueError(f"change path must be repository-relative: {v!r}")
        return v


class VirtualBranch(BaseModel):
    """A named set of pending per-file changes layered on a base branch."""

    name: str
    base_branch: str
    created: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)
    changes: list[Change] = Field(default_factory=list)
    active: bool = False
    stashed_diff: str | None = None

    def find_change(self, path: str) -> Change | None:
        for change in self.changes:
            if change.path == path:
                return change
        return None

    def paths(self) -> list[str]:
        return [c.path for c in self.changes]

    def touch(self) -> None:
        self.last_updated = utcnow()
