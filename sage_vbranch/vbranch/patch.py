"""Unified diff helpers for virtual branch changes.

Changes store hunks only. File headers are synthesized once, when a branch
is turned into a patch for ``git apply``.
"""

from __future__ import annotations

import os
import re
import tempfile
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from sage_vbranch.vbranch.models import Change

HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
NO_NEWLINE_MARKER = "\\ No newline at end of file"

ADDED = "added"
DELETED = "deleted"
MODIFIED = "modified"


def strip_file_headers(diff: str) -> str:
    """Drop everything before the first hunk header.

    Returns an empty string when the fragment has no textual hunks (binary
    patches, mode-only changes).
    """
    lines = diff.splitlines(keepends=True)
    for idx, line in enumerate(lines):
        if line.startswith("@@"):
            body = "".join(lines[idx:])
            return body if body.endswith("\n") else body + "\n"
    return ""


def _first_hunk_range(hunks: str) -> tuple[int, int, int, int] | None:
    for line in hunks.splitlines():
        match = HUNK_HEADER.match(line)
        if match:
            old_start, old_count, new_start, new_count = match.groups()
            return (
                int(old_start),
                1 if old_count is None else int(old_count),
                int(new_start),
                1 if new_count is None else int(new_count),
            )
    return None


def change_kind(diff: str) -> str:
    """Classify hunks as an added, deleted or modified file."""
    rng = _first_hunk_range(diff)
    if rng is None:
        return MODIFIED
    old_start, old_count, new_start, new_count = rng
    if old_start == 0 and old_count == 0:
        return ADDED
    if new_start == 0 and new_count == 0:
        return DELETED
    return MODIFIED


def count_lines(diff: str) -> tuple[int, int]:
    """Count added and removed lines in hunks."""
    additions = deletions = 0
    for line in strip_file_headers(diff).splitlines():
        if line.startswith("+"):
            additions += 1
        elif line.startswith("-"):
            deletions += 1
    return additions, deletions


def _file_header(path: str, kind: str) -> str:
    header = f"diff --git a/{path} b/{path}\n"
    if kind == ADDED:
        return header + f"new file mode 100644\n--- /dev/null\n+++ b/{path}\n"
    if kind == DELETED:
        return header + f"deleted file mode 100644\n--- a/{path}\n+++ /dev/null\n"
    return header + f"--- a/{path}\n+++ b/{path}\n"


def build_patch(changes: Iterable[Change]) -> str:
    """Assemble a multi-file patch from per-file hunks."""
    parts: list[str] = []
    for change in changes:
        hunks = strip_file_headers(change.diff)
        if not hunks:
            continue
        parts.append(_file_header(change.path, change_kind(hunks)))
        parts.append(hunks)
    return "".join(parts)


def addition_diff(content: str) -> str:
    """Hunks that create a file with ``content`` from nothing."""
    if not content:
        return ""
    lines = content.splitlines(keepends=True)
    count = len(lines)
    span = "+1" if count == 1 else f"+1,{count}"
    out = [f"@@ -0,0 {span} @@\n"]
    for line in lines:
        out.append("+" + line)
    if not lines[-1].endswith("\n"):
        out.append("\n" + NO_NEWLINE_MARKER + "\n")
    return "".join(out)


def _path_from_section(section: list[str]) -> str | None:
    new_path = old_path = None
    for line in section:
        if line.startswith("@@"):
            break
        if line.startswith("+++ "):
            target = line[4:].rstrip("\n")
            if target != "/dev/null":
                new_path = target[2:] if target.startswith("b/") else target
        elif line.startswith("--- "):
            source = line[4:].rstrip("\n")
            if source != "/dev/null":
                old_path = source[2:] if source.startswith("a/") else source
    if new_path or old_path:
        return new_path or old_path
    header = section[0].rstrip("\n")
    if " b/" in header:
        return header.rsplit(" b/", 1)[1]
    return None


def split_patch(text: str) -> list[tuple[str, str]]:
    """Split ``git diff`` output into ``(path, hunks)`` per file.

    Files without textual hunks are left out.
    """
    sections: list[list[str]] = []
    for line in text.splitlines(keepends=True):
        if line.startswith("diff --git "):
            sections.append([line])
        elif sections:
            sections[-1].append(line)

    result: list[tuple[str, str]] = []
    for section in sections:
        path = _path_from_section(section)
        hunks = strip_file_headers("".join(section))
        if path and hunks:
            result.append((path, hunks))
    return result


@contextmanager
def patch_file(content: str, directory: Path | None = None) -> Iterator[Path]:
    """Write ``content`` to a transient ``.patch`` file and remove it afterwards."""
    fd, name = tempfile.mkstemp(prefix="sage-", suffix=".patch", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            fh.write(content)
        yield Path(name)
    finally:
        try:
            os.unlink(name)
        except FileNotFoundError:
            pass
