"""Durable JSON storage of the virtual branch map."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from sage_vbranch.config.constants import STATE_DIR_MODE, STATE_FILE_NAME
from sage_vbranch.utils.logger import vbranch_logger as logger
from sage_vbranch.vbranch.errors import PersistenceFailedError
from sage_vbranch.vbranch.models import VirtualBranch


class StateStore:
    """Reads and writes ``vbranches.json`` inside the state directory.

    The document is one JSON object mapping branch name to branch. Writes go
    to a temporary sibling which replaces the target only once it is fully
    on disk.
    """

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self.path = self.state_dir / STATE_FILE_NAME

    def load(self) -> dict[str, VirtualBranch]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise PersistenceFailedError(f"cannot read {self.path}: {exc}") from exc

        try:
            doc = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PersistenceFailedError(f"corrupt state file {self.path}: {exc}") from exc
        if not isinstance(doc, dict):
            raise PersistenceFailedError(
                f"corrupt state file {self.path}: expected an object, got {type(doc).__name__}"
            )

        branches: dict[str, VirtualBranch] = {}
        try:
            for name, payload in doc.items():
                branch = VirtualBranch.model_validate(payload)
                branches[name] = branch
        except ValidationError as exc:
            raise PersistenceFailedError(f"invalid branch data in {self.path}: {exc}") from exc
        return branches

    def save(self, branches: dict[str, VirtualBranch]) -> None:
        doc = {
            name: branch.model_dump(mode="json", exclude_none=True)
            for name, branch in branches.items()
        }
        payload = json.dumps(doc, ensure_ascii=False, indent=2)

        tmp_name: str | None = None
        try:
            self.state_dir.mkdir(mode=STATE_DIR_MODE, parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.state_dir, prefix=".vbranches.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            raise PersistenceFailedError(f"cannot write {self.path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
        logger.debug("Saved state", path=str(self.path), branches=len(branches))
