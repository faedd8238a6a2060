"""Per-attempt staging directories for transition inputs and outputs."""

from __future__ import annotations

import logging
import secrets
import shutil
from pathlib import Path

from muskoka_worker.transitions.errors import CleanupError, DirectoryError

logger = logging.getLogger(__name__)

_ALLOCATE_ATTEMPTS = 3


def new_attempt_key() -> str:
    """Fresh URL-safe token (32 random bytes); never reused across deliveries."""

    return secrets.token_urlsafe(32)


class StagingDirectoryManager:
    """Creates ``<root>/<key>/<attempt_key>`` directories and removes them afterwards."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir

    def path_for(self, key: str, attempt_key: str) -> Path:
        return self.root_dir / key / attempt_key

    def allocate(self, key: str, attempt_key: str) -> Path:
        path = self.path_for(key, attempt_key)
        root = self.root_dir.resolve()
        resolved = path.resolve()
        if resolved == root or not resolved.is_relative_to(root):
            raise DirectoryError(f"Staging path escapes staging root: {path}")
        for _ in range(_ALLOCATE_ATTEMPTS):
            try:
                # The leaf must be new: an existing directory means the attempt key was reused.
                path.mkdir(parents=True, exist_ok=False)
            except FileNotFoundError:
                # The per-key parent was removed by a concurrent release; recreate it.
                continue
            except OSError as error:
                raise DirectoryError(
                    f"Failed to create staging directory {path}: {error}",
                ) from error
            return path
        raise DirectoryError(f"Failed to create staging directory {path}: parent keeps vanishing")

    def remove(self, path: Path) -> None:
        """Remove the staging tree and, when empty, its per-key parent.

        Raises CleanupError if the tree cannot be removed.
        """

        if path.exists():
            try:
                shutil.rmtree(path)
            except OSError as error:
                raise CleanupError(f"Cannot remove staging directory {path}: {error}") from error
        parent = path.parent
        if parent == self.root_dir:
            return
        try:
            parent.rmdir()
        except OSError:
            # Not empty (another attempt of the same key) or already gone.
            pass

    def release(self, path: Path) -> bool:
        """Best-effort removal; failures are logged and never raised."""

        try:
            self.remove(path)
        except CleanupError as error:
            logger.warning("%s", error)
            return False
        return True
