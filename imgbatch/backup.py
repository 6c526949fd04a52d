from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional

from .errors import BackupError


logger = logging.getLogger(__name__)


class BackupManager:
    """
    Copies a file into a tree under `backup_root` that mirrors `input_root`,
    before anything rewrites it.

    Existing backups are overwritten; there is no versioning.
    A disabled manager does nothing.
    """

    def __init__(self, input_root: Path, backup_root: Optional[Path], enabled: bool = True) -> None:
        self.input_root = Path(input_root)
        self.backup_root = Path(backup_root) if backup_root is not None else None
        self.enabled = bool(enabled) and self.backup_root is not None

    def backup_path_for(self, path: Path) -> Path:
        if self.backup_root is None:
            raise BackupError("No backup directory configured")
        path = Path(path)
        if path == self.input_root:
            rel = Path(path.name)
        else:
            try:
                rel = path.relative_to(self.input_root)
            except ValueError:
                rel = Path(path.name)
        return self.backup_root / rel

    def snapshot(self, path: Path) -> Optional[Path]:
        if not self.enabled:
            return None

        dst = self.backup_path_for(path)
        try:
            # exist_ok makes this safe when two workers create the same dir.
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, dst)
        except OSError as e:
            raise BackupError(f"Could not back up {path} to {dst}: {e}") from e

        logger.debug("Backed up %s -> %s", path, dst)
        return dst
