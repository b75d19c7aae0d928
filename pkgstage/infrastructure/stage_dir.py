"""Creation and removal of stage directories under the staging root."""

from __future__ import annotations

import logging
import os
from pathlib import Path
import shutil
import stat

from pkgstage.errors import IoFailure

logger = logging.getLogger(__name__)


class StageDirectoryManager:
    def __init__(self, staging_root: Path) -> None:
        self.staging_root = staging_root

    def stage_path(self, stage_id: str) -> Path:
        return self.staging_root / stage_id

    def create_stage_directory(self, stage_id: str) -> Path:
        path = self.stage_path(stage_id)
        try:
            self.staging_root.mkdir(parents=True, exist_ok=True)
            if not os.access(self.staging_root, os.W_OK):
                raise IoFailure(f"The staging root is not writable: {self.staging_root}")
            path.mkdir()
        except FileExistsError:
            raise IoFailure(f"Stage directory already exists: {path}") from None
        except OSError as exc:
            raise IoFailure(f"Cannot create stage directory {path}: {exc}") from exc
        logger.debug("Created stage directory %s", path)
        return path

    def remove_stage_directory(self, path: Path) -> None:
        """Delete a stage directory recursively. A missing directory is fine."""
        if not os.path.lexists(path):
            logger.debug("Stage directory %s already gone", path)
        else:
            try:
                _make_writable(path)
                shutil.rmtree(path)
            except FileNotFoundError:
                pass
            except OSError as exc:
                raise IoFailure(f"Cannot remove stage directory {path}: {exc}") from exc
            logger.debug("Removed stage directory %s", path)

        try:
            self.staging_root.rmdir()
        except OSError:
            # Still holds other entries, or is already gone.
            return
        logger.debug("Removed empty staging root %s", self.staging_root)


def _make_writable(root: Path) -> None:
    for current, dirnames, filenames in os.walk(root):
        _add_write_bit(Path(current))
        for name in filenames:
            _add_write_bit(Path(current) / name)


def _add_write_bit(path: Path) -> None:
    if path.is_symlink():
        return
    mode = path.stat().st_mode
    if not mode & stat.S_IWUSR:
        path.chmod(mode | stat.S_IWUSR)
