"""Validators that inspect the filesystem around the active codebase."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Optional

from pkgstage.core.events import StageEvent, StageListener
from pkgstage.core.paths import PathLocator, is_within
from pkgstage.core.validation import ValidationResult

logger = logging.getLogger(__name__)

MINIMUM_FREE_MB = 1024


class ComposerJsonExistsValidator(StageListener):
    """Stops every other check when the project has no composer.json."""

    stop_on_error = True

    def __init__(self, locator: PathLocator) -> None:
        self.locator = locator

    def _check(self, event: StageEvent) -> list[ValidationResult]:
        if not (self.locator.project_root / "composer.json").exists():
            return [
                ValidationResult.error(
                    [f"No composer.json file can be found at {self.locator.project_root}"]
                )
            ]
        return []

    on_pre_create = _check
    on_pre_apply = _check
    on_status_check = _check


class StageNotInActiveValidator(StageListener):
    stop_on_error = True

    def __init__(self, locator: PathLocator) -> None:
        self.locator = locator

    def _check(self, event: StageEvent) -> list[ValidationResult]:
        if is_within(self.locator.project_root, self.locator.staging_root):
            return [
                ValidationResult.error(
                    ["Stage directory is a subdirectory of the active directory."]
                )
            ]
        return []

    on_pre_create = _check
    on_status_check = _check


class WritableFileSystemValidator(StageListener):
    def __init__(self, locator: PathLocator) -> None:
        self.locator = locator

    def _messages(self, include_staging_root: bool) -> list[str]:
        messages = []
        web_root = self.locator.web_root_path
        if not os.access(web_root, os.W_OK):
            messages.append(f'The Drupal directory "{web_root}" is not writable.')
        vendor = self.locator.vendor_dir
        if not os.access(vendor, os.W_OK):
            messages.append(f'The vendor directory "{vendor}" is not writable.')
        if not include_staging_root:
            return messages

        staging_root = self.locator.staging_root
        if not staging_root.exists():
            parent = staging_root.parent
            if not os.access(parent, os.W_OK):
                messages.append(
                    f'The stage root directory will not able to be created at "{parent}".'
                )
        elif not os.access(staging_root, os.W_OK):
            messages.append(f'The stage root directory "{staging_root}" is not writable.')
        return messages

    def _result(self, messages: list[str]) -> list[ValidationResult]:
        if not messages:
            return []
        return [ValidationResult.error(messages, "The file system is not writable.")]

    def on_pre_create(self, event: StageEvent) -> list[ValidationResult]:
        return self._result(self._messages(include_staging_root=True))

    def on_pre_apply(self, event: StageEvent) -> list[ValidationResult]:
        return self._result(self._messages(include_staging_root=False))

    on_status_check = on_pre_create


class DiskSpaceValidator(StageListener):
    """Requires free space on the project, vendor and temporary filesystems."""

    def __init__(
        self,
        locator: PathLocator,
        minimum_mb: int = MINIMUM_FREE_MB,
        free_space: Optional[Callable[[Path], int]] = None,
        temp_dir: Optional[Path] = None,
    ) -> None:
        self.locator = locator
        self.minimum_mb = minimum_mb
        self._free_space = free_space or (lambda path: shutil.disk_usage(path).free)
        self.temp_dir = temp_dir or Path(tempfile.gettempdir())

    def _same_disk(self, first: Path, second: Path) -> bool:
        return first.stat().st_dev == second.stat().st_dev

    def _check(self, event: StageEvent) -> list[ValidationResult]:
        minimum_bytes = self.minimum_mb * 1024 * 1024
        root = self.locator.project_root
        vendor = self.locator.vendor_dir
        messages = []

        root_message = (
            f'Drupal root filesystem "{root}" has insufficient space. There must be at '
            f"least {self.minimum_mb} megabytes free."
        )
        if vendor.is_dir() and not self._same_disk(root, vendor):
            if self._free_space(root) < minimum_bytes:
                messages.append(root_message)
            if self._free_space(vendor) < minimum_bytes:
                messages.append(
                    f'Vendor filesystem "{vendor}" has insufficient space. There must be '
                    f"at least {self.minimum_mb} megabytes free."
                )
        elif self._free_space(root) < minimum_bytes:
            messages.append(root_message)

        if self._free_space(self.temp_dir) < minimum_bytes:
            messages.append(
                f'Directory "{self.temp_dir}" has insufficient space. There must be at '
                f"least {self.minimum_mb} megabytes free."
            )

        if not messages:
            return []
        summary = (
            "There is not enough disk space to create a stage directory."
            if len(messages) > 1
            else None
        )
        logger.debug("Disk space check failed: %s", messages)
        return [ValidationResult.error(messages, summary)]

    on_pre_create = _check
    on_pre_apply = _check
    on_status_check = _check
