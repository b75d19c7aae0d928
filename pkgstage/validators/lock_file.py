"""Detects Composer operations performed outside the current stage."""

from __future__ import annotations

import hashlib
import hmac
import logging
from pathlib import Path
from typing import Optional

from pkgstage.core.events import StageEvent, StageListener
from pkgstage.core.paths import PathLocator
from pkgstage.core.validation import ValidationResult

logger = logging.getLogger(__name__)

LOCK_HASH_KEY = "lock_hash"


def lock_file_hash(directory: Path) -> Optional[str]:
    try:
        data = (directory / "composer.lock").read_bytes()
    except OSError:
        return None
    return hashlib.sha256(data).hexdigest()


class LockFileValidator(StageListener):
    """Remembers the active composer.lock hash when a stage is created.

    Any later change to the active lock file means someone else ran Composer
    in the meantime.
    """

    def __init__(self, locator: PathLocator) -> None:
        self.locator = locator

    def on_pre_create(self, event: StageEvent) -> list[ValidationResult]:
        active_hash = lock_file_hash(self.locator.project_root)
        if active_hash is None:
            return [ValidationResult.error(["Could not hash the active lock file."])]
        event.stage.set_metadata(LOCK_HASH_KEY, active_hash)
        return []

    def _validate(self, event: StageEvent, check_pending: bool) -> list[ValidationResult]:
        record = event.stage.lock.get()
        if record is None:
            return []
        error = None
        active_hash = lock_file_hash(self.locator.project_root)
        if active_hash is None:
            error = "Could not hash the active lock file."
        stored_hash = record.metadata.get(LOCK_HASH_KEY)
        if not stored_hash:
            error = "Could not retrieve stored hash of the active lock file."
        if active_hash and stored_hash and not hmac.compare_digest(stored_hash, active_hash):
            error = (
                "Unexpected changes were detected in composer.lock, which indicates that "
                "other Composer operations were performed since this Package Manager "
                "operation started. This can put the code base into an unreliable state "
                "and therefore is not allowed."
            )
        if error is None and check_pending:
            stage_hash = lock_file_hash(event.stage.get_stage_directory())
            if stage_hash and hmac.compare_digest(active_hash, stage_hash):
                error = "There are no pending Composer operations."
        if error is None:
            return []
        logger.debug("Lock file check failed: %s", error)
        return [ValidationResult.error([error])]

    def on_pre_require(self, event: StageEvent) -> list[ValidationResult]:
        return self._validate(event, check_pending=False)

    def on_pre_apply(self, event: StageEvent) -> list[ValidationResult]:
        return self._validate(event, check_pending=True)

    def on_status_check(self, event: StageEvent) -> list[ValidationResult]:
        return self._validate(event, check_pending=False)
