"""Unattended core updates run from cron."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Callable, Optional, Protocol

from pkgstage.core.lifecycle import StageLifecycle
from pkgstage.core.releases import ProjectRelease, ReleaseCatalog, ReleaseChooser
from pkgstage.core.version_policy import UnattendedMode, VersionPolicy
from pkgstage.errors import (
    ApplyFailedError,
    InvalidArgumentError,
    PkgStageError,
    StageValidationError,
)

logger = logging.getLogger(__name__)

DESTROYED_FOR_SECURITY_MESSAGE = (
    "The existing stage was not in the process of being applied, so it was destroyed "
    "to allow updating the site to a secure version during cron."
)


class CronStatus(str, Enum):
    DISABLED = "disabled"
    NO_UPDATE = "no_update"
    SKIPPED = "skipped"
    FAILED = "failed"
    UPDATED = "updated"


@dataclass(frozen=True)
class CronResult:
    status: CronStatus
    installed_version: Optional[str] = None
    target_version: Optional[str] = None
    message: Optional[str] = None
    stage_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "installed_version": self.installed_version,
            "target_version": self.target_version,
            "message": self.message,
            "stage_id": self.stage_id,
        }


class Notifier(Protocol):
    def notify(self, kind: str, params: dict, urgent: bool = False) -> None:
        ...


@dataclass
class LoggingNotifier:
    """Records notifications in the log instead of sending them anywhere."""

    sent: list[tuple[str, dict, bool]] = field(default_factory=list)

    def notify(self, kind: str, params: dict, urgent: bool = False) -> None:
        self.sent.append((kind, dict(params), urgent))
        log = logger.warning if urgent else logger.info
        log("Notification %s: %s", kind, params)


class UnattendedUpdater:
    """Chooses a target release and runs the whole stage lifecycle for it.

    ``lifecycle_factory`` builds a lifecycle for a given owner id. The stage is
    created as ``owner_id`` and later claimed again by whoever stored owner id
    the lock holds.
    """

    def __init__(
        self,
        lifecycle_factory: Callable[[str], StageLifecycle],
        catalog: ReleaseCatalog,
        mode: UnattendedMode = UnattendedMode.SECURITY,
        policy: Optional[VersionPolicy] = None,
        notifier: Optional[Notifier] = None,
        post_apply_trigger: Optional[Callable[[str, str, str], None]] = None,
        owner_id: str = "cron",
    ) -> None:
        self.lifecycle_factory = lifecycle_factory
        self.catalog = catalog
        self.mode = mode
        self.policy = policy or VersionPolicy()
        self.notifier = notifier or LoggingNotifier()
        self.post_apply_trigger = post_apply_trigger or self.handle_post_apply
        self.owner_id = owner_id
        self.stage = lifecycle_factory(owner_id)

    def get_target_release(self) -> Optional[ProjectRelease]:
        chooser = ReleaseChooser(self.policy, self.catalog)
        try:
            return chooser.latest_in_installed_minor(self.mode)
        except InvalidArgumentError as exc:
            logger.warning("Cannot choose a release for cron: %s", exc)
            return None

    def handle_cron(self, timeout: Optional[float] = 300) -> CronResult:
        if self.mode is UnattendedMode.DISABLE:
            return CronResult(CronStatus.DISABLED)
        release = self.get_target_release()
        if release is None:
            return CronResult(
                CronStatus.NO_UPDATE, installed_version=self.catalog.installed_version
            )
        return self.perform_update(release.version, timeout)

    def perform_update(self, target_version: str, timeout: Optional[float]) -> CronResult:
        stage = self.stage
        secure = self.catalog.installed_version_is_secure
        installed_version = self.catalog.installed_version

        if not stage.is_available():
            if secure and not stage.is_applying():
                message = (
                    "Cron will not perform any updates because there is an existing stage "
                    "and the current version of the site is secure."
                )
                logger.info(message)
                return CronResult(CronStatus.SKIPPED, installed_version, target_version, message)
            if not secure and stage.is_applying():
                message = (
                    "Cron will not perform any updates as an existing staged update is "
                    "applying. The site is currently on an insecure version of Drupal core "
                    "but will attempt to update to a secure version next time cron is run."
                )
                logger.info(message)
                return CronResult(CronStatus.SKIPPED, installed_version, target_version, message)

        if not secure and not stage.is_available() and not stage.is_applying():
            stage.destroy(force=True, message=DESTROYED_FOR_SECURITY_MESSAGE)
            logger.info(DESTROYED_FOR_SECURITY_MESSAGE)

        if not installed_version:
            logger.error("Unable to determine the current version of Drupal core.")
            return CronResult(CronStatus.FAILED, message="Unknown installed version.")

        try:
            stage_id = stage.begin({"drupal": target_version}, timeout=timeout)
            stage.stage(timeout=timeout)
            stage.apply()
        except Exception as exc:
            self._notify_failure(exc, installed_version, target_version, secure)
            logger.error("%s", exc)
            # A pre-create veto already released the stage.
            if stage.stage_id is not None and not stage.is_available():
                try:
                    stage.destroy()
                except PkgStageError as destroy_error:
                    logger.error("%s", destroy_error)
            return CronResult(
                CronStatus.FAILED, installed_version, target_version, str(exc)
            )

        self.post_apply_trigger(stage_id, installed_version, target_version)
        return CronResult(
            CronStatus.UPDATED, installed_version, target_version, stage_id=stage_id
        )

    def _notify_failure(
        self, exc: Exception, installed_version: str, target_version: str, secure: bool
    ) -> None:
        params = {
            "previous_version": installed_version,
            "target_version": target_version,
            "error_message": str(exc),
        }
        if isinstance(exc, ApplyFailedError) or isinstance(exc.__cause__, ApplyFailedError):
            kind, urgent = "cron_failed_apply", True
        elif not secure:
            kind, urgent = "cron_failed_insecure", True
        else:
            kind, urgent = "cron_failed", False
        self.notifier.notify(kind, params, urgent=urgent)

    def handle_post_apply(self, stage_id: str, installed_version: str, target_version: str) -> None:
        """Run post-apply tasks as the stage's stored owner, then destroy it."""
        record = self.stage.lock.get()
        owner_id = record.owner_id if record is not None else self.owner_id
        stage = self.lifecycle_factory(owner_id)
        stage.claim(stage_id)

        try:
            stage.post_apply()
            logger.info(
                "Drupal core has been updated from %s to %s", installed_version, target_version
            )
            self.notifier.notify(
                "cron_successful",
                {"previous_version": installed_version, "updated_version": target_version},
            )
        except Exception as exc:
            logger.error("%s", exc)

        try:
            stage.destroy()
        except StageValidationError as exc:
            logger.error("%s", exc)
