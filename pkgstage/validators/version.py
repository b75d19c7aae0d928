"""Applies the version policy to core update stages."""

from __future__ import annotations

from typing import Optional

from pkgstage.core.events import StageEvent, StageEventType, StageListener
from pkgstage.core.releases import ReleaseCatalog, ReleaseChooser
from pkgstage.core.requirements import CoreUpdatePolicy, CronCoreUpdatePolicy
from pkgstage.core.validation import ValidationResult
from pkgstage.core.version_policy import UnattendedMode, VersionPolicy
from pkgstage.errors import StageError


class VersionPolicyValidator(StageListener):
    def __init__(
        self,
        catalog: ReleaseCatalog,
        policy: VersionPolicy,
        mode: UnattendedMode = UnattendedMode.SECURITY,
        core_packages: tuple[str, ...] = (),
    ) -> None:
        self.catalog = catalog
        self.policy = policy
        self.mode = mode
        self.core_packages = core_packages

    def _mode_for(self, event: StageEvent) -> Optional[UnattendedMode]:
        if isinstance(event.stage.policy, CronCoreUpdatePolicy):
            return self.mode
        return None

    def target_version(self, event: StageEvent) -> Optional[str]:
        mode = self._mode_for(event)
        if event.type is StageEventType.STATUS_CHECK:
            if mode is None:
                return None
            release = ReleaseChooser(self.policy, self.catalog).latest_in_installed_minor(mode)
            return release.version if release else None

        production = event.stage.get_package_versions().production
        core = event.stage.get_active_manifest().core_packages(self.core_packages)
        names = [name for name in core if name != "drupal/core-dev"]
        if names and names[0] in production:
            return production[names[0]]
        raise StageError("The target version of Drupal core could not be determined.")

    def _check(self, event: StageEvent) -> list[ValidationResult]:
        if not isinstance(event.stage.policy, CoreUpdatePolicy):
            return []
        installed = self.catalog.installed_version
        mode = self._mode_for(event)
        # Rules about the installed version alone come first; a dev snapshot
        # has no release to choose a target from.
        messages = self.policy.validate_version(installed, None, self.catalog, mode)
        if messages:
            return [ValidationResult.error(messages, self.policy.summary(installed, None))]
        target = self.target_version(event)
        messages = self.policy.validate_version(installed, target, self.catalog, mode)
        if not messages:
            return []
        return [ValidationResult.error(messages, self.policy.summary(installed, target))]

    on_pre_create = _check
    on_status_check = _check
