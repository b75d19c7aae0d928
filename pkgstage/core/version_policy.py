"""Rules deciding whether the installed core version may be updated to a target.

Rules run in a fixed order and the first rule that objects wins. Which rules
apply depends on whether a target version is known and on whether the update
runs unattended.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pkgstage.core.releases import (
    ReleaseCatalog,
    branch_of,
    is_dev_snapshot,
    is_stable,
    major_minor,
    parse_version,
)


class UnattendedMode(str, Enum):
    DISABLE = "disable"
    SECURITY = "security"
    PATCH = "patch"


class VersionRule:
    def validate(
        self, installed: str, target: Optional[str], catalog: ReleaseCatalog
    ) -> list[str]:
        raise NotImplementedError


class ForbidDevSnapshot(VersionRule):
    def validate(self, installed, target, catalog):
        if is_dev_snapshot(installed):
            return [
                f"Drupal cannot be automatically updated from the installed version, "
                f"{installed}, because automatic updates from a dev version to any other "
                "version are not supported."
            ]
        return []


class ForbidDowngrade(VersionRule):
    def validate(self, installed, target, catalog):
        installed_v = parse_version(installed)
        target_v = parse_version(target)
        if installed_v is not None and target_v is not None and target_v < installed_v:
            return [
                f"Update version {target} is lower than {installed}, "
                "downgrading is not supported."
            ]
        return []


class MajorVersionMatch(VersionRule):
    def validate(self, installed, target, catalog):
        installed_parts = major_minor(installed)
        target_parts = major_minor(target)
        if installed_parts and target_parts and installed_parts[0] != target_parts[0]:
            return [
                f"Drupal cannot be automatically updated from {installed} to {target} "
                "because automatic updates from one major version to another are not "
                "supported."
            ]
        return []


class TargetVersionInstallable(VersionRule):
    def validate(self, installed, target, catalog):
        if target not in catalog.installable_releases():
            return [
                f"Cannot update Drupal core to {target} because it is not in the list "
                "of installable releases."
            ]
        return []


class StableReleaseInstalled(VersionRule):
    def validate(self, installed, target, catalog):
        if not is_stable(installed):
            return [
                "Drupal cannot be automatically updated during cron from its current "
                f"version, {installed}, because it is not a stable version."
            ]
        return []


class SupportedBranchInstalled(VersionRule):
    def validate(self, installed, target, catalog):
        branch = branch_of(installed)
        if branch is None or branch not in catalog.supported_branches:
            return [
                f"The currently installed version of Drupal core, {installed}, is not in "
                "a supported minor version. Your site will not be automatically updated "
                "during cron until it is updated to a supported minor version.",
                "See the available updates page for available updates.",
            ]
        return []


class TargetVersionStable(VersionRule):
    def validate(self, installed, target, catalog):
        if not is_stable(target):
            return [
                "Drupal cannot be automatically updated during cron to the recommended "
                f"version, {target}, because it is not a stable version."
            ]
        return []


class ForbidMinorUpdates(VersionRule):
    def validate(self, installed, target, catalog):
        if major_minor(installed) != major_minor(target):
            return [
                f"Drupal cannot be automatically updated from {installed} to {target} "
                "because automatic updates from one minor version to another are not "
                "supported during cron."
            ]
        return []


class TargetSecurityRelease(VersionRule):
    def validate(self, installed, target, catalog):
        release = catalog.get(target)
        if release is None or not release.is_security_release:
            return [
                f"Drupal cannot be automatically updated during cron from {installed} to "
                f"{target} because {target} is not a security release."
            ]
        return []


class MinorUpdatesEnabled(VersionRule):
    def __init__(self, allow_minor_updates: bool = False) -> None:
        self.allow_minor_updates = allow_minor_updates

    def validate(self, installed, target, catalog):
        if major_minor(installed) == major_minor(target) or self.allow_minor_updates:
            return []
        return [
            f"Drupal cannot be automatically updated from {installed} to {target} "
            "because automatic updates from one minor version to another are not "
            "supported."
        ]


class VersionPolicy:
    """Ordered version rules.

    ``mode`` is None for interactive updates and an ``UnattendedMode`` for
    updates started by cron.
    """

    def __init__(self, allow_minor_updates: bool = False) -> None:
        self.allow_minor_updates = allow_minor_updates

    def rules_for(
        self, target: Optional[str], mode: Optional[UnattendedMode]
    ) -> list[VersionRule]:
        rules: list[VersionRule] = [ForbidDevSnapshot()]
        if target:
            rules.extend([ForbidDowngrade(), MajorVersionMatch(), TargetVersionInstallable()])

        if mode is not None:
            if mode is not UnattendedMode.DISABLE:
                rules.extend([StableReleaseInstalled(), SupportedBranchInstalled()])
                if target:
                    rules.extend([TargetVersionStable(), ForbidMinorUpdates()])
                    if mode is UnattendedMode.SECURITY:
                        rules.append(TargetSecurityRelease())
        elif target:
            rules.append(MinorUpdatesEnabled(self.allow_minor_updates))
        return rules

    def validate_version(
        self,
        installed: str,
        target: Optional[str],
        catalog: ReleaseCatalog,
        mode: Optional[UnattendedMode] = None,
    ) -> list[str]:
        """Return the messages of the first objecting rule, or an empty list."""
        for rule in self.rules_for(target, mode):
            messages = rule.validate(installed, target, catalog)
            if messages:
                return messages
        return []

    def summary(self, installed: str, target: Optional[str]) -> str:
        if target:
            return f"Updating from Drupal {installed} to {target} is not allowed."
        return f"Updating from Drupal {installed} is not allowed."
