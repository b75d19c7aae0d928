"""Validators comparing the staged manifest with the active one before apply."""

from __future__ import annotations

import logging

from pkgstage.core.events import StageEvent, StageListener
from pkgstage.core.manifest import Manifest, PackageEntry, normalize_version
from pkgstage.core.requirements import CoreUpdatePolicy
from pkgstage.core.validation import ValidationResult
from pkgstage.errors import PkgStageError

logger = logging.getLogger(__name__)

PROJECT_TYPE_LABELS = {
    "drupal-module": "module",
    "drupal-custom-module": "custom module",
    "drupal-theme": "theme",
    "drupal-custom-theme": "custom theme",
}


def _is_core_update(event: StageEvent) -> bool:
    return isinstance(event.stage.policy, CoreUpdatePolicy)


class RequestedUpdateValidator(StageListener):
    """Every requested package must have been staged at the requested version."""

    def on_pre_apply(self, event: StageEvent) -> list[ValidationResult]:
        if not _is_core_update(event):
            return []
        stage = event.stage
        requested = stage.get_package_versions()
        changed = stage.get_stage_manifest().packages_with_different_versions_in(
            stage.get_active_manifest()
        )
        if not changed:
            return [ValidationResult.error(["No updates detected in the staging area."])]

        results = []
        for name, requested_version in requested.all_packages().items():
            entry = changed.get(name)
            if entry is None:
                results.append(
                    ValidationResult.error(
                        [
                            f"The requested update to '{name}' to version "
                            f"'{requested_version}' was not performed."
                        ]
                    )
                )
            elif entry.normalized_version != normalize_version(requested_version):
                results.append(
                    ValidationResult.error(
                        [
                            f"The requested update to '{name}' to version "
                            f"'{requested_version}' does not match the actual staged update "
                            f"to '{entry.version}'."
                        ]
                    )
                )
        return results


def _project_packages(packages: dict[str, PackageEntry]) -> dict[str, PackageEntry]:
    return {name: entry for name, entry in packages.items() if entry.type in PROJECT_TYPE_LABELS}


def _summary(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


class StagedProjectsValidator(StageListener):
    """Core updates must not install, remove or update Drupal projects."""

    def on_pre_apply(self, event: StageEvent) -> list[ValidationResult]:
        if not _is_core_update(event):
            return []
        try:
            active = event.stage.get_active_manifest()
            staged = event.stage.get_stage_manifest()
        except PkgStageError as exc:
            return [ValidationResult.error_from_exception(exc)]

        results = []
        new_packages = _project_packages(staged.packages_not_in(active))
        if new_packages:
            messages = [
                f"{PROJECT_TYPE_LABELS[entry.type]} '{name}' installed."
                for name, entry in new_packages.items()
            ]
            results.append(
                ValidationResult.error(
                    messages,
                    _summary(
                        len(messages),
                        "The update cannot proceed because the following Drupal project "
                        "was installed during the update.",
                        "The update cannot proceed because the following Drupal projects "
                        "were installed during the update.",
                    ),
                )
            )

        removed_packages = _project_packages(active.packages_not_in(staged))
        if removed_packages:
            messages = [
                f"{PROJECT_TYPE_LABELS[entry.type]} '{name}' removed."
                for name, entry in removed_packages.items()
            ]
            results.append(
                ValidationResult.error(
                    messages,
                    _summary(
                        len(messages),
                        "The update cannot proceed because the following Drupal project "
                        "was removed during the update.",
                        "The update cannot proceed because the following Drupal projects "
                        "were removed during the update.",
                    ),
                )
            )

        updated_packages = _project_packages(active.packages_with_different_versions_in(staged))
        if updated_packages:
            staged_packages = staged.installed_packages
            messages = [
                f"{PROJECT_TYPE_LABELS[entry.type]} '{name}' from {entry.version} "
                f"to {staged_packages[name].version}."
                for name, entry in updated_packages.items()
            ]
            results.append(
                ValidationResult.error(
                    messages,
                    _summary(
                        len(messages),
                        "The update cannot proceed because the following Drupal project "
                        "was unexpectedly updated. Only Drupal Core updates are currently "
                        "supported.",
                        "The update cannot proceed because the following Drupal projects "
                        "were unexpectedly updated. Only Drupal Core updates are currently "
                        "supported.",
                    ),
                )
            )
        return results


class OverwriteExistingPackagesValidator(StageListener):
    """A newly added package must not land in a directory Composer does not manage."""

    def on_pre_apply(self, event: StageEvent) -> list[ValidationResult]:
        stage = event.stage
        active: Manifest = stage.get_active_manifest()
        staged: Manifest = stage.get_stage_manifest()
        stage_dir = stage.get_stage_directory()
        project_root = stage.locator.project_root

        results = []
        for name, entry in staged.packages_not_in(active).items():
            if entry.install_path is None:
                continue
            try:
                relative = entry.install_path.relative_to(stage_dir)
            except ValueError:
                logger.debug("Install path of %s is outside the stage: %s", name, entry.install_path)
                continue
            if (project_root / relative).is_dir():
                results.append(
                    ValidationResult.error(
                        [
                            f"The new package {name} will be installed in the directory "
                            f"{relative.as_posix()}, which already exists but is not "
                            "managed by Composer."
                        ]
                    )
                )
        return results
