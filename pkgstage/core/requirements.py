"""Strategies that turn requested project versions into package requirements.

A stage is begun with a mapping of project name to target version. The
requirement policy decides which projects may be requested and which
packages, grouped by ``production`` and ``dev``, that request expands to.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from pkgstage.core.manifest import Manifest
from pkgstage.errors import InvalidArgumentError
from pkgstage.infrastructure.failure_marker import DEFAULT_FAILURE_MESSAGE

CRON_FAILURE_MESSAGE = (
    "Automatic updates failed to apply, and the site is in an indeterminate state. "
    "Consider restoring the code and database from a backup."
)
PROJECT_PACKAGE_TYPES = {"drupal-module", "drupal-theme", "drupal-profile"}


@dataclass
class PackageVersions:
    production: dict[str, str] = field(default_factory=dict)
    dev: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {"production": dict(self.production), "dev": dict(self.dev)}

    @classmethod
    def from_dict(cls, data: Mapping | None) -> PackageVersions:
        data = data or {}
        return cls(
            production=dict(data.get("production") or {}),
            dev=dict(data.get("dev") or {}),
        )

    def add(self, package: str, version: str, manifest: Manifest) -> None:
        if package in manifest.dev_requires:
            self.dev[package] = version
        else:
            self.production[package] = version

    def requirement_arguments(self) -> tuple[list[str], list[str]]:
        """Format as ``vendor/name:version`` command line arguments."""
        return (
            [f"{name}:{version}" for name, version in self.production.items()],
            [f"{name}:{version}" for name, version in self.dev.items()],
        )

    def all_packages(self) -> dict[str, str]:
        return {**self.production, **self.dev}


class RequirementPolicy:
    """Base requirement policy."""

    name = "stage"
    failure_message = DEFAULT_FAILURE_MESSAGE

    def build(self, project_versions: Mapping[str, str], manifest: Manifest) -> PackageVersions:
        raise NotImplementedError


class CoreUpdatePolicy(RequirementPolicy):
    """Updates every installed core package to the one requested core version."""

    name = "core"

    def __init__(self, core_packages: tuple[str, ...]) -> None:
        self.core_packages = core_packages

    def build(self, project_versions: Mapping[str, str], manifest: Manifest) -> PackageVersions:
        if len(project_versions) != 1 or "drupal" not in project_versions:
            raise InvalidArgumentError("Currently only updates to Drupal core are supported.")
        version = project_versions["drupal"]
        packages = PackageVersions()
        for package in manifest.core_packages(self.core_packages):
            packages.add(package, version, manifest)
        if not packages.all_packages():
            raise InvalidArgumentError("No Drupal core packages are installed.")
        return packages


class CronCoreUpdatePolicy(CoreUpdatePolicy):
    """Core updates started by the unattended updater."""

    name = "cron"
    failure_message = CRON_FAILURE_MESSAGE


class ExtensionUpdatePolicy(RequirementPolicy):
    """Updates one or more contributed modules or themes."""

    name = "extensions"

    def build(self, project_versions: Mapping[str, str], manifest: Manifest) -> PackageVersions:
        if not project_versions:
            raise InvalidArgumentError("No projects to begin the update")
        packages = PackageVersions()
        for project, version in project_versions.items():
            package = self.package_for_project(project, manifest)
            if package is None:
                raise InvalidArgumentError(
                    f"The project {project} is not a Drupal project known to Composer "
                    "and cannot be updated."
                )
            if manifest.get(package).type == "drupal-profile":
                raise InvalidArgumentError(
                    f"The project {project} cannot be updated because updating "
                    "install profiles is not supported."
                )
            packages.add(package, version, manifest)
        return packages

    @staticmethod
    def package_for_project(project: str, manifest: Manifest) -> str | None:
        """Find the installed package that provides a project.

        Matches on the install directory name first, then on ``drupal/<project>``.
        """
        candidates = {
            name: entry
            for name, entry in manifest.installed_packages.items()
            if entry.type in PROJECT_PACKAGE_TYPES
        }
        for name, entry in sorted(candidates.items()):
            if entry.install_path is not None and entry.install_path.name == project:
                return name
        fallback = f"drupal/{project}"
        if fallback in candidates:
            return fallback
        return None
