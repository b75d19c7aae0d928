"""Dependency manifest model, diffing and requirement patching.

A manifest is the pair of ``composer.json`` (declared requirements) and
``vendor/composer/installed.json`` (what is actually installed). Only the
requirement sections are ever rewritten; everything else in ``composer.json``
is preserved as-is.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import os
from pathlib import Path
import re
from typing import Iterable, Mapping, Optional

from pkgstage.errors import InvalidArgumentError, IoFailure

PACKAGE_NAME_PATTERN = re.compile(
    r"^[a-z0-9](?:[_.-]?[a-z0-9]+)*/[a-z0-9](?:(?:[_.]|-{1,2})?[a-z0-9]+)*$"
)
_REQUIREMENT_SEPARATORS = (":", "=", " ")


@dataclass(frozen=True)
class PackageEntry:
    """One installed package."""

    name: str
    version: str
    type: str = "library"
    install_path: Optional[Path] = None
    extra: Mapping = field(default_factory=dict, compare=False, hash=False)

    @property
    def normalized_version(self) -> str:
        return normalize_version(self.version)


def normalize_version(version: str) -> str:
    value = version.strip().lower()
    if value.startswith("v") and value[1:2].isdigit():
        value = value[1:]
    return value


def packages_only_in(
    a: Mapping[str, PackageEntry], b: Mapping[str, PackageEntry]
) -> dict[str, PackageEntry]:
    """Entries present by name in ``a`` but absent from ``b``."""
    return {name: entry for name, entry in a.items() if name not in b}


def packages_with_different_versions(
    a: Mapping[str, PackageEntry], b: Mapping[str, PackageEntry]
) -> dict[str, PackageEntry]:
    """Entries of ``a`` that are also in ``b`` at a different version."""
    return {
        name: entry
        for name, entry in a.items()
        if name in b and entry.normalized_version != b[name].normalized_version
    }


def changed_versions(
    a: Mapping[str, PackageEntry], b: Mapping[str, PackageEntry]
) -> dict[str, tuple[str, str]]:
    """Map of name -> (version in a, version in b) for every changed package."""
    return {
        name: (entry.version, b[name].version)
        for name, entry in packages_with_different_versions(a, b).items()
    }


class Manifest:
    """Read-only view of a project's manifest files."""

    def __init__(
        self,
        directory: Path,
        composer_json: dict,
        packages: Mapping[str, PackageEntry],
        vendor_dir: Path,
    ) -> None:
        self.directory = directory
        self.composer_json = composer_json
        self.vendor_dir = vendor_dir
        self._packages = dict(packages)

    @property
    def requires(self) -> dict[str, str]:
        return dict(self.composer_json.get("require") or {})

    @property
    def dev_requires(self) -> dict[str, str]:
        return dict(self.composer_json.get("require-dev") or {})

    @property
    def installed_packages(self) -> dict[str, PackageEntry]:
        return dict(self._packages)

    def get(self, name: str) -> Optional[PackageEntry]:
        return self._packages.get(name)

    def installed_paths(self) -> set[Path]:
        return {
            Path(os.path.realpath(entry.install_path))
            for entry in self._packages.values()
            if entry.install_path is not None
        }

    def core_packages(self, core_package_names: Iterable[str]) -> dict[str, PackageEntry]:
        names = set(core_package_names)
        core = {name: entry for name, entry in self._packages.items() if name in names}
        # core-recommended always depends on core, so it supersedes it.
        if "drupal/core-recommended" in core:
            core.pop("drupal/core", None)
        return core

    def packages_not_in(self, other: "Manifest") -> dict[str, PackageEntry]:
        return packages_only_in(self._packages, other._packages)

    def packages_with_different_versions_in(self, other: "Manifest") -> dict[str, PackageEntry]:
        return packages_with_different_versions(self._packages, other._packages)


def load_manifest(directory: Path) -> Manifest:
    """Load composer.json and the installed package list from a directory."""
    composer_path = directory / "composer.json"
    try:
        composer_json = json.loads(composer_path.read_text())
    except FileNotFoundError:
        raise IoFailure(f"No composer.json file can be found at {directory}") from None
    except json.JSONDecodeError as exc:
        raise IoFailure(f"Invalid JSON in {composer_path}: {exc}") from exc

    vendor_name = (composer_json.get("config") or {}).get("vendor-dir", "vendor")
    vendor_dir = directory / vendor_name
    packages = _read_installed(vendor_dir / "composer" / "installed.json")
    return Manifest(directory, composer_json, packages, vendor_dir)


def _read_installed(installed_path: Path) -> dict[str, PackageEntry]:
    if not installed_path.exists():
        return {}
    try:
        data = json.loads(installed_path.read_text())
    except json.JSONDecodeError as exc:
        raise IoFailure(f"Invalid JSON in {installed_path}: {exc}") from exc
    # Composer 1 wrote a bare list; Composer 2 wraps it.
    raw_packages = data.get("packages", []) if isinstance(data, dict) else data
    packages: dict[str, PackageEntry] = {}
    base = installed_path.parent
    for raw in raw_packages:
        install_path = raw.get("install-path")
        packages[raw["name"]] = PackageEntry(
            name=raw["name"],
            version=str(raw.get("version", "")),
            type=raw.get("type", "library"),
            install_path=Path(os.path.normpath(base / install_path)) if install_path else None,
            extra=raw.get("extra") or {},
        )
    return packages


def parse_requirement(requirement: str) -> tuple[str, Optional[str]]:
    """Split ``vendor/name:constraint`` into its name and constraint."""
    text = requirement.strip()
    for separator in _REQUIREMENT_SEPARATORS:
        if separator in text:
            name, constraint = text.split(separator, 1)
            return name.strip(), constraint.strip()
    return text, None


def validate_requirement(requirement: str) -> None:
    name, constraint = parse_requirement(requirement)
    if not PACKAGE_NAME_PATTERN.match(name):
        raise InvalidArgumentError(f"Invalid package name '{requirement}'.")
    if constraint is not None and not constraint:
        raise InvalidArgumentError(f"Invalid package name '{requirement}'.")


def patch_requirements(
    composer_path: Path,
    runtime: Mapping[str, str] | None = None,
    dev: Mapping[str, str] | None = None,
) -> dict:
    """Rewrite only the ``require`` and ``require-dev`` sections of composer.json.

    A package moved to one section is removed from the other, as Composer does.
    """
    data = json.loads(composer_path.read_text())
    for section, other, updates in (
        ("require", "require-dev", runtime or {}),
        ("require-dev", "require", dev or {}),
    ):
        if not updates:
            continue
        current = dict(data.get(section) or {})
        current.update(updates)
        data[section] = current
        if isinstance(data.get(other), dict):
            for name in updates:
                data[other].pop(name, None)
    composer_path.write_text(json.dumps(data, indent=4) + "\n")
    return data
