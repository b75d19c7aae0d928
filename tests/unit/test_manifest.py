"""Unit tests for manifest loading, diffing and requirement patching."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from pkgstage.core.manifest import (
    PackageEntry,
    changed_versions,
    load_manifest,
    packages_only_in,
    packages_with_different_versions,
    parse_requirement,
    patch_requirements,
    validate_requirement,
)
from pkgstage.errors import InvalidArgumentError, IoFailure
from tests.helpers import build_site


def _packages(**versions: str) -> dict[str, PackageEntry]:
    return {name: PackageEntry(name, version) for name, version in versions.items()}


ACTIVE = _packages(a="1.0.0", b="2.0.0", c="3.0.0")
STAGED = _packages(b="2.1.0", c="v3.0.0", d="1.0.0")


def test_only_in_partitions_symmetric_difference() -> None:
    only_active = packages_only_in(ACTIVE, STAGED)
    only_staged = packages_only_in(STAGED, ACTIVE)

    assert set(only_active) == {"a"}
    assert set(only_staged) == {"d"}
    assert set(only_active) | set(only_staged) == set(ACTIVE) ^ set(STAGED)
    assert not set(only_active) & set(only_staged)


def test_only_in_is_empty_for_same_names() -> None:
    other = _packages(a="9", b="9", c="9")

    assert packages_only_in(ACTIVE, other) == {}
    assert packages_only_in(other, ACTIVE) == {}


def test_different_versions_lists_common_packages_once() -> None:
    changed = packages_with_different_versions(ACTIVE, STAGED)

    # "v3.0.0" normalizes to "3.0.0".
    assert set(changed) == {"b"}
    assert changed["b"].version == "2.0.0"
    assert "b" not in packages_only_in(ACTIVE, STAGED)
    assert changed_versions(ACTIVE, STAGED) == {"b": ("2.0.0", "2.1.0")}


def test_load_manifest_reads_installed_packages(tmp_path: Path) -> None:
    site = build_site(tmp_path)

    manifest = load_manifest(site.root)

    token = manifest.get("drupal/token")
    assert token.version == "1.4.0"
    assert token.type == "drupal-module"
    assert token.install_path == site.root / "web" / "modules" / "contrib" / "token"
    assert manifest.get("drupal/core-recommended").install_path is None
    assert "drupal/core-dev" in manifest.dev_requires


def test_core_packages_drops_core_when_recommended_installed(tmp_path: Path) -> None:
    manifest = load_manifest(build_site(tmp_path).root)

    core = manifest.core_packages(["drupal/core", "drupal/core-recommended"])

    assert set(core) == {"drupal/core-recommended"}


def test_load_manifest_accepts_composer_one_list(tmp_path: Path) -> None:
    (tmp_path / "composer.json").write_text("{}")
    installed = tmp_path / "vendor" / "composer" / "installed.json"
    installed.parent.mkdir(parents=True)
    installed.write_text(json.dumps([{"name": "psr/log", "version": "1.1.4"}]))

    assert load_manifest(tmp_path).get("psr/log").version == "1.1.4"


def test_load_manifest_without_composer_json(tmp_path: Path) -> None:
    with pytest.raises(IoFailure, match="No composer.json"):
        load_manifest(tmp_path)


def test_load_manifest_honours_vendor_dir(tmp_path: Path) -> None:
    (tmp_path / "composer.json").write_text(json.dumps({"config": {"vendor-dir": "lib"}}))
    installed = tmp_path / "lib" / "composer" / "installed.json"
    installed.parent.mkdir(parents=True)
    installed.write_text(json.dumps({"packages": [{"name": "psr/log", "version": "3.0.0"}]}))

    manifest = load_manifest(tmp_path)

    assert manifest.vendor_dir == tmp_path / "lib"
    assert manifest.get("psr/log") is not None


@pytest.mark.parametrize(
    "requirement,expected",
    [
        ("drupal/core:10.1.1", ("drupal/core", "10.1.1")),
        ("drupal/core=^10", ("drupal/core", "^10")),
        ("drupal/core", ("drupal/core", None)),
    ],
)
def test_parse_requirement(requirement: str, expected) -> None:
    assert parse_requirement(requirement) == expected


@pytest.mark.parametrize("requirement", ["Drupal/Core:1.0", "core:1.0", "drupal/core:"])
def test_validate_requirement_rejects_bad_input(requirement: str) -> None:
    with pytest.raises(InvalidArgumentError):
        validate_requirement(requirement)


def test_patch_requirements_moves_between_sections(tmp_path: Path) -> None:
    composer = tmp_path / "composer.json"
    composer.write_text(
        json.dumps(
            {
                "name": "acme/site",
                "require": {"drupal/core": "10.1.0", "psr/log": "^3"},
                "require-dev": {"phpunit/phpunit": "^9"},
                "extra": {"keep": True},
            }
        )
    )

    patch_requirements(composer, runtime={"phpunit/phpunit": "^10"}, dev={"psr/log": "^3"})

    data = json.loads(composer.read_text())
    assert data["require"] == {"drupal/core": "10.1.0", "phpunit/phpunit": "^10"}
    assert data["require-dev"] == {"psr/log": "^3"}
    assert data["extra"] == {"keep": True}
    assert data["name"] == "acme/site"
