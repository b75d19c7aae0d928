"""Unit tests for requirement policies."""

from __future__ import annotations

from pathlib import Path

import pytest

from pkgstage.core.manifest import load_manifest
from pkgstage.core.requirements import (
    CRON_FAILURE_MESSAGE,
    CoreUpdatePolicy,
    CronCoreUpdatePolicy,
    ExtensionUpdatePolicy,
    PackageVersions,
)
from pkgstage.errors import InvalidArgumentError
from pkgstage.infrastructure.failure_marker import DEFAULT_FAILURE_MESSAGE
from pkgstage.settings import DEFAULT_CORE_PACKAGES
from tests.helpers import DEFAULT_PACKAGES, PackageSpec, build_site


def test_core_policy_splits_production_and_dev(tmp_path: Path) -> None:
    manifest = load_manifest(build_site(tmp_path).root)

    packages = CoreUpdatePolicy(DEFAULT_CORE_PACKAGES).build({"drupal": "10.1.1"}, manifest)

    assert packages.production == {"drupal/core-recommended": "10.1.1"}
    assert packages.dev == {"drupal/core-dev": "10.1.1"}
    assert packages.requirement_arguments() == (
        ["drupal/core-recommended:10.1.1"],
        ["drupal/core-dev:10.1.1"],
    )


@pytest.mark.parametrize("request_", [{}, {"token": "1.5.0"}, {"drupal": "10.1.1", "x": "1"}])
def test_core_policy_only_accepts_drupal(tmp_path: Path, request_: dict) -> None:
    manifest = load_manifest(build_site(tmp_path).root)

    with pytest.raises(InvalidArgumentError, match="only updates to Drupal core"):
        CoreUpdatePolicy(DEFAULT_CORE_PACKAGES).build(request_, manifest)


def test_core_policy_without_core_packages(tmp_path: Path) -> None:
    site = build_site(tmp_path, packages=(PackageSpec("psr/log", "3.0.0"),))

    with pytest.raises(InvalidArgumentError, match="No Drupal core packages"):
        CoreUpdatePolicy(DEFAULT_CORE_PACKAGES).build({"drupal": "10.1.1"}, load_manifest(site.root))


def test_policy_names_and_failure_messages() -> None:
    assert CoreUpdatePolicy(()).name == "core"
    assert CoreUpdatePolicy(()).failure_message == DEFAULT_FAILURE_MESSAGE
    assert CronCoreUpdatePolicy(()).name == "cron"
    assert CronCoreUpdatePolicy(()).failure_message == CRON_FAILURE_MESSAGE
    assert ExtensionUpdatePolicy().name == "extensions"


def test_extension_policy_finds_projects(tmp_path: Path) -> None:
    renamed = PackageSpec(
        "acme/seo_tools",
        "2.0.0",
        type="drupal-module",
        install_path="web/modules/contrib/seo",
    )
    manifest = load_manifest(build_site(tmp_path, packages=DEFAULT_PACKAGES + (renamed,)).root)
    policy = ExtensionUpdatePolicy()

    packages = policy.build({"token": "1.5.0", "seo": "2.1.0"}, manifest)

    assert packages.production == {"drupal/token": "1.5.0", "acme/seo_tools": "2.1.0"}
    assert policy.package_for_project("psr", manifest) is None


def test_extension_policy_rejections(tmp_path: Path) -> None:
    profile = PackageSpec(
        "drupal/standard_plus",
        "1.0.0",
        type="drupal-profile",
        install_path="web/profiles/contrib/standard_plus",
    )
    manifest = load_manifest(build_site(tmp_path, packages=DEFAULT_PACKAGES + (profile,)).root)
    policy = ExtensionUpdatePolicy()

    with pytest.raises(InvalidArgumentError, match="No projects"):
        policy.build({}, manifest)
    with pytest.raises(InvalidArgumentError, match="not a Drupal project known to Composer"):
        policy.build({"log": "3.0.1"}, manifest)
    with pytest.raises(InvalidArgumentError, match="install profiles is not supported"):
        policy.build({"standard_plus": "1.1.0"}, manifest)


def test_package_versions_round_trip_through_metadata() -> None:
    versions = PackageVersions(production={"a/b": "1.0.0"}, dev={"c/d": "2.0.0"})

    assert PackageVersions.from_dict(versions.to_dict()) == versions
    assert PackageVersions.from_dict(None) == PackageVersions()
    assert versions.all_packages() == {"a/b": "1.0.0", "c/d": "2.0.0"}
