"""Test helper utilities."""

from .composer import FakeComposerRunner
from .site import (
    DEFAULT_PACKAGES,
    PackageSpec,
    SiteFixture,
    build_site,
    installed_versions,
    write_installed,
)

__all__ = [
    "FakeComposerRunner",
    "DEFAULT_PACKAGES",
    "PackageSpec",
    "SiteFixture",
    "build_site",
    "installed_versions",
    "write_installed",
]
