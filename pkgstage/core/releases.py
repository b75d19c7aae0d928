"""Release metadata for a project and selection of update targets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping, Optional, Sequence

from packaging.version import InvalidVersion, Version

from pkgstage.errors import InvalidArgumentError

if TYPE_CHECKING:
    from pkgstage.core.version_policy import UnattendedMode, VersionPolicy


def parse_version(version: Optional[str]) -> Optional[Version]:
    """Parse a release version string, or return None for dev snapshots and junk."""
    if not version:
        return None
    try:
        return Version(version)
    except InvalidVersion:
        return None


def is_dev_snapshot(version: str) -> bool:
    return version.endswith("-dev")


def is_stable(version: str) -> bool:
    parsed = parse_version(version)
    return parsed is not None and not parsed.is_prerelease and not parsed.is_devrelease


def major_minor(version: str) -> Optional[tuple[int, int]]:
    parsed = parse_version(version)
    if parsed is None:
        return None
    release = parsed.release + (0,) * (2 - len(parsed.release))
    return release[0], release[1]


def branch_of(version: str) -> Optional[str]:
    """Return the ``X.Y.`` branch prefix used for supported branch lists."""
    parts = major_minor(version)
    if parts is None:
        return None
    return f"{parts[0]}.{parts[1]}."


@dataclass(frozen=True)
class ProjectRelease:
    version: str
    is_security_release: bool = False
    is_published: bool = True

    @property
    def is_stable(self) -> bool:
        return is_stable(self.version)

    @classmethod
    def from_dict(cls, data: Mapping) -> ProjectRelease:
        return cls(
            version=str(data["version"]),
            is_security_release=bool(data.get("is_security_release", False)),
            is_published=bool(data.get("is_published", True)),
        )


@dataclass(frozen=True)
class ReleaseCatalog:
    """Everything known about a project's installed version and its releases.

    ``releases`` is ordered newest first.
    """

    installed_version: str
    releases: tuple[ProjectRelease, ...] = ()
    supported_branches: tuple[str, ...] = ()
    installed_version_is_secure: bool = True

    @classmethod
    def from_dict(cls, data: Mapping) -> ReleaseCatalog:
        return cls(
            installed_version=str(data["installed_version"]),
            releases=sorted_newest_first(
                [ProjectRelease.from_dict(item) for item in data.get("releases", [])]
            ),
            supported_branches=tuple(data.get("supported_branches", [])),
            installed_version_is_secure=bool(data.get("installed_version_is_secure", True)),
        )

    def installable_releases(self) -> dict[str, ProjectRelease]:
        """Published releases newer than the installed version, newest first."""
        installed = parse_version(self.installed_version)
        installable: dict[str, ProjectRelease] = {}
        for release in self.releases:
            if not release.is_published:
                continue
            candidate = parse_version(release.version)
            if candidate is None:
                continue
            if installed is not None and candidate <= installed:
                continue
            installable[release.version] = release
        return installable

    def get(self, version: str) -> Optional[ProjectRelease]:
        for release in self.releases:
            if release.version == version:
                return release
        return None


class ReleaseChooser:
    """Picks the newest installable release that the version policy allows."""

    def __init__(self, policy: "VersionPolicy", catalog: ReleaseCatalog) -> None:
        self.policy = policy
        self.catalog = catalog

    def installable_releases(self, mode: Optional["UnattendedMode"]) -> list[ProjectRelease]:
        return [
            release
            for version, release in self.catalog.installable_releases().items()
            if not self.policy.validate_version(
                self.catalog.installed_version, version, self.catalog, mode
            )
        ]

    def most_recent_in_minor(
        self, version: str, mode: Optional["UnattendedMode"] = None
    ) -> Optional[ProjectRelease]:
        """Newest allowed release satisfying ``~version`` (same major.minor, >= version)."""
        parsed = parse_version(version)
        if parsed is None or len(parsed.release) < 3:
            raise InvalidArgumentError(
                f"The version number {version} does not contain a patch version"
            )
        floor = parsed
        minor = parsed.release[:2]
        for release in self.installable_releases(mode):
            candidate = parse_version(release.version)
            if candidate is None:
                continue
            if candidate.release[:2] == minor and candidate >= floor:
                return release
        return None

    def latest_in_installed_minor(
        self, mode: Optional["UnattendedMode"] = None
    ) -> Optional[ProjectRelease]:
        return self.most_recent_in_minor(self.catalog.installed_version, mode)

    def latest_in_next_minor(
        self, mode: Optional["UnattendedMode"] = None
    ) -> Optional[ProjectRelease]:
        parts = major_minor(self.catalog.installed_version)
        if parts is None:
            return None
        return self.most_recent_in_minor(f"{parts[0]}.{parts[1] + 1}.0", mode)


def sorted_newest_first(releases: Sequence[ProjectRelease]) -> tuple[ProjectRelease, ...]:
    def key(release: ProjectRelease):
        parsed = parse_version(release.version)
        return (parsed is not None, parsed or Version("0"))

    return tuple(sorted(releases, key=key, reverse=True))
