"""Paths that must never be copied between the active and stage directories.

Each provider contributes zero or more paths. Web-root relative and absolute
paths are normalized to project-root relative POSIX strings before the union,
so collecting twice with unchanged inputs always yields the same set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
import os
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from pkgstage.core.manifest import Manifest
from pkgstage.core.paths import PathLocator, is_within, normalize_relative

logger = logging.getLogger(__name__)

SETTINGS_FILES = ("settings.php", "settings.local.php", "services.yml")
TEST_SITE_PATH = "sites/simpletest"
VENDOR_HARDENING_FILES = ("web.config", ".htaccess")


class ExclusionDirection(str, Enum):
    """Which copy operation a rule applies to."""

    CREATE = "CREATE"
    APPLY = "APPLY"
    BOTH = "BOTH"

    def applies_to(self, direction: "ExclusionDirection") -> bool:
        return self is ExclusionDirection.BOTH or self is direction


@dataclass(frozen=True)
class ExclusionRule:
    path: str
    direction: ExclusionDirection = ExclusionDirection.BOTH


@dataclass(frozen=True)
class SiteConfig:
    """Site-specific facts some providers inspect at runtime."""

    site_path: str = "sites/default"
    public_files_path: Optional[str] = "sites/default/files"
    private_files_path: Optional[str] = None
    database_driver: str = "mysql"
    database_path: Optional[str] = None
    core_packages: tuple[str, ...] = ()


@dataclass
class ExclusionContext:
    """What providers may look at while collecting.

    The active manifest is loaded lazily and at most once.
    """

    locator: PathLocator
    site: SiteConfig
    direction: ExclusionDirection = ExclusionDirection.BOTH
    manifest_loader: Optional[Callable[[], Manifest]] = None
    _manifest: Optional[Manifest] = field(default=None, init=False, repr=False)

    def active_manifest(self) -> Optional[Manifest]:
        if self._manifest is None and self.manifest_loader is not None:
            self._manifest = self.manifest_loader()
        return self._manifest

    def in_project_root(self, paths: Iterable[str | Path]) -> list[str]:
        return [self.locator.relative_to_project(path) for path in paths]

    def in_web_root(self, paths: Iterable[str]) -> list[str]:
        return [self.locator.relative_to_web_root(path) for path in paths]


class ExclusionProvider:
    """Base class for path exclusion providers."""

    direction = ExclusionDirection.BOTH

    def collect(self, context: ExclusionContext) -> Iterable[str]:
        raise NotImplementedError


def _find_directories(root: Path, name: str) -> list[Path]:
    found: list[Path] = []
    for current, dirnames, _ in os.walk(root):
        for dirname in list(dirnames):
            if dirname == name:
                found.append(Path(current) / dirname)
                # Anything inside is covered by the match itself.
                dirnames.remove(dirname)
        dirnames.sort()
    return sorted(found)


class GitExcluder(ExclusionProvider):
    """Exclude ``.git`` directories not owned by a source-installed package."""

    def collect(self, context: ExclusionContext) -> list[str]:
        manifest = context.active_manifest()
        installed_paths = manifest.installed_paths() if manifest else set()
        paths = []
        for git_dir in _find_directories(context.locator.project_root, ".git"):
            # A package installed from source needs its .git to be updated later.
            if Path(os.path.realpath(git_dir.parent)) in installed_paths:
                continue
            paths.append(git_dir)
        return context.in_project_root(paths)


class NodeModulesExcluder(ExclusionProvider):
    def collect(self, context: ExclusionContext) -> list[str]:
        return context.in_project_root(
            _find_directories(context.locator.project_root, "node_modules")
        )


class SiteConfigurationExcluder(ExclusionProvider):
    """Site settings files, always relative to the web root."""

    def collect(self, context: ExclusionContext) -> list[str]:
        paths = []
        for settings_file in SETTINGS_FILES:
            paths.append(f"{context.site.site_path}/{settings_file}")
            paths.append(f"sites/default/{settings_file}")
        return context.in_web_root(paths)


class SiteFilesExcluder(ExclusionProvider):
    """Public and private file directories.

    Absolute paths are project-root relative, relative ones web-root relative.
    """

    def collect(self, context: ExclusionContext) -> list[str]:
        paths: list[str] = []
        for configured in (context.site.public_files_path, context.site.private_files_path):
            if not configured:
                continue
            if os.path.isabs(configured):
                resolved = Path(os.path.realpath(configured))
            else:
                resolved = Path(os.path.normpath(context.locator.web_root_path / configured))
            if not is_within(context.locator.project_root, resolved):
                logger.debug("Files directory %s is outside the project root", resolved)
                continue
            paths.extend(context.in_project_root([resolved]))
        return paths


class SqliteDatabaseExcluder(ExclusionProvider):
    """An embedded database file and its journal companions."""

    def collect(self, context: ExclusionContext) -> list[str]:
        database = context.site.database_path
        if context.site.database_driver != "sqlite" or not database:
            return []
        if os.path.isabs(database) and not is_within(
            context.locator.project_root, Path(database)
        ):
            return []
        return context.in_project_root([database, f"{database}-shm", f"{database}-wal"])


class TestSiteExcluder(ExclusionProvider):
    __test__ = False

    def collect(self, context: ExclusionContext) -> list[str]:
        return context.in_web_root([TEST_SITE_PATH])


class UnknownPathExcluder(ExclusionProvider):
    """Top-level project entries that are not part of a known layout.

    Does nothing when the web root is the project root.
    """

    def collect(self, context: ExclusionContext) -> list[str]:
        locator = context.locator
        project_root = locator.project_root
        web_root = locator.web_root_path
        if Path(os.path.realpath(web_root)) == project_root:
            return []

        known = {
            Path(os.path.normpath(locator.vendor_dir)),
            Path(os.path.normpath(web_root)),
            project_root / "composer.json",
            project_root / "composer.lock",
        }
        manifest = context.active_manifest()
        if manifest is not None:
            known.update(self._scaffold_files(manifest, context))

        paths = []
        for entry in sorted(project_root.iterdir()):
            # Hidden entries are never matched by a plain "*" listing.
            if entry.name.startswith("."):
                continue
            if entry not in known:
                paths.append(entry)
        return context.in_project_root(paths)

    def _scaffold_files(self, manifest: Manifest, context: ExclusionContext) -> set[Path]:
        locator = context.locator
        files: set[Path] = set()
        for package in manifest.core_packages(context.site.core_packages).values():
            scaffold = package.extra.get("drupal-scaffold") or {}
            mapping = scaffold.get("file-mapping") or {}
            for destination in mapping:
                files.add(self._resolve_scaffold_path(destination, locator))
        return files

    @staticmethod
    def _resolve_scaffold_path(destination: str, locator: PathLocator) -> Path:
        for token, base in (
            ("[project-root]", locator.project_root),
            ("[web-root]", locator.web_root_path),
        ):
            if destination.startswith(token):
                relative = normalize_relative(destination[len(token):])
                return base / relative if relative else base
        return locator.project_root / normalize_relative(destination)


class VendorHardeningExcluder(ExclusionProvider):
    def collect(self, context: ExclusionContext) -> list[str]:
        vendor = context.locator.vendor_dir
        return context.in_project_root([vendor / name for name in VENDOR_HARDENING_FILES])


def default_providers() -> list[ExclusionProvider]:
    return [
        GitExcluder(),
        NodeModulesExcluder(),
        SiteConfigurationExcluder(),
        SiteFilesExcluder(),
        SqliteDatabaseExcluder(),
        TestSiteExcluder(),
        UnknownPathExcluder(),
        VendorHardeningExcluder(),
    ]


class ExcludedPathsCollector:
    """Unions the output of every provider plus any static rules."""

    def __init__(
        self,
        providers: Sequence[ExclusionProvider] | None = None,
        extra_rules: Iterable[ExclusionRule] = (),
    ) -> None:
        self.providers = list(default_providers() if providers is None else providers)
        self.extra_rules = list(extra_rules)

    def collect_rules(self, context: ExclusionContext) -> frozenset[ExclusionRule]:
        rules: set[ExclusionRule] = set()
        for provider in self.providers:
            for path in provider.collect(context):
                normalized = normalize_relative(path)
                if normalized:
                    rules.add(ExclusionRule(normalized, provider.direction))
        for rule in self.extra_rules:
            rules.add(ExclusionRule(normalize_relative(rule.path), rule.direction))
        return frozenset(rules)

    def collect(self, context: ExclusionContext) -> frozenset[str]:
        """Return the paths that apply to the context's copy direction."""
        return frozenset(
            rule.path
            for rule in self.collect_rules(context)
            if rule.direction.applies_to(context.direction)
            or context.direction is ExclusionDirection.BOTH
        )
