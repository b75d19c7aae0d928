"""Application bootstrap with dependency injection."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Optional

from .core.events import StageListener
from .core.exclusions import ExcludedPathsCollector, SiteConfig
from .core.lifecycle import StageLifecycle
from .core.paths import PathLocator
from .core.releases import ReleaseCatalog
from .core.requirements import (
    CoreUpdatePolicy,
    CronCoreUpdatePolicy,
    ExtensionUpdatePolicy,
    RequirementPolicy,
)
from .core.unattended import Notifier, UnattendedUpdater
from .core.version_policy import UnattendedMode, VersionPolicy
from .infrastructure.failure_marker import FailureMarker
from .infrastructure.file_syncer import FileSyncer, build_file_syncer
from .infrastructure.lock_store import OwnershipLock
from .infrastructure.stage_dir import StageDirectoryManager
from .infrastructure.tool_runner import ComposerToolRunner, ToolRunner
from .settings import Settings, default_state_db, load_settings
from .validators import (
    ComposerJsonExistsValidator,
    DiskSpaceValidator,
    LockFileValidator,
    OverwriteExistingPackagesValidator,
    RequestedUpdateValidator,
    StagedProjectsValidator,
    StageNotInActiveValidator,
    VersionPolicyValidator,
    WritableFileSystemValidator,
)

DEFAULT_OWNER_ID = "cli"


def load_release_catalog(path: Path) -> ReleaseCatalog:
    """Read release metadata exported as JSON."""
    return ReleaseCatalog.from_dict(json.loads(path.read_text()))


class PkgStageApp:
    """Builds every collaborator of a stage lifecycle from settings."""

    def __init__(
        self,
        settings: Settings,
        catalog: Optional[ReleaseCatalog] = None,
        tool_runner: Optional[ToolRunner] = None,
        syncer: Optional[FileSyncer] = None,
        free_space: Optional[Callable[[Path], int]] = None,
        now_fn=None,
    ):
        """Initialize the application.

        Args:
            settings: Resolved settings
            catalog: Release metadata for core; enables version policy checks
            tool_runner: Override for the package-manager tool runner
            syncer: Override for the file syncer
            free_space: Override for the free disk space probe
            now_fn: Clock used by the ownership lock and failure marker
        """
        self.settings = settings
        self.catalog = catalog

        self.locator = PathLocator(
            project_root=settings.project_root,
            web_root=settings.web_root,
            vendor_dir=settings.vendor_dir,
            staging_root=settings.staging_root,
        )
        self.site = SiteConfig(
            site_path=settings.site_path,
            public_files_path=settings.public_files_path,
            private_files_path=settings.private_files_path,
            database_driver=settings.database_driver,
            database_path=settings.database_path,
            core_packages=settings.core_packages,
        )

        # Infrastructure
        self.lock = OwnershipLock(
            default_state_db(settings),
            self.locator.project_root,
            now_fn=now_fn,
            expire_seconds=settings.lock_expire_seconds,
        )
        self.failure_marker = FailureMarker(self.locator.project_root, now_fn=now_fn)
        self.stage_dirs = StageDirectoryManager(self.locator.staging_root)
        self.syncer = syncer or build_file_syncer(settings.file_syncer)
        self.tool_runner = tool_runner or ComposerToolRunner(settings.composer_executable)
        self.exclusions = ExcludedPathsCollector()

        # Policies
        self.version_policy = VersionPolicy(settings.allow_core_minor_updates)
        self.unattended_mode = UnattendedMode(settings.unattended_mode)
        self._free_space = free_space

    def validators(self) -> list[StageListener]:
        """Return the built-in validators in the order they run."""
        listeners: list[StageListener] = [
            ComposerJsonExistsValidator(self.locator),
            StageNotInActiveValidator(self.locator),
            WritableFileSystemValidator(self.locator),
            DiskSpaceValidator(self.locator, free_space=self._free_space),
            LockFileValidator(self.locator),
            RequestedUpdateValidator(),
            StagedProjectsValidator(),
            OverwriteExistingPackagesValidator(),
        ]
        if self.catalog is not None:
            listeners.append(
                VersionPolicyValidator(
                    self.catalog,
                    self.version_policy,
                    self.unattended_mode,
                    self.settings.core_packages,
                )
            )
        return listeners

    def core_policy(self, cron: bool = False) -> CoreUpdatePolicy:
        if cron:
            return CronCoreUpdatePolicy(self.settings.core_packages)
        return CoreUpdatePolicy(self.settings.core_packages)

    def policy_for(self, stage_name: str) -> RequirementPolicy:
        """Return the policy a stage was created with, by its stored name."""
        if stage_name == ExtensionUpdatePolicy.name:
            return ExtensionUpdatePolicy()
        if stage_name == CronCoreUpdatePolicy.name:
            return self.core_policy(cron=True)
        if stage_name == CoreUpdatePolicy.name:
            return self.core_policy()
        raise ValueError(f"Unknown stage type: {stage_name}")

    def lifecycle(
        self,
        policy: Optional[RequirementPolicy] = None,
        owner_id: str = DEFAULT_OWNER_ID,
        listeners: tuple[StageListener, ...] = (),
    ) -> StageLifecycle:
        """Build a lifecycle for one owner. Extra listeners run after the validators."""
        return StageLifecycle(
            locator=self.locator,
            lock=self.lock,
            failure_marker=self.failure_marker,
            stage_dirs=self.stage_dirs,
            syncer=self.syncer,
            tool_runner=self.tool_runner,
            policy=policy or self.core_policy(),
            owner_id=owner_id,
            site=self.site,
            exclusions=self.exclusions,
            listeners=[*self.validators(), *listeners],
        )

    def extension_lifecycle(self, owner_id: str = DEFAULT_OWNER_ID) -> StageLifecycle:
        return self.lifecycle(ExtensionUpdatePolicy(), owner_id)

    def unattended_updater(self, notifier: Optional[Notifier] = None) -> UnattendedUpdater:
        if self.catalog is None:
            raise ValueError("Release metadata is required for unattended updates")
        policy = self.core_policy(cron=True)
        return UnattendedUpdater(
            lambda owner_id: self.lifecycle(policy, owner_id),
            self.catalog,
            mode=self.unattended_mode,
            policy=self.version_policy,
            notifier=notifier,
        )

    def close(self) -> None:
        """Clean up resources."""
        self.lock.close()

    @classmethod
    def from_config(
        cls,
        config_path: Optional[Path],
        releases_path: Optional[Path] = None,
        **kwargs,
    ) -> PkgStageApp:
        """Create an app from a settings file and optional release metadata.

        Args:
            config_path: Settings JSON path (missing file means defaults)
            releases_path: Release metadata JSON path
            **kwargs: Additional arguments to pass to __init__

        Returns:
            PkgStageApp instance
        """
        catalog = load_release_catalog(releases_path) if releases_path else None
        return cls(load_settings(config_path), catalog=catalog, **kwargs)
