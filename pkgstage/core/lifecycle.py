"""Stage lifecycle: create, require, apply, post-apply and destroy.

One ``StageLifecycle`` instance drives at most one stage for one project root.
The durable parts of its state live in the ownership lock so that a later
process can ``claim()`` the stage and continue where the first one stopped.

State flow::

    AVAILABLE -> CREATED -> STAGED -> APPLYING -> APPLIED -> POST_APPLIED
        ^                                                         |
        +------------------------- destroy() ---------------------+

``destroy()`` is allowed from every state except an apply younger than an hour.
"""

from __future__ import annotations

import logging
from pathlib import Path
import secrets
from typing import Callable, Iterable, Mapping, Optional, Sequence

from pkgstage.core.events import EventDispatcher, StageEvent, StageEventType, StageListener
from pkgstage.core.exclusions import (
    ExcludedPathsCollector,
    ExclusionContext,
    ExclusionDirection,
    SiteConfig,
)
from pkgstage.core.manifest import Manifest, load_manifest, validate_requirement
from pkgstage.core.paths import PathLocator
from pkgstage.core.requirements import PackageVersions, RequirementPolicy
from pkgstage.core.state import OwnershipRecord, StageState
from pkgstage.core.validation import ValidationResult
from pkgstage.errors import (
    AlreadyActiveError,
    ApplyFailedError,
    InvalidArgumentError,
    IoFailure,
    PkgStageError,
    StageError,
    SyncPreconditionError,
    WrongOwnerError,
)
from pkgstage.infrastructure.failure_marker import FailureMarker
from pkgstage.infrastructure.file_syncer import FileSyncer
from pkgstage.infrastructure.lock_store import OwnershipLock
from pkgstage.infrastructure.stage_dir import StageDirectoryManager
from pkgstage.infrastructure.tool_runner import ToolRunner

logger = logging.getLogger(__name__)

DEFAULT_CREATE_TIMEOUT = 300
DEFAULT_REQUIRE_TIMEOUT = 300
DEFAULT_APPLY_TIMEOUT = 600

DESTROY_MESSAGE_APPLIED = "This operation has already been applied."
DESTROY_MESSAGE_FORCED = "This operation was canceled by another user."
DESTROY_MESSAGE_CANCELED = "This operation was already canceled."


def _new_stage_id() -> str:
    return secrets.token_urlsafe(16)


class StageLifecycle:
    """Drives one stage through its lifecycle.

    Collaborators are passed in explicitly; see ``pkgstage.app`` for the
    default wiring.
    """

    def __init__(
        self,
        *,
        locator: PathLocator,
        lock: OwnershipLock,
        failure_marker: FailureMarker,
        stage_dirs: StageDirectoryManager,
        syncer: FileSyncer,
        tool_runner: ToolRunner,
        policy: RequirementPolicy,
        owner_id: str,
        site: Optional[SiteConfig] = None,
        exclusions: Optional[ExcludedPathsCollector] = None,
        listeners: Sequence[StageListener] = (),
        manifest_loader: Callable[[Path], Manifest] = load_manifest,
        id_factory: Callable[[], str] = _new_stage_id,
    ) -> None:
        self.locator = locator
        self.lock = lock
        self.failure_marker = failure_marker
        self.stage_dirs = stage_dirs
        self.syncer = syncer
        self.tool_runner = tool_runner
        self.policy = policy
        self.owner_id = owner_id
        self.site = site or SiteConfig()
        self.exclusions = exclusions or ExcludedPathsCollector()
        self.dispatcher = EventDispatcher(listeners)
        self._manifest_loader = manifest_loader
        self._id_factory = id_factory
        self._stage_id: Optional[str] = None

    # -- introspection -----------------------------------------------------

    @property
    def stage_id(self) -> Optional[str]:
        return self._stage_id

    @property
    def stage_name(self) -> str:
        return self.policy.name

    def is_available(self) -> bool:
        return not self.lock.is_active()

    def is_applying(self) -> bool:
        record = self.lock.get()
        return record is not None and record.is_applying(self.lock.now_timestamp())

    def get_state(self) -> StageState:
        record = self.lock.get()
        return record.state if record else StageState.AVAILABLE

    def get_stage_directory(self) -> Path:
        if self._stage_id is None:
            raise StageError(
                "The stage directory cannot be resolved because the stage has not been "
                "created or claimed."
            )
        record = self.lock.get()
        if record is not None and record.stage_directory is not None:
            return record.stage_directory
        return self.stage_dirs.stage_path(self._stage_id)

    def get_active_manifest(self) -> Manifest:
        return self._manifest_loader(self.locator.project_root)

    def get_stage_manifest(self) -> Manifest:
        return self._manifest_loader(self.get_stage_directory())

    def get_metadata(self) -> dict:
        return dict(self._check_ownership().metadata)

    def get_package_versions(self) -> PackageVersions:
        return PackageVersions.from_dict(self.get_metadata().get("packages"))

    def set_metadata(self, key: str, value) -> None:
        record = self._check_ownership()
        metadata = dict(record.metadata)
        metadata[key] = value
        self.lock.update(record.stage_id, metadata=metadata)

    # -- ownership ---------------------------------------------------------

    def claim(self, stage_id: str) -> StageLifecycle:
        """Attach this instance to an existing stage."""
        self.failure_marker.assert_not_exists()
        self.lock.claim(stage_id, self.owner_id, self.stage_name)
        self._stage_id = stage_id
        return self

    def _check_ownership(self) -> OwnershipRecord:
        if self._stage_id is None:
            raise StageError("Stage must be claimed before performing any operations on it.")
        record = self.lock.get()
        if (
            record is None
            or record.stage_id != self._stage_id
            or record.owner_id != self.owner_id
            or record.stage_name != self.stage_name
        ):
            raise WrongOwnerError("Stage is not owned by the current user or session.")
        return record

    # -- exclusions and events ---------------------------------------------

    def exclusion_context(self, direction: ExclusionDirection) -> ExclusionContext:
        return ExclusionContext(
            locator=self.locator,
            site=self.site,
            direction=direction,
            manifest_loader=self.get_active_manifest,
        )

    def collect_excluded_paths(
        self, direction: ExclusionDirection = ExclusionDirection.BOTH
    ) -> frozenset[str]:
        try:
            return self.exclusions.collect(self.exclusion_context(direction))
        except PkgStageError:
            raise
        except Exception as exc:
            raise StageError(str(exc)) from exc

    def _event(self, event_type: StageEventType, **kwargs) -> StageEvent:
        return StageEvent(type=event_type, stage=self, **kwargs)

    def _dispatch(self, event: StageEvent, on_error: Optional[Callable[[], None]] = None):
        try:
            return self.dispatcher.dispatch(event)
        except StageError:
            if on_error is not None:
                on_error()
            raise

    # -- operations --------------------------------------------------------

    def begin(
        self, project_versions: Mapping[str, str], timeout: Optional[float] = DEFAULT_CREATE_TIMEOUT
    ) -> str:
        """Start a stage that will update the given projects.

        Returns the new stage id; keep it to ``claim()`` the stage later.
        """
        self.failure_marker.assert_not_exists()
        if not self.is_available():
            raise AlreadyActiveError("Cannot create a new stage because one already exists.")
        packages = self.policy.build(project_versions, self.get_active_manifest())
        return self.create(timeout=timeout, metadata={"packages": packages.to_dict()})

    def create(
        self, timeout: Optional[float] = DEFAULT_CREATE_TIMEOUT, metadata: Optional[dict] = None
    ) -> str:
        """Copy the active codebase into a new stage directory."""
        self.failure_marker.assert_not_exists()
        stage_id = self._id_factory()
        # Taken before pre-create so concurrent creators fail fast.
        self.lock.create(
            stage_id,
            self.owner_id,
            self.stage_name,
            metadata=metadata,
            staging_root=self.locator.staging_root,
        )
        self._stage_id = stage_id
        logger.info("Creating stage %s for %s", stage_id, self.locator.project_root)

        try:
            excluded = self.collect_excluded_paths(ExclusionDirection.CREATE)
        except PkgStageError:
            self._mark_available()
            raise
        self._dispatch(
            self._event(StageEventType.PRE_CREATE, excluded_paths=excluded),
            on_error=self._mark_available,
        )

        try:
            stage_dir = self.stage_dirs.create_stage_directory(stage_id)
        except IoFailure:
            self._mark_available()
            raise
        self.syncer.sync(self.locator.project_root, stage_dir, excluded, timeout=timeout)
        self._dispatch(self._event(StageEventType.POST_CREATE, excluded_paths=excluded))
        return stage_id

    def stage(self, timeout: Optional[float] = DEFAULT_REQUIRE_TIMEOUT) -> None:
        """Require the package versions stored when the stage was begun."""
        self.failure_marker.assert_not_exists()
        self._check_ownership()
        runtime, dev = self.get_package_versions().requirement_arguments()
        self.require(runtime, dev, timeout=timeout)

    def require(
        self,
        runtime: Iterable[str],
        dev: Iterable[str] = (),
        timeout: Optional[float] = DEFAULT_REQUIRE_TIMEOUT,
    ) -> None:
        """Add or update packages inside the stage directory."""
        self.failure_marker.assert_not_exists()
        record = self._check_ownership()
        self._require_state(record, (StageState.CREATED, StageState.STAGED), "require packages")
        runtime = tuple(runtime)
        dev = tuple(dev)
        self._dispatch(self._event(StageEventType.PRE_REQUIRE, runtime=runtime, dev=dev))

        stage_dir = self.get_stage_directory()
        # Constraints first, then one update that resolves them together.
        if runtime:
            for requirement in runtime:
                validate_requirement(requirement)
            self.tool_runner.run(["require", "--no-update", *runtime], stage_dir, timeout)
        if dev:
            for requirement in dev:
                validate_requirement(requirement)
            self.tool_runner.run(["require", "--dev", "--no-update", *dev], stage_dir, timeout)
        if runtime or dev:
            self.tool_runner.run(
                ["update", "--with-all-dependencies", *runtime, *dev], stage_dir, timeout
            )

        self._dispatch(self._event(StageEventType.POST_REQUIRE, runtime=runtime, dev=dev))
        self.lock.set_state(record.stage_id, StageState.STAGED)

    def apply(self, timeout: Optional[float] = DEFAULT_APPLY_TIMEOUT) -> None:
        """Sync the stage directory back over the active codebase.

        Raises ApplyFailedError if the sync failed after it started; the
        failure marker is left in place in that case.
        """
        self.failure_marker.assert_not_exists()
        record = self._check_ownership()
        self._require_state(record, (StageState.STAGED,), "apply")
        stage_id = record.stage_id
        excluded = self.collect_excluded_paths(ExclusionDirection.APPLY)

        self.lock.update(
            stage_id, state=StageState.APPLYING, apply_time=self.lock.now_timestamp()
        )
        self._dispatch(
            self._event(StageEventType.PRE_APPLY, excluded_paths=excluded),
            on_error=lambda: self._set_not_applying(stage_id),
        )

        self.failure_marker.write(self.stage_name, stage_id, self.policy.failure_message)
        marker_path = self.locator.relative_to_project(self.failure_marker.path)
        commit_exclusions = excluded | {marker_path}

        try:
            self.syncer.sync(
                self.get_stage_directory(),
                self.locator.project_root,
                commit_exclusions,
                timeout=timeout,
            )
        except (SyncPreconditionError, InvalidArgumentError) as exc:
            # Nothing was copied yet.
            self.failure_marker.clear()
            self._set_not_applying(stage_id)
            raise StageError(str(exc)) from exc
        except Exception as exc:
            logger.error("Applying stage %s failed: %s", stage_id, exc)
            self._set_not_applying(stage_id)
            raise ApplyFailedError(str(exc) or type(exc).__name__) from exc

        self.failure_marker.clear()
        self.lock.update(stage_id, state=StageState.APPLIED, changes_applied=True)
        logger.info("Applied stage %s to %s", stage_id, self.locator.project_root)

    def post_apply(self) -> list[ValidationResult]:
        """Run every post-apply hook; the first failure is raised after all ran."""
        record = self._check_ownership()
        self._require_state(record, (StageState.APPLIED,), "run post-apply tasks")
        try:
            return self.dispatcher.dispatch_all(self._event(StageEventType.POST_APPLY))
        finally:
            self.lock.update(record.stage_id, state=StageState.POST_APPLIED, apply_time=None)

    def destroy(self, force: bool = False, message: Optional[str] = None) -> None:
        """Delete the stage directory and release ownership.

        Never clears the failure marker.
        """
        if force:
            record = self.lock.get()
        else:
            record = self._check_ownership()
        if self.is_applying():
            raise StageError(
                "Cannot destroy the stage directory while it is being applied to the "
                "active directory."
            )
        if record is None:
            logger.debug("No stage to destroy for %s", self.locator.project_root)
            self._stage_id = None
            return

        if force:
            try:
                self.dispatcher.dispatch(self._event(StageEventType.PRE_DESTROY))
            except StageError as exc:
                logger.warning("Ignoring pre-destroy failure for forced destroy: %s", exc)
        else:
            self._dispatch(self._event(StageEventType.PRE_DESTROY))

        stage_dir = record.stage_directory or self.stage_dirs.stage_path(record.stage_id)
        try:
            self.stage_dirs.remove_stage_directory(stage_dir)
        except IoFailure as exc:
            # The stage is still released so a new one can be started.
            logger.warning("Could not remove stage directory %s: %s", stage_dir, exc)

        if message is None:
            if record.changes_applied:
                message = DESTROY_MESSAGE_APPLIED
            elif force:
                message = DESTROY_MESSAGE_FORCED
            else:
                message = DESTROY_MESSAGE_CANCELED
        self.lock.record_destroy(record.stage_id, message)
        self._mark_available(record.stage_id)
        logger.info("Destroyed stage %s: %s", record.stage_id, message)
        self._dispatch(self._event(StageEventType.POST_DESTROY))

    def run_status_checks(self) -> list[ValidationResult]:
        """Ask every listener whether an update could currently run."""
        try:
            self.failure_marker.assert_not_exists()
        except ApplyFailedError as exc:
            return [ValidationResult.error_from_exception(exc)]
        try:
            excluded = self.collect_excluded_paths(ExclusionDirection.BOTH)
        except StageError as exc:
            return [ValidationResult.error_from_exception(exc)]
        return self.dispatcher.collect_status(
            self._event(StageEventType.STATUS_CHECK, excluded_paths=excluded)
        )

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _require_state(
        record: OwnershipRecord, allowed: tuple[StageState, ...], operation: str
    ) -> None:
        if record.state not in allowed:
            raise StageError(
                f"Cannot {operation} because the stage is {record.state.value.lower()}."
            )

    def _set_not_applying(self, stage_id: str) -> None:
        self.lock.update(stage_id, state=StageState.STAGED, apply_time=None)

    def _mark_available(self, stage_id: Optional[str] = None) -> None:
        stage_id = stage_id or self._stage_id
        if stage_id is not None:
            self.lock.release(stage_id)
        self._stage_id = None
