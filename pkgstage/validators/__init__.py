"""Built-in stage validators, in the order they run."""

from .filesystem import (
    ComposerJsonExistsValidator,
    DiskSpaceValidator,
    StageNotInActiveValidator,
    WritableFileSystemValidator,
)
from .lock_file import LockFileValidator
from .staged_changes import (
    OverwriteExistingPackagesValidator,
    RequestedUpdateValidator,
    StagedProjectsValidator,
)
from .version import VersionPolicyValidator

__all__ = [
    "ComposerJsonExistsValidator",
    "StageNotInActiveValidator",
    "WritableFileSystemValidator",
    "DiskSpaceValidator",
    "LockFileValidator",
    "RequestedUpdateValidator",
    "StagedProjectsValidator",
    "OverwriteExistingPackagesValidator",
    "VersionPolicyValidator",
]
