"""Error taxonomy and exit code mapping for CLI."""

from __future__ import annotations

from typing import Iterable, TYPE_CHECKING

if TYPE_CHECKING:
    from pkgstage.core.validation import ValidationResult


class PkgStageError(Exception):
    """Base error for deterministic CLI exit codes."""

    exit_code: int = 1


class InvalidArgumentError(PkgStageError, ValueError):
    """The caller asked for something that cannot be done."""

    exit_code = 2


class IoFailure(PkgStageError):
    """Filesystem or I/O failure."""

    exit_code = 3


class StageError(PkgStageError):
    """A stage operation failed but the codebase was not touched."""

    exit_code = 1


class StageOwnershipError(StageError):
    """The stage is owned by someone else, or by nobody."""

    exit_code = 4


class AlreadyActiveError(StageOwnershipError):
    """A stage already exists for this project root."""


class WrongOwnerError(StageOwnershipError):
    """The stage exists but the caller does not own it."""


class NoActiveStageError(StageOwnershipError):
    """There is no stage to claim."""


class StageValidationError(StageError):
    """Validators vetoed an operation.

    Carries every collected result so callers can show all of them at once.
    """

    exit_code = 5

    def __init__(self, results: Iterable["ValidationResult"], message: str | None = None) -> None:
        self.results = tuple(results)
        if message is None:
            message = _summarize(self.results)
        super().__init__(message)


class ToolInvocationError(StageError):
    """The package manager tool exited unsuccessfully."""

    exit_code = 6

    def __init__(self, message: str, *, returncode: int | None = None, output: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output


class OperationTimeoutError(StageError):
    """A long-running step exceeded its timeout."""

    exit_code = 7


class SyncPreconditionError(StageError):
    """A sync could not start. Nothing was touched."""


class ApplyFailedError(PkgStageError):
    """Copying the stage back over the active directory failed.

    The active codebase may now be a mix of old and new files. Never
    recovered from automatically.
    """

    exit_code = 10


def _summarize(results: tuple["ValidationResult", ...]) -> str:
    lines: list[str] = []
    for result in results:
        if result.summary:
            lines.append(result.summary)
        lines.extend(result.messages)
    return "\n".join(lines) or "Validation failed."


def exit_code_for_exception(exc: BaseException) -> int:
    """Resolve a deterministic exit code for an exception."""
    if isinstance(exc, PkgStageError):
        return exc.exit_code
    if isinstance(exc, OSError):
        return IoFailure.exit_code
    if isinstance(exc, ValueError):
        return InvalidArgumentError.exit_code
    return StageError.exit_code
