"""Directory synchronisation used by the stage beginner and committer.

``sync(source, destination, exclusions)`` makes destination mirror source,
except that excluded paths are neither copied nor deleted on either side.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
import shutil
import subprocess
import time
from typing import Iterable, Optional

from pkgstage.core.paths import normalize_relative
from pkgstage.errors import IoFailure, OperationTimeoutError, SyncPreconditionError

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    copied: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)


def _is_excluded(relative: str, exclusions: frozenset[str]) -> bool:
    parts = relative.split("/")
    for index in range(1, len(parts) + 1):
        if "/".join(parts[:index]) in exclusions:
            return True
    return False


def _check_preconditions(source: Path, destination: Path) -> None:
    if not source.is_dir():
        raise SyncPreconditionError(f"The source directory does not exist: {source}")
    if not destination.is_dir():
        raise SyncPreconditionError(f"The destination directory does not exist: {destination}")
    if os.path.realpath(source) == os.path.realpath(destination):
        raise SyncPreconditionError(
            f"The source and destination directories are the same: {source}"
        )
    if not os.access(destination, os.W_OK):
        raise SyncPreconditionError(f"The destination directory is not writable: {destination}")


class FileSyncer:
    """Base class for directory synchronisation strategies."""

    def sync(
        self,
        source: Path,
        destination: Path,
        exclusions: Iterable[str] = (),
        timeout: Optional[float] = None,
    ) -> SyncResult:
        raise NotImplementedError


class PythonFileSyncer(FileSyncer):
    """Pure Python rsync-like mirror."""

    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock

    def sync(
        self,
        source: Path,
        destination: Path,
        exclusions: Iterable[str] = (),
        timeout: Optional[float] = None,
    ) -> SyncResult:
        _check_preconditions(source, destination)
        rules = frozenset(normalize_relative(path) for path in exclusions)
        deadline = self._clock() + timeout if timeout is not None else None
        result = SyncResult()

        logger.debug("Syncing %s -> %s (%d exclusions)", source, destination, len(rules))
        self._copy_tree(source, destination, rules, deadline, result)
        self._delete_missing(source, destination, rules, deadline, result)
        logger.debug(
            "Synced %s -> %s: %d copied, %d removed",
            source,
            destination,
            len(result.copied),
            len(result.removed),
        )
        return result

    def _check_deadline(self, deadline: Optional[float]) -> None:
        if deadline is not None and self._clock() > deadline:
            raise OperationTimeoutError("The file sync did not finish before the timeout.")

    def _copy_tree(self, source, destination, rules, deadline, result) -> None:
        for current, dirnames, filenames in os.walk(source):
            current_path = Path(current)
            relative_dir = current_path.relative_to(source).as_posix()
            target_dir = destination / relative_dir if relative_dir != "." else destination

            for name in sorted(dirnames):
                src = current_path / name
                relative = _join(relative_dir, name)
                if _is_excluded(relative, rules):
                    dirnames.remove(name)
                    continue
                dst = target_dir / name
                if src.is_symlink():
                    dirnames.remove(name)
                    self._copy_symlink(src, dst)
                    result.copied.append(relative)
                    continue
                if os.path.lexists(dst) and (dst.is_symlink() or not dst.is_dir()):
                    _remove(dst)
                dst.mkdir(exist_ok=True)
                shutil.copystat(src, dst)
            dirnames.sort()

            for name in sorted(filenames):
                self._check_deadline(deadline)
                relative = _join(relative_dir, name)
                if _is_excluded(relative, rules):
                    continue
                src = current_path / name
                dst = target_dir / name
                if src.is_symlink():
                    self._copy_symlink(src, dst)
                    result.copied.append(relative)
                elif self._copy_file(src, dst):
                    result.copied.append(relative)

    def _copy_symlink(self, src: Path, dst: Path) -> None:
        target = os.readlink(src)
        if dst.is_symlink() and os.readlink(dst) == target:
            return
        if os.path.lexists(dst):
            _remove(dst)
        os.symlink(target, dst)

    def _copy_file(self, src: Path, dst: Path) -> bool:
        if os.path.lexists(dst):
            if dst.is_symlink() or dst.is_dir():
                _remove(dst)
            else:
                src_stat = src.stat()
                dst_stat = dst.stat()
                if (
                    src_stat.st_size == dst_stat.st_size
                    and src_stat.st_mtime_ns == dst_stat.st_mtime_ns
                ):
                    return False
        shutil.copy2(src, dst)
        return True

    def _delete_missing(self, source, destination, rules, deadline, result) -> None:
        for current, dirnames, filenames in os.walk(destination):
            current_path = Path(current)
            relative_dir = current_path.relative_to(destination).as_posix()
            for name in sorted(dirnames + filenames):
                self._check_deadline(deadline)
                relative = _join(relative_dir, name)
                if _is_excluded(relative, rules):
                    if name in dirnames:
                        dirnames.remove(name)
                    continue
                if os.path.lexists(source / relative):
                    continue
                _remove(current_path / name)
                result.removed.append(relative)
                if name in dirnames:
                    dirnames.remove(name)


class RsyncFileSyncer(FileSyncer):
    """Delegates to the ``rsync`` executable."""

    def __init__(self, executable: str = "rsync") -> None:
        self.executable = executable

    def sync(
        self,
        source: Path,
        destination: Path,
        exclusions: Iterable[str] = (),
        timeout: Optional[float] = None,
    ) -> SyncResult:
        _check_preconditions(source, destination)
        command = [self.executable, "--archive", "--delete"]
        for path in sorted({normalize_relative(p) for p in exclusions}):
            command.append(f"--exclude=/{path}")
        command.extend([f"{source}/", f"{destination}/"])
        logger.debug("Running %s", " ".join(command))
        try:
            completed = subprocess.run(
                command, capture_output=True, text=True, timeout=timeout, check=False
            )
        except subprocess.TimeoutExpired as exc:
            raise OperationTimeoutError("The file sync did not finish before the timeout.") from exc
        except FileNotFoundError as exc:
            raise SyncPreconditionError(f"Cannot run {self.executable}: {exc}") from exc
        if completed.returncode != 0:
            raise IoFailure(
                f"rsync exited with status {completed.returncode}: {completed.stderr.strip()}"
            )
        return SyncResult()


def build_file_syncer(name: str) -> FileSyncer:
    if name == "rsync":
        return RsyncFileSyncer()
    if name == "python":
        return PythonFileSyncer()
    raise ValueError(f"Unsupported file syncer: {name}")


def _join(relative_dir: str, name: str) -> str:
    return name if relative_dir == "." else f"{relative_dir}/{name}"


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()
