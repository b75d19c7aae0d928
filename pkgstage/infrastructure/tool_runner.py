"""Invocation of the package manager inside a stage directory."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import subprocess
from typing import Optional, Protocol, Sequence

from pkgstage.errors import OperationTimeoutError, ToolInvocationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
    args: tuple[str, ...]
    returncode: int
    output: str = ""


class ToolRunner(Protocol):
    def run(self, args: Sequence[str], cwd: Path, timeout: Optional[float] = None) -> ToolResult:
        ...


class ComposerToolRunner:
    """Runs ``composer`` as a subprocess with ``--working-dir`` set to the stage."""

    def __init__(self, executable: str = "composer") -> None:
        self.executable = executable

    def run(self, args: Sequence[str], cwd: Path, timeout: Optional[float] = None) -> ToolResult:
        command = [self.executable, *args, "--no-interaction", f"--working-dir={cwd}"]
        logger.info("Running %s", " ".join(command))
        try:
            completed = subprocess.run(
                command,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise OperationTimeoutError(
                f"{self.executable} {' '.join(args)} did not finish within {timeout} seconds."
            ) from exc
        except FileNotFoundError as exc:
            raise ToolInvocationError(f"Cannot run {self.executable}: {exc}") from exc

        output = (completed.stdout or "") + (completed.stderr or "")
        if completed.returncode != 0:
            logger.error(
                "%s exited with status %d: %s",
                self.executable,
                completed.returncode,
                output.strip(),
            )
            raise ToolInvocationError(
                f"{self.executable} {' '.join(args)} failed with exit code {completed.returncode}.",
                returncode=completed.returncode,
                output=output,
            )
        return ToolResult(tuple(args), completed.returncode, output)
