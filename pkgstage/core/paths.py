"""Locations of the active codebase and the staging area."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import os
from pathlib import Path, PurePosixPath
import tempfile
from typing import Optional


def is_within(parent: Path, child: Path) -> bool:
    parent = parent.resolve()
    child = child.resolve()
    return parent == child or parent in child.parents


def normalize_relative(path: str) -> str:
    """Normalize a project-relative path to a POSIX string without dot segments."""
    cleaned = path.replace("\\", "/").strip()
    parts: list[str] = []
    for part in PurePosixPath(cleaned).parts:
        if part in ("", ".", "/"):
            continue
        if part == "..":
            raise ValueError(f"Path traversal not allowed: {path}")
        parts.append(part)
    return "/".join(parts)


@dataclass(frozen=True)
class PathLocator:
    """Resolved locations for one project root."""

    project_root: Path
    web_root: str = ""
    vendor_dir: Optional[Path] = None
    staging_root: Optional[Path] = None

    def __post_init__(self) -> None:
        root = Path(os.path.realpath(self.project_root))
        object.__setattr__(self, "project_root", root)
        object.__setattr__(self, "web_root", normalize_relative(self.web_root))
        vendor = self.vendor_dir if self.vendor_dir is not None else root / "vendor"
        if not vendor.is_absolute():
            vendor = root / vendor
        object.__setattr__(self, "vendor_dir", vendor)
        staging = self.staging_root
        if staging is None:
            site_hash = hashlib.sha256(str(root).encode("utf-8")).hexdigest()[:12]
            staging = Path(tempfile.gettempdir()) / f".package_manager{site_hash}"
        object.__setattr__(self, "staging_root", Path(staging))

    @property
    def web_root_path(self) -> Path:
        if not self.web_root:
            return self.project_root
        return self.project_root / self.web_root

    def relative_to_project(self, path: str | Path) -> str:
        """Make a path project-root relative.

        Absolute paths must live inside the project root.
        """
        text = str(path)
        if os.path.isabs(text):
            absolute = Path(os.path.normpath(text))
            try:
                return normalize_relative(absolute.relative_to(self.project_root).as_posix())
            except ValueError:
                resolved = Path(os.path.realpath(text))
                try:
                    return normalize_relative(resolved.relative_to(self.project_root).as_posix())
                except ValueError:
                    raise ValueError(
                        f"{path} is not inside the project root: {self.project_root}"
                    ) from None
        return normalize_relative(text)

    def relative_to_web_root(self, path: str) -> str:
        """Prefix a web-root relative path so it becomes project-root relative."""
        relative = normalize_relative(path)
        if not self.web_root:
            return relative
        return f"{self.web_root}/{relative}" if relative else self.web_root
