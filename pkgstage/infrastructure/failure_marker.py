"""Marker file that outlives a failed copy-back into the active directory.

The marker is written right before staged files are synced over the active
codebase and removed once the sync succeeds. If it is still present, the
active codebase may be a mix of old and new files and no new stage may be
started until someone clears it by hand.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
from typing import Optional

from pkgstage.errors import ApplyFailedError

logger = logging.getLogger(__name__)

MARKER_FILENAME = "PACKAGE_MANAGER_FAILURE.json"
DEFAULT_FAILURE_MESSAGE = (
    "Staged changes failed to apply, and the site is in an indeterminate state. "
    "It is strongly recommended to restore the code and database from a backup."
)


@dataclass(frozen=True)
class FailureMarkerInfo:
    stage_name: str
    stage_id: str
    message: str
    written_at: str

    def to_dict(self) -> dict:
        return {
            "stage_name": self.stage_name,
            "stage_id": self.stage_id,
            "message": self.message,
            "written_at": self.written_at,
        }


class FailureMarker:
    def __init__(self, project_root: Path, now_fn=None) -> None:
        self.project_root = project_root
        self._now_fn = now_fn or (lambda: datetime.now(timezone.utc))

    @property
    def path(self) -> Path:
        return self.project_root / MARKER_FILENAME

    def exists(self) -> bool:
        return self.path.exists()

    def write(self, stage_name: str, stage_id: str, message: str = DEFAULT_FAILURE_MESSAGE) -> None:
        info = FailureMarkerInfo(
            stage_name=stage_name,
            stage_id=stage_id,
            message=message,
            written_at=self._now_fn().astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        )
        tmp_path = self.path.with_name(f".{MARKER_FILENAME}.tmp")
        tmp_path.write_text(json.dumps(info.to_dict(), indent=2))
        os.replace(tmp_path, self.path)
        logger.debug("Wrote failure marker %s for stage %s", self.path, stage_id)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        logger.debug("Cleared failure marker %s", self.path)

    def read(self) -> Optional[FailureMarkerInfo]:
        """Return the marker contents, or None when there is no marker.

        Raises ApplyFailedError when the file exists but is unreadable.
        """
        try:
            raw = self.path.read_text()
        except FileNotFoundError:
            return None
        try:
            data = json.loads(raw)
            return FailureMarkerInfo(
                stage_name=str(data.get("stage_name", "")),
                stage_id=str(data.get("stage_id", "")),
                message=str(data["message"]),
                written_at=str(data.get("written_at", "")),
            )
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as exc:
            raise ApplyFailedError("Failure marker file exists but cannot be decoded.") from exc

    def assert_not_exists(self) -> None:
        info = self.read()
        if info is not None:
            raise ApplyFailedError(info.message)
