"""Stage lifecycle states and the persisted ownership record."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

APPLY_STALE_SECONDS = 3600


class StageState(str, Enum):
    """Stage lifecycle states."""

    AVAILABLE = "AVAILABLE"
    CREATED = "CREATED"
    STAGED = "STAGED"
    APPLYING = "APPLYING"
    APPLIED = "APPLIED"
    POST_APPLIED = "POST_APPLIED"


@dataclass(frozen=True)
class OwnershipRecord:
    """Persisted ownership of the single active stage for a project root."""

    project_root: Path
    stage_id: str
    owner_id: str
    stage_name: str
    state: StageState = StageState.CREATED
    metadata: dict = field(default_factory=dict)
    staging_root: Optional[Path] = None
    apply_time: Optional[float] = None
    changes_applied: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def stage_directory(self) -> Optional[Path]:
        if self.staging_root is None:
            return None
        return self.staging_root / self.stage_id

    def is_applying(self, now: float) -> bool:
        if self.state != StageState.APPLYING or self.apply_time is None:
            return False
        return now - self.apply_time < APPLY_STALE_SECONDS


@dataclass(frozen=True)
class DestroyedStageInfo:
    stage_id: str
    message: str
    destroyed_at: Optional[str] = None
