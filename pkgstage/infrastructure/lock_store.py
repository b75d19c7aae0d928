"""Durable stage ownership keyed by project root."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Optional

from pkgstage.core.state import DestroyedStageInfo, OwnershipRecord, StageState
from pkgstage.errors import AlreadyActiveError, NoActiveStageError, WrongOwnerError

DEFAULT_EXPIRE_SECONDS = 604800
_SCHEMA_VERSION = 1
_UNSET = object()

_RECORD_COLUMNS = """
    project_root, stage_id, owner_id, stage_name, state, metadata,
    staging_root, apply_time, changes_applied, created_at, updated_at
"""


class OwnershipLock:
    """SQLite-backed compare-and-set lock for the one active stage.

    Every process that opens the same database file sees the same record, so
    two processes racing to create a stage for one project root cannot both
    succeed. Records older than ``expire_seconds`` are treated as absent.
    """

    def __init__(
        self,
        path: Path,
        project_root: Path,
        now_fn=None,
        expire_seconds: int = DEFAULT_EXPIRE_SECONDS,
    ) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.project_root = str(project_root)
        self.expire_seconds = expire_seconds
        self._lock = Lock()
        self._conn = sqlite3.connect(
            self.path, check_same_thread=False, isolation_level=None, timeout=30
        )
        self._now_fn = now_fn or (lambda: datetime.now(timezone.utc))
        self._logger = logging.getLogger(__name__)
        try:
            self._init_schema()
        except Exception:
            self._conn.close()
            raise

    def _now(self) -> datetime:
        return self._now_fn().astimezone(timezone.utc)

    def _now_iso(self) -> str:
        return self._now().isoformat().replace("+00:00", "Z")

    def now_timestamp(self) -> float:
        return self._now().timestamp()

    def _init_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_metadata (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS stage_lock (
                project_root TEXT PRIMARY KEY,
                stage_id TEXT NOT NULL CHECK(length(stage_id) > 0),
                owner_id TEXT NOT NULL,
                stage_name TEXT NOT NULL,
                state TEXT NOT NULL,
                metadata TEXT NOT NULL DEFAULT '{}',
                staging_root TEXT,
                apply_time REAL,
                changes_applied INTEGER NOT NULL DEFAULT 0 CHECK(changes_applied IN (0, 1)),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                created_ts REAL NOT NULL
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS destroyed_stages (
                stage_id TEXT PRIMARY KEY,
                project_root TEXT NOT NULL,
                message TEXT NOT NULL,
                destroyed_at TEXT NOT NULL
            )
            """
        )
        version = self._conn.execute(
            "SELECT value FROM schema_metadata WHERE key = 'schema_version'"
        ).fetchone()
        if version is None:
            self._conn.execute(
                "INSERT INTO schema_metadata (key, value) VALUES ('schema_version', ?)",
                (str(_SCHEMA_VERSION),),
            )
        elif int(version[0]) > _SCHEMA_VERSION:
            raise ValueError(
                f"Lock DB schema {version[0]} > supported {_SCHEMA_VERSION}. "
                "Please upgrade pkgstage."
            )

    def _is_expired(self, created_ts: float) -> bool:
        return self.now_timestamp() - created_ts >= self.expire_seconds

    def _row_to_record(self, row) -> OwnershipRecord:
        return OwnershipRecord(
            project_root=Path(row[0]),
            stage_id=row[1],
            owner_id=row[2],
            stage_name=row[3],
            state=StageState(row[4]),
            metadata=json.loads(row[5] or "{}"),
            staging_root=Path(row[6]) if row[6] else None,
            apply_time=row[7],
            changes_applied=bool(row[8]),
            created_at=row[9],
            updated_at=row[10],
        )

    def _fetch_row(self):
        return self._conn.execute(
            f"SELECT {_RECORD_COLUMNS}, created_ts FROM stage_lock WHERE project_root = ?",
            (self.project_root,),
        ).fetchone()

    def create(
        self,
        stage_id: str,
        owner_id: str,
        stage_name: str,
        metadata: Optional[dict] = None,
        staging_root: Optional[Path] = None,
    ) -> OwnershipRecord:
        """Atomically take ownership, or raise if an unexpired record exists."""
        now_iso = self._now_iso()
        now_ts = self.now_timestamp()
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                row = self._fetch_row()
                if row is not None:
                    if not self._is_expired(row[11]):
                        raise AlreadyActiveError(
                            "Cannot create a new stage because one already exists."
                        )
                    self._logger.warning(
                        "Replacing expired stage %s created at %s", row[1], row[9]
                    )
                    self._conn.execute(
                        "DELETE FROM stage_lock WHERE project_root = ?",
                        (self.project_root,),
                    )
                self._conn.execute(
                    f"""
                    INSERT INTO stage_lock ({_RECORD_COLUMNS}, created_ts)
                    VALUES (?, ?, ?, ?, ?, ?, ?, NULL, 0, ?, ?, ?)
                    """,
                    (
                        self.project_root,
                        stage_id,
                        owner_id,
                        stage_name,
                        StageState.CREATED.value,
                        json.dumps(metadata or {}, sort_keys=True),
                        str(staging_root) if staging_root is not None else None,
                        now_iso,
                        now_iso,
                        now_ts,
                    ),
                )
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
        self._logger.debug("Stage %s created for %s", stage_id, self.project_root)
        record = self.get()
        assert record is not None
        return record

    def get(self) -> Optional[OwnershipRecord]:
        with self._lock:
            row = self._fetch_row()
        if row is None or self._is_expired(row[11]):
            return None
        return self._row_to_record(row)

    def is_active(self) -> bool:
        return self.get() is not None

    def claim(self, stage_id: str, owner_id: str, stage_name: str) -> OwnershipRecord:
        record = self.get()
        if record is None:
            message = self.destroyed_message(stage_id)
            raise NoActiveStageError(
                message or "Cannot claim the stage because no stage has been created."
            )
        if record.owner_id != owner_id:
            raise WrongOwnerError(
                "Cannot claim the stage because it is not owned by the current user or session."
            )
        if record.stage_id != stage_id or record.stage_name != stage_name:
            raise WrongOwnerError(
                "Cannot claim the stage because the current lock does not match the stored lock."
            )
        return record

    def update(
        self,
        stage_id: str,
        *,
        state: Optional[StageState] = None,
        metadata: Optional[dict] = None,
        apply_time=_UNSET,
        changes_applied: Optional[bool] = None,
    ) -> OwnershipRecord:
        record = self.get()
        if record is None or record.stage_id != stage_id:
            raise NoActiveStageError(f"Unknown stage: {stage_id}")
        new_apply_time = record.apply_time if apply_time is _UNSET else apply_time
        with self._lock:
            self._conn.execute(
                """
                UPDATE stage_lock
                SET state = ?, metadata = ?, apply_time = ?, changes_applied = ?,
                    updated_at = ?
                WHERE project_root = ? AND stage_id = ?
                """,
                (
                    (state or record.state).value,
                    json.dumps(record.metadata if metadata is None else metadata, sort_keys=True),
                    new_apply_time,
                    int(record.changes_applied if changes_applied is None else changes_applied),
                    self._now_iso(),
                    self.project_root,
                    stage_id,
                ),
            )
        updated = self.get()
        assert updated is not None
        return updated

    def set_state(self, stage_id: str, state: StageState) -> OwnershipRecord:
        return self.update(stage_id, state=state)

    def release(self, stage_id: str) -> None:
        """Drop the record for ``stage_id``. Releasing twice is harmless."""
        with self._lock:
            self._conn.execute(
                "DELETE FROM stage_lock WHERE project_root = ? AND stage_id = ?",
                (self.project_root, stage_id),
            )
        self._logger.debug("Stage %s released", stage_id)

    def _prune_destroyed(self) -> None:
        rows = self._conn.execute("SELECT stage_id, destroyed_at FROM destroyed_stages").fetchall()
        expired = [
            (stage_id,)
            for stage_id, destroyed_at in rows
            if self._is_expired(
                datetime.fromisoformat(destroyed_at.replace("Z", "+00:00")).timestamp()
            )
        ]
        if expired:
            self._conn.executemany("DELETE FROM destroyed_stages WHERE stage_id = ?", expired)
            self._logger.debug("Pruned %d expired destroy messages", len(expired))

    def record_destroy(self, stage_id: str, message: str) -> DestroyedStageInfo:
        now = self._now_iso()
        with self._lock:
            self._prune_destroyed()
            self._conn.execute(
                """
                INSERT OR REPLACE INTO destroyed_stages (stage_id, project_root, message, destroyed_at)
                VALUES (?, ?, ?, ?)
                """,
                (stage_id, self.project_root, message, now),
            )
        return DestroyedStageInfo(stage_id=stage_id, message=message, destroyed_at=now)

    def destroyed_message(self, stage_id: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute(
                "SELECT message FROM destroyed_stages WHERE stage_id = ?",
                (stage_id,),
            ).fetchone()
        return row[0] if row else None

    def close(self) -> None:
        with self._lock:
            self._conn.close()
