# src/checkpoints/sqlite_store.py - v1
"""SQLite-based checkpoint store (CHECKPOINT_BACKEND=sqlite).

One row per (item_id, step_name); the full record is kept as JSON next to the
columns needed for conditional updates and stale scans.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from prospector.checkpoints.base_checkpoint_store import BaseCheckpointStore
from prospector.checkpoints.models import CheckpointRecord
from prospector.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS checkpoints (
    item_id TEXT NOT NULL,
    step_name TEXT NOT NULL,
    status TEXT NOT NULL,
    version INTEGER NOT NULL,
    updated_at REAL,
    data TEXT NOT NULL,
    PRIMARY KEY (item_id, step_name)
);
CREATE INDEX IF NOT EXISTS idx_checkpoints_status ON checkpoints(status, updated_at);
"""


class SqliteCheckpointStore(BaseCheckpointStore):
    """SQLite-backed checkpoint store."""

    def __init__(self, db_path: Path | str, timeout_s: float = 5.0) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), timeout=timeout_s)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    async def get(self, item_id: str, step_name: str) -> CheckpointRecord | None:
        rows = self._read(
            "get",
            "SELECT data FROM checkpoints WHERE item_id = ? AND step_name = ?",
            (item_id, step_name),
        )
        return CheckpointRecord.model_validate_json(rows[0][0]) if rows else None

    async def list_for_item(self, item_id: str) -> list[CheckpointRecord]:
        rows = self._read(
            "list_for_item", "SELECT data FROM checkpoints WHERE item_id = ?", (item_id,)
        )
        return [CheckpointRecord.model_validate_json(row[0]) for row in rows]

    async def insert_if_absent(self, record: CheckpointRecord) -> bool:
        cursor = self._write(
            "insert_if_absent",
            """INSERT OR IGNORE INTO checkpoints
               (item_id, step_name, status, version, updated_at, data)
               VALUES (?, ?, ?, ?, ?, ?)""",
            _to_row(record),
        )
        return cursor.rowcount == 1

    async def replace_if(self, expected_version: int, record: CheckpointRecord) -> bool:
        cursor = self._write(
            "replace_if",
            """UPDATE checkpoints SET status = ?, version = ?, updated_at = ?, data = ?
               WHERE item_id = ? AND step_name = ? AND version = ?""",
            (
                record.status,
                record.version,
                record.updated_at,
                record.model_dump_json(),
                record.item_id,
                record.step_name,
                expected_version,
            ),
        )
        return cursor.rowcount == 1

    async def put(self, record: CheckpointRecord) -> None:
        self._write(
            "put",
            """INSERT OR REPLACE INTO checkpoints
               (item_id, step_name, status, version, updated_at, data)
               VALUES (?, ?, ?, ?, ?, ?)""",
            _to_row(record),
        )

    async def delete_item(self, item_id: str) -> int:
        cursor = self._write(
            "delete_item", "DELETE FROM checkpoints WHERE item_id = ?", (item_id,)
        )
        return cursor.rowcount

    async def list_running(self, updated_before: float) -> list[CheckpointRecord]:
        rows = self._read(
            "list_running",
            "SELECT data FROM checkpoints WHERE status = 'running' AND updated_at < ?",
            (updated_before,),
        )
        return [CheckpointRecord.model_validate_json(row[0]) for row in rows]

    def _read(self, operation: str, sql: str, params: tuple) -> list[tuple]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailableError("checkpoints", operation, e) from e

    def _write(self, operation: str, sql: str, params: tuple) -> sqlite3.Cursor:
        try:
            cursor = self._conn.execute(sql, params)
            self._conn.commit()
        except sqlite3.Error as e:
            try:
                self._conn.rollback()
            except sqlite3.Error:
                logger.debug("Rollback after failed %s also failed", operation)
            raise StoreUnavailableError("checkpoints", operation, e) from e
        return cursor

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()


def _to_row(record: CheckpointRecord) -> tuple:
    return (
        record.item_id,
        record.step_name,
        record.status,
        record.version,
        record.updated_at,
        record.model_dump_json(),
    )
