# src/ledger/sqlite_store.py - v1
"""SQLite-based ledger store (LEDGER_BACKEND=sqlite).

Uses stdlib sqlite3. Atomicity comes from single-statement conditional
writes: ``INSERT OR IGNORE`` for insert-if-absent and ``UPDATE ... WHERE
status = ? AND created_at = ?`` for compare-and-swap, judged by rowcount.
Safe across processes sharing the same database file.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

from prospector.core.errors import StoreUnavailableError
from prospector.ledger.base_ledger_store import BaseLedgerStore
from prospector.ledger.models import IdempotencyRecord, LedgerStatus

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS idempotency_records (
    key TEXT PRIMARY KEY,
    item_id TEXT NOT NULL,
    step_name TEXT NOT NULL,
    status TEXT NOT NULL,
    result TEXT,
    created_at REAL NOT NULL,
    expires_at REAL NOT NULL,
    completed_at REAL
);
CREATE INDEX IF NOT EXISTS idx_idempotency_expires ON idempotency_records(expires_at);
"""

_COLUMNS = "key, item_id, step_name, status, result, created_at, expires_at, completed_at"


class SqliteLedgerStore(BaseLedgerStore):
    """SQLite-backed ledger store for single-host deployments."""

    def __init__(self, db_path: Path | str, timeout_s: float = 5.0) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), timeout=timeout_s)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    async def get(self, key: str) -> IdempotencyRecord | None:
        try:
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM idempotency_records WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailableError("ledger", "get", e) from e
        return None if row is None else _row_to_record(row)

    async def insert_if_absent(self, record: IdempotencyRecord) -> bool:
        cursor = self._write(
            "insert_if_absent",
            f"INSERT OR IGNORE INTO idempotency_records ({_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            _record_to_row(record),
        )
        return cursor.rowcount == 1

    async def replace_if(
        self, expected: IdempotencyRecord, new: IdempotencyRecord
    ) -> bool:
        cursor = self._write(
            "replace_if",
            """UPDATE idempotency_records
               SET item_id = ?, step_name = ?, status = ?, result = ?,
                   created_at = ?, expires_at = ?, completed_at = ?
               WHERE key = ? AND status = ? AND created_at = ?""",
            (
                *_record_to_row(new)[1:],
                expected.key,
                expected.status,
                expected.created_at,
            ),
        )
        return cursor.rowcount == 1

    async def put(self, record: IdempotencyRecord) -> None:
        self._write(
            "put",
            f"INSERT OR REPLACE INTO idempotency_records ({_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            _record_to_row(record),
        )

    async def delete(self, key: str, only_status: LedgerStatus | None = None) -> bool:
        if only_status is None:
            cursor = self._write(
                "delete", "DELETE FROM idempotency_records WHERE key = ?", (key,)
            )
        else:
            cursor = self._write(
                "delete",
                "DELETE FROM idempotency_records WHERE key = ? AND status = ?",
                (key, only_status),
            )
        return cursor.rowcount == 1

    async def delete_expired(self, now: float) -> int:
        cursor = self._write(
            "delete_expired",
            "DELETE FROM idempotency_records WHERE expires_at <= ?",
            (now,),
        )
        return cursor.rowcount

    def _write(self, operation: str, sql: str, params: tuple) -> sqlite3.Cursor:
        try:
            cursor = self._conn.execute(sql, params)
            self._conn.commit()
        except sqlite3.Error as e:
            try:
                self._conn.rollback()
            except sqlite3.Error:
                logger.debug("Rollback after failed %s also failed", operation)
            raise StoreUnavailableError("ledger", operation, e) from e
        return cursor

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()


def _record_to_row(record: IdempotencyRecord) -> tuple:
    return (
        record.key,
        record.item_id,
        record.step_name,
        record.status,
        None if record.result is None else json.dumps(record.result, default=str),
        record.created_at,
        record.expires_at,
        record.completed_at,
    )


def _row_to_record(row: tuple) -> IdempotencyRecord:
    return IdempotencyRecord(
        key=row[0],
        item_id=row[1],
        step_name=row[2],
        status=row[3],
        result=None if row[4] is None else json.loads(row[4]),
        created_at=row[5],
        expires_at=row[6],
        completed_at=row[7],
    )
