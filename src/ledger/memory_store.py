# src/ledger/memory_store.py - v1
"""In-process ledger store (LEDGER_BACKEND=memory).

Only deduplicates within one process. Suitable for tests and single-worker runs.
"""

from __future__ import annotations

import threading

from prospector.ledger.base_ledger_store import BaseLedgerStore
from prospector.ledger.models import IdempotencyRecord, LedgerStatus


class MemoryLedgerStore(BaseLedgerStore):
    """Dict-backed store; every primitive runs under one lock."""

    def __init__(self) -> None:
        self._records: dict[str, IdempotencyRecord] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> IdempotencyRecord | None:
        with self._lock:
            return self._records.get(key)

    async def insert_if_absent(self, record: IdempotencyRecord) -> bool:
        with self._lock:
            if record.key in self._records:
                return False
            self._records[record.key] = record
            return True

    async def replace_if(
        self, expected: IdempotencyRecord, new: IdempotencyRecord
    ) -> bool:
        with self._lock:
            current = self._records.get(expected.key)
            if (
                current is None
                or current.status != expected.status
                or current.created_at != expected.created_at
            ):
                return False
            self._records[expected.key] = new
            return True

    async def put(self, record: IdempotencyRecord) -> None:
        with self._lock:
            self._records[record.key] = record

    async def delete(self, key: str, only_status: LedgerStatus | None = None) -> bool:
        with self._lock:
            current = self._records.get(key)
            if current is None:
                return False
            if only_status is not None and current.status != only_status:
                return False
            del self._records[key]
            return True

    async def delete_expired(self, now: float) -> int:
        with self._lock:
            expired = [k for k, r in self._records.items() if r.is_expired(now)]
            for key in expired:
                del self._records[key]
            return len(expired)

    def __len__(self) -> int:
        return len(self._records)
