# src/checkpoints/memory_store.py - v1
"""In-process checkpoint store (CHECKPOINT_BACKEND=memory)."""

from __future__ import annotations

import threading

from prospector.checkpoints.base_checkpoint_store import BaseCheckpointStore
from prospector.checkpoints.models import CheckpointRecord


class MemoryCheckpointStore(BaseCheckpointStore):
    """Dict-backed store keyed by (item_id, step_name)."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], CheckpointRecord] = {}
        self._lock = threading.Lock()

    async def get(self, item_id: str, step_name: str) -> CheckpointRecord | None:
        with self._lock:
            return self._records.get((item_id, step_name))

    async def list_for_item(self, item_id: str) -> list[CheckpointRecord]:
        with self._lock:
            return [r for (i, _), r in self._records.items() if i == item_id]

    async def insert_if_absent(self, record: CheckpointRecord) -> bool:
        key = (record.item_id, record.step_name)
        with self._lock:
            if key in self._records:
                return False
            self._records[key] = record
            return True

    async def replace_if(self, expected_version: int, record: CheckpointRecord) -> bool:
        key = (record.item_id, record.step_name)
        with self._lock:
            current = self._records.get(key)
            if current is None or current.version != expected_version:
                return False
            self._records[key] = record
            return True

    async def put(self, record: CheckpointRecord) -> None:
        with self._lock:
            self._records[(record.item_id, record.step_name)] = record

    async def delete_item(self, item_id: str) -> int:
        with self._lock:
            keys = [k for k in self._records if k[0] == item_id]
            for key in keys:
                del self._records[key]
            return len(keys)

    async def list_running(self, updated_before: float) -> list[CheckpointRecord]:
        with self._lock:
            return [
                r for r in self._records.values()
                if r.status == "running" and (r.updated_at or 0.0) < updated_before
            ]
