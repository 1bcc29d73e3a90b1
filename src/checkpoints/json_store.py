# src/checkpoints/json_store.py - v1
"""JSON file-based checkpoint store (CHECKPOINT_BACKEND=json).

One file per item under the state root, rewritten atomically (temp file plus
``os.replace``). Conditional writes are serialized by an in-process lock, so
this backend is for single-process runs only.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
from pathlib import Path

from prospector.checkpoints.base_checkpoint_store import BaseCheckpointStore
from prospector.checkpoints.models import CheckpointRecord
from prospector.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class JsonCheckpointStore(BaseCheckpointStore):
    """File-based checkpoint store using one JSON document per item."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    async def get(self, item_id: str, step_name: str) -> CheckpointRecord | None:
        with self._lock:
            return self._load(item_id).get(step_name)

    async def list_for_item(self, item_id: str) -> list[CheckpointRecord]:
        with self._lock:
            return list(self._load(item_id).values())

    async def insert_if_absent(self, record: CheckpointRecord) -> bool:
        with self._lock:
            records = self._load(record.item_id)
            if record.step_name in records:
                return False
            records[record.step_name] = record
            self._save(record.item_id, records)
            return True

    async def replace_if(self, expected_version: int, record: CheckpointRecord) -> bool:
        with self._lock:
            records = self._load(record.item_id)
            current = records.get(record.step_name)
            if current is None or current.version != expected_version:
                return False
            records[record.step_name] = record
            self._save(record.item_id, records)
            return True

    async def put(self, record: CheckpointRecord) -> None:
        with self._lock:
            records = self._load(record.item_id)
            records[record.step_name] = record
            self._save(record.item_id, records)

    async def delete_item(self, item_id: str) -> int:
        with self._lock:
            records = self._load(item_id)
            path = self._item_path(item_id)
            if path.exists():
                path.unlink()
            return len(records)

    async def list_running(self, updated_before: float) -> list[CheckpointRecord]:
        stale: list[CheckpointRecord] = []
        with self._lock:
            for path in self._root.glob("*.json"):
                try:
                    data = json.loads(path.read_text(encoding="utf-8"))
                except (OSError, json.JSONDecodeError) as e:
                    logger.warning("Skipping unreadable checkpoint file %s: %s", path, e)
                    continue
                for raw in data.get("steps", {}).values():
                    record = CheckpointRecord.model_validate(raw)
                    if record.status == "running" and (record.updated_at or 0.0) < updated_before:
                        stale.append(record)
        return stale

    def _item_path(self, item_id: str) -> Path:
        # Item ids come from outside; hash them into safe file names.
        digest = hashlib.sha256(item_id.encode("utf-8")).hexdigest()[:32]
        return self._root / f"{digest}.json"

    def _load(self, item_id: str) -> dict[str, CheckpointRecord]:
        path = self._item_path(item_id)
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreUnavailableError("checkpoints", "load", e) from e
        return {
            name: CheckpointRecord.model_validate(raw)
            for name, raw in data.get("steps", {}).items()
        }

    def _save(self, item_id: str, records: dict[str, CheckpointRecord]) -> None:
        path = self._item_path(item_id)
        payload = {
            "item_id": item_id,
            "steps": {name: r.model_dump(mode="json") for name, r in records.items()},
        }
        tmp = path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise StoreUnavailableError("checkpoints", "save", e) from e
