# src/pipeline/dead_letter.py - v1
"""Dead-letter set: items that failed unrecoverably, kept for inspection and requeue.

At most one ``pending`` entry exists per item. A repeat failure of an item
already pending bumps its ``failure_count`` and refreshes the error instead
of adding a second entry.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Literal

from pydantic import BaseModel, Field

from prospector.core.models import BatchItem, ProspectInput

logger = logging.getLogger(__name__)

Resolution = Literal["pending", "retried", "skipped", "manual_fix"]

_ERROR_KEY_LENGTH = 100
_COMMON_ERRORS_LIMIT = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeadLetterEntry(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    item_id: str
    batch_id: str
    step: str | None = None
    category: str
    last_error: str
    attempts: int = 0
    failure_count: int = 1
    prospect: ProspectInput
    checkpoints: list[dict[str, Any]] = Field(default_factory=list)
    resolution: Resolution = "pending"
    note: str | None = None
    created_at: datetime
    updated_at: datetime
    resolved_at: datetime | None = None


class DeadLetterStats(BaseModel):
    total: int = 0
    pending: int = 0
    retried: int = 0
    skipped: int = 0
    manual_fix: int = 0
    oldest_pending: datetime | None = None
    common_errors: list[tuple[str, int]] = Field(default_factory=list)


class _DeadLetterFile(BaseModel):
    entries: list[DeadLetterEntry] = Field(default_factory=list)


class DeadLetterSet:
    """In-memory dead-letter set with optional JSON persistence. Thread-safe."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._entries: list[DeadLetterEntry] = []
        self._lock = threading.Lock()
        self._clock = clock

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def add(
        self,
        item_id: str,
        batch_id: str,
        prospect: ProspectInput,
        category: str,
        last_error: str,
        step: str | None = None,
        attempts: int = 0,
        checkpoints: Iterable[dict[str, Any]] = (),
    ) -> DeadLetterEntry:
        now = self._clock()
        snapshot = list(checkpoints)
        with self._lock:
            existing = self._pending_for(item_id)
            if existing is not None:
                updated = existing.model_copy(
                    update={
                        "batch_id": batch_id,
                        "step": step,
                        "category": category,
                        "last_error": last_error,
                        "attempts": attempts,
                        "failure_count": existing.failure_count + 1,
                        "checkpoints": snapshot,
                        "updated_at": now,
                    }
                )
                self._replace(updated)
                logger.warning(
                    "Dead letter for %s updated (failures: %d)", item_id, updated.failure_count
                )
                return updated

            entry = DeadLetterEntry(
                item_id=item_id,
                batch_id=batch_id,
                step=step,
                category=category,
                last_error=last_error,
                attempts=attempts,
                prospect=prospect,
                checkpoints=snapshot,
                created_at=now,
                updated_at=now,
            )
            self._entries.append(entry)
        logger.warning("Item %s dead-lettered at %s (%s): %s", item_id, step, category, last_error)
        return entry

    def get(self, item_id: str) -> DeadLetterEntry | None:
        """Pending entry for an item, else its most recent entry."""
        with self._lock:
            pending = self._pending_for(item_id)
            if pending is not None:
                return pending
            matches = [e for e in self._entries if e.item_id == item_id]
        return matches[-1] if matches else None

    def entries(self, resolution: Resolution | None = None) -> list[DeadLetterEntry]:
        with self._lock:
            return [e for e in self._entries if resolution is None or e.resolution == resolution]

    def pending(self) -> list[DeadLetterEntry]:
        return self.entries("pending")

    def item_ids(self) -> list[str]:
        return [e.item_id for e in self.pending()]

    def mark_for_retry(self, item_ids: Iterable[str] | None = None) -> list[BatchItem]:
        """Resolve pending entries as retried and return them as fresh batch items."""
        wanted = None if item_ids is None else set(item_ids)
        items = []
        for entry in self._resolve(wanted, "retried", None):
            items.append(BatchItem(id=entry.item_id, prospect=entry.prospect))
        if items:
            logger.info("Requeued %d dead-lettered item(s)", len(items))
        return items

    def mark_skipped(self, item_id: str, note: str | None = None) -> bool:
        return bool(self._resolve({item_id}, "skipped", note))

    def mark_manual_fix(self, item_id: str, note: str | None = None) -> bool:
        return bool(self._resolve({item_id}, "manual_fix", note))

    def stats(self) -> DeadLetterStats:
        entries = self.entries()
        counts = Counter(e.resolution for e in entries)
        pending = [e.created_at for e in entries if e.resolution == "pending"]
        errors = Counter(e.last_error[:_ERROR_KEY_LENGTH] or "Unknown" for e in entries)
        return DeadLetterStats(
            total=len(entries),
            pending=counts["pending"],
            retried=counts["retried"],
            skipped=counts["skipped"],
            manual_fix=counts["manual_fix"],
            oldest_pending=min(pending) if pending else None,
            common_errors=errors.most_common(_COMMON_ERRORS_LIMIT),
        )

    def cleanup(self, older_than: timedelta) -> int:
        """Drop resolved entries resolved before ``now - older_than``."""
        cutoff = self._clock() - older_than
        with self._lock:
            keep = [
                e for e in self._entries
                if e.resolution == "pending" or (e.resolved_at or cutoff) > cutoff
            ]
            removed = len(self._entries) - len(keep)
            self._entries = keep
        if removed:
            logger.info("Cleaned up %d resolved dead letter(s)", removed)
        return removed

    def save(self, path: Path | str) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = _DeadLetterFile(entries=self.entries())
        path.write_text(payload.model_dump_json(indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Path | str, clock: Callable[[], datetime] = _utcnow) -> DeadLetterSet:
        dead_letters = cls(clock=clock)
        path = Path(path)
        if path.exists():
            data = _DeadLetterFile.model_validate_json(path.read_text(encoding="utf-8"))
            dead_letters._entries = list(data.entries)
        return dead_letters

    # --- internals ---

    def _pending_for(self, item_id: str) -> DeadLetterEntry | None:
        return next(
            (e for e in self._entries if e.item_id == item_id and e.resolution == "pending"),
            None,
        )

    def _replace(self, entry: DeadLetterEntry) -> None:
        self._entries = [entry if e.id == entry.id else e for e in self._entries]

    def _resolve(
        self, item_ids: set[str] | None, resolution: Resolution, note: str | None
    ) -> list[DeadLetterEntry]:
        now = self._clock()
        resolved = []
        with self._lock:
            for entry in list(self._entries):
                if entry.resolution != "pending":
                    continue
                if item_ids is not None and entry.item_id not in item_ids:
                    continue
                updated = entry.model_copy(
                    update={
                        "resolution": resolution,
                        "note": note,
                        "resolved_at": now,
                        "updated_at": now,
                    }
                )
                self._replace(updated)
                resolved.append(updated)
        return resolved
