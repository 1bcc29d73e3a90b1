# src/checkpoints/manager.py - v1
"""Per-item, per-step progress tracking that makes item runs resumable.

Steps of an item form a total order given by the configured step list. A
step may only ``begin`` once every earlier step is ``succeeded`` or
``skipped``. Records are created lazily on first write; missing rows read
back as ``pending``.

Store faults degrade resumability but never block processing: reads fall
back to "nothing recorded", writes are dropped and ``begin`` skips the
sequencing check it cannot make, all logged as warnings.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Sequence

from prospector.checkpoints.base_checkpoint_store import BaseCheckpointStore
from prospector.checkpoints.models import CheckpointRecord, CompletionStatus
from prospector.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000
_BEGIN_CAS_ATTEMPTS = 3


class CheckpointManager:
    """Sequencing rules and fail-open behavior over a checkpoint store."""

    def __init__(
        self,
        store: BaseCheckpointStore,
        steps: Sequence[str],
        stale_after_s: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not steps:
            raise ValueError("step list must not be empty")
        if len(set(steps)) != len(steps):
            raise ValueError(f"duplicate step names in {list(steps)}")
        self._store = store
        self._steps = list(steps)
        self._positions = {name: i for i, name in enumerate(self._steps)}
        self._stale_after_s = stale_after_s
        self._clock = clock

    @property
    def steps(self) -> list[str]:
        return list(self._steps)

    @property
    def store(self) -> BaseCheckpointStore:
        return self._store

    async def get(self, item_id: str) -> list[CheckpointRecord]:
        """Records for every configured step, in step order."""
        try:
            stored = await self._stored(item_id)
        except StoreUnavailableError as e:
            logger.warning("Checkpoint store degraded, treating %s as fresh: %s", item_id, e)
            stored = {}
        return self._complete(item_id, stored)

    async def begin(self, item_id: str, step_name: str) -> bool:
        """Mark a step running. False if an earlier step is not complete.

        When the store cannot be read the step begins unchecked.
        """
        position = self._position(step_name)

        for _ in range(_BEGIN_CAS_ATTEMPTS):
            try:
                records = self._complete(item_id, await self._stored(item_id))
            except StoreUnavailableError as e:
                logger.warning(
                    "Checkpoint store degraded, %s for %s begun unchecked: %s",
                    step_name, item_id, e,
                )
                return True
            blocking = next((r for r in records[:position] if not r.is_complete), None)
            if blocking is not None:
                logger.warning(
                    "Refusing to begin %s for %s: %s is %s",
                    step_name, item_id, blocking.step_name, blocking.status,
                )
                return False

            current = records[position]
            now = self._clock()
            running = current.model_copy(
                update={
                    "status": "running",
                    "error": None,
                    "reason": None,
                    "attempts": current.attempts + 1,
                    "version": current.version + 1,
                    "created_at": current.created_at or now,
                    "updated_at": now,
                    "started_at": now,
                    "finished_at": None,
                }
            )
            try:
                if current.version == 0:
                    written = await self._store.insert_if_absent(running)
                else:
                    written = await self._store.replace_if(current.version, running)
            except StoreUnavailableError as e:
                logger.warning("Checkpoint store degraded, %s not recorded: %s", step_name, e)
                return True
            if written:
                return True
            logger.debug("Checkpoint %s/%s changed concurrently, re-reading", item_id, step_name)

        logger.warning("Could not record begin of %s for %s after retries", step_name, item_id)
        return True

    async def succeed(
        self,
        item_id: str,
        step_name: str,
        output: Any,
        tokens_used: int = 0,
        duration_ms: int = 0,
    ) -> None:
        await self._finish(
            item_id, step_name, "succeeded",
            output=output, tokens_used=tokens_used, duration_ms=duration_ms,
        )

    async def fail(self, item_id: str, step_name: str, error: str) -> None:
        await self._finish(item_id, step_name, "failed", error=error[:MAX_ERROR_LENGTH])

    async def skip(self, item_id: str, step_name: str, reason: str) -> None:
        """Mark a step skipped so later steps may proceed without it."""
        await self._finish(item_id, step_name, "skipped", reason=reason)

    async def is_resumable(self, item_id: str) -> str | None:
        """First step that still has to run, or None when the item is finished.

        A ``running`` step always counts as incomplete; whether it is stale
        only matters to the idempotency lock guarding it.
        """
        for record in await self.get(item_id):
            if not record.is_complete:
                return record.step_name
        return None

    async def outputs(self, item_id: str) -> dict[str, Any]:
        """Outputs of succeeded steps, keyed by step name."""
        return {
            r.step_name: r.output
            for r in await self.get(item_id)
            if r.status == "succeeded"
        }

    async def completion_status(self, item_id: str) -> CompletionStatus:
        records = await self.get(item_id)
        counts: dict[str, int] = {}
        for record in records:
            counts[record.status] = counts.get(record.status, 0) + 1
        next_step = next((r.step_name for r in records if not r.is_complete), None)
        return CompletionStatus(
            item_id=item_id, total=len(records), next_step=next_step, **counts
        )

    async def stale(self, older_than_s: float | None = None) -> list[CheckpointRecord]:
        """``running`` records with no write for longer than the stale window."""
        window = self._stale_after_s if older_than_s is None else older_than_s
        try:
            return await self._store.list_running(self._clock() - window)
        except StoreUnavailableError as e:
            logger.warning("Checkpoint store degraded, stale scan skipped: %s", e)
            return []

    def is_stale(self, record: CheckpointRecord) -> bool:
        return (
            record.status == "running"
            and (record.updated_at or 0.0) < self._clock() - self._stale_after_s
        )

    async def clear(self, item_id: str) -> int:
        try:
            return await self._store.delete_item(item_id)
        except StoreUnavailableError as e:
            logger.warning("Checkpoint store degraded, %s not cleared: %s", item_id, e)
            return 0

    async def _finish(self, item_id: str, step_name: str, status: str, **fields: Any) -> None:
        position = self._position(step_name)
        now = self._clock()
        try:
            current = await self._store.get(item_id, step_name)
            if current is None:
                current = CheckpointRecord(
                    item_id=item_id, step_name=step_name, position=position, created_at=now
                )
            record = current.model_copy(
                update={
                    "status": status,
                    "version": current.version + 1,
                    "updated_at": now,
                    "finished_at": now,
                    **fields,
                }
            )
            await self._store.put(record)
        except StoreUnavailableError as e:
            logger.warning(
                "Checkpoint store degraded, %s not recorded as %s: %s",
                step_name, status, e,
            )

    async def _stored(self, item_id: str) -> dict[str, CheckpointRecord]:
        return {r.step_name: r for r in await self._store.list_for_item(item_id)}

    def _complete(
        self, item_id: str, stored: dict[str, CheckpointRecord]
    ) -> list[CheckpointRecord]:
        return [
            stored.get(name) or CheckpointRecord(item_id=item_id, step_name=name, position=i)
            for i, name in enumerate(self._steps)
        ]

    def _position(self, step_name: str) -> int:
        try:
            return self._positions[step_name]
        except KeyError:
            raise ValueError(f"Unknown step: {step_name!r}") from None
