# src/pipeline/writeback.py - v1
"""Best-effort persistence of item results through a bounded queue.

Results are handed to a single background consumer so slow storage never
stalls workers beyond the queue bound. A failed write is logged as a
persistence failure and counted; it never changes the item's status.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

PersistFn = Callable[[str, Any], "Awaitable[None] | None"]

_STOP = object()


@dataclass(frozen=True)
class WriteOutcome:
    item_id: str
    ok: bool
    error: str | None = None


class ResultWriter:
    """Bounded outbound queue consumed by one background task."""

    def __init__(self, persist: PersistFn, max_queue: int = 100) -> None:
        self._persist = persist
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)
        self._task: asyncio.Task | None = None
        self._outcomes: list[WriteOutcome] = []

    @property
    def outcomes(self) -> list[WriteOutcome]:
        return list(self._outcomes)

    @property
    def failures(self) -> list[str]:
        return [o.item_id for o in self._outcomes if not o.ok]

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._consume())

    async def submit(self, item_id: str, payload: Any) -> None:
        """Enqueue a write, waiting only while the queue is full."""
        if self._task is None:
            await self.start()
        await self._queue.put((item_id, payload))

    async def close(self) -> list[WriteOutcome]:
        """Drain pending writes and stop the consumer."""
        if self._task is None:
            return self.outcomes
        await self._queue.put(_STOP)
        await self._task
        self._task = None
        return self.outcomes

    async def _consume(self) -> None:
        while True:
            entry = await self._queue.get()
            try:
                if entry is _STOP:
                    return
                item_id, payload = entry
                self._outcomes.append(await self._write(item_id, payload))
            finally:
                self._queue.task_done()

    async def _write(self, item_id: str, payload: Any) -> WriteOutcome:
        try:
            outcome = self._persist(item_id, payload)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning("Persistence failed for %s: %s", item_id, e)
            return WriteOutcome(item_id=item_id, ok=False, error=str(e))
        return WriteOutcome(item_id=item_id, ok=True)
