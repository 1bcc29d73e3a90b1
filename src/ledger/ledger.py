# src/ledger/ledger.py - v1
"""Idempotency ledger: has step S for item I with input H already run?

Lifecycle of a key:

    (absent) --try_acquire--> processing --complete--> completed
                                   |                       |
                 release / stall TTL elapsed      completed TTL elapsed
                                   v                       v
                               (absent)            expired (reclaimable)

At most one ``processing`` record exists per key: acquisition is an atomic
insert-if-absent, and reclaiming an expired record is a compare-and-swap on
the exact record that was observed.

The ledger fails open. When the backing store raises
``StoreUnavailableError`` the call is logged as a degradation and answers as
if no record existed, so processing continues without deduplication.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from prospector.core.errors import StoreUnavailableError
from prospector.ledger.base_ledger_store import BaseLedgerStore
from prospector.ledger.keys import hash_input, make_key
from prospector.ledger.models import IdempotencyRecord, LedgerCheck

logger = logging.getLogger(__name__)

DEFAULT_PROCESSING_TTL_S = 300.0
DEFAULT_COMPLETED_TTL_S = 86_400.0


class IdempotencyLedger:
    """TTL-aware, fail-open facade over a ledger store."""

    def __init__(
        self,
        store: BaseLedgerStore,
        processing_ttl_s: float = DEFAULT_PROCESSING_TTL_S,
        completed_ttl_s: float = DEFAULT_COMPLETED_TTL_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._processing_ttl_s = processing_ttl_s
        self._completed_ttl_s = completed_ttl_s
        self._clock = clock

    @property
    def store(self) -> BaseLedgerStore:
        return self._store

    @staticmethod
    def key(item_id: str, step_name: str, input_hash: str) -> str:
        return make_key(item_id, step_name, input_hash)

    @staticmethod
    def key_for_input(item_id: str, step_name: str, step_input: Any) -> str:
        """Key for a raw step input, hashing its canonical form."""
        return make_key(item_id, step_name, hash_input(step_input))

    async def check(self, key: str) -> LedgerCheck:
        """Look up a key and decide whether the caller may process it."""
        try:
            record = await self._store.get(key)
        except StoreUnavailableError as e:
            logger.warning("Ledger degraded, allowing processing: %s", e)
            return LedgerCheck(exists=False, can_process=True)

        if record is None:
            return LedgerCheck(exists=False, can_process=True)

        if record.is_expired(self._clock()):
            return LedgerCheck(exists=True, status="expired", can_process=True)

        if record.status == "completed":
            return LedgerCheck(
                exists=True, status="completed", result=record.result, can_process=False
            )

        return LedgerCheck(exists=True, status=record.status, can_process=False)

    async def try_acquire(self, key: str, item_id: str, step_name: str) -> bool:
        """Take the processing lock for a key. Exactly one racing caller wins."""
        now = self._clock()
        record = IdempotencyRecord(
            key=key,
            item_id=item_id,
            step_name=step_name,
            status="processing",
            created_at=now,
            expires_at=now + self._processing_ttl_s,
        )
        try:
            if await self._store.insert_if_absent(record):
                return True

            existing = await self._store.get(key)
            if existing is None:
                # Deleted between our insert and read; one more atomic attempt.
                return await self._store.insert_if_absent(record)

            if not existing.is_expired(now):
                return False

            acquired = await self._store.replace_if(existing, record)
            if acquired:
                logger.info(
                    "Reclaimed %s ledger entry for %s/%s",
                    existing.status, item_id, step_name,
                )
            return acquired
        except StoreUnavailableError as e:
            logger.warning("Ledger degraded, proceeding without lock: %s", e)
            return True

    async def complete(
        self, key: str, result: Any, item_id: str = "", step_name: str = ""
    ) -> None:
        """Mark a held lock completed and cache its result for the completed TTL."""
        now = self._clock()
        try:
            existing = await self._store.get(key)
            completed = IdempotencyRecord(
                key=key,
                item_id=existing.item_id if existing else item_id,
                step_name=existing.step_name if existing else step_name,
                status="completed",
                result=result,
                created_at=existing.created_at if existing else now,
                expires_at=now + self._completed_ttl_s,
                completed_at=now,
            )
            if existing is not None and existing.status == "processing":
                if await self._store.replace_if(existing, completed):
                    return
                logger.warning(
                    "Ledger entry for %s/%s changed while completing; overwriting",
                    completed.item_id, completed.step_name,
                )
            await self._store.put(completed)
        except StoreUnavailableError as e:
            logger.warning("Ledger degraded, result not cached: %s", e)

    async def release(self, key: str) -> bool:
        """Drop a processing lock so the key is immediately retryable."""
        try:
            return await self._store.delete(key, only_status="processing")
        except StoreUnavailableError as e:
            logger.warning("Ledger degraded, lock not released: %s", e)
            return False

    async def get_result(self, key: str) -> Any | None:
        """Cached result for a completed, unexpired key."""
        check = await self.check(key)
        return check.result if check.status == "completed" else None

    async def sweep(self) -> int:
        """Delete every record past its expiry."""
        try:
            count = await self._store.delete_expired(self._clock())
        except StoreUnavailableError as e:
            logger.warning("Ledger degraded, sweep skipped: %s", e)
            return 0
        if count:
            logger.info("Swept %d expired ledger entries", count)
        return count
