# src/ledger/base_ledger_store.py - v1
"""Abstract ledger store interface.

Backends expose atomic primitives only. Lifecycle rules (TTLs, reclaiming
stalled locks, fail-open) live in ``IdempotencyLedger``. Any backend fault
must surface as ``StoreUnavailableError``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from prospector.ledger.models import IdempotencyRecord, LedgerStatus


class BaseLedgerStore(ABC):
    """Unified interface for idempotency storage backends."""

    @abstractmethod
    async def get(self, key: str) -> IdempotencyRecord | None:
        """Fetch the record for a key."""

    @abstractmethod
    async def insert_if_absent(self, record: IdempotencyRecord) -> bool:
        """Atomically insert; return False if any record already exists for the key."""

    @abstractmethod
    async def replace_if(
        self, expected: IdempotencyRecord, new: IdempotencyRecord
    ) -> bool:
        """Compare-and-swap on (status, created_at) of the stored record."""

    @abstractmethod
    async def put(self, record: IdempotencyRecord) -> None:
        """Unconditional upsert."""

    @abstractmethod
    async def delete(self, key: str, only_status: LedgerStatus | None = None) -> bool:
        """Delete a record, optionally only if it is in the given status."""

    @abstractmethod
    async def delete_expired(self, now: float) -> int:
        """Delete every record with ``expires_at <= now``; return the count."""

    def close(self) -> None:
        """Release backend resources."""
