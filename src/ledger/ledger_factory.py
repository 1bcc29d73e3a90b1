# src/ledger/ledger_factory.py - v1
"""Factory for ledger store instantiation."""

from __future__ import annotations

from prospector.config.settings import Settings
from prospector.ledger.base_ledger_store import BaseLedgerStore


def create_ledger_store(settings: Settings | None = None) -> BaseLedgerStore:
    """Instantiate the configured ledger backend.

    Args:
        settings: Pipeline settings. Defaults to the in-memory backend.

    Returns:
        Configured BaseLedgerStore implementation.
    """
    backend = "memory" if settings is None else settings.ledger_backend

    if backend == "memory":
        from prospector.ledger.memory_store import MemoryLedgerStore
        return MemoryLedgerStore()

    if backend == "sqlite":
        from prospector.ledger.sqlite_store import SqliteLedgerStore
        return SqliteLedgerStore(db_path=settings.state_root / "ledger.db")

    if backend == "redis":
        from prospector.ledger.redis_store import RedisLedgerStore
        if not settings.redis_url:
            raise ValueError("REDIS_URL must be set when LEDGER_BACKEND=redis")
        return RedisLedgerStore(redis_url=settings.redis_url)

    raise ValueError(f"Unsupported ledger backend: {backend!r}")
