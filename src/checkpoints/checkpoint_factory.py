# src/checkpoints/checkpoint_factory.py - v1
"""Factory for checkpoint store instantiation."""

from __future__ import annotations

from prospector.checkpoints.base_checkpoint_store import BaseCheckpointStore
from prospector.config.settings import Settings


def create_checkpoint_store(settings: Settings | None = None) -> BaseCheckpointStore:
    """Instantiate the configured checkpoint backend (default: memory)."""
    backend = "memory" if settings is None else settings.checkpoint_backend

    if backend == "memory":
        from prospector.checkpoints.memory_store import MemoryCheckpointStore
        return MemoryCheckpointStore()

    if backend == "sqlite":
        from prospector.checkpoints.sqlite_store import SqliteCheckpointStore
        return SqliteCheckpointStore(db_path=settings.state_root / "checkpoints.db")

    if backend == "json":
        from prospector.checkpoints.json_store import JsonCheckpointStore
        return JsonCheckpointStore(root=settings.state_root / "checkpoints")

    raise ValueError(f"Unsupported checkpoint backend: {backend!r}")
