# src/checkpoints/base_checkpoint_store.py - v1
"""Abstract checkpoint store interface.

Backends raise ``StoreUnavailableError`` on any storage fault; the
``CheckpointManager`` decides how to degrade.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from prospector.checkpoints.models import CheckpointRecord


class BaseCheckpointStore(ABC):
    """Unified interface for checkpoint storage backends."""

    @abstractmethod
    async def get(self, item_id: str, step_name: str) -> CheckpointRecord | None:
        """Fetch one step's record."""

    @abstractmethod
    async def list_for_item(self, item_id: str) -> list[CheckpointRecord]:
        """All stored records for an item, in any order."""

    @abstractmethod
    async def insert_if_absent(self, record: CheckpointRecord) -> bool:
        """Atomically create a record; False if one already exists."""

    @abstractmethod
    async def replace_if(self, expected_version: int, record: CheckpointRecord) -> bool:
        """Overwrite only if the stored version equals ``expected_version``."""

    @abstractmethod
    async def put(self, record: CheckpointRecord) -> None:
        """Unconditional upsert."""

    @abstractmethod
    async def delete_item(self, item_id: str) -> int:
        """Remove every record of an item; return the count."""

    @abstractmethod
    async def list_running(self, updated_before: float) -> list[CheckpointRecord]:
        """Records still ``running`` whose last write is older than the cutoff."""

    def close(self) -> None:
        """Release backend resources."""
