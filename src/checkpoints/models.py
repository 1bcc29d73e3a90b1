# src/checkpoints/models.py - v1
"""Checkpoint data models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel

StepStatus = Literal["pending", "running", "succeeded", "failed", "skipped"]

# Statuses that let the next step in the sequence begin.
COMPLETE_STATUSES: frozenset[str] = frozenset({"succeeded", "skipped"})


class CheckpointRecord(BaseModel):
    """Progress of one step for one item. Identity is (item_id, step_name).

    ``version`` increases on every write and is what conditional updates
    compare against.
    """

    item_id: str
    step_name: str
    position: int
    status: StepStatus = "pending"
    output: Any = None
    error: str | None = None
    reason: str | None = None
    attempts: int = 0
    tokens_used: int = 0
    duration_ms: int = 0
    version: int = 0
    created_at: float | None = None
    updated_at: float | None = None
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def is_complete(self) -> bool:
        return self.status in COMPLETE_STATUSES


class CompletionStatus(BaseModel):
    """Per-status counts for one item's step list."""

    item_id: str
    total: int
    pending: int = 0
    running: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    next_step: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.next_step is None
