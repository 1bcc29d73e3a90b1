# src/pipeline/state.py - v1
"""Batch and item state models for the research pipeline.

Batch:  pending -> running -> completed | failed | cancelled
Item:   queued -> running -> done | error | skipped
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from prospector.core.models import BatchItem
from prospector.tracking.models import UsageSummary
from prospector.triangulation.models import TriangulatedResult

BatchStatus = Literal["pending", "running", "completed", "failed", "cancelled"]
ItemStatus = Literal["queued", "running", "done", "error", "skipped"]


class StepError(BaseModel):
    """A recorded step failure for one item."""

    step: str
    category: str
    message: str
    attempts: int = 0
    required: bool = True


class ItemState(BaseModel):
    """Mutable per-item progress, owned by the orchestrator."""

    item: BatchItem
    status: ItemStatus = "queued"
    current_step: str | None = None
    result: TriangulatedResult | None = None
    errors: list[StepError] = Field(default_factory=list)
    resumed_steps: list[str] = Field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def item_id(self) -> str:
        return self.item.id


class Progress(BaseModel):
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0
    percentage: int = 0


class BatchResult(BaseModel):
    """Summary returned by ``ResearchPipeline.start``."""

    batch_id: str
    status: BatchStatus
    items: dict[str, ItemState] = Field(default_factory=dict)
    succeeded: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    dead_letters: list[str] = Field(default_factory=list)
    persistence_failures: list[str] = Field(default_factory=list)
    usage: UsageSummary = Field(default_factory=UsageSummary)
    duration_ms: int = 0
