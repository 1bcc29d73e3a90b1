# src/pipeline/events.py - v1
"""Progress events emitted to the surrounding application."""

from __future__ import annotations

import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Literal

from pydantic import BaseModel, Field

from prospector.pipeline.state import Progress
from prospector.triangulation.models import TriangulatedResult

logger = logging.getLogger(__name__)

EventType = Literal[
    "item_started",
    "item_completed",
    "item_failed",
    "item_skipped",
    "batch_completed",
    "batch_failed",
    "batch_cancelled",
]


class ProgressEvent(BaseModel):
    type: EventType
    batch_id: str
    item_id: str | None = None
    result: TriangulatedResult | None = None
    errors: list[Any] = Field(default_factory=list)
    message: str | None = None
    progress: Progress
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


ProgressCallback = Callable[[ProgressEvent], "Awaitable[None] | None"]


async def emit(callback: ProgressCallback | None, event: ProgressEvent) -> None:
    """Deliver an event. A failing callback is logged and never breaks the batch."""
    if callback is None:
        return
    try:
        outcome = callback(event)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception:
        logger.exception("Progress callback failed for %s event", event.type)
