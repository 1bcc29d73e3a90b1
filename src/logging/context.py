# src/logging/context.py - v1
"""Contextual logging support: attach batch_id, item_id, step, provider to log records.

asyncio tasks copy the current context when they are created, so a value set
inside one item's worker task never leaks into a sibling worker.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

_batch_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "batch_id", default=None
)
_item_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "item_id", default=None
)
_step: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "step", default=None
)
_provider: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "provider", default=None
)


@dataclass
class LogContext:
    """Snapshot of current logging context."""

    batch_id: str | None = None
    item_id: str | None = None
    step: str | None = None
    provider: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        batch_id=_batch_id.get(),
        item_id=_item_id.get(),
        step=_step.get(),
        provider=_provider.get(),
    )


def set_batch_context(batch_id: str) -> None:
    """Set batch-level context (called once per batch run)."""
    _batch_id.set(batch_id)


def set_item_context(item_id: str | None) -> None:
    """Set item-level context and reset step context (called per worker item)."""
    _item_id.set(item_id)
    _step.set(None)
    _provider.set(None)


def set_step_context(step: str | None, provider: str | None = None) -> None:
    """Set step-level context (called per step execution)."""
    _step.set(step)
    _provider.set(provider)


def clear_context() -> None:
    """Reset all context variables."""
    _batch_id.set(None)
    _item_id.set(None)
    _step.set(None)
    _provider.set(None)
