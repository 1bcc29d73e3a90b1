# src/ledger/models.py - v1
"""Idempotency ledger data models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel

LedgerStatus = Literal["processing", "completed", "expired"]


class IdempotencyRecord(BaseModel):
    """One ledger row. Times are epoch seconds from the ledger's clock."""

    key: str
    item_id: str
    step_name: str
    status: LedgerStatus
    result: Any = None
    created_at: float
    expires_at: float
    completed_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class LedgerCheck(BaseModel):
    """Outcome of a ledger lookup."""

    exists: bool
    status: LedgerStatus | None = None
    result: Any = None
    can_process: bool
