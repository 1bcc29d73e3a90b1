# src/tracking/models.py - v1
"""Tracking domain models: ProviderCallRecord, ProviderStats, UsageSummary."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class ProviderCallRecord(BaseModel):
    """One step execution against a provider, as seen by the step executor."""

    timestamp: datetime
    item_id: str
    step: str
    provider: str
    status: Literal["success", "failed", "cached"]
    attempts: int = 0
    tokens_estimate: int = 0
    latency_ms: int = 0


class ProviderStats(BaseModel):
    """Per-provider aggregated stats for one batch."""

    provider: str
    total_calls: int
    cache_hits: int = 0
    successes: int = 0
    failures: int = 0
    retries: int = 0
    total_tokens: int = 0
    avg_latency_ms: float = 0.0
    max_latency_ms: int = 0


class UsageSummary(BaseModel):
    """Consolidated usage across providers."""

    providers: dict[str, ProviderStats] = {}
    total_calls: int = 0
    total_cache_hits: int = 0
    total_tokens: int = 0
