# src/tracking/usage.py - v1
"""Per-provider usage accounting.

Makes duplicate paid calls observable: every executed step is recorded with
its attempt count and token estimate, and every idempotency cache hit is
recorded as a call that cost nothing.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime, timezone

from prospector.tracking.models import ProviderCallRecord, ProviderStats, UsageSummary


class UsageTracker:
    """Collects call records in memory. Safe to share across workers."""

    def __init__(self) -> None:
        self._records: list[ProviderCallRecord] = []
        self._lock = threading.Lock()

    def record(
        self,
        item_id: str,
        step: str,
        provider: str,
        status: str,
        attempts: int = 0,
        tokens_estimate: int = 0,
        latency_ms: int = 0,
    ) -> ProviderCallRecord:
        rec = ProviderCallRecord(
            timestamp=datetime.now(timezone.utc),
            item_id=item_id,
            step=step,
            provider=provider,
            status=status,
            attempts=attempts,
            tokens_estimate=tokens_estimate,
            latency_ms=latency_ms,
        )
        with self._lock:
            self._records.append(rec)
        return rec

    @property
    def records(self) -> list[ProviderCallRecord]:
        with self._lock:
            return list(self._records)

    def provider_calls(self, provider: str) -> int:
        """Network-reaching attempts made against a provider."""
        return sum(r.attempts for r in self.records if r.provider == provider)

    def summary(self) -> UsageSummary:
        return summarize(self.records)


def summarize(records: list[ProviderCallRecord]) -> UsageSummary:
    """Aggregate call records into per-provider statistics."""
    grouped: dict[str, list[ProviderCallRecord]] = defaultdict(list)
    for rec in records:
        grouped[rec.provider].append(rec)

    providers: dict[str, ProviderStats] = {}
    for provider, recs in grouped.items():
        executed = [r for r in recs if r.status != "cached"]
        latencies = [r.latency_ms for r in executed]
        providers[provider] = ProviderStats(
            provider=provider,
            total_calls=sum(r.attempts for r in executed),
            cache_hits=sum(1 for r in recs if r.status == "cached"),
            successes=sum(1 for r in recs if r.status == "success"),
            failures=sum(1 for r in recs if r.status == "failed"),
            retries=sum(max(0, r.attempts - 1) for r in executed),
            total_tokens=sum(r.tokens_estimate for r in executed),
            avg_latency_ms=sum(latencies) / len(latencies) if latencies else 0.0,
            max_latency_ms=max(latencies) if latencies else 0,
        )

    return UsageSummary(
        providers=providers,
        total_calls=sum(p.total_calls for p in providers.values()),
        total_cache_hits=sum(p.cache_hits for p in providers.values()),
        total_tokens=sum(p.total_tokens for p in providers.values()),
    )
