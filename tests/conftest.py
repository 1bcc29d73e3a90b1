# tests/conftest.py - v1
"""Shared test fixtures for all unit and integration tests.

Provides a controllable clock, sample prospects and provider results, fast
settings, and in-memory ledger/checkpoint/resilience wiring.
No external dependencies: all I/O is in memory or under tmp_path.
"""

from __future__ import annotations

import pytest

from prospector.checkpoints.manager import CheckpointManager
from prospector.checkpoints.memory_store import MemoryCheckpointStore
from prospector.config.settings import CircuitBreakerConfig, RateLimitConfig, Settings
from prospector.core.models import BatchItem, ProspectInput, ProviderResult, SourceCitation
from prospector.ledger.ledger import IdempotencyLedger
from prospector.ledger.memory_store import MemoryLedgerStore
from prospector.logging.context import clear_context
from prospector.resilience.registry import ResilienceRegistry


class FakeClock:
    """Manually advanced clock, usable wherever a ``clock`` callable is accepted."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# === FIXTURES: Time and context ===


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _reset_log_context():
    clear_context()
    yield
    clear_context()


# === FIXTURES: Sample data ===


@pytest.fixture
def prospect() -> ProspectInput:
    return ProspectInput(
        name="Jane Donor",
        address="12 Elm St",
        city="Springfield",
        state="IL",
        zip_code="62701",
        employer="Acme Corp",
    )


@pytest.fixture
def batch_items() -> list[BatchItem]:
    names = ["Jane Donor", "John Giver", "Ada Patron"]
    return [
        BatchItem(id=f"item-{i + 1}", prospect=ProspectInput(name=name))
        for i, name in enumerate(names)
    ]


@pytest.fixture
def provider_result() -> ProviderResult:
    return ProviderResult(
        provider="perplexity",
        text="Jane Donor owns a home valued at $1.2M and is CEO of Acme Corp.",
        sources=[
            SourceCitation(name="Zillow", url="https://www.zillow.com/homes/12-elm"),
        ],
        tokens_estimate=120,
        duration_ms=800,
    )


# === FIXTURES: Wiring ===


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with tiny backoff and generous limits so tests run instantly."""
    return Settings(
        max_concurrent_items=3,
        step_timeout_s=5.0,
        retry_max_attempts=3,
        retry_base_delay_s=0.001,
        retry_max_delay_s=0.01,
        retry_jitter_ratio=0.0,
        contention_poll_attempts=2,
        contention_poll_interval_s=0.01,
        default_rate_limit=RateLimitConfig(capacity=1000, refill_rate=1000),
        rate_limits={},
        default_circuit_breaker=CircuitBreakerConfig(minimum_calls=50),
        circuit_breakers={},
    )


@pytest.fixture
def ledger() -> IdempotencyLedger:
    return IdempotencyLedger(MemoryLedgerStore())


@pytest.fixture
def resilience(fast_settings: Settings) -> ResilienceRegistry:
    return ResilienceRegistry.from_settings(fast_settings)


@pytest.fixture
def make_checkpoints():
    """Factory for an in-memory checkpoint manager over a step list."""

    def _make(steps: list[str], **kwargs) -> CheckpointManager:
        return CheckpointManager(MemoryCheckpointStore(), steps, **kwargs)

    return _make
