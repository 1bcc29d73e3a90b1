# src/resilience/registry.py - v1
"""The per-process set of rate limiters, breakers and retry policy.

Built once at startup and passed to the orchestrator, so two pipelines in
one process can share provider state (same registry) or stay isolated
(separate registries) without any module-level globals.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from prospector.config.settings import Settings
from prospector.resilience.circuit_breaker import CircuitBreakerRegistry
from prospector.resilience.rate_limiter import RateLimiter
from prospector.resilience.retry import RetryPolicy


@dataclass
class ResilienceRegistry:
    rate_limiter: RateLimiter = field(default_factory=RateLimiter)
    breakers: CircuitBreakerRegistry = field(default_factory=CircuitBreakerRegistry)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_settings(
        cls, settings: Settings, clock: Callable[[], float] = time.monotonic
    ) -> ResilienceRegistry:
        return cls(
            rate_limiter=RateLimiter(
                settings.rate_limits, settings.default_rate_limit, clock=clock
            ),
            breakers=CircuitBreakerRegistry(
                settings.circuit_breakers, settings.default_circuit_breaker, clock=clock
            ),
            retry_policy=RetryPolicy(
                max_attempts=settings.retry_max_attempts,
                base_delay_s=settings.retry_base_delay_s,
                max_delay_s=settings.retry_max_delay_s,
                jitter_ratio=settings.retry_jitter_ratio,
            ),
        )
