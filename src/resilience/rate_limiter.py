# src/resilience/rate_limiter.py - v1
"""Per-provider token-bucket admission control.

All concurrent items share one bucket per provider, which is what keeps a
batch inside each provider's QPS contract regardless of worker count.
Buckets refill continuously. Waiting for a token is an ``asyncio.sleep`` and
is cancelled with the task that waits.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping

from prospector.config.settings import RateLimitConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AcquireResult:
    """Outcome of an admission request.

    ``wait_s`` is the time already waited when ``acquired``; otherwise the
    time the caller should wait before asking again.
    """

    acquired: bool
    wait_s: float = 0.0


class TokenBucket:
    """A single refillable bucket, safe to share across tasks and threads."""

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1 or refill_rate <= 0:
            raise ValueError("capacity must be >= 1 and refill_rate > 0")
        self._capacity = float(capacity)
        self._refill_rate = float(refill_rate)
        self._clock = clock
        self._tokens = float(capacity)
        self._last_refill = clock()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def refill_rate(self) -> float:
        return self._refill_rate

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_rate)
        self._last_refill = now

    def try_acquire(self, tokens: float = 1.0) -> AcquireResult:
        """Take tokens now if available; otherwise report how long to wait."""
        if tokens > self._capacity:
            raise ValueError(f"request of {tokens} tokens exceeds capacity {self._capacity}")
        with self._lock:
            self._refill()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return AcquireResult(True, 0.0)
            return AcquireResult(False, (tokens - self._tokens) / self._refill_rate)

    async def acquire(self, tokens: float = 1.0, block: bool = True) -> AcquireResult:
        """Take tokens, sleeping until they refill when ``block`` is set."""
        waited = 0.0
        while True:
            result = self.try_acquire(tokens)
            if result.acquired:
                return AcquireResult(True, waited)
            if not block:
                return result
            await asyncio.sleep(result.wait_s)
            waited += result.wait_s

    def available(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def reset(self) -> None:
        with self._lock:
            self._tokens = self._capacity
            self._last_refill = self._clock()


class RateLimiter:
    """Lazily creates one bucket per provider from configuration."""

    def __init__(
        self,
        configs: Mapping[str, RateLimitConfig] | None = None,
        default: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._configs = dict(configs or {})
        self._default = default or RateLimitConfig()
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def bucket(self, provider: str) -> TokenBucket:
        with self._lock:
            bucket = self._buckets.get(provider)
            if bucket is None:
                config = self._configs.get(provider, self._default)
                bucket = TokenBucket(config.capacity, config.refill_rate, self._clock)
                self._buckets[provider] = bucket
            return bucket

    async def acquire(
        self, provider: str, tokens: float = 1.0, block: bool = True
    ) -> AcquireResult:
        result = await self.bucket(provider).acquire(tokens, block=block)
        if result.acquired and result.wait_s > 0:
            logger.debug("Rate limited on %s, waited %.2fs", provider, result.wait_s)
        return result

    def stats(self) -> dict[str, dict[str, float]]:
        with self._lock:
            buckets = dict(self._buckets)
        return {
            name: {
                "available": b.available(),
                "capacity": b.capacity,
                "refill_rate": b.refill_rate,
            }
            for name, b in buckets.items()
        }

    def reset(self) -> None:
        with self._lock:
            buckets = list(self._buckets.values())
        for bucket in buckets:
            bucket.reset()
