# src/resilience/circuit_breaker.py - v1
"""Per-provider circuit breakers.

    closed --(failure rate >= threshold over >= minimum_calls in window)--> open
    open --(cooldown elapsed)--> half_open
    half_open --(trial_calls successes)--> closed
    half_open --(any trial failure)--> open

While open, calls fail immediately with ``CircuitOpenError`` and the wrapped
function is never invoked. Half-open admits at most ``trial_calls`` calls at
a time; everything else is rejected as if open.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Mapping

from prospector.config.settings import CircuitBreakerConfig
from prospector.core.errors import CircuitOpenError

logger = logging.getLogger(__name__)

CircuitState = Literal["closed", "open", "half_open"]


@dataclass(frozen=True)
class CircuitStats:
    """Point-in-time view of one breaker."""

    name: str
    state: CircuitState
    calls_in_window: int
    failures_in_window: int
    failure_rate: float
    total_calls: int
    total_failures: int
    total_rejected: int
    retry_after_s: float


class CircuitBreaker:
    """Failure-rate tripwire for one provider. Thread-safe."""

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._name = name
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._state: CircuitState = "closed"
        self._window: deque[tuple[float, bool]] = deque()
        self._opened_at = 0.0
        self._trials_in_flight = 0
        self._trial_successes = 0
        self._total_calls = 0
        self._total_failures = 0
        self._total_rejected = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open(self._clock())
            return self._state

    async def execute(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``fn`` through the breaker.

        Raises:
            CircuitOpenError: Without calling ``fn`` when the circuit is open.
        """
        is_trial = self._admit()
        try:
            result = await fn()
        except asyncio.CancelledError:
            self._abandon(is_trial)
            raise
        except Exception:
            self.record_failure(is_trial)
            raise
        self.record_success(is_trial)
        return result

    def allow(self) -> bool:
        """Non-raising admission check. Consumes a trial slot when half-open."""
        try:
            self._admit()
        except CircuitOpenError:
            return False
        return True

    def _admit(self) -> bool:
        """Admit one call; return whether it is a half-open trial."""
        with self._lock:
            now = self._clock()
            self._maybe_half_open(now)
            if self._state == "closed":
                return False
            if self._state == "half_open" and self._trials_in_flight < self._config.trial_calls:
                self._trials_in_flight += 1
                return True
            self._total_rejected += 1
            retry_after = self._retry_after(now)
        raise CircuitOpenError(self._name, retry_after)

    def record_success(self, is_trial: bool = False) -> None:
        with self._lock:
            now = self._clock()
            self._total_calls += 1
            if is_trial:
                if self._state != "half_open":
                    return
                self._trials_in_flight = max(0, self._trials_in_flight - 1)
                self._trial_successes += 1
                if self._trial_successes >= self._config.trial_calls:
                    self._transition("closed", now)
                return
            if self._state == "closed":
                self._window.append((now, True))
                self._prune(now)

    def record_failure(self, is_trial: bool = False) -> None:
        with self._lock:
            now = self._clock()
            self._total_calls += 1
            self._total_failures += 1
            if is_trial:
                if self._state == "half_open":
                    self._transition("open", now)
                return
            if self._state != "closed":
                return
            self._window.append((now, False))
            self._prune(now)
            calls = len(self._window)
            failures = sum(1 for _, ok in self._window if not ok)
            if (
                calls >= self._config.minimum_calls
                and failures / calls >= self._config.failure_rate_threshold
            ):
                self._transition("open", now)

    def _abandon(self, is_trial: bool) -> None:
        if not is_trial:
            return
        with self._lock:
            if self._state == "half_open":
                self._trials_in_flight = max(0, self._trials_in_flight - 1)

    def retry_after_s(self) -> float:
        with self._lock:
            return self._retry_after(self._clock())

    def force_open(self) -> None:
        with self._lock:
            self._transition("open", self._clock())

    def reset(self) -> None:
        with self._lock:
            self._transition("closed", self._clock())
            self._total_calls = self._total_failures = self._total_rejected = 0

    def stats(self) -> CircuitStats:
        with self._lock:
            now = self._clock()
            self._maybe_half_open(now)
            self._prune(now)
            calls = len(self._window)
            failures = sum(1 for _, ok in self._window if not ok)
            return CircuitStats(
                name=self._name,
                state=self._state,
                calls_in_window=calls,
                failures_in_window=failures,
                failure_rate=failures / calls if calls else 0.0,
                total_calls=self._total_calls,
                total_failures=self._total_failures,
                total_rejected=self._total_rejected,
                retry_after_s=self._retry_after(now),
            )

    # --- internals, caller holds the lock ---

    def _maybe_half_open(self, now: float) -> None:
        if self._state == "open" and now - self._opened_at >= self._config.cooldown_s:
            self._transition("half_open", now)

    def _retry_after(self, now: float) -> float:
        if self._state != "open":
            return 0.0
        return max(0.0, self._opened_at + self._config.cooldown_s - now)

    def _prune(self, now: float) -> None:
        cutoff = now - self._config.window_s
        while self._window and self._window[0][0] < cutoff:
            self._window.popleft()

    def _transition(self, state: CircuitState, now: float) -> None:
        previous = self._state
        self._state = state
        self._trials_in_flight = 0
        self._trial_successes = 0
        if state == "open":
            self._opened_at = now
        if state == "closed":
            self._window.clear()
        if previous != state:
            logger.warning("Circuit %s: %s -> %s", self._name, previous, state)


class CircuitBreakerRegistry:
    """One breaker per provider, created on first use from configuration."""

    def __init__(
        self,
        configs: Mapping[str, CircuitBreakerConfig] | None = None,
        default: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._configs = dict(configs or {})
        self._default = default or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, provider: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(provider)
            if breaker is None:
                config = self._configs.get(provider, self._default)
                breaker = CircuitBreaker(provider, config, self._clock)
                self._breakers[provider] = breaker
            return breaker

    async def execute(self, provider: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        return await self.get(provider).execute(fn)

    def stats(self) -> dict[str, CircuitStats]:
        with self._lock:
            breakers = dict(self._breakers)
        return {name: b.stats() for name, b in breakers.items()}

    def open_circuits(self) -> list[str]:
        return [name for name, s in self.stats().items() if s.state == "open"]

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()
