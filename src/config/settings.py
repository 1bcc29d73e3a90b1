# src/config/settings.py - v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for pipeline tuning: concurrency, per-provider rate
limits and circuit breakers, idempotency TTLs, retry backoff, state backends
and logging. Nested maps (``RATE_LIMITS``, ``CIRCUIT_BREAKERS``,
``STEP_TIMEOUTS``) are read from the environment as JSON.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class RateLimitConfig(BaseModel):
    """Token bucket shape for one provider."""

    capacity: float = 5.0
    refill_rate: float = 1.0  # tokens per second


class CircuitBreakerConfig(BaseModel):
    """Failure-rate tripwire tuning for one provider."""

    window_s: float = 60.0
    failure_rate_threshold: float = 0.5
    minimum_calls: int = 5
    cooldown_s: float = 60.0
    trial_calls: int = 2


def _default_rate_limits() -> dict[str, RateLimitConfig]:
    return {
        "perplexity": RateLimitConfig(capacity=10, refill_rate=2 / 12),
        "linkup": RateLimitConfig(capacity=5, refill_rate=1 / 12),
        "grok": RateLimitConfig(capacity=30, refill_rate=5 / 10),
        "openrouter": RateLimitConfig(capacity=30, refill_rate=5 / 10),
        "sec_edgar": RateLimitConfig(capacity=10, refill_rate=10.0),
        "fec": RateLimitConfig(capacity=5, refill_rate=5.0),
        "propublica": RateLimitConfig(capacity=2, refill_rate=2.0),
    }


def _default_circuit_breakers() -> dict[str, CircuitBreakerConfig]:
    return {
        "perplexity": CircuitBreakerConfig(minimum_calls=5, cooldown_s=60, trial_calls=2),
        "openrouter": CircuitBreakerConfig(minimum_calls=3, cooldown_s=45, trial_calls=2),
        "linkup": CircuitBreakerConfig(minimum_calls=3, cooldown_s=30, trial_calls=2),
        "grok": CircuitBreakerConfig(minimum_calls=3, cooldown_s=30, trial_calls=2),
        "sec_edgar": CircuitBreakerConfig(minimum_calls=5, cooldown_s=120, trial_calls=1),
        "fec": CircuitBreakerConfig(minimum_calls=5, cooldown_s=120, trial_calls=1),
        "propublica": CircuitBreakerConfig(minimum_calls=5, cooldown_s=120, trial_calls=1),
    }


class Settings(BaseSettings):
    """Pipeline settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Orchestration ===
    max_concurrent_items: int = 3
    step_timeout_s: float = 30.0
    step_timeouts: dict[str, float] = {}
    contention_poll_attempts: int = 3
    contention_poll_interval_s: float = 2.0

    # === Rate limiting ===
    default_rate_limit: RateLimitConfig = RateLimitConfig()
    rate_limits: dict[str, RateLimitConfig] = _default_rate_limits()

    # === Circuit breakers ===
    default_circuit_breaker: CircuitBreakerConfig = CircuitBreakerConfig()
    circuit_breakers: dict[str, CircuitBreakerConfig] = _default_circuit_breakers()

    # === Idempotency ===
    idempotency_processing_ttl_s: float = 300.0
    idempotency_completed_ttl_s: float = 86_400.0

    # === Retry ===
    retry_max_attempts: int = 3
    retry_base_delay_s: float = 1.0
    retry_max_delay_s: float = 30.0
    retry_jitter_ratio: float = 0.25

    # === State backends ===
    ledger_backend: Literal["memory", "sqlite", "redis"] = "memory"
    checkpoint_backend: Literal["memory", "sqlite", "json"] = "memory"
    state_root: Path = Path("~/.prospector/state")
    redis_url: str = ""
    checkpoint_stale_s: float = 300.0

    # === Results ===
    persistence_queue_size: int = 100
    max_sources: int = 30
    numeric_tolerance: float = 0.2

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("max_concurrent_items", "retry_max_attempts", "persistence_queue_size")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("retry_jitter_ratio", "numeric_tolerance")
    @classmethod
    def validate_ratio(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("must be between 0 and 1")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.ledger_backend == "redis" and not self.redis_url:
            errors.append("LEDGER_BACKEND=redis requires REDIS_URL")

        if self.retry_base_delay_s > self.retry_max_delay_s:
            errors.append("RETRY_BASE_DELAY_S must be <= RETRY_MAX_DELAY_S")

        for name in (
            "idempotency_processing_ttl_s",
            "idempotency_completed_ttl_s",
            "step_timeout_s",
            "checkpoint_stale_s",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name.upper()} must be > 0")

        for step, timeout in self.step_timeouts.items():
            if timeout <= 0:
                errors.append(f"STEP_TIMEOUTS[{step}] must be > 0")

        for name, limit in self._all_rate_limits():
            if limit.capacity < 1 or limit.refill_rate <= 0:
                errors.append(
                    f"rate limit {name}: capacity must be >= 1 and refill_rate > 0"
                )

        for name, breaker in self._all_circuit_breakers():
            if not 0.0 < breaker.failure_rate_threshold <= 1.0:
                errors.append(f"circuit breaker {name}: failure_rate_threshold must be in (0, 1]")
            if breaker.trial_calls < 1:
                errors.append(f"circuit breaker {name}: trial_calls must be >= 1")
            if breaker.minimum_calls < 1:
                errors.append(f"circuit breaker {name}: minimum_calls must be >= 1")
            if breaker.window_s <= 0 or breaker.cooldown_s <= 0:
                errors.append(f"circuit breaker {name}: window_s and cooldown_s must be > 0")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    def _all_rate_limits(self) -> list[tuple[str, RateLimitConfig]]:
        return [("default", self.default_rate_limit), *self.rate_limits.items()]

    def _all_circuit_breakers(self) -> list[tuple[str, CircuitBreakerConfig]]:
        return [("default", self.default_circuit_breaker), *self.circuit_breakers.items()]

    def rate_limit_for(self, provider: str) -> RateLimitConfig:
        """Bucket config for a provider, falling back to the default."""
        return self.rate_limits.get(provider, self.default_rate_limit)

    def circuit_breaker_for(self, provider: str) -> CircuitBreakerConfig:
        """Breaker config for a provider, falling back to the default."""
        return self.circuit_breakers.get(provider, self.default_circuit_breaker)

    def timeout_for(self, step: str) -> float:
        """Hard timeout for a step's provider call."""
        return self.step_timeouts.get(step, self.step_timeout_s)


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-batch config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
