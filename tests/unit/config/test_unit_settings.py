# tests/unit/config/test_unit_settings.py - v1
"""Tests for config/settings.py."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from prospector.config.settings import (
    CircuitBreakerConfig,
    ConfigurationError,
    RateLimitConfig,
    Settings,
    load_settings,
)


class TestDefaults:
    def test_orchestration_defaults(self):
        s = Settings()
        assert s.max_concurrent_items == 3
        assert s.step_timeout_s == 30.0
        assert s.retry_max_attempts == 3

    def test_idempotency_ttls(self):
        s = Settings()
        assert s.idempotency_processing_ttl_s == 300
        assert s.idempotency_completed_ttl_s == 86_400

    def test_backends_default_to_memory(self):
        s = Settings()
        assert s.ledger_backend == "memory"
        assert s.checkpoint_backend == "memory"

    def test_known_provider_rate_limits(self):
        s = Settings()
        assert s.rate_limits["perplexity"].capacity == 10
        assert s.rate_limits["sec_edgar"].refill_rate == 10.0


class TestHelpers:
    def test_rate_limit_falls_back_to_default(self):
        s = Settings(default_rate_limit=RateLimitConfig(capacity=7, refill_rate=2))
        assert s.rate_limit_for("unlisted").capacity == 7
        assert s.rate_limit_for("perplexity").capacity == 10

    def test_circuit_breaker_falls_back_to_default(self):
        s = Settings(circuit_breakers={})
        assert s.circuit_breaker_for("anything") == s.default_circuit_breaker

    def test_step_timeout_override(self):
        s = Settings(step_timeouts={"sec": 5.0})
        assert s.timeout_for("sec") == 5.0
        assert s.timeout_for("other") == 30.0


class TestValidation:
    def test_zero_concurrency_rejected(self):
        with pytest.raises(ValidationError):
            Settings(max_concurrent_items=0)

    def test_jitter_ratio_bounds(self):
        with pytest.raises(ValidationError):
            Settings(retry_jitter_ratio=1.5)

    def test_redis_requires_url(self):
        with pytest.raises(ConfigurationError, match="REDIS_URL"):
            Settings(ledger_backend="redis")

    def test_base_delay_above_cap(self):
        with pytest.raises(ConfigurationError, match="RETRY_BASE_DELAY_S"):
            Settings(retry_base_delay_s=60, retry_max_delay_s=30)

    def test_non_positive_ttl(self):
        with pytest.raises(ConfigurationError, match="IDEMPOTENCY_PROCESSING_TTL_S"):
            Settings(idempotency_processing_ttl_s=0)

    def test_bad_breaker_threshold(self):
        with pytest.raises(ConfigurationError, match="failure_rate_threshold"):
            Settings(circuit_breakers={"x": CircuitBreakerConfig(failure_rate_threshold=0)})

    def test_bad_rate_limit(self):
        with pytest.raises(ConfigurationError, match="rate limit x"):
            Settings(rate_limits={"x": RateLimitConfig(capacity=0.5)})

    def test_errors_are_collected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            Settings(ledger_backend="redis", step_timeout_s=0)
        assert "REDIS_URL" in str(exc_info.value)
        assert "STEP_TIMEOUT_S" in str(exc_info.value)


class TestLoadSettings:
    def test_overrides(self, tmp_path: Path):
        s = load_settings(state_root=tmp_path, ledger_backend="sqlite")
        assert s.state_root == tmp_path
        assert s.ledger_backend == "sqlite"

    def test_env_vars(self, monkeypatch):
        monkeypatch.setenv("MAX_CONCURRENT_ITEMS", "7")
        monkeypatch.setenv("STEP_TIMEOUTS", '{"sec": 12}')
        s = load_settings()
        assert s.max_concurrent_items == 7
        assert s.timeout_for("sec") == 12
