# src/pipeline/executor.py - v1
"""Run one step for one item behind idempotency, rate limiting, breaker and retry.

Order of guards for a single invocation:

    ledger check (cached result -> return)
      -> circuit pre-check (open -> fail fast, no token spent)
      -> rate-limiter token
      -> idempotency lock (held elsewhere -> ProcessingElsewhereError)
      -> checkpoint begin (sequencing)
      -> retry( breaker( timeout( step.run ) ) )
      -> ledger complete + checkpoint succeed

On unrecoverable failure the lock is released so the key is immediately
retryable, and a failed checkpoint is written.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from prospector.checkpoints.manager import CheckpointManager
from prospector.config.settings import Settings
from prospector.core.errors import (
    CircuitOpenError,
    ProcessingElsewhereError,
    ProviderError,
    RetryExhaustedError,
    SequencingError,
    StepFailedError,
)
from prospector.core.models import ProviderResult
from prospector.ledger.ledger import IdempotencyLedger
from prospector.logging.context import set_step_context
from prospector.pipeline.steps import StepContext, StepDefinition
from prospector.resilience.registry import ResilienceRegistry
from prospector.resilience.retry import execute_with_retry
from prospector.tracking.usage import UsageTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepOutcome:
    """Result of one executed (or cache-served) step.

    ``output`` is always the JSON form that was cached in the ledger and
    written to the checkpoint, so fresh and cached outcomes look the same.
    """

    step: str
    output: Any
    from_cache: bool = False
    attempts: int = 0
    duration_ms: int = 0
    tokens_used: int = 0


def failure_category(error: RetryExhaustedError) -> str:
    """Collapse a retry classification into the step failure category."""
    if error.category == "circuit_open":
        return "circuit_open"
    return "transient" if error.retryable else "permanent"


def to_json(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


class StepExecutor:
    """Composes ledger, checkpoints and resilience around one step call."""

    def __init__(
        self,
        ledger: IdempotencyLedger,
        checkpoints: CheckpointManager,
        resilience: ResilienceRegistry,
        settings: Settings | None = None,
        usage: UsageTracker | None = None,
    ) -> None:
        self._ledger = ledger
        self._checkpoints = checkpoints
        self._resilience = resilience
        self._settings = settings or Settings()
        self._usage = usage or UsageTracker()

    @property
    def usage(self) -> UsageTracker:
        return self._usage

    async def execute(self, step: StepDefinition, context: StepContext) -> StepOutcome:
        """Run ``step`` for ``context.item_id``.

        Raises:
            ProcessingElsewhereError: Another worker holds the lock for this input.
            SequencingError: An earlier step of the item is not complete.
            StepFailedError: The step failed unrecoverably; the failure is
                already checkpointed and the lock released.
        """
        item_id = context.item_id
        set_step_context(step.name, step.provider)
        key = self._ledger.key_for_input(item_id, step.name, step.input_for(context))

        check = await self._ledger.check(key)
        if check.status == "completed":
            return await self._from_cache(step, item_id, check.result)
        if not check.can_process:
            raise ProcessingElsewhereError(item_id, step.name, key)

        breaker = self._resilience.breakers.get(step.provider)
        if breaker.state == "open":
            error = CircuitOpenError(step.provider, breaker.retry_after_s())
            logger.warning("Skipping call for %s: %s", step.name, error)
            await self._checkpoints.fail(item_id, step.name, str(error))
            self._usage.record(item_id, step.name, step.provider, "failed")
            raise StepFailedError(item_id, step.name, 0, "circuit_open", error)

        await self._resilience.rate_limiter.acquire(step.provider)

        if not await self._ledger.try_acquire(key, item_id, step.name):
            raise ProcessingElsewhereError(item_id, step.name, key)

        try:
            begun = await self._checkpoints.begin(item_id, step.name)
        except asyncio.CancelledError:
            logger.info("Step %s cancelled for %s before it began", step.name, item_id)
            await self._ledger.release(key)
            raise
        if not begun:
            await self._ledger.release(key)
            records = await self._checkpoints.get(item_id)
            prior = records[: [r.step_name for r in records].index(step.name)]
            blocking = next((r.step_name for r in prior if not r.is_complete), None)
            raise SequencingError(item_id, step.name, blocking)

        return await self._run_locked(step, context, key)

    async def _run_locked(
        self, step: StepDefinition, context: StepContext, key: str
    ) -> StepOutcome:
        item_id = context.item_id
        timeout = step.timeout_s or self._settings.timeout_for(step.name)
        breaker = self._resilience.breakers.get(step.provider)
        retries = 0

        async def attempt() -> Any:
            result = await asyncio.wait_for(step.run(context), timeout)
            if isinstance(result, ProviderResult) and not result.ok:
                raise ProviderError(result.error or "provider reported an error")
            return result

        def on_retry(attempt_no: int, error: BaseException, delay: float) -> None:
            nonlocal retries
            retries = attempt_no

        started = time.monotonic()
        try:
            result = await execute_with_retry(
                lambda: breaker.execute(attempt),
                self._resilience.retry_policy,
                name=f"{step.name}[{item_id}]",
                on_retry=on_retry,
            )
        except RetryExhaustedError as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            category = failure_category(e)
            await self._ledger.release(key)
            await self._checkpoints.fail(item_id, step.name, str(e.last_error))
            self._usage.record(
                item_id, step.name, step.provider, "failed",
                attempts=e.attempts, latency_ms=duration_ms,
            )
            logger.error(
                "Step %s failed for %s after %d attempt(s) (%s): %s",
                step.name, item_id, e.attempts, category, e.last_error,
            )
            raise StepFailedError(item_id, step.name, e.attempts, category, e.last_error) from e
        except asyncio.CancelledError:
            logger.info("Step %s cancelled for %s", step.name, item_id)
            await self._ledger.release(key)
            await self._checkpoints.fail(item_id, step.name, "cancelled")
            raise

        duration_ms = int((time.monotonic() - started) * 1000)
        attempts = retries + 1
        tokens = result.tokens_estimate if isinstance(result, ProviderResult) else 0
        output = to_json(result)

        await self._ledger.complete(key, output, item_id=item_id, step_name=step.name)
        await self._checkpoints.succeed(
            item_id, step.name, output, tokens_used=tokens, duration_ms=duration_ms
        )
        self._usage.record(
            item_id, step.name, step.provider, "success",
            attempts=attempts, tokens_estimate=tokens, latency_ms=duration_ms,
        )
        logger.info(
            "Step %s succeeded for %s in %dms (%d attempt(s))",
            step.name, item_id, duration_ms, attempts,
        )
        return StepOutcome(
            step=step.name,
            output=output,
            attempts=attempts,
            duration_ms=duration_ms,
            tokens_used=tokens,
        )

    async def _from_cache(self, step: StepDefinition, item_id: str, output: Any) -> StepOutcome:
        logger.info("Step %s for %s served from idempotency ledger", step.name, item_id)
        await self._checkpoints.succeed(item_id, step.name, output)
        self._usage.record(item_id, step.name, step.provider, "cached")
        return StepOutcome(step=step.name, output=output, from_cache=True)
