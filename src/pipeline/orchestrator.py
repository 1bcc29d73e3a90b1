# src/pipeline/orchestrator.py - v1
"""Research pipeline orchestrator.

Drives a batch of items through a fixed, ordered step list:
  - items run concurrently on a bounded worker pool
  - steps within one item run strictly in order through the step executor
  - already-succeeded steps are reused from checkpoints on resume
  - provider outputs are triangulated into one record per item
  - results go to a best-effort writer; unrecoverable items to the dead-letter set

One item's failure never aborts the batch. Batch ``failed`` is reserved for
configuration faults detected before any item starts.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Iterable, Sequence

from prospector.checkpoints.manager import CheckpointManager
from prospector.config.settings import Settings
from prospector.core.errors import (
    PipelineConfigurationError,
    ProcessingElsewhereError,
    SequencingError,
    StepFailedError,
)
from prospector.core.models import BatchItem, ProviderResult
from prospector.ledger.ledger import IdempotencyLedger
from prospector.logging.context import set_batch_context, set_item_context
from prospector.pipeline.dead_letter import DeadLetterSet
from prospector.pipeline.events import ProgressCallback, ProgressEvent, emit
from prospector.pipeline.executor import StepExecutor, StepOutcome
from prospector.pipeline.state import (
    BatchResult,
    BatchStatus,
    ItemState,
    Progress,
    StepError,
)
from prospector.pipeline.steps import StepContext, StepDefinition, coerce_provider_result
from prospector.pipeline.writeback import ResultWriter
from prospector.resilience.registry import ResilienceRegistry
from prospector.tracking.usage import UsageTracker
from prospector.triangulation.engine import triangulate

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ResearchPipeline:
    """Batch state machine: pending -> running -> completed | failed | cancelled.

    Args:
        steps: Ordered step list; names must match the checkpoint manager's.
        ledger: Idempotency ledger shared by all workers.
        checkpoints: Checkpoint manager configured with the same step names.
        resilience: Rate limiters, breakers and retry policy, shared by reference.
        settings: Concurrency, timeouts and triangulation tunables.
        on_progress: Sync or async callback receiving ``ProgressEvent``s.
        writer: Optional best-effort writer for finished item results.
        usage: Usage tracker; one is created when omitted.
        dead_letters: Dead-letter set; one is created when omitted.
        batch_id: Identifier used in logs and events; generated when omitted.
        provider_priority: Most trusted provider first; defaults to step order.
    """

    def __init__(
        self,
        steps: Sequence[StepDefinition],
        ledger: IdempotencyLedger,
        checkpoints: CheckpointManager,
        resilience: ResilienceRegistry,
        settings: Settings | None = None,
        on_progress: ProgressCallback | None = None,
        writer: ResultWriter | None = None,
        usage: UsageTracker | None = None,
        dead_letters: DeadLetterSet | None = None,
        batch_id: str | None = None,
        provider_priority: Sequence[str] | None = None,
    ) -> None:
        self._steps = list(steps)
        self._ledger = ledger
        self._checkpoints = checkpoints
        self._settings = settings or Settings()
        self._on_progress = on_progress
        self._writer = writer
        self._usage = usage or UsageTracker()
        self._dead_letters = dead_letters if dead_letters is not None else DeadLetterSet()
        self._batch_id = batch_id or uuid.uuid4().hex[:12]
        self._provider_priority = list(provider_priority or [])
        self._executor = StepExecutor(
            ledger, checkpoints, resilience, self._settings, self._usage
        )
        self._items: dict[str, ItemState] = {}
        self._status: BatchStatus = "pending"
        self._cancel_requested = False
        self._tasks: list[asyncio.Task] = []

    # === PUBLIC API ===

    @property
    def batch_id(self) -> str:
        return self._batch_id

    @property
    def status(self) -> BatchStatus:
        return self._status

    @property
    def dead_letters(self) -> DeadLetterSet:
        return self._dead_letters

    @property
    def usage(self) -> UsageTracker:
        return self._usage

    def add_items(self, items: Iterable[BatchItem]) -> int:
        """Queue items before ``start``. Duplicate ids are ignored. Returns count added."""
        if self._status != "pending":
            raise RuntimeError(f"Cannot add items to a {self._status} batch")
        added = 0
        for item in items:
            if item.id in self._items:
                logger.warning("Duplicate item %s ignored", item.id)
                continue
            self._items[item.id] = ItemState(item=item)
            added += 1
        return added

    async def start(self) -> BatchResult:
        """Run every queued item to a terminal state and summarize the batch.

        Raises:
            PipelineConfigurationError: Before any item starts, if the step
                list is unusable. The batch is marked ``failed``.
        """
        if self._status != "pending":
            raise RuntimeError(f"Batch {self._batch_id} already {self._status}")
        started = time.monotonic()
        set_batch_context(self._batch_id)

        try:
            self._validate()
        except PipelineConfigurationError as e:
            self._status = "failed"
            logger.error("Batch %s failed before start: %s", self._batch_id, e)
            await self._emit("batch_failed", message=str(e))
            raise

        self._status = "running"
        logger.info("Batch %s started: %d item(s)", self._batch_id, len(self._items))
        if self._writer is not None:
            await self._writer.start()

        queue: asyncio.Queue[ItemState] = asyncio.Queue()
        for state in self._items.values():
            queue.put_nowait(state)

        workers = min(self._settings.max_concurrent_items, len(self._items))
        self._tasks = [asyncio.create_task(self._worker(queue)) for _ in range(workers)]
        outcomes = await asyncio.gather(*self._tasks, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                logger.error("Worker crashed: %s", outcome)
        self._tasks = []

        for state in self._items.values():
            if state.status in ("queued", "running"):
                await self._mark_skipped(state, "batch cancelled")

        if self._writer is not None:
            await self._writer.close()

        self._status = "cancelled" if self._cancel_requested else "completed"
        result = self._build_result(started)
        logger.info(
            "Batch %s %s: %d done, %d error, %d skipped, %d dead-lettered",
            self._batch_id, self._status, len(result.succeeded), len(result.failed),
            len(result.skipped), len(result.dead_letters),
        )
        await self._emit(
            "batch_cancelled" if self._cancel_requested else "batch_completed"
        )
        return result

    def cancel(self) -> None:
        """Stop the batch. In-flight items abort at their next suspension point."""
        if self._status in ("completed", "failed", "cancelled"):
            return
        self._cancel_requested = True
        logger.warning("Batch %s cancellation requested", self._batch_id)
        for task in self._tasks:
            task.cancel()

    def get_progress(self) -> Progress:
        states = [s.status for s in self._items.values()]
        completed = states.count("done")
        failed = states.count("error")
        total = len(states)
        return Progress(
            completed=completed,
            failed=failed,
            skipped=states.count("skipped"),
            total=total,
            percentage=round((completed + failed) / total * 100) if total else 0,
        )

    def close(self) -> None:
        """Release ledger and checkpoint backend connections."""
        self._ledger.store.close()
        self._checkpoints.store.close()

    def requeue_dead_letters(self, item_ids: Iterable[str] | None = None) -> list[BatchItem]:
        """Resolve pending dead letters as retried; returns items for a new run."""
        return self._dead_letters.mark_for_retry(item_ids)

    # === WORKERS ===

    async def _worker(self, queue: asyncio.Queue[ItemState]) -> None:
        while not self._cancel_requested:
            try:
                state = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                await self._process_item(state)
            except asyncio.CancelledError:
                if not self._cancel_requested:
                    raise
                await self._mark_skipped(state, "cancelled")
                return
            except Exception as e:
                logger.exception("Unexpected error processing %s", state.item_id)
                error = StepError(
                    step=state.current_step or "",
                    category="unknown",
                    message=str(e),
                )
                await self._fail_item(state, error, dead_letter=True)

    async def _process_item(self, state: ItemState) -> None:
        item = state.item
        set_item_context(item.id)
        state.status = "running"
        state.started_at = _now()
        await self._emit("item_started", item_id=item.id)

        records = await self._checkpoints.get(item.id)
        outputs: dict[str, Any] = {}
        failed_results: list[ProviderResult] = []

        for step, record in zip(self._steps, records):
            state.current_step = step.name
            if record.status == "succeeded":
                outputs[step.name] = record.output
                state.resumed_steps.append(step.name)
                logger.info("Reusing checkpointed output of %s for %s", step.name, item.id)
                continue
            if record.status == "skipped":
                state.resumed_steps.append(step.name)
                continue

            context = StepContext(
                batch_id=self._batch_id,
                item_id=item.id,
                prospect=item.prospect,
                outputs=MappingProxyType(dict(outputs)),
            )
            try:
                outcome = await self._execute_with_contention(step, context)
            except StepFailedError as e:
                error = StepError(
                    step=step.name,
                    category=e.category,
                    message=str(e.last_error),
                    attempts=e.attempts,
                    required=step.required,
                )
                state.errors.append(error)
                if step.required:
                    await self._fail_item(state, error, dead_letter=True)
                    return
                await self._checkpoints.skip(item.id, step.name, f"optional step failed: {e.category}")
                if step.produces_provider_output:
                    failed_results.append(
                        ProviderResult(provider=step.provider, error=str(e.last_error))
                    )
                continue
            except ProcessingElsewhereError as e:
                error = StepError(step=step.name, category="contention", message=str(e))
                state.errors.append(error)
                await self._fail_item(state, error, dead_letter=False)
                return
            except SequencingError as e:
                error = StepError(step=step.name, category="sequencing", message=str(e))
                state.errors.append(error)
                await self._fail_item(state, error, dead_letter=True)
                return
            outputs[step.name] = outcome.output

        state.current_step = None
        state.result = triangulate(
            self._provider_results(outputs) + failed_results,
            provider_priority=self._provider_priority or [s.provider for s in self._steps],
            tolerance=self._settings.numeric_tolerance,
            max_sources=self._settings.max_sources,
        )
        state.status = "done"
        state.finished_at = _now()
        logger.info("Item %s done", item.id)
        await self._emit(
            "item_completed", item_id=item.id, result=state.result, errors=state.errors
        )
        if self._writer is not None:
            await self._writer.submit(item.id, state.result.model_dump(mode="json"))

    async def _execute_with_contention(
        self, step: StepDefinition, context: StepContext
    ) -> StepOutcome:
        """Execute, polling while another worker holds the step's lock."""
        polls = self._settings.contention_poll_attempts
        for poll in range(polls + 1):
            try:
                return await self._executor.execute(step, context)
            except ProcessingElsewhereError:
                if poll >= polls:
                    raise
                logger.info(
                    "Step %s for %s processing elsewhere, polling (%d/%d)",
                    step.name, context.item_id, poll + 1, polls,
                )
                await asyncio.sleep(self._settings.contention_poll_interval_s)
        raise AssertionError("unreachable")

    def _provider_results(self, outputs: dict[str, Any]) -> list[ProviderResult]:
        results = []
        for step in self._steps:
            if not step.produces_provider_output or step.name not in outputs:
                continue
            output = outputs[step.name]
            if output is None:
                continue
            try:
                results.append(coerce_provider_result(step.provider, output))
            except (TypeError, ValueError) as e:
                logger.warning("Output of %s is not a provider result: %s", step.name, e)
        return results

    # === ITEM TRANSITIONS ===

    async def _fail_item(self, state: ItemState, error: StepError, dead_letter: bool) -> None:
        state.status = "error"
        state.finished_at = _now()
        if dead_letter:
            snapshot = [
                r.model_dump(mode="json") for r in await self._checkpoints.get(state.item_id)
            ]
            self._dead_letters.add(
                item_id=state.item_id,
                batch_id=self._batch_id,
                prospect=state.item.prospect,
                category=error.category,
                last_error=error.message,
                step=error.step,
                attempts=error.attempts,
                checkpoints=snapshot,
            )
        await self._emit("item_failed", item_id=state.item_id, errors=state.errors)

    async def _mark_skipped(self, state: ItemState, reason: str) -> None:
        state.status = "skipped"
        state.finished_at = _now()
        logger.info("Item %s skipped: %s", state.item_id, reason)
        await self._emit("item_skipped", item_id=state.item_id, message=reason)

    # === HELPERS ===

    def _validate(self) -> None:
        if not self._steps:
            raise PipelineConfigurationError("step list is empty")
        names = [s.name for s in self._steps]
        if len(set(names)) != len(names):
            raise PipelineConfigurationError(f"duplicate step names: {names}")
        missing = [s.name for s in self._steps if not s.provider]
        if missing:
            raise PipelineConfigurationError(f"steps without a provider: {missing}")
        if names != self._checkpoints.steps:
            raise PipelineConfigurationError(
                f"step list {names} does not match checkpoint steps {self._checkpoints.steps}"
            )

    async def _emit(self, event_type: str, **fields: Any) -> None:
        event = ProgressEvent(
            type=event_type,
            batch_id=self._batch_id,
            progress=self.get_progress(),
            **fields,
        )
        await emit(self._on_progress, event)

    def _build_result(self, started: float) -> BatchResult:
        by_status: dict[str, list[str]] = {"done": [], "error": [], "skipped": []}
        for item_id, state in self._items.items():
            by_status.setdefault(state.status, []).append(item_id)
        return BatchResult(
            batch_id=self._batch_id,
            status=self._status,
            items=dict(self._items),
            succeeded=by_status["done"],
            failed=by_status["error"],
            skipped=by_status["skipped"],
            dead_letters=[
                e.item_id for e in self._dead_letters.pending() if e.batch_id == self._batch_id
            ],
            persistence_failures=self._writer.failures if self._writer is not None else [],
            usage=self._usage.summary(),
            duration_ms=int((time.monotonic() - started) * 1000),
        )
