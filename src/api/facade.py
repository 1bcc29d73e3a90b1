# src/api/facade.py - v1
"""Public API facade: one call to research a batch of prospects.

Usage:
    from prospector.api.facade import research_batch
    from prospector.pipeline.steps import provider_step

    steps = [
        provider_step("perplexity", "perplexity", perplexity_search),
        provider_step("linkup", "linkup", linkup_search, required=False),
    ]
    result = await research_batch(items, steps)
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterable, Sequence

from prospector.checkpoints.checkpoint_factory import create_checkpoint_store
from prospector.checkpoints.manager import CheckpointManager
from prospector.config.settings import Settings
from prospector.core.errors import PipelineConfigurationError
from prospector.core.models import BatchItem
from prospector.ledger.ledger import IdempotencyLedger
from prospector.ledger.ledger_factory import create_ledger_store
from prospector.pipeline.dead_letter import DeadLetterSet
from prospector.logging.context import set_batch_context
from prospector.pipeline.events import ProgressCallback, ProgressEvent, emit
from prospector.pipeline.orchestrator import ResearchPipeline
from prospector.pipeline.state import BatchResult, Progress
from prospector.pipeline.steps import StepDefinition
from prospector.pipeline.writeback import PersistFn, ResultWriter
from prospector.resilience.registry import ResilienceRegistry

logger = logging.getLogger(__name__)


def build_ledger(settings: Settings) -> IdempotencyLedger:
    return IdempotencyLedger(
        create_ledger_store(settings),
        processing_ttl_s=settings.idempotency_processing_ttl_s,
        completed_ttl_s=settings.idempotency_completed_ttl_s,
    )


def build_checkpoints(settings: Settings, step_names: Sequence[str]) -> CheckpointManager:
    return CheckpointManager(
        create_checkpoint_store(settings),
        step_names,
        stale_after_s=settings.checkpoint_stale_s,
    )


def build_pipeline(
    steps: Sequence[StepDefinition],
    settings: Settings | None = None,
    resilience: ResilienceRegistry | None = None,
    on_progress: ProgressCallback | None = None,
    persist: PersistFn | None = None,
    dead_letters: DeadLetterSet | None = None,
    batch_id: str | None = None,
    provider_priority: Sequence[str] | None = None,
) -> ResearchPipeline:
    """Wire a pipeline from settings.

    Pass the same ``resilience`` registry to several pipelines to have them
    share provider rate limits and circuit breakers.
    """
    settings = settings or Settings()
    try:
        checkpoints = build_checkpoints(settings, [s.name for s in steps])
    except ValueError as e:
        raise PipelineConfigurationError(str(e)) from e
    writer = None
    if persist is not None:
        writer = ResultWriter(persist, max_queue=settings.persistence_queue_size)
    return ResearchPipeline(
        steps=steps,
        ledger=build_ledger(settings),
        checkpoints=checkpoints,
        resilience=resilience or ResilienceRegistry.from_settings(settings),
        settings=settings,
        on_progress=on_progress,
        writer=writer,
        dead_letters=dead_letters,
        batch_id=batch_id,
        provider_priority=provider_priority,
    )


async def research_batch(
    items: Iterable[BatchItem],
    steps: Sequence[StepDefinition],
    settings: Settings | None = None,
    on_progress: ProgressCallback | None = None,
    persist: PersistFn | None = None,
    **kwargs,
) -> BatchResult:
    """Research every item and return the batch summary.

    Args:
        items: Prospects to research, each with a caller-owned id.
        steps: Ordered step list; usually built with ``provider_step``.
        settings: Global settings. Loaded from .env if None.
        on_progress: Receives item and batch progress events.
        persist: Called with ``(item_id, result_json)`` for each finished item.
        **kwargs: Forwarded to ``build_pipeline``.

    Raises:
        PipelineConfigurationError: If the step list is unusable. A
            ``batch_failed`` event is emitted first.
    """
    items = list(items)
    batch_id = kwargs.pop("batch_id", None) or uuid.uuid4().hex[:12]
    try:
        pipeline = build_pipeline(
            steps, settings=settings, on_progress=on_progress, persist=persist,
            batch_id=batch_id, **kwargs,
        )
    except PipelineConfigurationError as e:
        set_batch_context(batch_id)
        logger.error("Batch %s failed before start: %s", batch_id, e)
        await emit(
            on_progress,
            ProgressEvent(
                type="batch_failed",
                batch_id=batch_id,
                message=str(e),
                progress=Progress(total=len(items)),
            ),
        )
        raise
    pipeline.add_items(items)
    try:
        return await pipeline.start()
    finally:
        pipeline.close()
