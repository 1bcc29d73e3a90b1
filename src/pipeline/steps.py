# src/pipeline/steps.py - v1
"""Step definitions: what one research step runs and what its input is."""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping

from prospector.core.models import ProspectInput, ProviderResult

ProviderFn = Callable[[ProspectInput], "Awaitable[ProviderResult | dict] | ProviderResult | dict"]


@dataclass(frozen=True)
class StepContext:
    """What a step sees: the prospect and outputs of earlier steps of the item."""

    batch_id: str
    item_id: str
    prospect: ProspectInput
    outputs: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class StepDefinition:
    """One entry of the fixed, ordered step list.

    Attributes:
        name: Unique step name; part of the idempotency key.
        provider: Provider whose rate limit and circuit breaker guard the call.
        run: Coroutine function doing the work. Provider steps return a
            ``ProviderResult``; other steps may return any JSON-serializable value.
        build_input: Derives the step input that is hashed into the
            idempotency key. Defaults to the prospect alone. Steps that
            consume earlier outputs should include them here.
        timeout_s: Hard timeout per attempt; None uses the configured default.
        required: When False, a failure or open circuit skips the step and
            the item continues.
        produces_provider_output: Whether the output feeds triangulation.
    """

    name: str
    provider: str
    run: Callable[[StepContext], Awaitable[Any]]
    build_input: Callable[[StepContext], Any] | None = None
    timeout_s: float | None = None
    required: bool = True
    produces_provider_output: bool = True

    def input_for(self, context: StepContext) -> Any:
        if self.build_input is not None:
            return self.build_input(context)
        return {"prospect": context.prospect.model_dump(mode="json")}


def coerce_provider_result(provider: str, raw: Any) -> ProviderResult:
    """Validate whatever a provider returned into a ``ProviderResult``."""
    if isinstance(raw, ProviderResult):
        return raw if raw.provider else raw.model_copy(update={"provider": provider})
    if isinstance(raw, Mapping):
        return ProviderResult.model_validate({"provider": provider, **raw})
    raise TypeError(
        f"Provider {provider!r} returned {type(raw).__name__}, expected ProviderResult or dict"
    )


def provider_step(
    name: str,
    provider: str,
    fn: ProviderFn,
    *,
    timeout_s: float | None = None,
    required: bool = True,
) -> StepDefinition:
    """Adapt a plain ``(prospect) -> result`` provider callable into a step."""

    async def run(context: StepContext) -> ProviderResult:
        raw = fn(context.prospect)
        if inspect.isawaitable(raw):
            raw = await raw
        return coerce_provider_result(provider, raw)

    return StepDefinition(
        name=name,
        provider=provider,
        run=run,
        timeout_s=timeout_s,
        required=required,
    )
