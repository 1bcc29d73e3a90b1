# src/core/models.py - v1
"""Shared Pydantic domain models used across modules.

A research provider is any callable taking a ``ProspectInput`` and returning a
``ProviderResult``. Nothing else about a provider is assumed by the pipeline.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# === PROSPECT IDENTITY ===


class ProspectInput(BaseModel):
    """Identity and query fields of one prospect, as handed to providers."""

    model_config = ConfigDict(frozen=True)

    name: str
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    employer: str | None = None
    title: str | None = None
    email: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    @property
    def location(self) -> str:
        """Comma-joined address parts that are present."""
        parts = [self.address, self.city, self.state, self.zip_code]
        return ", ".join(p for p in parts if p)


class BatchItem(BaseModel):
    """One unit of work: an externally owned item id plus the prospect to research."""

    id: str
    prospect: ProspectInput


# === PROVIDER OUTPUT ===


class SourceCitation(BaseModel):
    """A single cited source returned by a provider."""

    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    snippet: str | None = None


class ProviderResult(BaseModel):
    """Raw output of one provider call for one item.

    ``error`` is set when the provider reported a failure in-band instead of
    raising. The step executor turns such results into raised errors so they
    are classified and retried like any other failure.
    """

    provider: str
    text: str = Field("", validation_alias=AliasChoices("text", "answer"))
    sources: list[SourceCitation] = Field(default_factory=list)
    tokens_estimate: int = Field(
        0, validation_alias=AliasChoices("tokens_estimate", "tokensEstimate")
    )
    duration_ms: int = Field(0, validation_alias=AliasChoices("duration_ms", "durationMs"))
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
