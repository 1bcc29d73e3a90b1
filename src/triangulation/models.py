# src/triangulation/models.py - v1
"""Triangulation output models. A TriangulatedResult is immutable once built."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from prospector.core.models import SourceCitation
from prospector.triangulation.extraction import ExtractedData

Confidence = Literal["high", "medium", "low", "unknown"]

FIELDS: tuple[str, ...] = (
    "property_value",
    "business_affiliation",
    "sec_ticker",
    "political_giving",
    "foundation",
    "net_worth",
    "age",
    "education",
)


class Mention(BaseModel):
    """One candidate value for a field, with where it came from.

    ``origin`` is ``"narrative"`` for the provider's own text, or the
    normalized URL of a cited source whose snippet carried the value.
    ``verified`` marks values backed by a government filing.
    """

    model_config = ConfigDict(frozen=True)

    field: str
    value: Any
    provider: str
    origin: str = "narrative"
    authority: float = 0.5
    authoritative: bool = False
    verified: bool = False


class FieldAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    value: Any = None
    confidence: Confidence = "unknown"
    providers: list[str] = Field(default_factory=list)
    authoritative: bool = False
    mention_count: int = 0
    conflicts: list[Any] = Field(default_factory=list)


def _empty_fields() -> dict[str, FieldAssessment]:
    return {name: FieldAssessment(field=name) for name in FIELDS}


class TriangulatedResult(BaseModel):
    """Merged, confidence-scored record for one item."""

    model_config = ConfigDict(frozen=True)

    sources: list[SourceCitation] = Field(default_factory=list)
    fields: dict[str, FieldAssessment] = Field(default_factory=_empty_fields)
    findings: ExtractedData = Field(default_factory=ExtractedData)
    insights: list[str] = Field(default_factory=list)
    narrative: str = ""
    providers_used: list[str] = Field(default_factory=list)
    providers_failed: list[str] = Field(default_factory=list)

    def confidence(self, field: str) -> Confidence:
        return self.fields[field].confidence
