# src/triangulation/engine.py - v1
"""Merge provider results for one item into a single confidence-scored record.

``triangulate`` is pure: same inputs, same output, no I/O. Failed provider
results contribute only their name to ``providers_failed``.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

from prospector.core.models import ProviderResult, SourceCitation
from prospector.triangulation.confidence import DEFAULT_TOLERANCE, assess_field
from prospector.triangulation.extraction import (
    BusinessFinding,
    ExtractedData,
    extract_structured_data,
)
from prospector.triangulation.models import FIELDS, Mention, TriangulatedResult
from prospector.triangulation.sources import (
    CATEGORY_AUTHORITY,
    identify_source,
    is_authoritative_for,
    is_verified_for,
    source_authority,
)
from prospector.triangulation.urls import normalize_url

logger = logging.getLogger(__name__)

DEFAULT_MAX_SOURCES = 30
LLM_AUTHORITY = CATEGORY_AUTHORITY["llm_synthesis"]


def triangulate(
    results: Iterable[ProviderResult],
    provider_priority: Sequence[str] | None = None,
    tolerance: float = DEFAULT_TOLERANCE,
    max_sources: int = DEFAULT_MAX_SOURCES,
    current_year: int | None = None,
) -> TriangulatedResult:
    """Merge provider results.

    Args:
        results: One result per provider call. Order is irrelevant when
            ``provider_priority`` is given.
        provider_priority: Provider names, most trusted first. Decides the
            primary narrative, which citation survives URL deduplication,
            and ties between equally supported values. Unlisted providers
            rank after listed ones, in input order.
        tolerance: Relative band within which numeric values agree.
        max_sources: Cap on the merged source list.
        current_year: Used to turn birth years into ages.
    """
    ordered = _order(list(results), provider_priority)
    priority = [r.provider for r in ordered]
    succeeded = [r for r in ordered if r.ok]
    failed = [r.provider for r in ordered if not r.ok]

    if not succeeded:
        return TriangulatedResult(providers_failed=failed)

    sources = merge_sources(succeeded, max_sources)

    extracted: list[tuple[ProviderResult, ExtractedData]] = [
        (r, extract_structured_data(r.text, current_year)) for r in succeeded
    ]

    mentions: dict[str, list[Mention]] = {name: [] for name in FIELDS}
    for result, data in extracted:
        for mention in _narrative_mentions(result, data):
            mentions[mention.field].append(mention)
        for mention in _snippet_mentions(result, current_year):
            mentions[mention.field].append(mention)

    fields = {
        name: assess_field(name, mentions[name], priority, tolerance) for name in FIELDS
    }
    findings = merge_findings([data for _, data in extracted])

    return TriangulatedResult(
        sources=sources,
        fields=fields,
        findings=findings,
        insights=build_insights(findings),
        narrative=merge_narratives(succeeded),
        providers_used=[r.provider for r in succeeded],
        providers_failed=failed,
    )


def _order(
    results: list[ProviderResult], provider_priority: Sequence[str] | None
) -> list[ProviderResult]:
    if not provider_priority:
        return results
    rank = {name: i for i, name in enumerate(provider_priority)}
    indexed = list(enumerate(results))
    indexed.sort(key=lambda pair: (rank.get(pair[1].provider, len(rank)), pair[0]))
    return [r for _, r in indexed]


def merge_sources(
    results: Sequence[ProviderResult], max_sources: int = DEFAULT_MAX_SOURCES
) -> list[SourceCitation]:
    """Deduplicate citations by normalized URL; the first provider's citation wins."""
    seen: set[str] = set()
    merged: list[SourceCitation] = []
    for result in results:
        for source in result.sources:
            key = normalize_url(source.url)
            if key in seen:
                continue
            seen.add(key)
            merged.append(source)
    if len(merged) > max_sources:
        logger.debug("Capping %d merged sources at %d", len(merged), max_sources)
    return merged[:max_sources]


def _field_values(data: ExtractedData) -> list[tuple[str, Any]]:
    values: list[tuple[str, Any]] = []
    values.extend(("property_value", p.value) for p in data.properties)
    values.extend(("business_affiliation", b.name) for b in data.businesses)
    values.extend(("sec_ticker", t) for t in data.sec_tickers)
    if data.political_total is not None:
        values.append(("political_giving", data.political_total))
    values.extend(("foundation", f) for f in data.foundations)
    if data.net_worth is not None:
        values.append(("net_worth", data.net_worth.model_dump()))
    if data.age is not None:
        values.append(("age", data.age))
    values.extend(("education", e) for e in data.education)
    return values


def _narrative_mentions(result: ProviderResult, data: ExtractedData) -> list[Mention]:
    """Narrative values inherit the strongest cited source covering the field."""
    mentions: list[Mention] = []
    for field, value in _field_values(data):
        authority = LLM_AUTHORITY
        authoritative = verified = False
        for source in result.sources:
            definition = identify_source(source.url)
            if definition is None or field not in definition.fields:
                continue
            authority = max(authority, definition.authority)
            authoritative = authoritative or definition.is_official
            verified = verified or definition.is_verified
        mentions.append(
            Mention(
                field=field,
                value=value,
                provider=result.provider,
                authority=authority,
                authoritative=authoritative,
                verified=verified,
            )
        )
    return mentions


def _snippet_mentions(result: ProviderResult, current_year: int | None) -> list[Mention]:
    mentions: list[Mention] = []
    for source in result.sources:
        if not source.snippet:
            continue
        data = extract_structured_data(source.snippet, current_year)
        for field, value in _field_values(data):
            mentions.append(
                Mention(
                    field=field,
                    value=value,
                    provider=result.provider,
                    origin=normalize_url(source.url),
                    authority=source_authority(source.url),
                    authoritative=is_authoritative_for(source.url, field),
                    verified=is_verified_for(source.url, field),
                )
            )
    return mentions


def merge_findings(extracted: Sequence[ExtractedData]) -> ExtractedData:
    """Union of every provider's structured findings, without duplicates."""
    merged = ExtractedData()
    seen_businesses: set[str] = set()
    for data in extracted:
        for prop in data.properties:
            if all(p.value != prop.value for p in merged.properties):
                merged.properties.append(prop)
        for business in data.businesses:
            if business.name.lower() not in seen_businesses:
                seen_businesses.add(business.name.lower())
                merged.businesses.append(BusinessFinding(role=business.role, name=business.name))
        for ticker in data.sec_tickers:
            if ticker not in merged.sec_tickers:
                merged.sec_tickers.append(ticker)
        if data.political_total is not None and (
            merged.political_total is None or data.political_total > merged.political_total
        ):
            merged.political_total = data.political_total
        merged.party_lean = merged.party_lean or data.party_lean
        for foundation in data.foundations:
            if foundation not in merged.foundations:
                merged.foundations.append(foundation)
        for gift in data.major_gifts:
            if gift not in merged.major_gifts:
                merged.major_gifts.append(gift)
        merged.net_worth = merged.net_worth or data.net_worth
        merged.age = merged.age if merged.age is not None else data.age
        for school in data.education:
            if school not in merged.education:
                merged.education.append(school)
    return merged


def _millions(value: float) -> str:
    return f"{value / 1_000_000:.1f}M"


def build_insights(findings: ExtractedData) -> list[str]:
    """One summary sentence per non-empty category, most material first."""
    insights: list[str] = []
    if findings.properties:
        total = sum(p.value for p in findings.properties)
        insights.append(
            f"Found {len(findings.properties)} property record(s) totaling ~${_millions(total)}"
        )
    if findings.businesses:
        insights.append(f"Identified {len(findings.businesses)} business affiliation(s)")
    if findings.sec_tickers:
        insights.append(f"SEC insider at: {', '.join(findings.sec_tickers)}")
    if findings.political_total is not None and findings.political_total >= 1000:
        party = f" ({findings.party_lean})" if findings.party_lean else ""
        insights.append(f"Political giving: ${findings.political_total:,.0f}{party}")
    if findings.foundations:
        insights.append(f"Foundation affiliations: {', '.join(findings.foundations[:3])}")
    if findings.major_gifts:
        largest = max(g.amount for g in findings.major_gifts)
        insights.append(f"Major gift(s) found: largest ${largest:,.0f}")
    if findings.net_worth is not None:
        low, high = findings.net_worth.low, findings.net_worth.high
        insights.append(f"Net worth mention: ${_millions(low)}-${_millions(high)}")
    return insights


def _display_name(provider: str) -> str:
    return provider.replace("_", " ").title()


def merge_narratives(results: Sequence[ProviderResult]) -> str:
    """Primary provider's text, then one delimited section per other provider."""
    texts = [(r.provider, r.text.strip()) for r in results]
    primary = next((i for i, (_, text) in enumerate(texts) if text), None)
    if primary is None:
        return ""
    sections = [texts[primary][1]]
    for i, (provider, text) in enumerate(texts):
        if i == primary:
            continue
        body = text or "No additional information found."
        sections.append(f"**Additional findings from {_display_name(provider)}:**\n{body}")
    return "\n\n---\n\n".join(sections)
