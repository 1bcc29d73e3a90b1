# src/triangulation/confidence.py - v1
"""Agreement tests and confidence levels for extracted field values.

Levels, from the mentions that agree with the chosen value:

    high     two or more distinct providers, a government filing, or an
             authoritative source corroborated by at least one other mention
    medium   a single authoritative source, or two or more non-authoritative
             sources (e.g. a narrative and a cited snippet of one provider)
    low      one non-authoritative mention
    unknown  no mention at all

Values are never averaged. When mentions disagree they are grouped into
clusters of mutually agreeing values and the best cluster wins, ranked by
confidence, then source authority, then provider priority.
"""

from __future__ import annotations

import re
from typing import Any, Sequence

from prospector.triangulation.models import Confidence, FieldAssessment, Mention

NUMERIC_FIELDS = frozenset({"property_value", "political_giving"})
DEFAULT_TOLERANCE = 0.2
AGE_TOLERANCE_YEARS = 1

_RANK: dict[str, int] = {"unknown": 0, "low": 1, "medium": 2, "high": 3}


def normalize_text(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip().lower()


def numbers_agree(a: float, b: float, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    """Relative difference against the larger magnitude is within tolerance."""
    largest = max(abs(a), abs(b))
    if largest == 0:
        return True
    return abs(a - b) / largest <= tolerance


def values_agree(field: str, a: Any, b: Any, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    if field in NUMERIC_FIELDS:
        return numbers_agree(float(a), float(b), tolerance)
    if field == "age":
        return abs(int(a) - int(b)) <= AGE_TOLERANCE_YEARS
    if field == "net_worth":
        # Ranges agree when they overlap once widened by the tolerance.
        return (
            a["low"] <= b["high"] * (1 + tolerance)
            and b["low"] <= a["high"] * (1 + tolerance)
        )
    return normalize_text(str(a)) == normalize_text(str(b))


def classify(mentions: Sequence[Mention]) -> Confidence:
    """Confidence for a group of mentions that already agree with each other."""
    if not mentions:
        return "unknown"
    providers = {m.provider for m in mentions}
    origins = {(m.provider, m.origin) for m in mentions}
    authoritative = any(m.authoritative for m in mentions)

    if len(providers) >= 2 or any(m.verified for m in mentions):
        return "high"
    if authoritative and len(origins) >= 2:
        return "high"
    if authoritative or len(origins) >= 2:
        return "medium"
    return "low"


def assess_field(
    field: str,
    mentions: Sequence[Mention],
    provider_priority: Sequence[str] = (),
    tolerance: float = DEFAULT_TOLERANCE,
) -> FieldAssessment:
    """Pick the best-supported value for one field."""
    if not mentions:
        return FieldAssessment(field=field)

    priority = {name: i for i, name in enumerate(provider_priority)}

    def provider_rank(m: Mention) -> int:
        return priority.get(m.provider, len(priority))

    ordered = sorted(mentions, key=lambda m: (-m.authority, provider_rank(m)))

    clusters: list[list[Mention]] = []
    for mention in ordered:
        for cluster in clusters:
            if values_agree(field, cluster[0].value, mention.value, tolerance):
                cluster.append(mention)
                break
        else:
            clusters.append([mention])

    def cluster_key(cluster: list[Mention]) -> tuple:
        return (
            -_RANK[classify(cluster)],
            -max(m.authority for m in cluster),
            min(provider_rank(m) for m in cluster),
            -len(cluster),
        )

    clusters.sort(key=cluster_key)
    best = clusters[0]
    return FieldAssessment(
        field=field,
        value=best[0].value,
        confidence=classify(best),
        providers=sorted(
            {m.provider for m in best}, key=lambda p: (priority.get(p, len(priority)), p)
        ),
        authoritative=any(m.authoritative for m in best),
        mention_count=len(best),
        conflicts=[c[0].value for c in clusters[1:]],
    )
