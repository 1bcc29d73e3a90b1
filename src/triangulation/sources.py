# src/triangulation/sources.py - v1
"""Registry of known data sources and how much their figures can be trusted.

Authority is a 0..1 weight. A source is *authoritative* for a field when it
belongs to an official-record category (government filings, nonprofit 990s,
property records) and is known to carry that kind of data. Government filings
are also *verified*: one of them is enough for a high-confidence value.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

SourceCategory = Literal[
    "official_government",
    "official_nonprofit",
    "property_records",
    "curated_data",
    "market_estimates",
    "news_media",
    "llm_synthesis",
]

CATEGORY_AUTHORITY: dict[str, float] = {
    "official_government": 1.0,
    "official_nonprofit": 0.95,
    "property_records": 0.9,
    "curated_data": 0.8,
    "market_estimates": 0.7,
    "news_media": 0.6,
    "llm_synthesis": 0.5,
}

AUTHORITATIVE_CATEGORIES: frozenset[str] = frozenset(
    {"official_government", "official_nonprofit", "property_records"}
)

# A single filing from one of these settles a field on its own.
VERIFIED_CATEGORIES: frozenset[str] = frozenset({"official_government"})

UNKNOWN_SOURCE_AUTHORITY = 0.4


@dataclass(frozen=True)
class SourceDefinition:
    id: str
    name: str
    category: SourceCategory
    authority: float
    url_patterns: tuple[re.Pattern[str], ...]
    fields: frozenset[str]

    def matches(self, url: str) -> bool:
        return any(p.search(url) for p in self.url_patterns)

    @property
    def is_official(self) -> bool:
        return self.category in AUTHORITATIVE_CATEGORIES

    @property
    def is_verified(self) -> bool:
        return self.category in VERIFIED_CATEGORIES


def _source(
    id: str,
    name: str,
    category: SourceCategory,
    authority: float,
    patterns: list[str],
    fields: set[str],
) -> SourceDefinition:
    return SourceDefinition(
        id=id,
        name=name,
        category=category,
        authority=authority,
        url_patterns=tuple(re.compile(p, re.IGNORECASE) for p in patterns),
        fields=frozenset(fields),
    )


# First match wins, so more specific patterns come before broader ones.
SOURCE_REGISTRY: tuple[SourceDefinition, ...] = (
    _source("sec_edgar", "SEC EDGAR", "official_government", 1.0,
            [r"sec\.gov", r"edgar"], {"sec_ticker", "business_affiliation"}),
    _source("fec_gov", "FEC.gov", "official_government", 1.0,
            [r"fec\.gov"], {"political_giving"}),
    _source("state_sos", "State Secretary of State", "official_government", 0.95,
            [r"sos\.[a-z]{2}\.gov", r"business\.[a-z]{2}\.gov", r"corp\.[a-z]{2}\.gov"],
            {"business_affiliation"}),
    _source("propublica_990", "ProPublica Nonprofit Explorer", "official_nonprofit", 0.95,
            [r"propublica\.org", r"nonprofitexplorer"], {"foundation"}),
    _source("guidestar", "GuideStar/Candid", "official_nonprofit", 0.9,
            [r"guidestar", r"candid\.org"], {"foundation"}),
    _source("county_assessor", "County Assessor", "property_records", 0.95,
            [r"assessor", r"propertytax", r"county\.[a-z]{2}"], {"property_value"}),
    _source("linkedin", "LinkedIn", "curated_data", 0.8,
            [r"linkedin\.com"], {"business_affiliation", "education"}),
    _source("major_news", "Major News Outlet", "news_media", 0.6,
            [r"nytimes\.com", r"wsj\.com", r"washingtonpost\.com", r"bloomberg\.com/news",
             r"reuters\.com", r"apnews\.com", r"forbes\.com", r"fortune\.com"],
            {"age", "education", "net_worth", "business_affiliation"}),
    _source("bloomberg", "Bloomberg", "curated_data", 0.85,
            [r"bloomberg\.com"], {"business_affiliation", "net_worth"}),
    _source("crunchbase", "Crunchbase", "curated_data", 0.75,
            [r"crunchbase\.com"], {"business_affiliation"}),
    _source("zillow", "Zillow", "market_estimates", 0.7,
            [r"zillow\.com"], {"property_value"}),
    _source("redfin", "Redfin", "market_estimates", 0.7,
            [r"redfin\.com"], {"property_value"}),
    _source("wikipedia", "Wikipedia", "news_media", 0.5,
            [r"wikipedia\.org"], {"age", "education", "business_affiliation"}),
)


def identify_source(url: str) -> SourceDefinition | None:
    """Registry entry for a URL, or None when the source is unknown."""
    if not url:
        return None
    for source in SOURCE_REGISTRY:
        if source.matches(url):
            return source
    return None


def source_authority(url: str) -> float:
    source = identify_source(url)
    return source.authority if source else UNKNOWN_SOURCE_AUTHORITY


def is_authoritative_for(url: str, field: str) -> bool:
    source = identify_source(url)
    return bool(source and source.is_official and field in source.fields)


def is_verified_for(url: str, field: str) -> bool:
    """True for a government filing that carries this field."""
    source = identify_source(url)
    return bool(source and source.is_verified and field in source.fields)


def sources_for_field(field: str) -> list[SourceDefinition]:
    """Known sources for a field, most authoritative first."""
    return sorted(
        (s for s in SOURCE_REGISTRY if field in s.fields),
        key=lambda s: s.authority,
        reverse=True,
    )
