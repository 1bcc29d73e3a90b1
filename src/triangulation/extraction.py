# src/triangulation/extraction.py - v1
"""Pattern-based extraction of wealth and biographical indicators from text.

Heuristic by nature: the patterns favor recall on typical provider prose
("owns a home valued at $1.2M", "CEO of Acme Corp", "Form 4 filings for
ACME"). Downstream code tags every extracted value with a confidence level
rather than trusting it outright.

Context words are matched case-insensitively; names and tickers must start
with a capital letter, which keeps sentence fragments out of them.
"""

from __future__ import annotations

import re
from datetime import date

from pydantic import BaseModel, Field

MIN_PROPERTY_VALUE = 50_000
MIN_MAJOR_GIFT = 10_000
MIN_NET_WORTH = 100_000
MIN_AGE, MAX_AGE = 25, 100
MIN_BIRTH_YEAR, MAX_BIRTH_YEAR = 1900, 2010

_UNITS = {
    "k": 1e3, "thousand": 1e3,
    "m": 1e6, "million": 1e6,
    "b": 1e9, "billion": 1e9,
}

# "$1.2M", "$ 850K", "$2,500,000", "$3.1 million"
_AMOUNT = r"\$\s?(\d[\d,]*(?:\.\d+)?)\s*((?i:thousand|million|billion|k|m|b))?\b"
_NAME_WORD = r"[A-Z][\w'&-]*"
_NAME = rf"{_NAME_WORD}(?:\s+(?:&\s+)?{_NAME_WORD}){{0,5}}"
_GAP = r"[^$\n]{0,80}?"

_PROPERTY_PATTERNS = [
    re.compile(rf"\b(?i:property|home|residence|house|zestimate|purchased|assessed){_GAP}{_AMOUNT}"),
]

_BUSINESS_PATTERN = re.compile(
    rf"\b((?i:ceo|founder|co-founder|owner|president|chairman|chairwoman|partner))"
    rf"\s+(?i:of|at)\s+(?:the\s+)?({_NAME})"
)

_KNOWN_TICKERS = (
    "AAPL", "GOOGL", "MSFT", "AMZN", "META", "TSLA", "NVDA", "JPM", "GS", "WMT",
    "HD", "UNH", "JNJ", "PG", "V", "MA", "BAC", "XOM", "CVX", "PFE",
)
_SEC_PATTERNS = [
    re.compile(r"(?i:sec)[^A-Za-z\n]*(?i:insider)[^A-Za-z\n]*(?i:at|for)\s+([A-Z]{1,5})\b"),
    re.compile(r"(?i:form)\s*[345]\b[^A-Za-z\n]*(?:(?i:filings?|filed)\s+(?i:for|at|with)\s+)?([A-Z]{1,5})\b"),
    re.compile(r"(?i:insider)\s+(?i:at|for)\s+([A-Z]{1,5})\b"),
    re.compile(
        r"(?i:nyse|nasdaq|ticker|stock|shares)[^\n]{0,40}?\b("
        + "|".join(_KNOWN_TICKERS)
        + r")\b"
    ),
]

_POLITICAL_PATTERNS = [
    re.compile(rf"(?i:political|\bfec\b|contributions?){_GAP}{_AMOUNT}"),
]
_PARTY_PATTERN = re.compile(
    rf"(?i:donated|gave|contributed){_GAP}{_AMOUNT}[^A-Za-z\n]*(?:(?i:to)\s+)?(?:the\s+)?"
    r"((?i:republican|democrat|democratic|gop|dnc|rnc))"
)

_FOUNDATION_PATTERN = re.compile(
    rf"(?i:board|trustee|director)[^A-Za-z\n]*(?:\w+\s+)?(?i:of|at)\s+(?:the\s+)?"
    rf"((?:{_NAME_WORD}\s+){{1,6}}(?:Foundation|Fund|Trust))\b"
)

_GIFT_PATTERNS = [
    re.compile(rf"(?i:gift|pledge){_GAP}{_AMOUNT}[^A-Za-z\n]*(?:(?i:to)\s+)?(?:the\s+)?({_NAME})?"),
    re.compile(rf"(?i:donated?|gave)\s+{_AMOUNT}[^A-Za-z\n]*(?:(?i:to)\s+)?(?:the\s+)?({_NAME})?"),
]

_NET_WORTH_PATTERNS = [
    re.compile(rf"(?i:net\s*worth){_GAP}{_AMOUNT}\s*(?:-|to|and)\s*{_AMOUNT}"),
    re.compile(rf"(?i:net\s*worth){_GAP}{_AMOUNT}"),
    re.compile(rf"\b(?i:worth){_GAP}\$\s?(\d[\d,]*(?:\.\d+)?)\s*((?i:million|billion))\b"),
]

_AGE_PATTERNS = [
    ("age", re.compile(r"\b(?i:age)[:\s]+(\d{2})\b")),
    ("age", re.compile(r"\b(\d{2})[\s-]*(?i:years?)[\s-]*(?i:old)\b")),
    ("birth_year", re.compile(r"\b(?i:born)\s+(?:(?i:in)\s+)?(?:\w+\s+)?(\d{4})\b")),
]

_EDUCATION_PATTERNS = [
    re.compile(
        r"(?i:graduated|graduate|alumn(?:us|a|i)|degree)[^A-Za-z\n]*(?:\w+\s+){0,3}?"
        r"(?i:from|of)\s+(?:the\s+)?"
        rf"((?:{_NAME_WORD}\s+){{0,5}}(?:University|College|School|Institute)"
        rf"(?:\s+of(?:\s+{_NAME_WORD}){{1,3}})?)"
    ),
    re.compile(rf"\b(?:MBA|PhD|JD|MD|BS|BA|MS|MA)\b[ \t]*(?:(?i:from)|,)\s+(?:the\s+)?({_NAME})"),
]


class PropertyFinding(BaseModel):
    value: float


class BusinessFinding(BaseModel):
    role: str
    name: str


class GiftFinding(BaseModel):
    amount: float
    organization: str | None = None


class NetWorthRange(BaseModel):
    low: float
    high: float


class ExtractedData(BaseModel):
    """Everything the patterns found in one block of text."""

    properties: list[PropertyFinding] = Field(default_factory=list)
    businesses: list[BusinessFinding] = Field(default_factory=list)
    sec_tickers: list[str] = Field(default_factory=list)
    political_total: float | None = None
    party_lean: str | None = None
    foundations: list[str] = Field(default_factory=list)
    major_gifts: list[GiftFinding] = Field(default_factory=list)
    net_worth: NetWorthRange | None = None
    age: int | None = None
    education: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self == ExtractedData()


def parse_amount(text: str, unit: str | None = None) -> float | None:
    """Parse "$1.5M", "850K", "2,500,000" or ("3.1", "million") into an absolute number."""
    if not text:
        return None
    cleaned = text.replace("$", "").replace(",", "").strip().lower()
    if unit is None:
        match = re.fullmatch(r"(\d+(?:\.\d+)?)\s*(thousand|million|billion|k|m|b)?", cleaned)
        if not match:
            return None
        cleaned, unit = match.group(1), match.group(2)
    try:
        value = float(cleaned)
    except ValueError:
        return None
    return value * _UNITS.get((unit or "").lower(), 1.0)


def _clean_name(name: str) -> str:
    return re.sub(r"\s+", " ", name).strip(" .,;:")


def _append_unique(items: list[str], value: str) -> None:
    if value and value not in items:
        items.append(value)


def extract_structured_data(text: str, current_year: int | None = None) -> ExtractedData:
    """Run every field's patterns over ``text``."""
    data = ExtractedData()
    if not text:
        return data

    seen_properties: set[float] = set()
    for pattern in _PROPERTY_PATTERNS:
        for match in pattern.finditer(text):
            value = parse_amount(match.group(1), match.group(2))
            if value and value > MIN_PROPERTY_VALUE and value not in seen_properties:
                seen_properties.add(value)
                data.properties.append(PropertyFinding(value=value))

    seen_businesses: set[str] = set()
    for match in _BUSINESS_PATTERN.finditer(text):
        name = _clean_name(match.group(2))
        if name and name.lower() not in seen_businesses:
            seen_businesses.add(name.lower())
            data.businesses.append(BusinessFinding(role=match.group(1).lower(), name=name))

    for pattern in _SEC_PATTERNS:
        for match in pattern.finditer(text):
            _append_unique(data.sec_tickers, match.group(1).upper())

    for pattern in _POLITICAL_PATTERNS:
        for match in pattern.finditer(text):
            value = parse_amount(match.group(1), match.group(2))
            if value and (data.political_total is None or value > data.political_total):
                data.political_total = value
    for match in _PARTY_PATTERN.finditer(text):
        value = parse_amount(match.group(1), match.group(2))
        if value and (data.political_total is None or value > data.political_total):
            data.political_total = value
        party = match.group(3).lower()
        if party in ("republican", "gop", "rnc"):
            data.party_lean = "REPUBLICAN"
        else:
            data.party_lean = "DEMOCRATIC"

    for match in _FOUNDATION_PATTERN.finditer(text):
        _append_unique(data.foundations, _clean_name(match.group(1)))

    for pattern in _GIFT_PATTERNS:
        for match in pattern.finditer(text):
            amount = parse_amount(match.group(1), match.group(2))
            if amount and amount >= MIN_MAJOR_GIFT:
                org = _clean_name(match.group(3)) if match.group(3) else None
                data.major_gifts.append(GiftFinding(amount=amount, organization=org))

    data.net_worth = _extract_net_worth(text)
    data.age = _extract_age(text, current_year or date.today().year)

    for pattern in _EDUCATION_PATTERNS:
        for match in pattern.finditer(text):
            _append_unique(data.education, _clean_name(match.group(1)))

    return data


def _extract_net_worth(text: str) -> NetWorthRange | None:
    for pattern in _NET_WORTH_PATTERNS:
        for match in pattern.finditer(text):
            low = parse_amount(match.group(1), match.group(2))
            high = low
            if pattern.groups >= 4 and match.group(3):
                high = parse_amount(match.group(3), match.group(4))
            if low and low > MIN_NET_WORTH:
                high = high or low
                return NetWorthRange(low=min(low, high), high=max(low, high))
    return None


def _extract_age(text: str, current_year: int) -> int | None:
    for kind, pattern in _AGE_PATTERNS:
        for match in pattern.finditer(text):
            num = int(match.group(1))
            if kind == "birth_year":
                if MIN_BIRTH_YEAR < num < MAX_BIRTH_YEAR:
                    return current_year - num
            elif MIN_AGE <= num <= MAX_AGE:
                return num
    return None
