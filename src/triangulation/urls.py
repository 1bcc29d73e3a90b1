# src/triangulation/urls.py - v1
"""URL normalization used as the source deduplication key.

    https://Example.com/a/   -> example.com/a
    http://www.example.com/a -> example.com/a
    HTTP://x.org/?b=2&a=1#f  -> x.org/?a=1&b=2

w3lib's ``canonicalize_url`` does the heavy lifting: query parameters are
sorted, the fragment is dropped and percent-escapes are normalized. On top of
that the scheme is ignored, the host loses a leading ``www.`` and a default
port, and one trailing slash is dropped from non-root paths. Path case is
preserved since many servers treat paths case-sensitively.
"""

from __future__ import annotations

from urllib.parse import urlsplit

from w3lib.url import canonicalize_url

_TRAILING_PUNCTUATION = ".,;:!?"
_DEFAULT_PORTS = (80, 443)


def normalize_url(url: str) -> str:
    """Dedup key for a cited URL. Unparseable input falls back to a lowercased copy."""
    cleaned = url.strip().rstrip(_TRAILING_PUNCTUATION)
    if "://" not in cleaned:
        cleaned = f"http://{cleaned}"
    try:
        parts = urlsplit(canonicalize_url(cleaned, keep_fragments=False))
        host = parts.hostname or ""
        port = parts.port
    except ValueError:
        return url.strip().lower()
    if not host:
        return url.strip().lower()

    if host.startswith("www."):
        host = host[4:]
    if port and port not in _DEFAULT_PORTS:
        host = f"{host}:{port}"

    path = parts.path.rstrip("/") or "/"
    return f"{host}{path}?{parts.query}" if parts.query else f"{host}{path}"
