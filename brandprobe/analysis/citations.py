"""Coarse source-type classification of citation URLs."""

from __future__ import annotations

from collections.abc import Iterable
from urllib.parse import urlparse

ECOMMERCE_MARKERS = ("shopee", "pchome", "momo", "amazon", "rakuten")
FORUM_MARKERS = ("ptt.cc", "dcard", "mobile01", "reddit", "2ch", "5ch")
VIDEO_MARKERS = ("youtube", "youtu.be", "vimeo")
MEDIA_MARKERS = ("news", "blog", "medium", "udn", "chinatimes", "ltn")

SOURCE_TYPES = ("ecommerce", "forum", "video", "media", "official", "unknown")


def _brand_token(brand: str) -> str:
    return "".join(ch for ch in brand.lower() if ch.isalnum())


def classify_source_type(url: str, brand: str | None = None) -> str:
    """Bucket a URL by domain heuristics.

    A domain containing the brand name counts as the brand's official site.
    """
    lowered = url.lower()
    if any(m in lowered for m in ECOMMERCE_MARKERS):
        return "ecommerce"
    if any(m in lowered for m in FORUM_MARKERS):
        return "forum"
    if any(m in lowered for m in VIDEO_MARKERS):
        return "video"
    if any(m in lowered for m in MEDIA_MARKERS):
        return "media"
    if brand:
        token = _brand_token(brand)
        if token and token in domain_of(url).replace("-", "").replace(".", ""):
            return "official"
    return "unknown"


def domain_of(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


def citation_rows(urls: Iterable[str], brand: str | None = None) -> list[dict[str, str]]:
    """Rows for citation_sources; URLs without a host are skipped."""
    rows: list[dict[str, str]] = []
    seen: set[str] = set()
    for url in urls:
        domain = domain_of(url)
        if not domain or url in seen:
            continue
        seen.add(url)
        rows.append(
            {"url": url, "domain": domain, "source_type": classify_source_type(url, brand)}
        )
    return rows
