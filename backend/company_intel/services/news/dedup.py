"""
Heuristic de-duplication of raw articles.

Four checks, cheapest first: normalized URL, event signature (same actor and
event type), content fingerprint, and Jaccard word similarity above 0.6.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Set
from urllib.parse import parse_qsl, urlencode, urlsplit

from .articles import RawArticle, utcnow

TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_content",
        "utm_term",
        "ref",
        "source",
        "fbclid",
        "gclid",
        "msclkid",
        "mc_cid",
        "mc_eid",
    }
)

SIMILARITY_THRESHOLD = 0.6
MIN_FINGERPRINT_LEN = 10
FINGERPRINT_WORDS = 15

_ATTRIBUTION_RE = re.compile(r"\s*[-|]\s*[a-z0-9\s]+$")
_PUNCT_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")
_NON_ALPHA_RE = re.compile(r"[^a-z\s]")

_NAME = r"(\w+(?:\s+\w+)?)"
_DEAL_PATTERNS = [
    re.compile(_NAME + r"\s+(?:acquires?|acquired|buying|buys|bought)\s+" + _NAME),
    re.compile(_NAME + r"\s+(?:to\s+)?sell[s]?\s+" + _NAME),
    re.compile(_NAME + r"\s+(?:invests?|invested|investing)\s+(?:in\s+)?" + _NAME),
    re.compile(_NAME + r"\s+(?:agrees?\s+to\s+)?(?:acquire|sell|buy)\s+" + _NAME),
    re.compile(_NAME + r"\s+secures?\s+investment\s+from\s+" + _NAME),
]
_FUND_PATTERNS = [
    re.compile(
        _NAME + r"\s+(?:raises?|raised|closes?|closed)\s+.*?(\$[\d.]+[bmk]|\d+(?:\.\d+)?\s*(?:billion|million|bn|b))"
    ),
]
_EARNINGS_PATTERNS = [
    re.compile(_NAME + r"\s+(?:beats?|tops?|exceeds?|misses?)\s+(?:profit|earnings?|estimates?)"),
    re.compile(_NAME + r"\s+(?:profits?|earnings?)\s+(?:soar|surge|jump|fall|drop)"),
]


def normalize_url(url: str) -> str:
    """Drop tracking params, fragment and trailing slashes; lowercase scheme and host."""
    raw = (url or "").strip()
    parts = urlsplit(raw)
    if not parts.scheme or not parts.netloc:
        return raw.lower()

    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in TRACKING_PARAMS]
    path = parts.path.rstrip("/")
    normalized = f"{parts.scheme.lower()}://{parts.netloc.lower()}{path}"
    if query:
        normalized += "?" + urlencode(query)
    return normalized


def content_fingerprint(headline: str, description: str) -> str:
    text = f"{headline} {description}".lower()
    text = _ATTRIBUTION_RE.sub("", text)
    text = _PUNCT_RE.sub("", text)
    text = _WS_RE.sub(" ", text).strip()
    words = [w for w in text.split(" ") if len(w) > 3]
    return "|".join(sorted(words[:FINGERPRINT_WORDS]))


def _significant_words(text: str) -> Set[str]:
    return {w for w in (text or "").lower().split() if len(w) > 3}


def text_similarity(a: str, b: str) -> float:
    """Jaccard similarity over words longer than three characters."""
    words_a, words_b = _significant_words(a), _significant_words(b)
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def _clean_name(value: str) -> str:
    return _NON_ALPHA_RE.sub("", value.strip())


def extract_event_signature(headline: str) -> Optional[str]:
    """
    ``deal|<actor>|<target>``, ``fund|<actor>`` or ``earnings|<actor>`` for
    headlines describing a recognisable event, else None.
    """
    text = (headline or "").lower()

    for pattern in _DEAL_PATTERNS:
        m = pattern.search(text)
        if m:
            return f"deal|{_clean_name(m.group(1))}|{_clean_name(m.group(2))}"

    for pattern in _FUND_PATTERNS:
        m = pattern.search(text)
        if m:
            return f"fund|{_clean_name(m.group(1))}"

    for pattern in _EARNINGS_PATTERNS:
        m = pattern.search(text)
        if m:
            return f"earnings|{_clean_name(m.group(1))}"

    return None


def deduplicate_articles(articles: Sequence[RawArticle]) -> List[RawArticle]:
    """Most recent copy of each story wins."""
    unique: List[RawArticle] = []
    seen_urls: Set[str] = set()
    seen_fingerprints: Set[str] = set()
    seen_events: Set[str] = set()

    for article in sorted(articles, key=lambda a: a.published_at, reverse=True):
        url = normalize_url(article.source_url)
        if url in seen_urls:
            continue

        event = extract_event_signature(article.headline)
        if event and event in seen_events:
            continue

        fingerprint = content_fingerprint(article.headline, article.description)
        if len(fingerprint) > MIN_FINGERPRINT_LEN and fingerprint in seen_fingerprints:
            continue

        combined = f"{article.headline} {article.description}"
        if any(
            text_similarity(combined, f"{kept.headline} {kept.description}") > SIMILARITY_THRESHOLD
            for kept in unique
        ):
            continue

        seen_urls.add(url)
        if event:
            seen_events.add(event)
        if len(fingerprint) > MIN_FINGERPRINT_LEN:
            seen_fingerprints.add(fingerprint)
        unique.append(article)

    return unique


def filter_recent_articles(
    articles: Sequence[RawArticle],
    days: int = 7,
    now: datetime | None = None,
) -> List[RawArticle]:
    cutoff = (now or utcnow()) - timedelta(days=days)
    return [a for a in articles if a.published_at >= cutoff]
