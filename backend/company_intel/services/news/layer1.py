"""
Layer 1: deterministic news sources (Google News search RSS and PE industry feeds).
"""
from __future__ import annotations

import asyncio
import html
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import feedparser
import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ...core.config import get_settings
from ...models.news_article import FetchLayer
from ..caching import cache_feed, get_cached_feed
from .articles import RawArticle, parse_published, utcnow

logger = logging.getLogger(__name__)

GOOGLE_NEWS_SEARCH_URL = "https://news.google.com/rss/search"
GOOGLE_NEWS_REDIRECT_MARKER = "news.google.com/rss/articles/"
GOOGLE_NEWS_MAX_ITEMS = 15

PE_FEEDS = (
    ("https://www.altassets.net/feed", "AltAssets"),
    ("https://www.prnewswire.com/rss/financial-services-news.rss", "PR Newswire Finance"),
    ("https://www.prnewswire.com/rss/mergers-and-acquisitions-news.rss", "PR Newswire M&A"),
)
PE_FEED_MAX_ITEMS = 20

MAX_REDIRECT_HOPS = 5

_TAG_RE = re.compile(r"<[^>]+>")


def _client() -> httpx.AsyncClient:
    settings = get_settings()
    return httpx.AsyncClient(
        timeout=settings.NEWS_HTTP_TIMEOUT_SECONDS,
        headers={"User-Agent": settings.NEWS_USER_AGENT},
    )


def _strip_html(value: str | None) -> str:
    return html.unescape(_TAG_RE.sub("", value or "")).strip()


def _entry_published(entry: Any) -> Optional[str]:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if parsed:
        return datetime(*parsed[:6]).isoformat()
    return None


def _entry_dict(entry: Any) -> Dict[str, Any]:
    return {
        "title": entry.get("title") or "",
        "link": entry.get("link") or "",
        "summary": _strip_html(entry.get("summary") or entry.get("description")),
        "published": _entry_published(entry),
    }


@retry(
    wait=wait_exponential(multiplier=1, min=1, max=10),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type(httpx.HTTPError),
    reraise=True,
)
async def _get_text(client: httpx.AsyncClient, url: str, params: Dict[str, str] | None = None) -> str:
    resp = await client.get(url, params=params, follow_redirects=True)
    resp.raise_for_status()
    return resp.text


async def fetch_feed_entries(
    client: httpx.AsyncClient,
    url: str,
    params: Dict[str, str] | None = None,
) -> List[Dict[str, Any]]:
    """Fetch and parse an RSS/Atom feed into plain dicts (cached)."""
    cached = await get_cached_feed(url, params)
    if cached is not None:
        return cached

    text = await _get_text(client, url, params)
    parsed = feedparser.parse(text)
    if parsed.get("bozo") and not parsed.entries:
        logger.warning("Unparseable feed %s: %s", url, parsed.get("bozo_exception"), extra={"connector": "rss"})
        return []

    entries = [_entry_dict(e) for e in parsed.entries]
    await cache_feed(url, params, entries)
    return entries


async def resolve_google_news_url(client: httpx.AsyncClient, url: str, hops: int = 0) -> str:
    """Follow Google News redirect links to the publisher URL; original URL on failure."""
    if GOOGLE_NEWS_REDIRECT_MARKER not in (url or ""):
        return url
    if hops >= MAX_REDIRECT_HOPS:
        return url

    try:
        resp = await client.head(url, follow_redirects=False)
        location = resp.headers.get("location")
        if location:
            if "news.google.com" in location:
                return await resolve_google_news_url(client, location, hops + 1)
            return location

        full = await client.get(url, follow_redirects=True)
        return str(full.url) or url
    except httpx.HTTPError as exc:
        logger.warning("Failed to resolve Google News URL %s: %s", url, exc, extra={"connector": "google_news"})
        return url


def source_from_title(title: str) -> str:
    """Google News titles look like ``Headline - Publisher``."""
    parts = (title or "").split(" - ")
    if len(parts) > 1:
        return parts[-1].strip()
    return "Google News"


async def fetch_google_news(client: httpx.AsyncClient, query: str) -> List[RawArticle]:
    params = {"q": query, "hl": "en-US", "gl": "US", "ceid": "US:en"}
    try:
        entries = (await fetch_feed_entries(client, GOOGLE_NEWS_SEARCH_URL, params))[:GOOGLE_NEWS_MAX_ITEMS]
    except httpx.HTTPError as exc:
        logger.error("Failed to fetch Google News for %r: %s", query, exc, extra={"connector": "google_news"})
        return []

    urls = await asyncio.gather(*(resolve_google_news_url(client, e["link"]) for e in entries))
    now = utcnow()
    return [
        RawArticle(
            headline=e["title"],
            description=e["summary"],
            source_url=url,
            source_name=source_from_title(e["title"]),
            published_at=parse_published(e["published"], now) if e["published"] else now,
            fetch_layer=FetchLayer.LAYER1_RSS,
            query_used=query,
        )
        for e, url in zip(entries, urls)
    ]


async def fetch_pe_feeds(client: httpx.AsyncClient) -> List[RawArticle]:
    articles: List[RawArticle] = []
    now = utcnow()
    for url, name in PE_FEEDS:
        try:
            entries = (await fetch_feed_entries(client, url))[:PE_FEED_MAX_ITEMS]
        except httpx.HTTPError as exc:
            logger.error("Failed to fetch %s: %s", name, exc, extra={"connector": "pe_feeds"})
            continue
        articles.extend(
            RawArticle(
                headline=e["title"],
                description=e["summary"],
                source_url=e["link"],
                source_name=name,
                published_at=parse_published(e["published"], now) if e["published"] else now,
                fetch_layer=FetchLayer.LAYER1_RSS,
            )
            for e in entries
        )
    return articles


def filter_pe_feed_articles(
    articles: Sequence[RawArticle],
    companies: Sequence[str],
    people: Sequence[str],
) -> List[RawArticle]:
    """Keep PE feed items that mention a tracked company or person (case-insensitive)."""
    patterns = [re.compile(re.escape(name), re.IGNORECASE) for name in [*companies, *people] if name]
    if not patterns:
        return []
    return [
        a
        for a in articles
        if any(p.search(f"{a.headline} {a.description}") for p in patterns)
    ]


async def fetch_layer1(companies: Sequence[str], people: Sequence[str]) -> List[RawArticle]:
    """Google News per company and per (quoted) person, plus matching PE feed items."""
    async with _client() as client:
        queries = [*companies, *(f'"{p}"' for p in people)]
        per_query, pe_articles = await asyncio.gather(
            asyncio.gather(*(fetch_google_news(client, q) for q in queries)),
            fetch_pe_feeds(client),
        )

    articles = [a for batch in per_query for a in batch]
    google_count = len(articles)
    relevant_pe = filter_pe_feed_articles(pe_articles, companies, people)
    articles.extend(relevant_pe)

    logger.info(
        "Layer 1 fetched %d Google News and %d PE feed articles",
        google_count,
        len(relevant_pe),
        extra={"connector": "layer1", "step": "news:layer1"},
    )
    return articles
