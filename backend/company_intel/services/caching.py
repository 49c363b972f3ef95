"""
Redis cache for parsed layer-1 news feeds.

Entries are stored as JSON under ``company_intel:rss:<sha1>`` for
``NEWS_FEED_CACHE_TTL_SECONDS``. Redis being unavailable reads as a miss.
"""
from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, List
from urllib.parse import urlencode

import redis
from ..core.config import get_settings

logger = logging.getLogger(__name__)

FEED_KEY_PREFIX = "company_intel:rss"


def feed_cache_key(url: str, params: Dict[str, str] | None = None) -> str:
    query = urlencode(sorted((params or {}).items()))
    digest = hashlib.sha1(f"{url}?{query}".encode("utf-8")).hexdigest()
    return f"{FEED_KEY_PREFIX}:{digest}"


def _get_sync_redis() -> redis.Redis:
    # New client per call; Celery workers must not reuse one bound to a closed loop.
    return redis.from_url(
        str(get_settings().REDIS_URL),
        decode_responses=True,
        socket_timeout=5,
        socket_connect_timeout=5,
    )


async def get_cached_feed(url: str, params: Dict[str, str] | None = None) -> List[Dict[str, Any]] | None:
    """Cached entries for a feed request, or None on a miss."""
    client = _get_sync_redis()
    try:
        val = client.get(feed_cache_key(url, params))
        return json.loads(val) if val is not None else None
    except redis.RedisError as exc:
        logger.warning("Feed cache read failed: %s", exc, extra={"connector": "rss"})
        return None
    finally:
        client.close()


async def cache_feed(url: str, params: Dict[str, str] | None, entries: List[Dict[str, Any]]) -> None:
    client = _get_sync_redis()
    try:
        client.set(
            feed_cache_key(url, params),
            json.dumps(entries),
            ex=get_settings().NEWS_FEED_CACHE_TTL_SECONDS,
        )
    except redis.RedisError as exc:
        logger.warning("Feed cache write failed: %s", exc, extra={"connector": "rss"})
    finally:
        client.close()
