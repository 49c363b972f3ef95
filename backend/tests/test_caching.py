"""
Tests for caching.py - feed cache keys and the Redis read/write helpers.
"""
import asyncio
import json
from unittest.mock import MagicMock, patch

import redis

from company_intel.services import caching
from company_intel.services.caching import cache_feed, feed_cache_key, get_cached_feed

FEED_URL = "https://news.google.com/rss/search"
ENTRIES = [{"title": "Acme buys Beta", "link": "https://a.com/1", "summary": "", "published": None}]


class TestFeedCacheKey:
    """Tests for feed cache key derivation."""

    def test_param_order_does_not_matter(self):
        a = feed_cache_key(FEED_URL, {"q": "Acme", "hl": "en-US"})
        b = feed_cache_key(FEED_URL, {"hl": "en-US", "q": "Acme"})
        assert a == b
        assert a.startswith("company_intel:rss:")

    def test_params_change_the_key(self):
        assert feed_cache_key(FEED_URL, {"q": "Acme"}) != feed_cache_key(FEED_URL, {"q": "Beta"})
        assert feed_cache_key(FEED_URL) == feed_cache_key(FEED_URL, {})


class TestFeedCache:
    """Tests for reading and writing cached feed entries."""

    def test_hit_and_miss(self):
        client = MagicMock()
        client.get.side_effect = [json.dumps(ENTRIES), None]
        with patch.object(caching, "_get_sync_redis", return_value=client):
            assert asyncio.run(get_cached_feed(FEED_URL, {"q": "Acme"})) == ENTRIES
            assert asyncio.run(get_cached_feed(FEED_URL, {"q": "Acme"})) is None
        client.get.assert_called_with(feed_cache_key(FEED_URL, {"q": "Acme"}))
        assert client.close.call_count == 2

    def test_write_uses_feed_ttl(self):
        client = MagicMock()
        with patch.object(caching, "_get_sync_redis", return_value=client):
            asyncio.run(cache_feed(FEED_URL, {"q": "Acme"}, ENTRIES))
        client.set.assert_called_once_with(
            feed_cache_key(FEED_URL, {"q": "Acme"}),
            json.dumps(ENTRIES),
            ex=caching.get_settings().NEWS_FEED_CACHE_TTL_SECONDS,
        )

    def test_redis_down_is_a_miss(self):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("refused")
        client.set.side_effect = redis.ConnectionError("refused")
        with patch.object(caching, "_get_sync_redis", return_value=client):
            assert asyncio.run(get_cached_feed(FEED_URL)) is None
            asyncio.run(cache_feed(FEED_URL, None, ENTRIES))
        assert client.close.call_count == 2
