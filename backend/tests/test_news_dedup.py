"""
Tests for news/dedup.py - URL normalisation, event signatures, fingerprints
and the combined heuristic dedup.
"""
import pytest

from company_intel.services.news.dedup import (
    content_fingerprint,
    deduplicate_articles,
    extract_event_signature,
    filter_recent_articles,
    normalize_url,
    text_similarity,
)

from tests.fixtures.news_fixtures import NOW, raw_article


class TestNormalizeUrl:
    """Tests for URL normalisation."""

    @pytest.mark.parametrize("raw,expected", [
        ("HTTPS://News.Example.com/story/?utm_source=x&id=5#frag", "https://news.example.com/story?id=5"),
        ("https://example.com/a?fbclid=1&gclid=2", "https://example.com/a"),
        ("https://example.com/a/", "https://example.com/a"),
        ("not a url", "not a url"),
        ("", ""),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_url(raw) == expected


class TestEventSignature:
    """Tests for deal, fund and earnings signatures."""

    @pytest.mark.parametrize("headline,expected", [
        ("Acme acquires Beta Corp", "deal|acme|beta corp"),
        ("Acme Industrial to sell Widgets unit", "deal|acme industrial|widgets unit"),
        ("Blackstone raises $5b for new buyout fund", "fund|blackstone"),
        ("Acme beats earnings estimates", "earnings|acme"),
        ("Acme opens new plant in Ohio", None),
        ("", None),
    ])
    def test_signature(self, headline, expected):
        assert extract_event_signature(headline) == expected


class TestFingerprintAndSimilarity:
    """Tests for content fingerprints and word overlap."""

    def test_fingerprint_drops_attribution_and_short_words(self):
        assert content_fingerprint("Acme Widget Recall Expands - Reuters", "") == "acme|expands|recall|widget"

    def test_fingerprint_ignores_word_order(self):
        a = content_fingerprint("Widget recall expands at Acme", "")
        b = content_fingerprint("Acme widget recall expands", "")
        assert a == b

    def test_similarity(self):
        assert text_similarity("quarterly revenue growth", "quarterly revenue growth") == 1.0
        assert text_similarity("quarterly revenue", "plant closure") == 0.0
        assert text_similarity("", "anything here") == 0.0
        # Words of three letters or fewer are ignored.
        assert text_similarity("the cat sat", "the cat sat") == 0.0


class TestDeduplicateArticles:
    """Tests for the combined heuristic dedup."""

    def test_same_url_keeps_most_recent(self):
        older = raw_article("Acme news", "https://example.com/a?utm_source=rss", hours_ago=5)
        newer = raw_article("Acme news update", "https://example.com/a", hours_ago=1)
        assert deduplicate_articles([older, newer]) == [newer]

    def test_same_event_different_outlets(self):
        a = raw_article("Acme acquires Beta Corp", "https://reuters.com/1", hours_ago=1)
        b = raw_article("Acme acquires Beta Corp in $2bn deal", "https://ft.com/2", hours_ago=2)
        assert deduplicate_articles([a, b]) == [a]

    def test_similar_text_collapsed(self):
        a = raw_article(
            "Acme reports record quarterly revenue growth",
            "https://a.com/1",
            description="Strong industrial demand lifted margins",
        )
        b = raw_article(
            "Record quarterly revenue growth for Acme",
            "https://b.com/2",
            description="Strong industrial demand lifted margins again",
            hours_ago=3,
        )
        assert deduplicate_articles([a, b]) == [a]

    def test_distinct_stories_kept(self):
        a = raw_article("Acme opens plant in Ohio", "https://a.com/1")
        b = raw_article("Beta Corp names new chief financial officer", "https://b.com/2")
        assert len(deduplicate_articles([a, b])) == 2


def test_filter_recent_articles():
    fresh = raw_article("Fresh", "https://a.com/1", hours_ago=2)
    stale = raw_article("Stale", "https://a.com/2", hours_ago=30)
    assert filter_recent_articles([fresh, stale], days=1, now=NOW) == [fresh]
