"""
Tests for the news fetch pipeline: layer 1 feeds, layer 2 parsing, LLM dedup
passes, processing and the hybrid entry point. Network and LLM calls are mocked.
"""
import asyncio
import json
from datetime import datetime
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from company_intel.models.cost_event import CostEvent
from company_intel.models.news_article import FetchLayer, NewsArticle
from company_intel.services.news import fetcher, layer1
from company_intel.services.news.fetcher import (
    deduplicate_against_history,
    deduplicate_with_llm,
    fetch_news_hybrid,
    merge_call_diets,
    parse_layer2_results,
    parse_processing_response,
    process_articles_with_llm,
    search_news,
    to_processed_article,
)
from company_intel.services.news.layer1 import (
    fetch_feed_entries,
    filter_pe_feed_articles,
    source_from_title,
)

from tests.fixtures.news_fixtures import (
    CALL_DIETS,
    RSS_FEED,
    processing_response,
    raw_article,
)
from tests.fixtures.research_fixtures import llm_result

COMPLETE = "company_intel.services.news.fetcher.complete"
WEB_SEARCH = "company_intel.services.news.fetcher.web_search"


class TestLayer1:
    """Tests for RSS feed fetching and filtering."""

    def test_source_from_title(self):
        assert source_from_title("Acme buys Beta - Financial Times") == "Financial Times"
        assert source_from_title("No publisher here") == "Google News"

    def test_pe_feed_filter_matches_tracked_names(self):
        hit = raw_article("ACME INDUSTRIAL closes fund", "https://a.com/1")
        person = raw_article("Deal news", "https://a.com/2", description="Led by jane doe")
        miss = raw_article("Other firm raises capital", "https://a.com/3")
        kept = filter_pe_feed_articles([hit, person, miss], ["Acme Industrial"], ["Jane Doe"])
        assert kept == [hit, person]
        assert filter_pe_feed_articles([hit], [], []) == []

    def test_fetch_feed_entries_parses_rss(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=RSS_FEED))

        async def run():
            async with httpx.AsyncClient(transport=transport) as client:
                return await fetch_feed_entries(client, "https://feeds.example.com/deals")

        with patch.object(layer1, "get_cached_feed", AsyncMock(return_value=None)), \
                patch.object(layer1, "cache_feed", AsyncMock()) as store:
            entries = asyncio.run(run())

        assert len(entries) == 2
        assert entries[0]["title"] == "Acme Industrial acquires Beta Corp - Reuters"
        assert entries[0]["summary"] == "Acme buys Beta"
        assert entries[0]["published"] == "2026-03-10T08:00:00"
        store.assert_awaited_once_with("https://feeds.example.com/deals", None, entries)

    def test_cached_entries_skip_network(self):
        def fail(request):
            raise AssertionError("network should not be used")

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(fail)) as client:
                return await fetch_feed_entries(client, "https://feeds.example.com/deals")

        cached = [{"title": "t", "link": "l", "summary": "", "published": None}]
        with patch.object(layer1, "get_cached_feed", AsyncMock(return_value=cached)):
            assert asyncio.run(run()) == cached


class TestLayer2:
    """Tests for the AI web search layer."""

    def test_merge_call_diets_case_insensitive(self):
        companies, people = merge_call_diets(CALL_DIETS)
        assert [c["name"] for c in companies] == ["acme industrial", "Beta Corp"]
        assert [p["name"] for p in people] == ["Jane Doe"]

    def test_prompt_time_window(self):
        assert "last 24 hours" in fetcher.layer2_prompt(["Acme"], [], 1)
        assert "last 7 days" in fetcher.layer2_prompt(["Acme"], ["Jane Doe"], 7)

    def test_no_entities_skips_search(self):
        with patch(WEB_SEARCH) as search:
            assert fetcher.run_layer2_search([], []) is None
        search.assert_not_called()

    def test_search_failure_returns_none(self):
        with patch(WEB_SEARCH, side_effect=RuntimeError("rate limited")):
            assert fetcher.run_layer2_search(["Acme"], []) is None

    def test_parse_results(self):
        text = json.dumps(
            {
                "results": [
                    {"headline": "Acme buys Beta", "sourceUrl": "https://a.com/1", "publishedAt": "2026-03-09"},
                    {"headline": "No url"},
                    "junk",
                ]
            }
        )
        articles = parse_layer2_results(llm_result(text))
        assert len(articles) == 1
        assert articles[0].source_name == "Web Search"
        assert articles[0].fetch_layer == FetchLayer.LAYER2_LLM
        assert articles[0].published_at == datetime(2026, 3, 9)

    def test_parse_invalid_json(self):
        assert parse_layer2_results(llm_result("sorry")) == []
        assert parse_layer2_results(None) == []


class TestLlmDedup:
    """Tests for semantic dedup of the fetched batch."""

    def _articles(self, n):
        return [raw_article(f"Story {i}", f"https://a.com/{i}") for i in range(n)]

    def test_small_batch_not_sent(self):
        articles = self._articles(5)
        with patch(COMPLETE) as complete:
            assert deduplicate_with_llm(articles) == articles
        complete.assert_not_called()

    def test_keeps_group_winners_and_standalone(self, db):
        articles = self._articles(6)
        response = {"uniqueArticles": [{"keepId": 0, "duplicateIds": [1, 4]}], "standalone": [2, 3, 5, "x"]}
        with patch(COMPLETE, return_value=llm_result(json.dumps(response), input_tokens=100)):
            kept = deduplicate_with_llm(articles, db)
        assert [a.headline for a in kept] == ["Story 0", "Story 2", "Story 3", "Story 5"]
        assert db.query(CostEvent).one().stage == "news_dedup"

    def test_failure_keeps_input(self):
        articles = self._articles(6)
        with patch(COMPLETE, side_effect=RuntimeError("boom")):
            assert deduplicate_with_llm(articles) == articles


class TestHistoryDedup:
    """Tests for dedup against recently stored articles."""

    def test_no_history_keeps_everything(self, db):
        articles = [raw_article("A", "https://a.com/1")]
        assert deduplicate_against_history(db, articles) == articles

    def test_known_urls_dropped(self, db):
        db.add(NewsArticle(headline="Old", source_url="https://a.com/1"))
        db.commit()
        articles = [
            raw_article("Seen", "https://a.com/1/?utm_source=rss"),
            raw_article("New", "https://a.com/2"),
        ]
        with patch(COMPLETE) as complete:
            kept = deduplicate_against_history(db, articles)
        assert [a.headline for a in kept] == ["New"]
        complete.assert_not_called()

    def test_large_batch_uses_llm(self, db):
        db.add(NewsArticle(headline="Old", source_url="https://old.com/1"))
        db.commit()
        articles = [raw_article(f"Story {i}", f"https://a.com/{i}") for i in range(21)]
        with patch(COMPLETE, return_value=llm_result('{"keepIds": ["N0", "N7"]}')):
            kept = deduplicate_against_history(db, articles)
        assert [a.headline for a in kept] == ["Story 0", "Story 7"]


class TestProcessing:
    """Tests for LLM article processing and its fallback."""

    def test_to_processed_article_fills_from_original(self):
        original = raw_article("Raw headline", "https://a.com/1", source="AltAssets")
        article = to_processed_article({"summary": "A long summary " * 20, "company": "Acme Industrial"}, original)
        assert article.headline == "Raw headline"
        assert article.source_name == "AltAssets"
        assert article.published_at == "2026-03-10"
        assert len(article.short_summary) == 150
        assert article.sources[0].source_url == "https://a.com/1"
        assert article.category == "News"

    def test_to_processed_article_keeps_model_sources(self):
        item = {
            "headline": "Acme buys Beta",
            "sourceUrl": "https://a.com/1",
            "sources": [
                {"sourceUrl": "https://a.com/1", "sourceName": "Reuters"},
                {"sourceUrl": "https://b.com/2", "sourceName": "FT", "fetchLayer": "layer2_llm"},
                {"sourceName": "missing url"},
            ],
            "revenueOwners": ["Dana Whitfield"],
            "matchType": "exact",
        }
        article = to_processed_article(item)
        assert [s.source_url for s in article.sources] == ["https://a.com/1", "https://b.com/2"]
        assert article.match_type == "exact"
        assert article.revenue_owners == ["Dana Whitfield"]

    def test_truncated_response_recovered(self):
        text = '{"articles": [{"id": 0, "headline": "A"}, {"id": 1, "headl'
        parsed = parse_processing_response(text)
        assert parsed == {"articles": [{"id": 0, "headline": "A"}], "coverageGaps": []}

    def test_process_maps_articles_and_gaps(self, db):
        raw = [raw_article("Acme buys Beta", "https://a.com/1")]
        response = processing_response(
            {"id": 0, "company": "Acme Industrial", "category": "M&A / Deal Activity", "shortSummary": "Deal."},
            {"id": 99, "headline": "Out of range id", "sourceUrl": "https://b.com/2"},
            gaps=[{"company": "Beta Corp", "note": "No relevant news found"}],
        )
        with patch(COMPLETE, return_value=llm_result(response, output_tokens=50)):
            result = process_articles_with_llm(raw, CALL_DIETS, ["Acme Industrial"], [], db)

        assert [a.headline for a in result.articles] == ["Acme buys Beta", "Out of range id"]
        assert result.articles[0].source_url == "https://a.com/1"
        assert result.coverage_gaps == [{"company": "Beta Corp", "note": "No relevant news found"}]
        assert db.query(CostEvent).one().meta == {"articles": 1}

    def test_failure_falls_back_to_raw_articles(self):
        raw = [raw_article("Acme buys Beta", "https://a.com/1", description="d" * 300)]
        with patch(COMPLETE, side_effect=RuntimeError("timeout")):
            result = process_articles_with_llm(raw, CALL_DIETS, ["Acme Industrial"], [])
        article = result.articles[0]
        assert article.category == "News"
        assert len(article.short_summary) == 150
        assert article.revenue_owners == ["Dana Whitfield", "Sam Ortiz"]

    def test_empty_input(self):
        with patch(COMPLETE) as complete:
            assert process_articles_with_llm([], CALL_DIETS, [], []).articles == []
        complete.assert_not_called()


class TestFetchNewsHybrid:
    """Tests for the full hybrid fetch pipeline."""

    def test_pipeline_reports_progress_and_stats(self, db):
        layer1_articles = [
            raw_article("Acme opens plant in Ohio", "https://a.com/1", hours_ago=2),
            raw_article("Acme opens plant in Ohio", "https://a.com/1?utm_source=rss", hours_ago=3),
        ]
        layer2_text = json.dumps(
            {"results": [{"headline": "Jane Doe joins Beta Corp board", "sourceUrl": "https://b.com/9"}]}
        )
        response = processing_response({"id": 0, "company": "Acme Industrial"})
        progress = []

        with patch.object(fetcher, "fetch_layer1", AsyncMock(return_value=layer1_articles)), \
                patch.object(fetcher, "run_layer2_search", return_value=llm_result(layer2_text)), \
                patch(COMPLETE, return_value=llm_result(response)), \
                patch.object(fetcher, "utcnow", return_value=datetime(2026, 3, 10, 12)), \
                patch("company_intel.services.news.dedup.utcnow", return_value=datetime(2026, 3, 10, 12)):
            result = asyncio.run(
                fetch_news_hybrid(db, CALL_DIETS, lambda p, m, s=None: progress.append((p, m, s)), days=1)
            )

        assert result.stats["layer1"] == 2
        assert result.stats["layer2"] == 1
        assert result.stats["total_raw"] == 3
        assert result.stats["after_dedup"] == 2
        assert result.stats["after_processing"] == 1
        assert [p for p, _, _ in progress] == sorted(p for p, _, _ in progress)
        completed_steps = {s["index"] for _, _, s in progress if s and s["status"] == "completed"}
        assert completed_steps == {1, 2, 3, 4}

    def test_no_call_diets(self, db):
        with patch.object(fetcher, "fetch_layer1", AsyncMock()) as layer1_mock:
            result = asyncio.run(fetch_news_hybrid(db, []))
        assert result.articles == []
        layer1_mock.assert_not_called()


class TestSearchNews:
    """Tests for ad-hoc news search."""

    def test_search_company(self, db):
        response = processing_response(
            {"headline": "Acme wins contract", "sourceUrl": "https://a.com/1", "company": "Acme Industrial"}
        )
        with patch(WEB_SEARCH, return_value=llm_result(response, web_search_calls=2)) as search:
            result = search_news(company="Acme Industrial", days=7, db=db)

        assert "Company: Acme Industrial" in search.call_args.args[0]
        assert "last 7 days" in search.call_args.args[0]
        assert result.articles[0].company == "Acme Industrial"
        event = db.query(CostEvent).one()
        assert event.stage == "news_search"
        assert event.web_search_calls == 2

    def test_requires_entity(self):
        with patch(WEB_SEARCH) as search:
            assert search_news().articles == []
        search.assert_not_called()

    @pytest.mark.parametrize("side_effect", [RuntimeError("down"), None])
    def test_failures_return_empty(self, side_effect):
        kwargs = {"side_effect": side_effect} if side_effect else {"return_value": llm_result("not json")}
        with patch(WEB_SEARCH, **kwargs):
            assert search_news(person="Jane Doe").articles == []
