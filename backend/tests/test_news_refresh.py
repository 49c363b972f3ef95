"""
Tests for news/refresh.py - refresh status bookkeeping, call diets,
persistence and the Celery task wrapper.
"""
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from company_intel.models.news_article import (
    ArticleRevenueOwner,
    ArticleSource,
    ArticleStatus,
    FetchLayer,
    NewsArticle,
)
from company_intel.models.news_tracking import NewsTag, RevenueOwner, TrackedCompany, TrackedPerson
from company_intel.services.news import refresh
from company_intel.services.news.articles import ArticleSourceInfo, FetchResult
from company_intel.services.news.refresh import (
    REFRESH_TASK,
    RefreshInProgressError,
    get_refresh_status,
    is_refresh_running,
    load_call_diets,
    persist_articles,
    purge_old_articles,
    run_refresh,
    set_refresh_status,
    start_refresh,
    update_step,
)

from tests.fixtures.news_fixtures import processed_article


@pytest.fixture
def tracked(db):
    acme = TrackedCompany(name="Acme Industrial", ticker="ACME")
    beta = TrackedCompany(name="Beta Corp")
    jane = TrackedPerson(name="Jane Doe", title="CEO")
    deals = NewsTag(name="M&A / Deal Activity", category="topic")
    dana = RevenueOwner(name="Dana Whitfield", companies=[acme, beta], people=[jane], tags=[deals])
    sam = RevenueOwner(name="Sam Ortiz", companies=[acme])
    db.add_all([dana, sam])
    db.commit()
    return {"acme": acme, "beta": beta, "jane": jane, "deals": deals, "dana": dana, "sam": sam}


class TestRefreshStatus:
    """Tests for refresh status bookkeeping."""

    def test_idle_by_default(self, db):
        status = get_refresh_status(db)
        assert status["is_refreshing"] is False
        assert len(status["steps"]) == 6
        assert all(s["status"] == "pending" for s in status["steps"])

    def test_set_merges_changes(self, db):
        set_refresh_status(db, progress=40, progress_message="Working")
        set_refresh_status(db, progress=60)
        status = get_refresh_status(db)
        assert (status["progress"], status["progress_message"]) == (60, "Working")

    def test_update_step(self, db):
        update_step(db, 2, "completed", "12 from AI web search")
        update_step(db, 99, "completed")
        step = get_refresh_status(db)["steps"][2]
        assert step == {"label": "Layer 2: AI web search", "status": "completed", "detail": "12 from AI web search"}

    @pytest.mark.parametrize("status,running", [
        ({"is_refreshing": False}, False),
        ({"is_refreshing": True, "started_at": None}, True),
        ({"is_refreshing": True, "started_at": "2026-03-10T11:50:00"}, True),
        ({"is_refreshing": True, "started_at": "2026-03-10T10:00:00"}, False),
    ])
    def test_stale_refresh_not_running(self, status, running):
        assert is_refresh_running(status, now=datetime(2026, 3, 10, 12)) is running

    def test_start_refresh_enqueues_task(self, db):
        set_refresh_status(db, last_refreshed_at="2026-03-09T06:00:00", error="old failure")
        with patch.object(refresh.celery_app, "send_task") as send_task:
            status = start_refresh(db, triggered_by="manual")

        send_task.assert_called_once_with(REFRESH_TASK, kwargs={"triggered_by": "manual"}, queue="news")
        assert status["is_refreshing"] is True
        assert status["error"] is None
        assert status["last_refreshed_at"] == "2026-03-09T06:00:00"

    def test_start_refresh_rejects_concurrent_run(self, db):
        with patch.object(refresh.celery_app, "send_task") as send_task:
            start_refresh(db)
            with pytest.raises(RefreshInProgressError):
                start_refresh(db)
        assert send_task.call_count == 1


class TestCallDiets:
    """Tests for building call diets from revenue owners."""

    def test_load_all(self, db, tracked):
        diets = load_call_diets(db)
        assert [d.revenue_owner_name for d in diets] == ["Dana Whitfield", "Sam Ortiz"]
        dana = diets[0]
        assert dana.companies == [{"name": "Acme Industrial", "ticker": "ACME"}, {"name": "Beta Corp", "ticker": None}]
        assert dana.people == [{"name": "Jane Doe", "title": "CEO"}]
        assert dana.topics == ["M&A / Deal Activity"]

    def test_load_selected(self, db, tracked):
        diets = load_call_diets(db, [tracked["sam"].id])
        assert [d.revenue_owner_name for d in diets] == ["Sam Ortiz"]


class TestPersistArticles:
    """Tests for saving processed articles."""

    def test_creates_linked_article(self, db, tracked):
        item = processed_article(
            "Acme buys Beta",
            "https://a.com/1",
            company="acme industrial",
            category="M&A / Deal Activity",
            owners=["Dana Whitfield", "Unknown Owner"],
            sources=[
                ArticleSourceInfo("https://a.com/1", "Reuters", FetchLayer.LAYER1_RSS),
                ArticleSourceInfo("https://b.com/2", "FT", FetchLayer.LAYER2_LLM),
            ],
        )
        counts = persist_articles(db, [item], {"Dana Whitfield": tracked["dana"].id})

        assert counts == {"created": 1, "updated": 0, "skipped": 0}
        article = db.query(NewsArticle).one()
        assert article.company_id == tracked["acme"].id
        assert article.tag_id == tracked["deals"].id
        assert article.status == ArticleStatus.NEW_ARTICLE
        assert article.published_at == datetime(2026, 3, 10)
        assert [s.source_url for s in article.sources] == ["https://a.com/1", "https://b.com/2"]
        assert [link.revenue_owner_id for link in article.revenue_owner_links] == [tracked["dana"].id]

    def test_existing_url_flagged_update(self, db, tracked):
        persist_articles(db, [processed_article("First", "https://a.com/1", company="Acme Industrial")])
        again = processed_article(
            "First",
            "https://a.com/1",
            person="Jane Doe",
            short_summary="Refreshed.",
            sources=[ArticleSourceInfo("https://c.com/3", "WSJ")],
        )
        counts = persist_articles(db, [again])

        assert counts == {"created": 0, "updated": 1, "skipped": 0}
        article = db.query(NewsArticle).one()
        assert article.status == ArticleStatus.UPDATE
        assert article.short_summary == "Refreshed."
        assert article.person_id == tracked["jane"].id
        assert db.query(ArticleSource).count() == 2

    def test_untracked_and_urlless_skipped(self, db, tracked):
        items = [
            processed_article("Somebody else", "https://a.com/9", company="Gamma LLC"),
            processed_article("No url", "", company="Acme Industrial"),
        ]
        assert persist_articles(db, items) == {"created": 0, "updated": 0, "skipped": 2}
        assert db.query(NewsArticle).count() == 0


class TestPurge:
    """Tests for the news retention purge."""

    def test_purges_old_articles_and_children(self, db, tracked):
        old = NewsArticle(
            headline="Old",
            source_url="https://a.com/old",
            fetched_at=datetime.utcnow() - timedelta(days=45),
            sources=[ArticleSource(source_url="https://a.com/old")],
            revenue_owner_links=[ArticleRevenueOwner(revenue_owner_id=tracked["dana"].id)],
        )
        fresh = NewsArticle(headline="Fresh", source_url="https://a.com/fresh")
        db.add_all([old, fresh])
        db.commit()

        assert purge_old_articles(db, days=30) == 1
        assert [a.headline for a in db.query(NewsArticle).all()] == ["Fresh"]
        assert db.query(ArticleSource).count() == 0
        assert db.query(ArticleRevenueOwner).count() == 0

    def test_nothing_to_purge(self, db):
        assert purge_old_articles(db, days=30) == 0


class TestRunRefresh:
    """Tests for the refresh run and its Celery task."""

    def test_run_saves_articles_and_stats(self, db, tracked):
        fetched = FetchResult(
            articles=[processed_article("Acme buys Beta", "https://a.com/1", company="Acme Industrial",
                                        owners=["Sam Ortiz"])],
            coverage_gaps=[{"company": "Beta Corp"}],
            stats={"layer1": 3, "layer2": 1},
        )

        async def fake_fetch(db, call_diets, on_progress, days=None):
            on_progress(50, "Halfway", {"index": 3, "status": "completed", "detail": "3 unique"})
            return fetched

        with patch.object(refresh, "fetch_news_hybrid", fake_fetch):
            stats = run_refresh(db, "manual")

        assert stats["created"] == 1
        assert stats["coverage_gaps"] == 1
        assert stats["layer1"] == 3
        status = get_refresh_status(db)
        assert status["is_refreshing"] is False
        assert status["progress"] == 100
        assert status["last_refreshed_at"] == status["completed_at"]
        assert [s["status"] for s in status["steps"]] == ["completed", "pending", "pending", "completed", "pending", "completed"]
        link = db.query(ArticleRevenueOwner).one()
        assert link.revenue_owner_id == tracked["sam"].id

    def test_task_records_failure(self, db, session_factory):
        with patch.object(refresh, "SessionLocal", session_factory), \
                patch.object(refresh, "run_refresh", side_effect=RuntimeError("feeds down")):
            with pytest.raises(RuntimeError):
                refresh.refresh_news.run(triggered_by="manual")

        status = get_refresh_status(db)
        assert status["is_refreshing"] is False
        assert status["error"] == "feeds down"

    def test_scheduled_run_skipped_while_running(self, db, session_factory):
        set_refresh_status(db, is_refreshing=True, started_at=datetime.utcnow().isoformat())
        with patch.object(refresh, "SessionLocal", session_factory), \
                patch.object(refresh, "run_refresh") as run:
            assert refresh.refresh_news.run(triggered_by="scheduler") is None
        run.assert_not_called()
