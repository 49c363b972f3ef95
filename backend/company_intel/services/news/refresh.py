from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...core.celery_app import celery_app
from ...core.config import get_settings
from ...core.db import SessionLocal
from ...models.news_article import (
    ArticleRevenueOwner,
    ArticleSource,
    ArticleStatus,
    NewsArticle,
)
from ...models.news_config import NewsConfig
from ...models.news_tracking import NewsTag, RevenueOwner, TrackedCompany, TrackedPerson
from .articles import CallDiet, ProcessedArticle, parse_published, utcnow
from .fetcher import PROGRESS_STEPS, fetch_news_hybrid

logger = logging.getLogger(__name__)

REFRESH_TASK = "company_intel.services.news.refresh.refresh_news"
REFRESH_STATUS_KEY = "refresh_status"
# A refresh flagged as running for longer than this is assumed dead.
REFRESH_STALE_AFTER = timedelta(minutes=30)


class RefreshInProgressError(RuntimeError):
    pass


# ---------------------------------------------------------------------------
# Refresh status (NewsConfig["refresh_status"])
# ---------------------------------------------------------------------------


def _idle_status() -> Dict[str, Any]:
    return {
        "is_refreshing": False,
        "progress": 0,
        "progress_message": None,
        "steps": [{"label": label, "status": "pending", "detail": None} for label in PROGRESS_STEPS],
        "started_at": None,
        "completed_at": None,
        "last_refreshed_at": None,
        "triggered_by": None,
        "stats": None,
        "error": None,
    }


def get_refresh_status(db: Session) -> Dict[str, Any]:
    row = db.get(NewsConfig, REFRESH_STATUS_KEY)
    status = _idle_status()
    if row and isinstance(row.value, dict):
        status.update(row.value)
    return status


def set_refresh_status(db: Session, **changes: Any) -> Dict[str, Any]:
    status = get_refresh_status(db)
    status.update(changes)
    row = db.get(NewsConfig, REFRESH_STATUS_KEY)
    if row is None:
        row = NewsConfig(key=REFRESH_STATUS_KEY)
        db.add(row)
    # Reassign a fresh dict so the JSON column is flagged dirty.
    row.value = dict(status)
    row.updated_at = datetime.utcnow()
    db.commit()
    return status


def is_refresh_running(status: Dict[str, Any], now: datetime | None = None) -> bool:
    if not status.get("is_refreshing"):
        return False
    started = status.get("started_at")
    if not started:
        return True
    return (now or utcnow()) - parse_published(started) < REFRESH_STALE_AFTER


def update_step(db: Session, index: int, step_status: str, detail: str | None = None) -> None:
    status = get_refresh_status(db)
    steps = [dict(s) for s in status.get("steps") or []]
    if 0 <= index < len(steps):
        steps[index]["status"] = step_status
        if detail is not None:
            steps[index]["detail"] = detail
    set_refresh_status(db, steps=steps)


def start_refresh(db: Session, triggered_by: str = "manual") -> Dict[str, Any]:
    """Mark a refresh as started and enqueue it. Raises ``RefreshInProgressError``."""
    if is_refresh_running(get_refresh_status(db)):
        raise RefreshInProgressError("A news refresh is already running")

    status = set_refresh_status(
        db,
        **{
            **_idle_status(),
            "is_refreshing": True,
            "progress_message": "Queued",
            "started_at": utcnow().isoformat(),
            "triggered_by": triggered_by,
            "last_refreshed_at": get_refresh_status(db).get("last_refreshed_at"),
        },
    )
    celery_app.send_task(REFRESH_TASK, kwargs={"triggered_by": triggered_by}, queue="news")
    return status


# ---------------------------------------------------------------------------
# Call diets and persistence
# ---------------------------------------------------------------------------


def load_call_diets(db: Session, revenue_owner_ids: Iterable[int] | None = None) -> List[CallDiet]:
    q = db.query(RevenueOwner).order_by(RevenueOwner.name.asc())
    ids = list(revenue_owner_ids or [])
    if ids:
        q = q.filter(RevenueOwner.id.in_(ids))
    return [
        CallDiet(
            revenue_owner_id=owner.id,
            revenue_owner_name=owner.name,
            companies=[{"name": c.name, "ticker": c.ticker} for c in owner.companies],
            people=[{"name": p.name, "title": p.title} for p in owner.people],
            topics=[t.name for t in owner.tags],
        )
        for owner in q.all()
    ]


def purge_old_articles(db: Session, days: int | None = None) -> int:
    """Delete articles fetched more than ``days`` (NEWS_RETENTION_DAYS) ago."""
    cutoff = utcnow() - timedelta(days=days or get_settings().NEWS_RETENTION_DAYS)
    old_ids = [row.id for row in db.query(NewsArticle.id).filter(NewsArticle.fetched_at < cutoff).all()]
    if not old_ids:
        return 0
    db.query(ArticleSource).filter(ArticleSource.article_id.in_(old_ids)).delete(synchronize_session=False)
    db.query(ArticleRevenueOwner).filter(ArticleRevenueOwner.article_id.in_(old_ids)).delete(
        synchronize_session=False
    )
    deleted = db.query(NewsArticle).filter(NewsArticle.id.in_(old_ids)).delete(synchronize_session=False)
    db.commit()
    return deleted


def _by_name(db: Session, model, name: Optional[str]):
    if not name:
        return None
    return db.query(model).filter(func.lower(model.name) == name.strip().lower()).first()


def persist_articles(
    db: Session,
    articles: Sequence[ProcessedArticle],
    owners_by_name: Dict[str, int] | None = None,
) -> Dict[str, int]:
    """
    Upsert processed articles by source URL.

    Existing rows are flagged ``update`` and get refreshed summaries. Articles
    matching neither a tracked company nor a tracked person are skipped.
    """
    owners_by_name = {k.lower(): v for k, v in (owners_by_name or {}).items()}
    counts = {"created": 0, "updated": 0, "skipped": 0}
    now = utcnow()

    for item in articles:
        if not item.source_url:
            counts["skipped"] += 1
            continue
        company = _by_name(db, TrackedCompany, item.company)
        person = _by_name(db, TrackedPerson, item.person)
        if company is None and person is None:
            counts["skipped"] += 1
            continue
        tag = _by_name(db, NewsTag, item.category)

        article = db.query(NewsArticle).filter(NewsArticle.source_url == item.source_url).first()
        if article is None:
            article = NewsArticle(
                headline=item.headline[:500],
                source_url=item.source_url,
                source_name=item.source_name,
                published_at=parse_published(item.published_at, now) if item.published_at else None,
                fetched_at=now,
                category=item.category,
                status=ArticleStatus.NEW_ARTICLE,
                match_type=item.match_type,
                fetch_layer=item.fetch_layer,
            )
            db.add(article)
            counts["created"] += 1
        else:
            article.status = ArticleStatus.UPDATE
            article.fetched_at = now
            counts["updated"] += 1

        article.short_summary = item.short_summary
        article.long_summary = item.long_summary
        article.summary = item.summary
        article.why_it_matters = item.why_it_matters
        article.company_id = company.id if company else None
        article.person_id = person.id if person else None
        article.tag_id = tag.id if tag else None
        db.flush()

        known_sources = {s.source_url for s in article.sources}
        for source in item.sources:
            if source.source_url and source.source_url not in known_sources:
                article.sources.append(
                    ArticleSource(
                        source_url=source.source_url,
                        source_name=source.source_name,
                        fetch_layer=source.fetch_layer,
                    )
                )
                known_sources.add(source.source_url)

        linked = {link.revenue_owner_id for link in article.revenue_owner_links}
        for owner_name in item.revenue_owners:
            owner_id = owners_by_name.get((owner_name or "").lower())
            if owner_id and owner_id not in linked:
                article.revenue_owner_links.append(ArticleRevenueOwner(revenue_owner_id=owner_id))
                linked.add(owner_id)

    db.commit()
    return counts


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------


def run_refresh(db: Session, triggered_by: str = "manual") -> Dict[str, Any]:
    settings = get_settings()
    set_refresh_status(
        db,
        is_refreshing=True,
        progress=5,
        progress_message="Loading revenue owners",
        started_at=get_refresh_status(db).get("started_at") or utcnow().isoformat(),
        triggered_by=triggered_by,
        error=None,
    )
    update_step(db, 0, "in_progress")

    purged = purge_old_articles(db)
    call_diets = load_call_diets(db)
    update_step(db, 0, "completed", f"{len(call_diets)} revenue owners")

    def on_progress(progress: int, message: str, step: Dict[str, Any] | None = None) -> None:
        set_refresh_status(db, progress=progress, progress_message=message)
        if step:
            update_step(db, step["index"], step["status"], step.get("detail"))

    result = asyncio.run(fetch_news_hybrid(db, call_diets, on_progress, days=settings.NEWS_RECENT_DAYS))

    update_step(db, 5, "in_progress")
    owners = {cd.revenue_owner_name: cd.revenue_owner_id for cd in call_diets}
    counts = persist_articles(db, result.articles, owners)
    update_step(db, 5, "completed", f"{counts['created']} new, {counts['updated']} updated")

    stats = {**result.stats, **counts, "purged": purged, "coverage_gaps": len(result.coverage_gaps)}
    finished = utcnow().isoformat()
    set_refresh_status(
        db,
        is_refreshing=False,
        progress=100,
        progress_message="Refresh complete",
        completed_at=finished,
        last_refreshed_at=finished,
        stats=stats,
    )
    logger.info("News refresh complete: %s", stats, extra={"step": "news:refresh"})
    return stats


@celery_app.task(name=REFRESH_TASK, queue="news")
def refresh_news(triggered_by: str = "manual"):
    db: Session = SessionLocal()
    try:
        if triggered_by == "scheduler":
            if is_refresh_running(get_refresh_status(db)):
                logger.info("Skipping scheduled refresh; one is already running", extra={"step": "news:refresh"})
                return None
            set_refresh_status(db, started_at=utcnow().isoformat())
        return run_refresh(db, triggered_by)
    except Exception as e:
        db.rollback()
        set_refresh_status(
            db,
            is_refreshing=False,
            progress_message="Refresh failed",
            completed_at=utcnow().isoformat(),
            error=str(e)[:500],
        )
        logger.exception("News refresh failed", extra={"step": "news:refresh"})
        raise
    finally:
        db.close()
