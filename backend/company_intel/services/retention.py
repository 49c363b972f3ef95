from __future__ import annotations

from datetime import datetime, timedelta
import logging

from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..models.cost_event import CostEvent
from ..models.research_job import ResearchJob
from ..models.research_sub_job import ResearchSubJob
from ..models.research_trace_event import ResearchTraceEvent

logger = logging.getLogger(__name__)


def delete_expired_jobs(db: Session, now: datetime | None = None) -> int:
    """
    Delete research jobs older than RESEARCH_RETENTION_DAYS together with
    their sub-jobs, trace events and cost events. Returns the number of jobs
    removed; the caller owns the transaction.
    """
    cutoff = (now or datetime.utcnow()) - timedelta(days=get_settings().RESEARCH_RETENTION_DAYS)
    job_ids = [row.id for row in db.query(ResearchJob.id).filter(ResearchJob.created_at < cutoff).all()]
    if not job_ids:
        return 0

    for model in (ResearchSubJob, ResearchTraceEvent, CostEvent):
        db.query(model).filter(model.job_id.in_(job_ids)).delete(synchronize_session=False)
    return (
        db.query(ResearchJob)
        .filter(ResearchJob.id.in_(job_ids))
        .delete(synchronize_session=False)
    )


@celery_app.task(name="company_intel.services.retention.cleanup_expired")
def cleanup_expired() -> int:
    """
    Periodic task to enforce the research data retention policy.

    Tracked companies, people and news articles are not touched here; news
    has its own shorter window applied on every refresh.
    """
    db: Session = SessionLocal()
    try:
        deleted_jobs = delete_expired_jobs(db)
        if not deleted_jobs:
            logger.info("No expired research jobs found for cleanup", extra={"step": "retention"})
            return 0

        db.commit()
        logger.info(
            "Deleted %d expired research jobs",
            deleted_jobs,
            extra={"step": "retention"},
        )
        return deleted_jobs
    except Exception:
        db.rollback()
        logger.exception("Error during cleanup_expired", extra={"step": "retention"})
        raise
    finally:
        db.close()
