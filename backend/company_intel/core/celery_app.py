from celery import Celery
from celery.schedules import crontab

from .config import get_settings
from .logging import configure_logging

settings = get_settings()
configure_logging()

celery_app = Celery(
    "company_intel",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_routes={
        "company_intel.services.orchestrator.run_research_job": {"queue": "research"},
        "company_intel.services.orchestrator.process_queue": {"queue": "research"},
        "company_intel.services.news.refresh.refresh_news": {"queue": "news"},
    },
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    imports=(
        "company_intel.services.orchestrator",
        "company_intel.services.retention",
        "company_intel.services.news.refresh",
    ),
    beat_schedule={
        # Daily cleanup of old research data based on RESEARCH_RETENTION_DAYS
        "cleanup-expired-research-data": {
            "task": "company_intel.services.retention.cleanup_expired",
            "schedule": crontab(hour=3, minute=0),
        },
        # 05:00 UTC is midnight US Eastern (standard time)
        "daily-news-refresh": {
            "task": "company_intel.services.news.refresh.refresh_news",
            "schedule": crontab(hour=5, minute=0),
            "kwargs": {"triggered_by": "scheduler"},
        },
        # Picks up queued jobs if a worker died between jobs
        "research-queue-sweep": {
            "task": "company_intel.services.orchestrator.process_queue",
            "schedule": crontab(minute="*/5"),
        },
    },
)
