"""
Aggregated research-job metrics for the admin dashboard.

Jobs are filtered in SQL and aggregated in Python.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.cost_event import CostEvent
from ..models.research_job import ResearchJob, JobStatus

COMPLETED_STATUSES = (JobStatus.COMPLETED, JobStatus.COMPLETED_WITH_ERRORS)


@dataclass
class MetricsFilters:
    year: Optional[int] = None
    month: Optional[int] = None  # 1-12, only meaningful with year
    report_type: Optional[str] = None
    industry: Optional[str] = None
    geography: Optional[str] = None
    status: Optional[str] = None


def _date_range(filters: MetricsFilters):
    if not filters.year:
        return None, None
    if filters.month:
        start = datetime(filters.year, filters.month, 1)
        end = datetime(filters.year + (filters.month == 12), filters.month % 12 + 1, 1)
    else:
        start = datetime(filters.year, 1, 1)
        end = datetime(filters.year + 1, 1, 1)
    return start, end


def _job_query(db: Session, filters: MetricsFilters):
    q = db.query(ResearchJob)
    start, end = _date_range(filters)
    if start is not None:
        q = q.filter(ResearchJob.created_at >= start, ResearchJob.created_at < end)
    if filters.report_type:
        q = q.filter(ResearchJob.report_type == filters.report_type.upper())
    if filters.industry:
        q = q.filter(ResearchJob.industry == filters.industry)
    if filters.geography:
        q = q.filter(ResearchJob.geography == filters.geography)
    if filters.status:
        q = q.filter(ResearchJob.status == filters.status)
    return q


def success_rate(completed: int, failed: int) -> float:
    """completed / (completed + failed); cancelled and in-flight jobs are ignored."""
    total = completed + failed
    return completed / total if total else 0.0


def _duration_ms(job: ResearchJob) -> Optional[float]:
    if job.started_at and job.completed_at:
        return (job.completed_at - job.started_at).total_seconds() * 1000
    return None


def compute_kpis(jobs: List[ResearchJob]) -> Dict[str, Any]:
    completed = [j for j in jobs if j.status in COMPLETED_STATUSES]
    failed = sum(1 for j in jobs if j.status == JobStatus.FAILED)
    costs = [float(j.total_cost_usd or 0) for j in completed]
    durations = [d for d in (_duration_ms(j) for j in completed) if d is not None]

    return {
        "total_jobs": len(jobs),
        "completed_jobs": len(completed),
        "failed_jobs": failed,
        "success_rate": success_rate(len(completed), failed),
        "avg_duration_minutes": (sum(durations) / len(durations) / 60000) if durations else 0.0,
        "avg_cost_usd": (sum(costs) / len(costs)) if costs else 0.0,
        "total_cost_usd": sum(costs),
    }


def monthly_trends(jobs: List[ResearchJob], year: Optional[int] = None) -> List[Dict[str, Any]]:
    """One row per month with jobs; every month of ``year`` when one is given."""
    buckets: Dict[str, List[ResearchJob]] = defaultdict(list)
    if year:
        for m in range(1, 13):
            buckets[f"{year:04d}-{m:02d}"] = []
    for job in jobs:
        buckets[job.created_at.strftime("%Y-%m")].append(job)

    trends = []
    for month in sorted(buckets):
        kpis = compute_kpis(buckets[month])
        trends.append(
            {
                "month": month,
                "jobs": kpis["total_jobs"],
                "cost": kpis["total_cost_usd"],
                "avg_duration": kpis["avg_duration_minutes"],
                "success_rate": kpis["success_rate"],
            }
        )
    return trends


def report_type_breakdown(jobs: List[ResearchJob]) -> List[Dict[str, Any]]:
    totals: Dict[str, Dict[str, Any]] = {}
    for job in jobs:
        row = totals.setdefault(job.report_type or "UNSPECIFIED", {"jobs": 0, "cost": 0.0})
        row["jobs"] += 1
        row["cost"] += float(job.total_cost_usd or 0)
    return [{"type": k, **v} for k, v in sorted(totals.items(), key=lambda kv: -kv[1]["jobs"])]


def stage_breakdown(db: Session, filters: MetricsFilters) -> List[Dict[str, Any]]:
    job_ids = [row.id for row in _job_query(db, filters).with_entities(ResearchJob.id).all()]
    if not job_ids:
        return []
    rows = (
        db.query(
            CostEvent.stage,
            func.sum(CostEvent.cost_usd),
            func.count(CostEvent.id),
        )
        .filter(CostEvent.job_id.in_(job_ids))
        .group_by(CostEvent.stage)
        .all()
    )
    out = []
    for stage, total, calls in rows:
        total = float(total or 0)
        out.append(
            {
                "stage": stage or "unknown",
                "total_cost": total,
                "avg_cost": total / calls if calls else 0.0,
                "call_count": int(calls or 0),
            }
        )
    return sorted(out, key=lambda r: -r["total_cost"])


def filter_options(db: Session) -> Dict[str, Any]:
    years = sorted(
        {dt.year for (dt,) in db.query(ResearchJob.created_at).all() if dt},
        reverse=True,
    )

    def distinct(column):
        return sorted(v for (v,) in db.query(column).distinct().all() if v)

    return {
        "years": years,
        "report_types": distinct(ResearchJob.report_type),
        "industries": distinct(ResearchJob.industry),
        "geographies": distinct(ResearchJob.geography),
    }


def get_metrics(db: Session, filters: MetricsFilters | None = None) -> Dict[str, Any]:
    filters = filters or MetricsFilters()
    jobs = _job_query(db, filters).all()
    # Trends span the whole year (or all time) even when a month is selected.
    trend_filters = replace(filters, month=None)
    trend_jobs = _job_query(db, trend_filters).all()

    return {
        "kpis": compute_kpis(jobs),
        "monthly_trends": monthly_trends(trend_jobs, filters.year),
        "breakdowns": {
            "by_report_type": report_type_breakdown(jobs),
            "by_stage": stage_breakdown(db, filters),
        },
        "filter_options": filter_options(db),
    }
