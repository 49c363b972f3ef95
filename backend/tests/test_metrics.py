"""
Tests for metrics.py - KPIs, monthly trends and breakdowns.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from company_intel.models.cost_event import CostEvent
from company_intel.models.research_job import JobStatus, ResearchJob
from company_intel.services.metrics import (
    MetricsFilters,
    compute_kpis,
    get_metrics,
    success_rate,
)


def _job(status, created_at, *, minutes=None, cost=None, report_type="INDUSTRIALS", **kwargs):
    started = created_at if minutes is not None else None
    return ResearchJob(
        company_name=kwargs.pop("company_name", "Acme"),
        status=status,
        report_type=report_type,
        created_at=created_at,
        started_at=started,
        completed_at=created_at + timedelta(minutes=minutes) if minutes is not None else None,
        total_cost_usd=Decimal(str(cost)) if cost is not None else None,
        **kwargs,
    )


@pytest.fixture
def seeded(db):
    jobs = [
        _job(JobStatus.COMPLETED, datetime(2026, 1, 10), minutes=10, cost=1.0),
        _job(JobStatus.COMPLETED_WITH_ERRORS, datetime(2026, 1, 20), minutes=20, cost=3.0, report_type="PE"),
        _job(JobStatus.FAILED, datetime(2026, 2, 5), cost=0.5),
        _job(JobStatus.CANCELLED, datetime(2026, 2, 6)),
        _job(JobStatus.COMPLETED, datetime(2025, 12, 30), minutes=30, cost=2.0, industry="Machinery"),
    ]
    db.add_all(jobs)
    db.commit()
    db.add_all(
        [
            CostEvent(job_id=jobs[0].id, stage="foundation", provider="openai", model="gpt-5", cost_usd=Decimal("0.6")),
            CostEvent(job_id=jobs[0].id, stage="trends", provider="openai", model="gpt-5", cost_usd=Decimal("0.4")),
            CostEvent(job_id=jobs[1].id, stage="foundation", provider="openai", model="gpt-5", cost_usd=Decimal("1.4")),
            CostEvent(job_id=jobs[4].id, stage="foundation", provider="openai", model="gpt-5", cost_usd=Decimal("9.0")),
        ]
    )
    db.commit()
    return jobs


class TestKpis:
    """Tests for headline KPI aggregation."""

    @pytest.mark.parametrize("completed,failed,expected", [
        (3, 1, 0.75),
        (0, 0, 0.0),
        (0, 2, 0.0),
    ])
    def test_success_rate(self, completed, failed, expected):
        assert success_rate(completed, failed) == expected

    def test_kpis_over_completed_jobs(self, seeded):
        kpis = compute_kpis(seeded)
        assert kpis["total_jobs"] == 5
        assert kpis["completed_jobs"] == 3
        assert kpis["failed_jobs"] == 1
        assert kpis["success_rate"] == pytest.approx(0.75)
        # Failed job cost is not counted.
        assert kpis["total_cost_usd"] == pytest.approx(6.0)
        assert kpis["avg_cost_usd"] == pytest.approx(2.0)
        assert kpis["avg_duration_minutes"] == pytest.approx(20.0)

    def test_empty(self):
        kpis = compute_kpis([])
        assert kpis["success_rate"] == 0.0
        assert kpis["avg_duration_minutes"] == 0.0


class TestGetMetrics:
    """Tests for filtered dashboard metrics."""

    def test_year_filter(self, db, seeded):
        metrics = get_metrics(db, MetricsFilters(year=2026))
        assert metrics["kpis"]["total_jobs"] == 4
        trends = metrics["monthly_trends"]
        assert [t["month"] for t in trends] == [f"2026-{m:02d}" for m in range(1, 13)]
        assert [t["jobs"] for t in trends[:3]] == [2, 2, 0]
        assert trends[11] == {"month": "2026-12", "jobs": 0, "cost": 0, "avg_duration": 0.0, "success_rate": 0.0}

    def test_month_filter_keeps_full_year_trend(self, db, seeded):
        metrics = get_metrics(db, MetricsFilters(year=2026, month=1))
        assert metrics["kpis"]["total_jobs"] == 2
        assert len(metrics["monthly_trends"]) == 12
        assert metrics["monthly_trends"][1]["jobs"] == 2

    def test_no_year_lists_only_active_months(self, db, seeded):
        months = [t["month"] for t in get_metrics(db)["monthly_trends"]]
        assert months == ["2025-12", "2026-01", "2026-02"]

    def test_report_type_breakdown(self, db, seeded):
        breakdown = get_metrics(db, MetricsFilters(year=2026))["breakdowns"]["by_report_type"]
        assert breakdown[0] == {"type": "INDUSTRIALS", "jobs": 3, "cost": pytest.approx(1.5)}
        assert breakdown[1]["type"] == "PE"

    def test_stage_breakdown_scoped_to_filtered_jobs(self, db, seeded):
        by_stage = get_metrics(db, MetricsFilters(year=2026))["breakdowns"]["by_stage"]
        foundation = next(r for r in by_stage if r["stage"] == "foundation")
        assert foundation["total_cost"] == pytest.approx(2.0)
        assert foundation["call_count"] == 2
        assert foundation["avg_cost"] == pytest.approx(1.0)
        assert by_stage[0]["stage"] == "foundation"

    def test_filter_options(self, db, seeded):
        options = get_metrics(db)["filter_options"]
        assert options["years"] == [2026, 2025]
        assert options["report_types"] == ["INDUSTRIALS", "PE"]
        assert options["industries"] == ["Machinery"]

    def test_status_and_report_type_filters(self, db, seeded):
        metrics = get_metrics(db, MetricsFilters(report_type="pe", status=JobStatus.COMPLETED_WITH_ERRORS))
        assert metrics["kpis"]["total_jobs"] == 1
