"""
Tests for job_status.py - final status, derived list status, progress and
overall confidence.
"""
import pytest

from company_intel.models.research_job import JobStatus
from company_intel.services.job_status import (
    compute_final_status,
    compute_overall_confidence,
    compute_terminal_progress,
    derive_job_status,
    filter_jobs_by_derived_status,
)

from tests.fixtures.research_fixtures import ALL_COMPLETED_SUB_JOBS, MIXED_SUB_JOBS, sub_job


class TestFinalStatus:
    """Status assigned when the orchestrator finishes a job."""

    def test_all_completed(self):
        assert compute_final_status(JobStatus.RUNNING, ALL_COMPLETED_SUB_JOBS) == JobStatus.COMPLETED

    def test_some_failed_is_completed_with_errors(self):
        assert compute_final_status(JobStatus.RUNNING, MIXED_SUB_JOBS) == JobStatus.COMPLETED_WITH_ERRORS

    def test_foundation_failure_fails_job(self):
        subs = [sub_job("foundation", "failed"), sub_job("trends", "failed")]
        assert compute_final_status(JobStatus.RUNNING, subs) == JobStatus.FAILED

    @pytest.mark.parametrize("status", [JobStatus.CANCELLED, JobStatus.FAILED])
    def test_terminal_job_status_kept(self, status):
        assert compute_final_status(status, ALL_COMPLETED_SUB_JOBS) == status

    def test_non_terminal_sub_jobs_keep_current_status(self):
        subs = [sub_job("foundation", "completed"), sub_job("trends", "pending")]
        assert compute_final_status(JobStatus.RUNNING, subs) == JobStatus.RUNNING

    def test_cancelled_sub_jobs_without_failures(self):
        subs = [sub_job("foundation", "completed"), sub_job("trends", "cancelled")]
        assert compute_final_status(JobStatus.RUNNING, subs) == JobStatus.CANCELLED


class TestDerivedStatus:
    """Status shown in list views, reconciled with sub-job states."""

    def test_no_sub_jobs_returns_stored_status(self):
        assert derive_job_status(JobStatus.QUEUED, []) == JobStatus.QUEUED

    @pytest.mark.parametrize("status", [JobStatus.CANCELLED, JobStatus.FAILED])
    def test_cancelled_and_failed_are_final(self, status):
        assert derive_job_status(status, [sub_job("foundation", "running")]) == status

    def test_running_sub_job_means_running(self):
        subs = [sub_job("foundation", "completed"), sub_job("trends", "running")]
        assert derive_job_status(JobStatus.QUEUED, subs) == JobStatus.RUNNING

    def test_pending_and_completed_means_running(self):
        subs = [sub_job("foundation", "completed"), sub_job("trends", "pending")]
        assert derive_job_status(JobStatus.QUEUED, subs) == JobStatus.RUNNING

    def test_failed_without_pending_is_completed_with_errors(self):
        assert derive_job_status(JobStatus.RUNNING, MIXED_SUB_JOBS) == JobStatus.COMPLETED_WITH_ERRORS

    def test_all_completed_is_completed(self):
        assert derive_job_status(JobStatus.RUNNING, ALL_COMPLETED_SUB_JOBS) == JobStatus.COMPLETED

    def test_queued_with_only_pending(self):
        subs = [sub_job("foundation", "pending"), sub_job("trends", "pending")]
        assert derive_job_status(JobStatus.QUEUED, subs) == JobStatus.QUEUED

    def test_filter_by_derived_status(self):
        jobs = [
            {"id": 1, "status": JobStatus.RUNNING, "sub_jobs": ALL_COMPLETED_SUB_JOBS},
            {"id": 2, "status": JobStatus.RUNNING, "sub_jobs": MIXED_SUB_JOBS},
            {"id": 3, "status": JobStatus.QUEUED, "sub_jobs": []},
        ]
        assert [j["id"] for j in filter_jobs_by_derived_status(jobs, JobStatus.COMPLETED)] == [1]
        assert [j["id"] for j in filter_jobs_by_derived_status(jobs, None)] == [1, 2, 3]


class TestProgressAndConfidence:
    """Tests for progress and overall confidence."""

    def test_progress_counts_terminal_sub_jobs(self):
        subs = [
            sub_job("foundation", "completed"),
            sub_job("trends", "failed"),
            sub_job("recent_news", "pending"),
            sub_job("appendix", "running"),
        ]
        assert compute_terminal_progress(subs) == 0.5

    def test_progress_empty(self):
        assert compute_terminal_progress([]) == 0.0

    def test_confidence_averages_levels(self):
        score, label = compute_overall_confidence(ALL_COMPLETED_SUB_JOBS)
        assert score == pytest.approx(0.8)
        assert label == "HIGH"

    def test_failed_stages_count_as_low(self):
        # HIGH 0.9, failed 0.3, MEDIUM 0.6, failed 0.3 -> 0.525
        score, label = compute_overall_confidence(MIXED_SUB_JOBS)
        assert score == pytest.approx(0.525)
        assert label == "MEDIUM"

    def test_nothing_to_score(self):
        assert compute_overall_confidence([sub_job("trends", "pending")]) == (None, None)
