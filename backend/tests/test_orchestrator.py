"""
Tests for orchestrator.py - job creation, the stage DAG runner, retries,
blocking, cancellation, reruns and retention.

The model is replaced by a fake executor; tracing, domain inference and the
Celery queue are patched out.
"""
import json
import threading
from datetime import datetime, timedelta
from unittest.mock import patch
from uuid import uuid4

import pytest

from company_intel.models.cost_event import CostEvent
from company_intel.models.research_job import JobStatus, ResearchJob
from company_intel.models.research_sub_job import ResearchSubJob, SubJobStatus
from company_intel.services import orchestrator
from company_intel.services.cost_tracking import record_cost_event
from company_intel.services.orchestrator import (
    build_section_input,
    cancel_job,
    claim_next_job,
    create_job,
    default_executor,
    delete_job,
    execute_job,
    finalize_job,
    get_sub_jobs,
    rerun_job,
    run_stage,
)
from company_intel.services.retention import delete_expired_jobs

from tests.fixtures.research_fixtures import FOUNDATION_OUTPUT, llm_result, section_output

EXEC_SECTIONS = ["exec_summary", "appendix"]


@pytest.fixture(autouse=True)
def quiet_side_effects():
    with patch.object(orchestrator, "trace_job_step") as trace, \
            patch.object(orchestrator, "ensure_domain_for_job") as ensure_domain, \
            patch.object(orchestrator, "nudge_queue") as nudge:
        yield {"trace": trace, "ensure_domain": ensure_domain, "nudge": nudge}


class FakeExecutor:
    """Answers every stage with valid JSON unless told to fail it."""

    def __init__(self, fail=(), invalid=(), flaky=()):
        self.fail = set(fail)
        self.invalid = set(invalid)
        self.flaky = set(flaky)
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, stage, system_prompt, user_prompt):
        with self._lock:
            self.calls.append((stage, user_prompt))
            attempt = sum(1 for s, _ in self.calls if s == stage)
        if stage in self.fail:
            raise RuntimeError(f"{stage} exploded")
        if stage in self.invalid or (stage in self.flaky and attempt == 1):
            return llm_result("not json at all", input_tokens=10)
        if stage == "foundation":
            return llm_result(json.dumps(FOUNDATION_OUTPUT), input_tokens=1000, output_tokens=500)
        return llm_result(json.dumps(section_output("MEDIUM", ["S1"], summary=stage)), input_tokens=100)

    def stages(self):
        return [s for s, _ in self.calls]


def _statuses(db, job):
    return {sj.stage: sj.status for sj in get_sub_jobs(db, job.id)}


class TestCreateJob:
    """Tests for job creation and stage resolution."""

    def test_creates_pending_sub_jobs_with_dependencies(self, db, quiet_side_effects):
        job = create_job(db, company_name="  Acme Industrial ", report_type="pe", selected_sections=["exec_summary"])

        assert job.company_name == "Acme Industrial"
        assert job.report_type == "PE"
        assert job.geography == "Global"
        assert job.status == JobStatus.QUEUED
        sub_jobs = {sj.stage: sj for sj in get_sub_jobs(db, job.id)}
        assert list(sub_jobs) == ["foundation", "financial_snapshot", "company_overview", "exec_summary"]
        assert sub_jobs["exec_summary"].dependencies == ["foundation", "financial_snapshot", "company_overview"]
        assert all(sj.status == SubJobStatus.PENDING for sj in sub_jobs.values())
        quiet_side_effects["nudge"].assert_called_once()

    def test_no_selection_runs_every_stage(self, db):
        job = create_job(db, company_name="Acme", enqueue=False)
        stages = [sj.stage for sj in get_sub_jobs(db, job.id)]
        assert stages[0] == "foundation"
        assert stages[-1] == "appendix"

    def test_domain_normalized(self, db):
        job = create_job(db, company_name="Acme", domain="https://www.Acme.com/", enqueue=False)
        assert job.domain == "www.acme.com"

    @pytest.mark.parametrize("kwargs,message", [
        ({"company_name": "  "}, "company_name is required"),
        ({"company_name": "Acme", "report_type": "retail"}, "Unknown report type"),
        ({"company_name": "Acme", "selected_sections": ["made_up"]}, "Unknown sections"),
    ])
    def test_invalid_requests(self, db, kwargs, message):
        with pytest.raises(ValueError, match=message):
            create_job(db, **kwargs)
        assert db.query(ResearchJob).count() == 0

    def test_draft_costs_linked(self, db):
        record_cost_event(db, stage="domain_inference", provider="openai", model="gpt-5", draft_id="draft-7")
        job = create_job(db, company_name="Acme", draft_id="draft-7", enqueue=False)
        assert db.query(CostEvent).one().job_id == job.id


class TestExecuteJob:
    """Tests for the stage runner: rounds, retries, blocking and cancellation."""

    def test_happy_path(self, db):
        job = create_job(db, company_name="Acme Industrial", selected_sections=EXEC_SECTIONS, enqueue=False)
        executor = FakeExecutor()

        execute_job(db, job.id, executor)
        db.refresh(job)

        assert job.status == JobStatus.COMPLETED
        assert job.progress == 1.0
        assert job.current_stage is None
        assert job.completed_at is not None
        assert set(_statuses(db, job).values()) == {SubJobStatus.COMPLETED}
        # Foundation first, exec summary after its inputs, no model call for the appendix.
        stages = executor.stages()
        assert stages[0] == "foundation"
        assert stages[-1] == "exec_summary"
        assert "appendix" not in stages
        exec_prompt = dict(executor.calls)["exec_summary"]
        assert "financial_snapshot_context" in exec_prompt
        assert "company_overview_context" in exec_prompt

        appendix = next(sj for sj in get_sub_jobs(db, job.id) if sj.stage == "appendix")
        assert [s["id"] for s in appendix.output["sources"]] == ["S1"]
        assert job.overall_confidence is not None
        assert float(job.total_cost_usd) > 0
        assert db.query(CostEvent).filter(CostEvent.job_id == job.id).count() == 4

    def test_section_failure_completes_with_errors(self, db):
        job = create_job(db, company_name="Acme", selected_sections=EXEC_SECTIONS, enqueue=False)
        executor = FakeExecutor(invalid={"financial_snapshot"})

        execute_job(db, job.id, executor)
        db.refresh(job)

        statuses = _statuses(db, job)
        assert job.status == JobStatus.COMPLETED_WITH_ERRORS
        assert statuses["financial_snapshot"] == SubJobStatus.FAILED
        assert statuses["company_overview"] == SubJobStatus.COMPLETED
        assert statuses["exec_summary"] == SubJobStatus.FAILED
        assert statuses["appendix"] == SubJobStatus.COMPLETED

        sub_jobs = {sj.stage: sj for sj in get_sub_jobs(db, job.id)}
        assert sub_jobs["financial_snapshot"].attempts == 3
        assert sub_jobs["exec_summary"].last_error == "Blocked by failed dependency: financial_snapshot"
        assert executor.stages().count("financial_snapshot") == 3
        # Every attempt that reached the model is billed.
        assert db.query(CostEvent).filter(CostEvent.stage == "financial_snapshot").count() == 3

    def test_retry_recovers(self, db):
        job = create_job(db, company_name="Acme", selected_sections=["trends"], enqueue=False)
        execute_job(db, job.id, FakeExecutor(flaky={"trends"}))
        db.refresh(job)
        trends = next(sj for sj in get_sub_jobs(db, job.id) if sj.stage == "trends")
        assert job.status == JobStatus.COMPLETED
        assert trends.attempts == 1
        assert trends.last_error is None

    def test_foundation_failure_fails_job(self, db):
        job = create_job(db, company_name="Acme", selected_sections=EXEC_SECTIONS, enqueue=False)
        executor = FakeExecutor(fail={"foundation"})

        execute_job(db, job.id, executor)
        db.refresh(job)

        assert job.status == JobStatus.FAILED
        assert job.error_message == "Foundation stage failed"
        statuses = _statuses(db, job)
        assert statuses["foundation"] == SubJobStatus.FAILED
        assert statuses["company_overview"] == SubJobStatus.FAILED
        assert set(executor.stages()) == {"foundation"}

    def test_cancelled_job_not_run(self, db):
        job = create_job(db, company_name="Acme", selected_sections=["trends"], enqueue=False)
        cancel_job(db, job)
        executor = FakeExecutor()
        execute_job(db, job.id, executor)
        assert executor.calls == []

    def test_unknown_job(self, db):
        assert execute_job(db, uuid4(), FakeExecutor()) is None

    def test_cancel_during_round_keeps_cancelled_state(self, db, session_factory):
        job = create_job(db, company_name="Acme", selected_sections=["trends"], enqueue=False)
        job_id = job.id
        inner = FakeExecutor(invalid={"foundation"})

        def cancelling_executor(stage, system_prompt, user_prompt):
            other = session_factory()
            try:
                cancel_job(other, other.get(ResearchJob, job_id))
            finally:
                other.close()
            return inner(stage, system_prompt, user_prompt)

        execute_job(db, job_id, cancelling_executor)
        db.refresh(job)

        assert job.status == JobStatus.CANCELLED
        assert set(_statuses(db, job).values()) == {SubJobStatus.CANCELLED}
        assert inner.stages() == ["foundation"]
        # The in-flight call is still billed.
        assert db.query(CostEvent).filter(CostEvent.job_id == job_id).count() == 1


class TestStageHelpers:
    """Tests for per-stage input and execution helpers."""

    def test_run_stage_captures_errors(self):
        result = run_stage("trends", "sys", "user", FakeExecutor(fail={"trends"}))
        assert not result.ok
        assert result.error == "RuntimeError: trends exploded"
        assert result.llm is None

    def test_run_stage_validates_output(self):
        result = run_stage("trends", "sys", "user", FakeExecutor())
        assert result.ok
        assert result.output["confidence"]["level"] == "MEDIUM"

    def test_foundation_input_has_no_context(self):
        job = ResearchJob(company_name="Acme", geography="Europe", industry="Machinery", focus_areas=["pricing"])
        data = build_section_input(job, "foundation", {"foundation": FOUNDATION_OUTPUT})
        assert data["industry"] == "Machinery"
        assert "foundation" not in data

    def test_section_input_carries_dependencies(self):
        job = ResearchJob(company_name="Acme", geography="Global", focus_areas=[])
        outputs = {"foundation": FOUNDATION_OUTPUT, "financial_snapshot": {"revenue": 1}}
        data = build_section_input(job, "peer_benchmarking", outputs)
        assert data["foundation"] == FOUNDATION_OUTPUT
        assert data["financial_snapshot_context"] == {"revenue": 1}

    def test_default_executor_uses_web_search_for_foundation(self):
        with patch.object(orchestrator, "get_settings") as settings, \
                patch.object(orchestrator, "web_search", return_value=llm_result("{}")) as search, \
                patch.object(orchestrator, "complete", return_value=llm_result("{}")) as complete:
            settings.return_value.OPENAI_API_KEY = "sk-test"
            default_executor("foundation", "sys", "user")
            default_executor("trends", "sys", "user")
        search.assert_called_once_with("sys\n\nuser")
        complete.assert_called_once_with("sys", "user")


class TestLifecycle:
    """Tests for cancel, rerun, finalize and delete."""

    def test_cancel_marks_open_sub_jobs(self, db):
        job = create_job(db, company_name="Acme", selected_sections=["trends"], enqueue=False)
        cancel_job(db, job)
        assert job.status == JobStatus.CANCELLED
        assert set(_statuses(db, job).values()) == {SubJobStatus.CANCELLED}

    @pytest.mark.parametrize("status", [JobStatus.COMPLETED, JobStatus.FAILED])
    def test_cannot_cancel_finished_job(self, db, status):
        job = create_job(db, company_name="Acme", enqueue=False)
        job.status = status
        db.commit()
        with pytest.raises(ValueError, match="Cannot cancel"):
            cancel_job(db, job)

    def test_rerun_resets_failed_dependencies_and_appendix(self, db, quiet_side_effects):
        job = create_job(db, company_name="Acme", selected_sections=EXEC_SECTIONS, enqueue=False)
        execute_job(db, job.id, FakeExecutor(invalid={"financial_snapshot"}))
        db.refresh(job)

        stages = rerun_job(db, job, [" exec_summary ", "exec_summary"])

        assert stages == ["exec_summary", "financial_snapshot", "appendix"]
        assert job.status == JobStatus.QUEUED
        statuses = _statuses(db, job)
        assert statuses["company_overview"] == SubJobStatus.COMPLETED
        assert all(statuses[s] == SubJobStatus.PENDING for s in stages)
        assert quiet_side_effects["nudge"].called

        execute_job(db, job.id, FakeExecutor())
        db.refresh(job)
        assert job.status == JobStatus.COMPLETED

    def test_rerun_validation(self, db):
        job = create_job(db, company_name="Acme", selected_sections=["trends"], enqueue=False)
        with pytest.raises(ValueError, match="Cannot rerun"):
            rerun_job(db, job, ["trends"])

        job.status = JobStatus.COMPLETED
        db.commit()
        with pytest.raises(ValueError, match="not part of this job"):
            rerun_job(db, job, ["deal_team"])
        with pytest.raises(ValueError, match="At least one section"):
            rerun_job(db, job, [" "])

    def test_finalize_fails_leftover_pending(self, db):
        job = create_job(db, company_name="Acme", selected_sections=["trends"], enqueue=False)
        for sj in get_sub_jobs(db, job.id):
            if sj.stage == "foundation":
                sj.status = SubJobStatus.COMPLETED
        db.commit()

        finalize_job(db, job)
        trends = next(sj for sj in get_sub_jobs(db, job.id) if sj.stage == "trends")
        assert trends.status == SubJobStatus.FAILED
        assert trends.last_error == "Unresolvable dependencies"
        assert job.status == JobStatus.COMPLETED_WITH_ERRORS

    def test_delete_job_removes_children(self, db):
        job = create_job(db, company_name="Acme", selected_sections=["trends"], enqueue=False)
        record_cost_event(db, stage="trends", provider="openai", model="gpt-5", job_id=job.id)
        delete_job(db, job)
        assert db.query(ResearchJob).count() == 0
        assert db.query(ResearchSubJob).count() == 0
        assert db.query(CostEvent).count() == 0


class TestQueue:
    """Tests for the single-running-job queue."""

    def test_claims_oldest_one_at_a_time(self, db):
        newer = create_job(db, company_name="Newer", enqueue=False)
        older = create_job(db, company_name="Older", enqueue=False)
        older.created_at = newer.created_at - timedelta(minutes=5)
        db.commit()

        claimed = claim_next_job(db)
        assert claimed.id == older.id
        assert claimed.status == JobStatus.RUNNING
        assert claimed.started_at is not None
        assert claim_next_job(db) is None

    def test_empty_queue(self, db):
        assert claim_next_job(db) is None

    def test_task_marks_job_failed_on_crash(self, db, session_factory):
        job = create_job(db, company_name="Acme", enqueue=False)
        with patch.object(orchestrator, "SessionLocal", session_factory), \
                patch.object(orchestrator, "execute_job", side_effect=RuntimeError("worker crashed")):
            with pytest.raises(RuntimeError):
                orchestrator.run_research_job.run(str(job.id))

        db.refresh(job)
        assert job.status == JobStatus.FAILED
        assert job.error_message == "worker crashed"


class TestRetention:
    """Tests for expired job cleanup."""

    def test_deletes_only_expired_jobs(self, db):
        old = create_job(db, company_name="Old", selected_sections=["trends"], enqueue=False)
        old.created_at = datetime.utcnow() - timedelta(days=120)
        recent = create_job(db, company_name="Recent", enqueue=False)
        record_cost_event(db, stage="trends", provider="openai", model="gpt-5", job_id=old.id)
        db.commit()
        old_id, recent_id = old.id, recent.id

        assert delete_expired_jobs(db) == 1
        db.commit()
        assert [j.id for j in db.query(ResearchJob).all()] == [recent_id]
        assert db.query(CostEvent).count() == 0
        assert db.query(ResearchSubJob).filter(ResearchSubJob.job_id == old_id).count() == 0
