from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..models.cost_event import CostEvent
from ..models.research_job import ResearchJob, JobStatus
from ..models.research_sub_job import ResearchSubJob, SubJobStatus
from ..models.research_trace_event import ResearchTraceEvent
from .blueprints import REPORT_TYPES
from .cost_tracking import job_total_cost, link_draft_costs, record_llm_result
from .domain_infer import ensure_domain_for_job, normalize_domain
from .job_status import compute_final_status, compute_overall_confidence, compute_terminal_progress
from .llm import LLMResult, complete, parse_json_response, web_search
from .prompt_resolver import resolve_prompt
from .section_outputs import build_appendix, confidence_level, validate_section_output
from .stages import (
    APPENDIX,
    FOUNDATION,
    collect_blocked_stages,
    compute_rerun_stages,
    resolve_stage_selection,
    runnable_stages,
    stage_dependencies,
)
from .tracing import trace_job_step

logger = logging.getLogger(__name__)

RUN_TASK = "company_intel.services.orchestrator.run_research_job"
QUEUE_TASK = "company_intel.services.orchestrator.process_queue"

SYSTEM_PREAMBLE = (
    "You are a senior business-development research analyst. "
    "Follow the instructions below exactly and respond with a single JSON object."
)

# (stage, system_prompt, user_prompt) -> LLMResult
StageExecutor = Callable[[str, str, str], LLMResult]


@dataclass
class StageResult:
    stage: str
    output: Optional[Dict[str, Any]] = None
    llm: Optional[LLMResult] = None
    error: Optional[str] = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and self.output is not None


def default_executor(stage: str, system_prompt: str, user_prompt: str) -> LLMResult:
    """
    Foundation research needs live sources, so it goes through web search
    when an OpenAI key is configured. Every other stage works from the
    foundation output and uses a plain completion.
    """
    if stage == FOUNDATION and get_settings().OPENAI_API_KEY:
        return web_search(f"{system_prompt}\n\n{user_prompt}")
    return complete(system_prompt, user_prompt)


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------


def nudge_queue() -> None:
    """Ask a worker to start the next queued job. The beat sweep retries on failure."""
    try:
        celery_app.send_task(QUEUE_TASK, queue="research")
    except Exception:
        logger.exception("Failed to enqueue research queue check", extra={"step": "queue"})


def claim_next_job(db: Session) -> ResearchJob | None:
    """
    Single logical queue: only one job runs at a time. Marks the oldest
    queued job as running and returns it, or returns None.
    """
    running = db.query(ResearchJob.id).filter(ResearchJob.status == JobStatus.RUNNING).first()
    if running:
        return None

    job = (
        db.query(ResearchJob)
        .filter(ResearchJob.status == JobStatus.QUEUED)
        .order_by(ResearchJob.created_at.asc())
        .with_for_update()
        .first()
    )
    if not job:
        return None

    job.status = JobStatus.RUNNING
    job.started_at = job.started_at or datetime.utcnow()
    db.commit()
    return job


@celery_app.task(name=QUEUE_TASK, queue="research")
def process_queue():
    db: Session = SessionLocal()
    try:
        job = claim_next_job(db)
        if job is None:
            return None
        logger.info("Dispatching queued research job", extra={"job_id": str(job.id), "step": "queue"})
        celery_app.send_task(RUN_TASK, args=[str(job.id)], queue="research")
        return str(job.id)
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Job lifecycle
# ---------------------------------------------------------------------------


def create_job(
    db: Session,
    *,
    company_name: str,
    geography: str | None = None,
    industry: str | None = None,
    focus_areas: Sequence[str] | None = None,
    report_type: str | None = None,
    selected_sections: Sequence[str] | None = None,
    user_inputs: Dict[str, Any] | None = None,
    draft_id: str | None = None,
    domain: str | None = None,
    request_id: str | None = None,
    enqueue: bool = True,
) -> ResearchJob:
    """
    Create a queued job with one pending sub-job per resolved stage.

    Raises ``ValueError`` for an unknown report type or section id.
    """
    name = (company_name or "").strip()
    if not name:
        raise ValueError("company_name is required")

    rt = report_type.strip().upper() if report_type else None
    if rt and rt not in REPORT_TYPES:
        raise ValueError(f"Unknown report type: {report_type}")

    stages = resolve_stage_selection(selected_sections)
    max_attempts = get_settings().STAGE_MAX_ATTEMPTS
    normalized = normalize_domain(domain) or None

    job = ResearchJob(
        request_id=request_id,
        company_name=name,
        geography=(geography or "").strip() or "Global",
        industry=industry,
        focus_areas=list(focus_areas or []),
        report_type=rt,
        selected_sections=list(selected_sections) if selected_sections else None,
        user_inputs=user_inputs or None,
        draft_id=draft_id,
        domain=normalized,
        normalized_domain=normalized,
        status=JobStatus.QUEUED,
        progress=0.0,
    )
    db.add(job)
    db.flush()

    for stage in stages:
        db.add(
            ResearchSubJob(
                job_id=job.id,
                stage=stage,
                status=SubJobStatus.PENDING,
                dependencies=[d for d in stage_dependencies(stage) if d in stages],
                max_attempts=max_attempts,
            )
        )
    db.commit()

    linked = link_draft_costs(db, draft_id, job.id)
    logger.info(
        "Research job created",
        extra={"job_id": str(job.id), "request_id": request_id, "step": "create"},
    )
    if linked:
        logger.info("Linked %d draft cost events", linked, extra={"job_id": str(job.id), "step": "create"})

    if enqueue:
        nudge_queue()
    return job


def get_sub_jobs(db: Session, job_id: UUID) -> List[ResearchSubJob]:
    return (
        db.query(ResearchSubJob)
        .filter(ResearchSubJob.job_id == job_id)
        .order_by(ResearchSubJob.id.asc())
        .all()
    )


def cancel_job(db: Session, job: ResearchJob) -> ResearchJob:
    if job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
        raise ValueError(f"Cannot cancel a {job.status} job")

    now = datetime.utcnow()
    job.status = JobStatus.CANCELLED
    job.current_stage = None
    job.completed_at = now
    for sj in get_sub_jobs(db, job.id):
        if sj.status in (SubJobStatus.PENDING, SubJobStatus.RUNNING):
            sj.status = SubJobStatus.CANCELLED
            sj.completed_at = now
    db.commit()

    trace_job_step(job.id, phase="DONE", step="job:cancelled", label="Research job cancelled")
    logger.info("Research job cancelled", extra={"job_id": str(job.id), "step": "cancel"})
    nudge_queue()
    return job


def rerun_job(db: Session, job: ResearchJob, sections: Iterable[str]) -> List[str]:
    """
    Reset ``sections`` (plus any failed upstream dependencies) to pending and
    requeue the job. The appendix is rebuilt whenever the job has one.
    """
    if job.status in (JobStatus.RUNNING, JobStatus.QUEUED):
        raise ValueError(f"Cannot rerun a {job.status} job")

    sub_jobs = get_sub_jobs(db, job.id)
    by_stage = {sj.stage: sj for sj in sub_jobs}

    requested = [s.strip() for s in sections if s and s.strip()]
    if not requested:
        raise ValueError("At least one section is required")
    missing = sorted({s for s in requested if s not in by_stage})
    if missing:
        raise ValueError(f"Sections not part of this job: {', '.join(missing)}")

    stages = compute_rerun_stages(requested, sub_jobs, {sj.stage: sj.dependencies or [] for sj in sub_jobs})
    if APPENDIX in by_stage and APPENDIX not in stages:
        stages.append(APPENDIX)

    for stage in stages:
        sj = by_stage[stage]
        sj.status = SubJobStatus.PENDING
        sj.attempts = 0
        sj.last_error = None
        sj.output = None
        sj.confidence = None
        sj.sources_used = None
        sj.started_at = None
        sj.completed_at = None
        sj.duration_ms = None

    job.status = JobStatus.QUEUED
    job.error_message = None
    job.current_stage = None
    job.completed_at = None
    job.progress = compute_terminal_progress(sub_jobs)
    db.commit()

    trace_job_step(
        job.id,
        phase="INIT",
        step="job:rerun",
        label="Rerun requested",
        detail=f"{len(stages)} stage(s) reset to pending.",
        meta={"stages": stages},
    )
    nudge_queue()
    return stages


def delete_job(db: Session, job: ResearchJob) -> None:
    db.query(ResearchSubJob).filter(ResearchSubJob.job_id == job.id).delete(synchronize_session=False)
    db.query(ResearchTraceEvent).filter(ResearchTraceEvent.job_id == job.id).delete(synchronize_session=False)
    db.query(CostEvent).filter(CostEvent.job_id == job.id).delete(synchronize_session=False)
    db.delete(job)
    db.commit()


# ---------------------------------------------------------------------------
# Stage execution
# ---------------------------------------------------------------------------


def build_section_input(
    job: ResearchJob,
    stage: str,
    outputs: Dict[str, Dict[str, Any]],
    dependencies: Sequence[str] | None = None,
) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "company_name": job.company_name,
        "geography": job.geography,
        "focus_areas": job.focus_areas or [],
        "report_type": job.report_type,
        "user_inputs": job.user_inputs or {},
    }
    if job.industry:
        data["industry"] = job.industry
    if job.domain:
        data["domain"] = job.domain
    if stage == FOUNDATION:
        return data

    data["foundation"] = outputs.get(FOUNDATION)
    deps = dependencies if dependencies is not None else stage_dependencies(stage)
    for dep in deps:
        if dep != FOUNDATION and dep in outputs:
            data[f"{dep}_context"] = outputs[dep]
    return data


def build_stage_prompts(db: Session, job: ResearchJob, stage: str, section_input: Dict[str, Any]):
    resolved = resolve_prompt(db, stage, job.report_type)
    system_prompt = f"{SYSTEM_PREAMBLE}\n\n{resolved.content}"
    user_prompt = "Input:\n" + json.dumps(section_input, indent=2, default=str)
    return system_prompt, user_prompt


def run_stage(stage: str, system_prompt: str, user_prompt: str, executor: StageExecutor) -> StageResult:
    """Call the model and validate its JSON. Never raises; errors land in ``StageResult.error``."""
    started = time.monotonic()
    result = StageResult(stage=stage)
    try:
        result.llm = executor(stage, system_prompt, user_prompt)
        parsed = parse_json_response(result.llm.text, allow_repair=True)
        result.output = validate_section_output(stage, parsed)
    except Exception as exc:
        result.error = f"{type(exc).__name__}: {exc}"[:1000]
    result.duration_ms = int((time.monotonic() - started) * 1000)
    return result


async def run_round(calls: Sequence[tuple], executor: StageExecutor) -> List[StageResult]:
    """Run one round of ``(stage, system_prompt, user_prompt)`` calls concurrently."""
    return list(
        await asyncio.gather(
            *(asyncio.to_thread(run_stage, stage, sp, up, executor) for stage, sp, up in calls)
        )
    )


def _completed_outputs(sub_jobs: Sequence[ResearchSubJob]) -> Dict[str, Dict[str, Any]]:
    return {
        sj.stage: sj.output
        for sj in sub_jobs
        if sj.status == SubJobStatus.COMPLETED and sj.output is not None
    }


def _apply_result(db: Session, job: ResearchJob, sj: ResearchSubJob, result: StageResult) -> None:
    now = datetime.utcnow()
    if result.llm is not None:
        record_llm_result(
            db,
            result.llm,
            stage=sj.stage,
            job_id=job.id,
            metadata={"attempt": (sj.attempts or 0) + 1},
            commit=False,
        )

    # Cancelled while the round was in flight: bill the call, keep the status.
    if job.status == JobStatus.CANCELLED or sj.status == SubJobStatus.CANCELLED:
        return

    if result.ok:
        sj.status = SubJobStatus.COMPLETED
        sj.output = result.output
        sj.confidence = confidence_level(result.output)
        sj.sources_used = result.output.get("sources_used") or []
        sj.last_error = None
        sj.completed_at = now
        sj.duration_ms = result.duration_ms
        return

    sj.attempts = (sj.attempts or 0) + 1
    sj.last_error = result.error
    sj.duration_ms = result.duration_ms
    if sj.attempts < (sj.max_attempts or 1):
        sj.status = SubJobStatus.PENDING
        logger.warning(
            "Stage attempt failed; will retry",
            extra={"job_id": str(job.id), "stage": sj.stage, "step": "stage:retry"},
        )
    else:
        sj.status = SubJobStatus.FAILED
        sj.completed_at = now
        logger.error(
            "Stage failed after %d attempts: %s",
            sj.attempts,
            result.error,
            extra={"job_id": str(job.id), "stage": sj.stage, "step": "stage:failed"},
        )


def _mark_blocked(db: Session, job: ResearchJob, sub_jobs: Sequence[ResearchSubJob]) -> List[str]:
    failed = [sj.stage for sj in sub_jobs if sj.status == SubJobStatus.FAILED]
    if not failed:
        return []
    deps = {sj.stage: sj.dependencies or [] for sj in sub_jobs}
    blocked = collect_blocked_stages(failed, sub_jobs, deps)
    now = datetime.utcnow()
    for sj in sub_jobs:
        if sj.stage in blocked:
            failed_deps = [d for d in deps.get(sj.stage, []) if d in failed or d in blocked]
            sj.status = SubJobStatus.FAILED
            sj.last_error = f"Blocked by failed dependency: {', '.join(failed_deps)}"
            sj.completed_at = now
    return sorted(blocked)


def _build_appendix(job: ResearchJob, sj: ResearchSubJob, sub_jobs: Sequence[ResearchSubJob]) -> None:
    outputs = _completed_outputs(sub_jobs)
    appendix = build_appendix(outputs.get(FOUNDATION), outputs)
    now = datetime.utcnow()
    sj.status = SubJobStatus.COMPLETED
    sj.output = appendix
    sj.confidence = confidence_level(appendix)
    sj.sources_used = appendix.get("sources_used") or []
    sj.started_at = sj.started_at or now
    sj.completed_at = now
    sj.duration_ms = 0


def execute_job(db: Session, job_id: UUID, executor: StageExecutor | None = None) -> ResearchJob | None:
    """
    Drive a job's stage DAG to completion.

    Each round runs every runnable stage concurrently in worker threads. Only
    the model calls happen off-thread; all persistence stays on ``db``.
    """
    executor = executor or default_executor
    job = db.query(ResearchJob).filter(ResearchJob.id == job_id).first()
    if not job:
        return None
    if job.status == JobStatus.CANCELLED:
        return job

    job.status = JobStatus.RUNNING
    job.started_at = job.started_at or datetime.utcnow()
    job.error_message = None
    db.commit()

    trace_job_step(
        job.id,
        phase="INIT",
        step="job_received",
        label="Job received by research worker",
        meta={"company_name": job.company_name, "report_type": job.report_type},
    )
    logger.info("Starting research job", extra={"job_id": str(job.id), "request_id": job.request_id, "step": "start"})

    ensure_domain_for_job(db, job)

    round_no = 0
    while True:
        db.refresh(job)
        if job.status == JobStatus.CANCELLED:
            logger.info("Job cancelled between rounds", extra={"job_id": str(job.id), "step": "cancelled"})
            break

        sub_jobs = get_sub_jobs(db, job.id)
        by_stage = {sj.stage: sj for sj in sub_jobs}
        runnable = runnable_stages(sub_jobs)
        if not runnable:
            break

        round_no += 1
        now = datetime.utcnow()

        if APPENDIX in runnable:
            _build_appendix(job, by_stage[APPENDIX], sub_jobs)
            runnable = [s for s in runnable if s != APPENDIX]
            if not runnable:
                job.progress = compute_terminal_progress(sub_jobs)
                db.commit()
                continue

        outputs = _completed_outputs(sub_jobs)
        calls = []
        for stage in runnable:
            sj = by_stage[stage]
            sj.status = SubJobStatus.RUNNING
            sj.started_at = now
            section_input = build_section_input(job, stage, outputs, sj.dependencies)
            calls.append((stage, *build_stage_prompts(db, job, stage, section_input)))
        job.current_stage = runnable[0]
        db.commit()

        trace_job_step(
            job.id,
            phase="STAGES",
            step=f"round:{round_no}",
            label=f"Running {len(runnable)} stage(s)",
            meta={"stages": runnable},
        )

        results = asyncio.run(run_round(calls, executor))
        db.refresh(job)
        for sj in sub_jobs:
            db.refresh(sj)

        for result in results:
            _apply_result(db, job, by_stage[result.stage], result)
            trace_job_step(
                job.id,
                phase="STAGES",
                step=f"{result.stage}:{'done' if result.ok else 'error'}",
                label=f"{result.stage} {'completed' if result.ok else 'failed'}",
                detail=result.error,
                stage=result.stage,
                meta={"duration_ms": result.duration_ms},
            )

        if job.status == JobStatus.CANCELLED:
            db.commit()
            continue

        blocked = _mark_blocked(db, job, sub_jobs)
        if blocked:
            logger.warning(
                "Stages blocked by failed dependencies: %s",
                ", ".join(blocked),
                extra={"job_id": str(job.id), "step": "blocked"},
            )
        job.progress = compute_terminal_progress(sub_jobs)
        db.commit()

    return finalize_job(db, job)


def finalize_job(db: Session, job: ResearchJob) -> ResearchJob:
    sub_jobs = get_sub_jobs(db, job.id)

    if job.status != JobStatus.CANCELLED:
        # Anything still pending here can never become runnable.
        now = datetime.utcnow()
        for sj in sub_jobs:
            if sj.status in (SubJobStatus.PENDING, SubJobStatus.RUNNING):
                sj.status = SubJobStatus.FAILED
                sj.last_error = sj.last_error or "Unresolvable dependencies"
                sj.completed_at = now

    job.status = compute_final_status(job.status, sub_jobs)
    if job.status == JobStatus.FAILED and not job.error_message:
        job.error_message = "Foundation stage failed"
    job.progress = compute_terminal_progress(sub_jobs)
    job.overall_confidence_score, job.overall_confidence = compute_overall_confidence(sub_jobs)
    job.current_stage = None
    job.completed_at = job.completed_at or datetime.utcnow()
    db.commit()

    total = job_total_cost(db, job.id)
    job.total_cost_usd = Decimal(str(round(total, 6)))
    db.commit()

    trace_job_step(
        job.id,
        phase="DONE",
        step=f"job:{job.status}",
        label="Research job finished",
        detail=f"Final status: {job.status}",
        meta={"total_cost_usd": total, "overall_confidence": job.overall_confidence},
    )
    logger.info(
        "Research job finished with status %s",
        job.status,
        extra={"job_id": str(job.id), "request_id": job.request_id, "step": "completed"},
    )
    return job


@celery_app.task(name=RUN_TASK, bind=True, queue="research")
def run_research_job(self, job_id: str):
    db: Session = SessionLocal()
    try:
        execute_job(db, UUID(job_id))
    except Exception as e:
        db.rollback()
        job = db.query(ResearchJob).filter(ResearchJob.id == UUID(job_id)).first()
        if job:
            job.status = JobStatus.FAILED
            job.error_message = str(e)[:500]
            job.current_stage = None
            job.completed_at = datetime.utcnow()
            db.commit()
            logger.exception(
                "Research job failed",
                extra={"job_id": str(job.id), "request_id": job.request_id, "step": "failed"},
            )
        raise
    finally:
        db.close()
        nudge_queue()
