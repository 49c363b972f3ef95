from dataclasses import asdict
from uuid import UUID, uuid4
import logging

from fastapi import APIRouter, Depends, HTTPException, Security
from fastapi.security.api_key import APIKeyHeader
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.db import get_db
from ..models.research_job import ResearchJob
from ..models.research_sub_job import ResearchSubJob, SubJobStatus
from ..schemas.research import (
    CompanyResolveRequest,
    JobStatusOut,
    RerunRequest,
    ResearchJobOut,
    ResearchRequest,
    ResearchSubJobOut,
    ResearchTraceEventOut,
)
from ..services.blueprints import blueprint_version, list_blueprints
from ..services.cost_tracking import job_cost_breakdown
from ..services.domain_infer import resolve_company
from ..services.export import build_export_sections, is_export_ready
from ..services.job_status import derive_job_status
from ..services.orchestrator import cancel_job, create_job, delete_job, get_sub_jobs, rerun_job
from ..services.stages import sort_stages
from ..services.tracing import list_trace_events

router = APIRouter(tags=["research"])

settings = get_settings()
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
logger = logging.getLogger(__name__)


def verify_api_key(api_key: str | None = Security(api_key_header)) -> None:
    """
    Simple header-based API key authentication.

    - In dev, if API_AUTH_KEY is not set, auth is skipped.
    - Otherwise, require X-API-Key == API_AUTH_KEY.
    """
    expected = settings.API_AUTH_KEY

    if settings.ENV == "dev" and not expected:
        return

    if not expected:
        raise HTTPException(status_code=401, detail="API key not configured")

    if api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")


def _get_job_or_404(db: Session, job_id: UUID) -> ResearchJob:
    job = db.query(ResearchJob).filter(ResearchJob.id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


def _ordered_sub_jobs(sub_jobs: list[ResearchSubJob]) -> list[ResearchSubJob]:
    rank = {stage: i for i, stage in enumerate(sort_stages(sj.stage for sj in sub_jobs))}
    return sorted(sub_jobs, key=lambda sj: rank[sj.stage])


def _job_out(job: ResearchJob, sub_jobs: list[ResearchSubJob]) -> dict:
    data = ResearchJobOut.model_validate(job).model_dump()
    data["status"] = derive_job_status(job.status, sub_jobs)
    return data


@router.post("/research", status_code=202)
def create_research_job(
    payload: ResearchRequest,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    request_id = str(uuid4())
    logger.info(
        "Creating research job",
        extra={
            "job_id": None,
            "request_id": request_id,
            "company_name": payload.company_name,
            "step": "create_research_job",
        },
    )

    try:
        job = create_job(db, **payload.model_dump(), request_id=request_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    sub_jobs = get_sub_jobs(db, job.id)
    return {
        "job": _job_out(job, sub_jobs),
        "stages": sort_stages(sj.stage for sj in sub_jobs),
    }


@router.get("/research")
def list_research_jobs(
    status: str | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    """
    Paginated job list. ``status`` filters on the derived status, so the
    filter is applied after sub-jobs are loaded.
    """
    safe_limit = max(1, min(limit, 100))
    safe_offset = max(0, offset)

    q = db.query(ResearchJob)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        q = q.filter(
            or_(
                ResearchJob.company_name.ilike(pattern),
                ResearchJob.industry.ilike(pattern),
                ResearchJob.geography.ilike(pattern),
            )
        )
    jobs = q.order_by(ResearchJob.created_at.desc()).all()

    sub_jobs_by_job: dict = {job.id: [] for job in jobs}
    if jobs:
        for sj in db.query(ResearchSubJob).filter(ResearchSubJob.job_id.in_(list(sub_jobs_by_job))).all():
            sub_jobs_by_job[sj.job_id].append(sj)

    rows = []
    for job in jobs:
        sub_jobs = sub_jobs_by_job[job.id]
        derived = derive_job_status(job.status, sub_jobs)
        if status and derived != status:
            continue
        rows.append(
            {
                **_job_out(job, sub_jobs),
                "completed_stages": sum(1 for sj in sub_jobs if sj.status == SubJobStatus.COMPLETED),
                "total_stages": len(sub_jobs),
            }
        )

    return {
        "jobs": rows[safe_offset:safe_offset + safe_limit],
        "total": len(rows),
        "limit": safe_limit,
        "offset": safe_offset,
    }


@router.get("/research/blueprints")
def get_blueprints(_: None = Depends(verify_api_key)):
    return {
        "version": blueprint_version(),
        "blueprints": [asdict(bp) for bp in list_blueprints()],
    }


@router.post("/research/company/resolve")
def resolve_company_input(
    payload: CompanyResolveRequest,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    try:
        return resolve_company(
            db,
            payload.input,
            geography=payload.geography,
            industry=payload.industry,
            report_type=payload.report_type,
            draft_id=payload.draft_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/research/{job_id}")
def get_research_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    job = _get_job_or_404(db, job_id)
    sub_jobs = _ordered_sub_jobs(get_sub_jobs(db, job.id))

    return {
        "job": _job_out(job, sub_jobs),
        "sub_jobs": [ResearchSubJobOut.model_validate(sj).model_dump() for sj in sub_jobs],
        "sections": build_export_sections(job.report_type, job.selected_sections, sub_jobs),
        "costs": job_cost_breakdown(db, job.id),
        "trace": [ResearchTraceEventOut.model_validate(e).model_dump() for e in list_trace_events(db, job.id)],
    }


@router.get("/research/{job_id}/status", response_model=JobStatusOut)
def get_research_job_status(
    job_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    job = _get_job_or_404(db, job_id)
    sub_jobs = _ordered_sub_jobs(get_sub_jobs(db, job.id))

    def stages(*statuses: str) -> list[str]:
        return [sj.stage for sj in sub_jobs if sj.status in statuses]

    return JobStatusOut(
        id=job.id,
        status=derive_job_status(job.status, sub_jobs),
        progress=job.progress or 0.0,
        current_stage=job.current_stage,
        error_message=job.error_message,
        completed_stages=stages(SubJobStatus.COMPLETED),
        failed_stages=stages(SubJobStatus.FAILED),
        pending_stages=stages(SubJobStatus.PENDING, SubJobStatus.RUNNING),
    )


@router.post("/research/{job_id}/cancel")
def cancel_research_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    job = _get_job_or_404(db, job_id)
    try:
        cancel_job(db, job)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "job_id": str(job.id), "status": job.status}


@router.post("/research/{job_id}/rerun")
def rerun_research_job(
    job_id: UUID,
    payload: RerunRequest,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    job = _get_job_or_404(db, job_id)
    try:
        stages = rerun_job(db, job, payload.sections)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(
        "Rerun queued",
        extra={"job_id": str(job.id), "step": "rerun", "stage": ",".join(stages)},
    )
    return {"success": True, "job_id": str(job.id), "status": job.status, "rerun_stages": stages}


@router.delete("/research/{job_id}")
def delete_research_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    job = _get_job_or_404(db, job_id)
    delete_job(db, job)
    logger.info("Research job deleted", extra={"job_id": str(job_id), "step": "delete"})
    return {"success": True, "job_id": str(job_id)}


@router.get("/research/{job_id}/export")
def export_research_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    job = _get_job_or_404(db, job_id)
    sub_jobs = get_sub_jobs(db, job.id)
    status = derive_job_status(job.status, sub_jobs)
    if not is_export_ready(status):
        raise HTTPException(
            status_code=400,
            detail="Export is only available once the research job has completed.",
        )

    return {
        "job_id": str(job.id),
        "company_name": job.company_name,
        "report_type": job.report_type,
        "status": status,
        "overall_confidence": job.overall_confidence,
        "completed_at": job.completed_at,
        "sections": build_export_sections(job.report_type, job.selected_sections, sub_jobs),
    }
