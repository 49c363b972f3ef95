import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..models.research_job import JobStatus
from ..schemas.admin import PricingRateIn, PricingRateOut, PromptDraftIn, PromptOut
from ..services.cost_tracking import create_pricing_rate, list_pricing_rates
from ..services.metrics import MetricsFilters, get_metrics
from ..services.prompt_resolver import (
    list_all_prompts,
    prompt_versions,
    publish_prompt,
    resolve_prompt,
    revert_prompt,
    save_draft,
)
from .routes_research import verify_api_key

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


@router.get("/prompts")
def get_prompts(db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    return {"prompts": list_all_prompts(db)}


@router.get("/prompts/{section_id}/resolved")
def get_resolved_prompt(
    section_id: str,
    report_type: str | None = None,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    try:
        resolved = resolve_prompt(db, section_id, report_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"section_id": section_id, "report_type": report_type, **vars(resolved)}


@router.put("/prompts/{section_id}/draft", response_model=PromptOut)
def put_prompt_draft(
    section_id: str,
    payload: PromptDraftIn,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    try:
        return save_draft(db, section_id, payload.content, payload.report_type, payload.created_by)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/prompts/{section_id}/publish", response_model=PromptOut)
def post_prompt_publish(
    section_id: str,
    report_type: str | None = None,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    try:
        return publish_prompt(db, section_id, report_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/prompts/{section_id}/revert")
def post_prompt_revert(
    section_id: str,
    report_type: str | None = None,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    try:
        changed = revert_prompt(db, section_id, report_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "changed": changed}


@router.get("/prompts/{section_id}/versions", response_model=list[PromptOut])
def get_prompt_versions(
    section_id: str,
    report_type: str | None = None,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    try:
        return prompt_versions(db, section_id, report_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------


@router.get("/pricing", response_model=list[PricingRateOut])
def get_pricing(db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    return list_pricing_rates(db)


@router.post("/pricing", response_model=PricingRateOut, status_code=201)
def post_pricing(
    payload: PricingRateIn,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    try:
        return create_pricing_rate(db, **payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


@router.get("/metrics")
def metrics(
    year: int | None = None,
    month: int | None = None,
    report_type: str | None = None,
    industry: str | None = None,
    geography: str | None = None,
    status: str | None = None,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    if month is not None and not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="month must be between 1 and 12")
    if month is not None and year is None:
        raise HTTPException(status_code=400, detail="month requires year")
    if status is not None and status not in JobStatus.ALL:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")

    filters = MetricsFilters(
        year=year,
        month=month,
        report_type=report_type,
        industry=industry,
        geography=geography,
        status=status,
    )
    return get_metrics(db, filters)
