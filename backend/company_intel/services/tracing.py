from __future__ import annotations

from typing import Any, List
from uuid import UUID
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from ..core.db import SessionLocal
from ..models.research_trace_event import ResearchTraceEvent

logger = logging.getLogger(__name__)


def trace_job_step(
    job_id: UUID,
    *,
    phase: str,
    step: str | None = None,
    label: str,
    detail: str | None = None,
    stage: str | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    """
    Best-effort trace writer for the job timeline shown in the UI.

    Uses its own session so a failed write never rolls back the caller's
    work, and never raises.
    """
    payload = dict(meta or {})
    if stage:
        payload.setdefault("stage", stage)

    db = SessionLocal()
    try:
        db.add(
            ResearchTraceEvent(
                job_id=job_id,
                phase=phase,
                step=step,
                label=label,
                detail=detail,
                meta=payload,
                created_at=datetime.utcnow(),
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "Failed to write research trace event",
            extra={"job_id": str(job_id), "stage": stage, "step": step},
        )
    finally:
        db.close()


def list_trace_events(db: Session, job_id: UUID) -> List[ResearchTraceEvent]:
    return (
        db.query(ResearchTraceEvent)
        .filter(ResearchTraceEvent.job_id == job_id)
        .order_by(ResearchTraceEvent.created_at.asc(), ResearchTraceEvent.id.asc())
        .all()
    )
