import logging
import math
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..models.feedback import Feedback, FeedbackStatus, FeedbackType
from ..schemas.feedback import FeedbackIn, FeedbackOut, FeedbackUpdate
from .routes_research import verify_api_key

router = APIRouter(prefix="/feedback", tags=["feedback"])
logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _get_feedback_or_404(db: Session, feedback_id: UUID) -> Feedback:
    item = db.get(Feedback, feedback_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Feedback not found.")
    return item


@router.post("", status_code=201)
def submit_feedback(payload: FeedbackIn, db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    item = Feedback(**payload.model_dump(), status=FeedbackStatus.NEW)
    db.add(item)
    db.commit()
    logger.info(
        "Feedback submitted: %s %r",
        item.type,
        item.title or "(no title)",
        extra={"step": "feedback:submit"},
    )
    return {"success": True, "message": "Thank you for your feedback!", "id": str(item.id)}


@router.get("")
def list_feedback(
    status: str | None = None,
    type: str | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    """Newest first. Unknown status or type values are ignored rather than rejected."""
    page = max(1, page)
    limit = max(1, min(limit, MAX_PAGE_SIZE))

    q = db.query(Feedback)
    if status in FeedbackStatus.ALL:
        q = q.filter(Feedback.status == status)
    if type in FeedbackType.ALL:
        q = q.filter(Feedback.type == type)

    total = q.count()
    items = q.order_by(Feedback.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "data": [FeedbackOut.model_validate(i).model_dump(mode="json") for i in items],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit),
        },
    }


@router.patch("/{feedback_id}")
def update_feedback(
    feedback_id: UUID,
    payload: FeedbackUpdate,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    item = _get_feedback_or_404(db, feedback_id)
    fields = payload.model_fields_set
    if not fields:
        raise HTTPException(status_code=400, detail="Nothing to update. Provide status or resolution_notes.")

    if "status" in fields:
        if payload.status is None:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid status. Must be one of: {', '.join(FeedbackStatus.ALL)}",
            )
        item.status = payload.status
        if payload.status in FeedbackStatus.CLOSED:
            item.resolved_at = item.resolved_at or datetime.utcnow()
        else:
            item.resolved_at = None
    if "resolution_notes" in fields:
        item.resolution_notes = payload.resolution_notes

    db.commit()
    db.refresh(item)
    logger.info("Feedback %s updated: status=%s", item.id, item.status, extra={"step": "feedback:update"})
    return {"success": True, "data": FeedbackOut.model_validate(item).model_dump(mode="json")}


@router.delete("/{feedback_id}")
def delete_feedback(feedback_id: UUID, db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    item = _get_feedback_or_404(db, feedback_id)
    db.delete(item)
    db.commit()
    logger.info("Feedback %s deleted", feedback_id, extra={"step": "feedback:delete"})
    return {"success": True}
