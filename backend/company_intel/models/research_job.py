from sqlalchemy import Column, String, Text, JSON, DateTime, Float, Numeric, Uuid
from datetime import datetime
import uuid

from ..core.db import Base


class JobStatus:
    """Status values for ResearchJob."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    CANCELLED = "cancelled"

    ALL = (QUEUED, RUNNING, COMPLETED, COMPLETED_WITH_ERRORS, FAILED, CANCELLED)


class ResearchJob(Base):
    __tablename__ = "research_jobs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    request_id = Column(String(64), nullable=True)

    # target
    company_name = Column(String(200), nullable=False, index=True)
    geography = Column(String(200), nullable=False, default="Global")
    industry = Column(String(200), nullable=True)
    focus_areas = Column(JSON, nullable=False, default=list)
    report_type = Column(String(32), nullable=True)          # INDUSTRIALS | GENERIC | PE | FS
    selected_sections = Column(JSON, nullable=True)           # list[str] as requested by the user
    user_inputs = Column(JSON, nullable=True)                 # blueprint inputs (timeHorizon, ...)
    draft_id = Column(String(64), nullable=True, index=True)  # pre-job cost scope
    domain = Column(String(255), nullable=True)
    normalized_domain = Column(String(255), nullable=True)

    # lifecycle
    status = Column(String(32), nullable=False, default=JobStatus.QUEUED, index=True)
    progress = Column(Float, nullable=False, default=0.0)
    current_stage = Column(String(64), nullable=True)
    overall_confidence = Column(String(16), nullable=True)
    overall_confidence_score = Column(Float, nullable=True)
    error_message = Column(Text, nullable=True)

    total_cost_usd = Column(Numeric(14, 6), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
