"""
ResearchSubJob model: one row per stage of a research job.

Lifecycle:
1. pending   - waiting for its dependencies
2. running   - LLM call in flight
3. completed - output stored
4. failed    - attempts exhausted, or blocked by a failed dependency
5. cancelled - the parent job was cancelled before this stage finished
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, UniqueConstraint, Uuid

from ..core.db import Base


class SubJobStatus:
    """Status values for ResearchSubJob."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    TERMINAL = (COMPLETED, FAILED, CANCELLED)


class ResearchSubJob(Base):
    __tablename__ = "research_sub_jobs"
    __table_args__ = (UniqueConstraint("job_id", "stage", name="uq_research_sub_jobs_job_stage"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Uuid(as_uuid=True), ForeignKey("research_jobs.id"), index=True, nullable=False)
    stage = Column(String(64), nullable=False)
    status = Column(String(32), nullable=False, default=SubJobStatus.PENDING)
    dependencies = Column(JSON, nullable=False, default=list)

    output = Column(JSON, nullable=True)
    confidence = Column(String(16), nullable=True)   # HIGH | MEDIUM | LOW
    sources_used = Column(JSON, nullable=True)

    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)
