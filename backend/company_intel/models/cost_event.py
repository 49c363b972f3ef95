from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Numeric, Uuid

from ..core.db import Base


class CostEvent(Base):
    """
    One billed LLM call.

    Calls made before a job exists (e.g. domain inference while the user is
    still filling in the form) are scoped by ``draft_id`` and linked to the
    job once it is created.
    """
    __tablename__ = "cost_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Uuid(as_uuid=True), ForeignKey("research_jobs.id"), index=True, nullable=True)
    draft_id = Column(String(64), index=True, nullable=True)
    stage = Column(String(64), nullable=True)
    provider = Column(String(32), nullable=False)
    model = Column(String(128), nullable=False)

    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    cache_read_tokens = Column(Integer, nullable=False, default=0)
    cache_write_tokens = Column(Integer, nullable=False, default=0)
    web_search_calls = Column(Integer, nullable=False, default=0)

    cost_usd = Column(Numeric(14, 6), nullable=False, default=0)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
