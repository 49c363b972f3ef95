"""
Prompt overrides edited from the admin UI.

Each publish creates a new row with an incremented version; the previous
published row for the same (section_id, report_type) is archived. At most
one draft exists per (section_id, report_type).
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime

from ..core.db import Base


class PromptStatus:
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class Prompt(Base):
    __tablename__ = "prompts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    section_id = Column(String(64), nullable=False, index=True)
    report_type = Column(String(32), nullable=True)  # NULL = base prompt for all report types
    status = Column(String(16), nullable=False, default=PromptStatus.DRAFT)
    version = Column(Integer, nullable=False, default=0)
    content = Column(Text, nullable=False)
    created_by = Column(String(128), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    published_at = Column(DateTime, nullable=True)
