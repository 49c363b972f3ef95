from sqlalchemy import Column, String, Text, DateTime, Uuid
from datetime import datetime
import uuid

from ..core.db import Base


class FeedbackType:
    BUG = "bug"
    ISSUE = "issue"
    FEATURE = "feature"
    OTHER = "other"

    ALL = (BUG, ISSUE, FEATURE, OTHER)


class FeedbackStatus:
    NEW = "new_feedback"
    REVIEWED = "reviewed"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    WONT_FIX = "wont_fix"

    ALL = (NEW, REVIEWED, IN_PROGRESS, RESOLVED, WONT_FIX)
    CLOSED = (RESOLVED, WONT_FIX)


class Feedback(Base):
    """Bug report or feature request submitted from the app."""
    __tablename__ = "feedback"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    type = Column(String(16), nullable=False, default=FeedbackType.OTHER, index=True)
    status = Column(String(16), nullable=False, default=FeedbackStatus.NEW, index=True)

    title = Column(String(200), nullable=True)
    name = Column(String(200), nullable=True)
    email = Column(String(255), nullable=True)
    message = Column(Text, nullable=False)
    page_path = Column(String(500), nullable=True)  # where in the app it was reported
    report_id = Column(String(64), nullable=True)   # research job the report concerns

    resolution_notes = Column(Text, nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
