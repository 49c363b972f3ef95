from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON

from ..core.db import Base


class NewsConfig(Base):
    """Key/value settings for the news module (e.g. ``refresh_status``)."""
    __tablename__ = "news_config"

    key = Column(String(64), primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
