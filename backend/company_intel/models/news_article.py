from datetime import datetime
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ..core.db import Base


class ArticleStatus:
    NEW_ARTICLE = "new_article"
    UPDATE = "update"


class FetchLayer:
    LAYER1_RSS = "layer1_rss"
    LAYER1_API = "layer1_api"
    LAYER2_LLM = "layer2_llm"

    ALL = (LAYER1_RSS, LAYER1_API, LAYER2_LLM)


class ArticleSource(Base):
    """Every outlet that carried a (possibly merged) story."""
    __tablename__ = "article_sources"
    __table_args__ = (UniqueConstraint("article_id", "source_url", name="uq_article_sources_article_url"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    article_id = Column(Integer, ForeignKey("news_articles.id", ondelete="CASCADE"), index=True, nullable=False)
    source_url = Column(String(2048), nullable=False)
    source_name = Column(String(255), nullable=True)
    fetch_layer = Column(String(16), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ArticleRevenueOwner(Base):
    __tablename__ = "article_revenue_owners"

    article_id = Column(Integer, ForeignKey("news_articles.id", ondelete="CASCADE"), primary_key=True)
    revenue_owner_id = Column(Integer, ForeignKey("revenue_owners.id", ondelete="CASCADE"), primary_key=True)


class NewsArticle(Base):
    __tablename__ = "news_articles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    headline = Column(String(500), nullable=False)
    short_summary = Column(Text, nullable=True)   # 1-2 sentences for card preview
    long_summary = Column(Text, nullable=True)    # 3-5 sentences for expanded view
    summary = Column(Text, nullable=True)
    why_it_matters = Column(Text, nullable=True)

    source_url = Column(String(2048), nullable=False, unique=True)
    source_name = Column(String(255), nullable=True)
    published_at = Column(DateTime, nullable=True, index=True)
    fetched_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    company_id = Column(Integer, ForeignKey("tracked_companies.id", ondelete="SET NULL"), nullable=True, index=True)
    person_id = Column(Integer, ForeignKey("tracked_people.id", ondelete="SET NULL"), nullable=True, index=True)
    tag_id = Column(Integer, ForeignKey("news_tags.id", ondelete="SET NULL"), nullable=True)

    category = Column(String(100), nullable=True)
    status = Column(String(16), nullable=False, default=ArticleStatus.NEW_ARTICLE)
    match_type = Column(String(16), nullable=True)   # "exact" | "contextual"
    fetch_layer = Column(String(16), nullable=True)

    is_sent = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False)

    sources = relationship(ArticleSource, cascade="all, delete-orphan", order_by=ArticleSource.id)
    revenue_owner_links = relationship(ArticleRevenueOwner, cascade="all, delete-orphan")
