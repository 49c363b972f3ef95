from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ...models.news_article import ArticleStatus, FetchLayer


@dataclass
class RawArticle:
    """An article as fetched, before dedup and LLM processing."""
    headline: str
    description: str
    source_url: str
    source_name: str
    published_at: datetime
    fetch_layer: str = FetchLayer.LAYER1_RSS
    query_used: Optional[str] = None


@dataclass
class ArticleSourceInfo:
    source_url: str
    source_name: str
    fetch_layer: str = FetchLayer.LAYER2_LLM


@dataclass
class ProcessedArticle:
    headline: str
    source_url: str
    source_name: str
    published_at: str  # YYYY-MM-DD as returned by the model
    short_summary: Optional[str] = None
    long_summary: Optional[str] = None
    summary: Optional[str] = None
    why_it_matters: Optional[str] = None
    sources: List[ArticleSourceInfo] = field(default_factory=list)
    company: Optional[str] = None
    person: Optional[str] = None
    category: str = "News"
    status: str = ArticleStatus.NEW_ARTICLE
    match_type: str = "contextual"
    fetch_layer: str = FetchLayer.LAYER2_LLM
    revenue_owners: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CallDiet:
    """What one revenue owner follows."""
    revenue_owner_id: int
    revenue_owner_name: str
    companies: List[Dict[str, Any]] = field(default_factory=list)  # {"name", "ticker"}
    people: List[Dict[str, Any]] = field(default_factory=list)     # {"name", "title"}
    topics: List[str] = field(default_factory=list)


@dataclass
class FetchResult:
    articles: List[ProcessedArticle] = field(default_factory=list)
    coverage_gaps: List[Dict[str, Any]] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "articles": [a.to_dict() for a in self.articles],
            "coverage_gaps": self.coverage_gaps,
            "stats": self.stats,
        }


def utcnow() -> datetime:
    return datetime.utcnow()


def parse_published(value: Any, default: Optional[datetime] = None) -> datetime:
    """Parse an ISO date/datetime into naive UTC; falls back to ``default`` or now."""
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value or "").strip().replace("Z", "+00:00"))
        except ValueError:
            return default or utcnow()
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
