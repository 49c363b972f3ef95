from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, constr, field_validator, model_validator

MAX_NAME_LEN = 200


def _strip(v):
    if isinstance(v, str):
        return v.strip() or None
    return v


class TrackedCompanyIn(BaseModel):
    name: constr(min_length=1, max_length=MAX_NAME_LEN)
    ticker: str | None = None
    cik: str | None = None
    cusip: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("ticker", "cik", "cusip", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        return _strip(v)


class TrackedCompanyOut(BaseModel):
    id: int
    name: str
    ticker: str | None = None
    cik: str | None = None
    cusip: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TrackedPersonIn(BaseModel):
    name: constr(min_length=1, max_length=MAX_NAME_LEN)
    title: str | None = None
    company_id: int | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("title", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        return _strip(v)


class TrackedPersonOut(BaseModel):
    id: int
    name: str
    title: str | None = None
    company_id: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NewsTagIn(BaseModel):
    name: constr(min_length=1, max_length=100)
    category: str | None = None


class NewsTagOut(BaseModel):
    id: int
    name: str
    category: str | None = None

    model_config = ConfigDict(from_attributes=True)


class RevenueOwnerIn(BaseModel):
    name: constr(min_length=1, max_length=MAX_NAME_LEN)
    email: str | None = None
    company_ids: list[int] = []
    person_ids: list[int] = []
    tag_ids: list[int] = []

    @field_validator("email", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        return _strip(v)


class RevenueOwnerOut(BaseModel):
    id: int
    name: str
    email: str | None = None
    created_at: datetime
    companies: list[TrackedCompanyOut] = []
    people: list[TrackedPersonOut] = []
    tags: list[NewsTagOut] = []

    model_config = ConfigDict(from_attributes=True)


class ArticleSourceOut(BaseModel):
    source_url: str
    source_name: str | None = None
    fetch_layer: str | None = None

    model_config = ConfigDict(from_attributes=True)


class NewsArticleOut(BaseModel):
    id: int
    headline: str
    short_summary: str | None = None
    long_summary: str | None = None
    summary: str | None = None
    why_it_matters: str | None = None
    source_url: str
    source_name: str | None = None
    published_at: datetime | None = None
    fetched_at: datetime
    company_id: int | None = None
    person_id: int | None = None
    tag_id: int | None = None
    category: str | None = None
    status: str
    match_type: str | None = None
    fetch_layer: str | None = None
    is_sent: bool
    is_archived: bool
    sources: list[ArticleSourceOut] = []
    revenue_owner_ids: list[int] = []

    model_config = ConfigDict(from_attributes=True)


class ArticleUpdate(BaseModel):
    is_sent: bool | None = None
    is_archived: bool | None = None


class NewsSearchRequest(BaseModel):
    company: str | None = None
    person: str | None = None
    days: int = Field(default=1, ge=1, le=30)

    @model_validator(mode="after")
    def validate_entity(self):
        self.company = _strip(self.company)
        self.person = _strip(self.person)
        if not self.company and not self.person:
            raise ValueError("company or person must be provided")
        return self
