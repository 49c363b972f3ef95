from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, constr


class PromptDraftIn(BaseModel):
    content: constr(min_length=1)
    report_type: str | None = None
    created_by: str | None = None


class PromptOut(BaseModel):
    id: int
    section_id: str
    report_type: str | None = None
    status: str
    version: int
    content: str
    created_by: str | None = None
    created_at: datetime
    published_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class PricingRateIn(BaseModel):
    provider: constr(min_length=1, max_length=32)
    model: constr(min_length=1, max_length=128)
    input_per_mtok: float = Field(ge=0)
    output_per_mtok: float = Field(ge=0)
    cache_read_per_mtok: float | None = Field(default=None, ge=0)
    cache_write_per_mtok: float | None = Field(default=None, ge=0)


class PricingRateOut(BaseModel):
    id: int
    provider: str
    model: str
    input_per_mtok: float
    output_per_mtok: float
    cache_read_per_mtok: float | None = None
    cache_write_per_mtok: float | None = None
    effective_from: datetime
    effective_to: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
