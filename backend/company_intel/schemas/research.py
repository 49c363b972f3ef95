# backend/company_intel/schemas/research.py
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, constr, field_validator

from ..services.blueprints import REPORT_TYPES

MAX_COMPANY_NAME_LEN = 200
MAX_GEOGRAPHY_LEN = 200
MAX_INDUSTRY_LEN = 200
MAX_DOMAIN_LEN = 255
MAX_FOCUS_AREAS = 20


class ResearchRequest(BaseModel):
    company_name: str
    geography: str | None = None
    industry: str | None = None
    focus_areas: list[str] = []
    report_type: str | None = None
    selected_sections: list[str] | None = None
    user_inputs: dict[str, Any] | None = None
    draft_id: str | None = None
    domain: str | None = None

    @field_validator("geography", "industry", "domain", "draft_id", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str):
            return v.strip() or None
        return v

    @field_validator("company_name")
    @classmethod
    def validate_company_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("company_name must not be empty")
        if len(v) > MAX_COMPANY_NAME_LEN:
            raise ValueError(f"company_name must be at most {MAX_COMPANY_NAME_LEN} characters")
        return v

    @field_validator("geography")
    @classmethod
    def validate_geography(cls, v: str | None) -> str | None:
        if v is not None and len(v) > MAX_GEOGRAPHY_LEN:
            raise ValueError(f"geography must be at most {MAX_GEOGRAPHY_LEN} characters")
        return v

    @field_validator("industry")
    @classmethod
    def validate_industry(cls, v: str | None) -> str | None:
        if v is not None and len(v) > MAX_INDUSTRY_LEN:
            raise ValueError(f"industry must be at most {MAX_INDUSTRY_LEN} characters")
        return v

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str | None) -> str | None:
        if v is not None and len(v) > MAX_DOMAIN_LEN:
            raise ValueError("domain is too long")
        return v

    @field_validator("report_type")
    @classmethod
    def validate_report_type(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        v = v.strip().upper()
        if v not in REPORT_TYPES:
            raise ValueError(f"report_type must be one of {', '.join(REPORT_TYPES)}")
        return v

    @field_validator("focus_areas")
    @classmethod
    def validate_focus_areas(cls, v: list[str]) -> list[str]:
        cleaned = [s.strip() for s in v if s and s.strip()]
        if len(cleaned) > MAX_FOCUS_AREAS:
            raise ValueError(f"At most {MAX_FOCUS_AREAS} focus areas are allowed")
        return cleaned


class RerunRequest(BaseModel):
    sections: list[str] = Field(min_length=1)


class CompanyResolveRequest(BaseModel):
    input: constr(min_length=2, max_length=160)
    geography: str | None = None
    industry: str | None = None
    report_type: str | None = None
    draft_id: str | None = None


class ResearchJobOut(BaseModel):
    id: UUID
    status: str
    company_name: str
    geography: str
    industry: str | None = None
    focus_areas: list[str] = []
    report_type: str | None = None
    selected_sections: list[str] | None = None
    user_inputs: dict | None = None
    domain: str | None = None
    progress: float = 0.0
    current_stage: str | None = None
    overall_confidence: str | None = None
    overall_confidence_score: float | None = None
    error_message: str | None = None
    total_cost_usd: Decimal | None = None
    created_at: datetime
    updated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ResearchSubJobOut(BaseModel):
    id: int
    stage: str
    status: str
    dependencies: list[str] = []
    output: dict | None = None
    confidence: str | None = None
    sources_used: list[str] | None = None
    attempts: int
    max_attempts: int
    last_error: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None

    model_config = ConfigDict(from_attributes=True)


class ResearchTraceEventOut(BaseModel):
    id: int
    created_at: datetime
    phase: str
    step: str | None = None
    label: str
    detail: str | None = None
    meta: dict | None = None

    model_config = ConfigDict(from_attributes=True)


class JobStatusOut(BaseModel):
    id: UUID
    status: str
    progress: float
    current_stage: str | None = None
    error_message: str | None = None
    completed_stages: list[str] = []
    failed_stages: list[str] = []
    pending_stages: list[str] = []
