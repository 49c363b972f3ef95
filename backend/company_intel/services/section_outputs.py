"""
Validation of stage outputs and assembly of the appendix.

Section JSON is free-form per section; only the shared envelope
(``confidence`` and ``sources_used``) is enforced.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .llm import LLMResponseError
from .stages import APPENDIX, FOUNDATION

CONFIDENCE_LEVELS = ("HIGH", "MEDIUM", "LOW")
DEFAULT_CONFIDENCE = "MEDIUM"


class SectionConfidence(BaseModel):
    level: str = DEFAULT_CONFIDENCE
    reason: str | None = None

    model_config = ConfigDict(extra="allow")

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, v):
        level = str(v or "").strip().upper()
        return level if level in CONFIDENCE_LEVELS else DEFAULT_CONFIDENCE


class SectionOutput(BaseModel):
    confidence: SectionConfidence | None = None
    sources_used: List[str] = []

    model_config = ConfigDict(extra="allow")

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence_from_string(cls, v):
        # Models sometimes return "confidence": "HIGH"
        if isinstance(v, str):
            return {"level": v}
        return v

    @field_validator("sources_used", mode="before")
    @classmethod
    def _coerce_sources(cls, v):
        if v is None:
            return []
        if not isinstance(v, list):
            raise ValueError("sources_used must be a list")
        return [str(s).strip() for s in v if str(s).strip()]


class SourceEntry(BaseModel):
    id: str
    title: str | None = None
    publisher: str | None = None
    date: str | None = None
    url: str | None = None
    tier: int | None = None

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)


class FoundationOutput(SectionOutput):
    source_catalog: List[SourceEntry] = []


def validate_section_output(stage: str, data: Any) -> Dict[str, Any]:
    """
    Validate and normalise a stage's parsed JSON.

    Raises ``LLMResponseError`` when the payload is not a JSON object or the
    envelope fields have the wrong shape; the orchestrator treats that as a
    failed attempt.
    """
    if not isinstance(data, dict):
        raise LLMResponseError(f"{stage} output must be a JSON object")

    model = FoundationOutput if stage == FOUNDATION else SectionOutput
    try:
        parsed = model.model_validate(data)
    except ValidationError as exc:
        raise LLMResponseError(f"{stage} output failed validation: {exc.errors()[:3]}") from exc

    out = parsed.model_dump(exclude_none=True)
    if "confidence" not in out:
        out["confidence"] = {"level": DEFAULT_CONFIDENCE}
    return out


def confidence_level(output: Mapping[str, Any] | None) -> str:
    level = ((output or {}).get("confidence") or {}).get("level")
    return level if level in CONFIDENCE_LEVELS else DEFAULT_CONFIDENCE


def build_appendix(
    foundation: Mapping[str, Any] | None,
    section_outputs: Mapping[str, Mapping[str, Any]],
) -> Dict[str, Any]:
    """
    Assemble the appendix from the foundation source catalog, keeping only
    sources referenced by at least one completed section (all sources when
    no section cites any).
    """
    catalog = {
        str(entry.get("id")): dict(entry)
        for entry in (foundation or {}).get("source_catalog") or []
        if isinstance(entry, Mapping) and entry.get("id")
    }

    used_by: Dict[str, List[str]] = {}
    for stage, output in section_outputs.items():
        if stage in (FOUNDATION, APPENDIX):
            continue
        for source_id in (output or {}).get("sources_used") or []:
            used_by.setdefault(str(source_id), []).append(stage)

    ids = [sid for sid in catalog if sid in used_by] if used_by else list(catalog)
    sources = []
    for sid in ids:
        entry = catalog[sid]
        entry["used_in"] = used_by.get(sid, [])
        sources.append(entry)

    unknown = sorted(sid for sid in used_by if sid not in catalog)

    return {
        "sources": sources,
        "unresolved_source_ids": unknown,
        "sources_used": ids,
        "confidence": {"level": "HIGH" if sources else "LOW", "reason": "Generated from section citations"},
    }
