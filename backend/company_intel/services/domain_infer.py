"""
Company identity helpers: website-domain inference and name resolution.

Both are best-effort. Failures are logged and turned into an empty result so
that job creation and the new-report form never block on them.
"""
from __future__ import annotations

import logging
import re
import textwrap
from typing import Any, Dict, List
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.research_job import ResearchJob
from .cost_tracking import record_llm_result
from .llm import LLMResponseError, complete, parse_json_response

logger = logging.getLogger(__name__)

_PROTOCOL_RE = re.compile(r"^https?://", re.IGNORECASE)
RESOLVE_STATUSES = ("exact", "corrected", "ambiguous", "unknown")
MAX_RESOLVE_INPUT_LEN = 160


def normalize_domain(value: str | None) -> str:
    if not value:
        return ""
    domain = _PROTOCOL_RE.sub("", value.strip())
    domain = domain.split("/", 1)[0]
    return domain.lower()


def extract_domain(raw: str | None) -> str | None:
    """First token of a model answer if it looks like a bare domain."""
    if not raw or not raw.strip():
        return None
    candidate = normalize_domain(raw.split()[0].strip("\"'`"))
    if "." not in candidate or "@" in candidate or " " in candidate:
        return None
    return candidate.rstrip(".")


def infer_domain(
    db: Session,
    company_name: str,
    *,
    geography: str | None = None,
    industry: str | None = None,
    job_id: UUID | None = None,
    draft_id: str | None = None,
) -> str | None:
    if not company_name or len(company_name.strip()) < 2:
        return None

    hint_parts = []
    if geography and geography != "Global":
        hint_parts.append(f"Geography: {geography}")
    if industry:
        hint_parts.append(f"Industry: {industry}")
    hints = "; ".join(hint_parts)

    prompt = textwrap.dedent(
        f"""
        You find the official primary website domain for a company.
        Return only the domain, no protocol, no path, no extra words.

        Company: "{company_name.strip()}"
        {hints}
        Answer with just the domain, e.g., "example.com"
        """
    )
    try:
        result = complete(
            "You are a precise research assistant.",
            prompt,
            max_tokens=50,
            temperature=0,
        )
    except Exception:
        logger.exception(
            "Domain inference failed",
            extra={"job_id": str(job_id) if job_id else None, "step": "domain_inference"},
        )
        return None

    if result.input_tokens or result.output_tokens:
        try:
            record_llm_result(
                db,
                result,
                stage="domain_inference",
                job_id=job_id,
                draft_id=draft_id,
                metadata={"company_name": company_name},
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "Failed to record domain inference cost",
                extra={"job_id": str(job_id) if job_id else None, "step": "domain_inference"},
            )

    return extract_domain(result.text)


def ensure_domain_for_job(db: Session, job: ResearchJob) -> str | None:
    """Fill ``job.domain`` if empty. Never raises."""
    if job.domain:
        return job.domain
    try:
        inferred = infer_domain(
            db,
            job.company_name,
            geography=job.geography,
            industry=job.industry,
            job_id=job.id,
        )
        domain = normalize_domain(inferred)
        if not domain:
            return None
        job.domain = domain
        job.normalized_domain = domain
        db.commit()
        return domain
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Failed to store inferred domain",
            extra={"job_id": str(job.id), "step": "domain_inference"},
        )
        return None


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def resolve_company(
    db: Session,
    raw_input: str,
    *,
    geography: str | None = None,
    industry: str | None = None,
    report_type: str | None = None,
    draft_id: str | None = None,
) -> Dict[str, Any]:
    """
    Validate and disambiguate a company name typed into the new-report form.

    Returns ``{"status", "input", "suggestions", "confidence"}``; on any LLM
    failure the status is ``unknown`` so the UI can proceed.
    """
    text = (raw_input or "").strip()
    if len(text) < 2:
        raise ValueError("Input must be at least 2 characters")
    if len(text) > MAX_RESOLVE_INPUT_LEN:
        raise ValueError(f"Input must be at most {MAX_RESOLVE_INPUT_LEN} characters")

    hints = []
    if geography:
        hints.append(f"Geography hint: {_escape(geography)}")
    if industry:
        hints.append(f"Industry hint: {_escape(industry)}")
    if report_type:
        hints.append(f"Report type: {_escape(report_type)}")
    hint_block = "\n".join(hints)

    prompt = (
        "You are a company name resolver. Analyze the input and determine if it matches known companies.\n"
        f'Input: "{_escape(text)}"\n'
        f"{hint_block}\n\n"
        "Return JSON:\n"
        "{\n"
        '  "status": "exact" | "corrected" | "ambiguous" | "unknown",\n'
        '  "confidence": 0.0-1.0,\n'
        '  "suggestions": [{"canonicalName": "", "displayName": "", "description": "", '
        '"domain": "", "industry": "", "matchScore": 0.0}]\n'
        "}\n"
        "At most 5 suggestions. Return only the JSON."
    )

    fallback = {"status": "unknown", "input": text, "suggestions": [], "confidence": 0.0}
    try:
        result = complete("You are a precise research assistant.", prompt, max_tokens=800, temperature=0)
    except Exception:
        logger.exception("Company resolution failed", extra={"step": "company_resolve"})
        return fallback

    try:
        record_llm_result(db, result, stage="company_resolve", draft_id=draft_id, metadata={"input": text})
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to record company resolution cost", extra={"step": "company_resolve"})

    try:
        parsed = parse_json_response(result.text, allow_repair=True)
    except LLMResponseError:
        logger.warning("Company resolution returned invalid JSON", extra={"step": "company_resolve"})
        return fallback

    status = parsed.get("status") if isinstance(parsed, dict) else None
    suggestions: List[Dict[str, Any]] = []
    for s in (parsed.get("suggestions") or [])[:5] if isinstance(parsed, dict) else []:
        if not isinstance(s, dict):
            continue
        canonical = s.get("canonicalName") or ""
        score = s.get("matchScore")
        suggestions.append(
            {
                "canonical_name": canonical,
                "display_name": s.get("displayName") or canonical,
                "description": s.get("description") or "",
                "domain": normalize_domain(s.get("domain")) or None,
                "industry": s.get("industry"),
                "match_score": float(score) if isinstance(score, (int, float)) else 0.5,
            }
        )

    confidence = parsed.get("confidence") if isinstance(parsed, dict) else None
    return {
        "status": status if status in RESOLVE_STATUSES else "unknown",
        "input": text,
        "suggestions": suggestions,
        "confidence": float(confidence) if isinstance(confidence, (int, float)) else 0.5,
    }
