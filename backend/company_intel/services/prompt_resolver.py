"""
Prompt resolution with database overrides.

Composition: base prompt (DB or code) + report-type addendum (DB or code)
when a report type is given.

Priority for the base:
  1. Latest published DB override with ``report_type IS NULL``
  2. Code prompt from ``prompt_templates``

Priority for the addendum:
  1. Latest published DB override for the report type
  2. Code addendum from ``REPORT_TYPE_ADDENDUMS``
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models.prompt import Prompt, PromptStatus
from .blueprints import REPORT_TYPES
from .prompt_templates import REPORT_TYPE_ADDENDUMS, code_addendum, code_prompt
from .stages import APPENDIX, STAGE_ORDER

logger = logging.getLogger(__name__)

ADDENDUM_SEPARATOR = "\n\n---\n\n"

SECTION_METADATA: Dict[str, Dict[str, str]] = {
    "foundation": {"name": "Foundation Research", "category": "foundation",
                   "description": "Phase 0 research that establishes the foundational data layer"},
    "exec_summary": {"name": "Executive Summary", "category": "synthesis",
                     "description": "High-level synthesis with key points and hypotheses"},
    "financial_snapshot": {"name": "Financial Snapshot", "category": "core",
                           "description": "Company metrics vs industry benchmarks"},
    "company_overview": {"name": "Company Overview", "category": "core",
                         "description": "Business description, segments, and footprint"},
    "investment_strategy": {"name": "Investment Strategy", "category": "core",
                            "description": "Fund strategy and sector focus (PE)"},
    "portfolio_snapshot": {"name": "Portfolio Snapshot", "category": "core",
                           "description": "Portfolio company listing and clustering (PE)"},
    "deal_activity": {"name": "Deal Activity", "category": "core",
                      "description": "Recent investments, add-ons, and exits (PE)"},
    "deal_team": {"name": "Deal Team", "category": "core",
                  "description": "Key stakeholders and operating partners (PE)"},
    "portfolio_maturity": {"name": "Portfolio Maturity", "category": "analysis",
                           "description": "Exit watchlist and holding periods (PE)"},
    "leadership_and_governance": {"name": "Leadership & Governance", "category": "core",
                                  "description": "Executive team and board composition (FS)"},
    "strategic_priorities": {"name": "Strategic Priorities", "category": "core",
                             "description": "Transformation and strategic initiatives (FS)"},
    "operating_capabilities": {"name": "Operating Capabilities", "category": "core",
                               "description": "Operational strengths and capabilities (FS)"},
    "segment_analysis": {"name": "Segment Analysis", "category": "analysis",
                         "description": "Segment deep-dive with competitive landscape"},
    "trends": {"name": "Market Trends", "category": "analysis",
               "description": "Macro and micro trends impacting the company"},
    "peer_benchmarking": {"name": "Peer Benchmarking", "category": "analysis",
                          "description": "Competitive comparison and positioning"},
    "sku_opportunities": {"name": "SKU Opportunities", "category": "analysis",
                          "description": "Operating tensions mapped to problem areas"},
    "recent_news": {"name": "Recent News", "category": "core",
                    "description": "Latest news and developments"},
    "conversation_starters": {"name": "Conversation Starters", "category": "synthesis",
                              "description": "Hypothesis-driven questions for client meetings"},
    "appendix": {"name": "Appendix & Sources", "category": "synthesis",
                 "description": "Auto-generated source citations"},
}


@dataclass
class ResolvedPrompt:
    content: str
    source: str  # "code" | "database"
    version: Optional[int] = None
    published_at: Optional[datetime] = None


def _require_section(section_id: str) -> None:
    if section_id not in SECTION_METADATA:
        raise ValueError(f"Unknown section: {section_id}")


def _normalize_report_type(report_type: str | None) -> str | None:
    if not report_type:
        return None
    rt = report_type.strip().upper()
    if rt not in REPORT_TYPES:
        raise ValueError(f"Unknown report type: {report_type}")
    return rt


def _slot(db: Session, section_id: str, report_type: str | None):
    q = db.query(Prompt).filter(Prompt.section_id == section_id)
    if report_type is None:
        return q.filter(Prompt.report_type.is_(None))
    return q.filter(Prompt.report_type == report_type)


def _latest(db: Session, section_id: str, report_type: str | None, status: str) -> Prompt | None:
    return (
        _slot(db, section_id, report_type)
        .filter(Prompt.status == status)
        .order_by(Prompt.version.desc(), Prompt.id.desc())
        .first()
    )


def list_all_sections() -> List[Dict[str, Any]]:
    return [
        {"id": sid, **SECTION_METADATA[sid], "has_addendums": sid in REPORT_TYPE_ADDENDUMS}
        for sid in STAGE_ORDER
    ]


def resolve_prompt(db: Session, section_id: str, report_type: str | None = None) -> ResolvedPrompt:
    report_type = _normalize_report_type(report_type)

    base_row = _latest(db, section_id, None, PromptStatus.PUBLISHED)
    base_content = base_row.content if base_row else (code_prompt(section_id) or "")
    resolved = ResolvedPrompt(
        content=base_content,
        source="database" if base_row else "code",
        version=base_row.version if base_row else None,
        published_at=base_row.published_at if base_row else None,
    )

    if report_type and section_id != APPENDIX:
        type_row = _latest(db, section_id, report_type, PromptStatus.PUBLISHED)
        addendum = type_row.content if type_row else code_addendum(section_id, report_type)
        if addendum:
            resolved.content = f"{base_content}{ADDENDUM_SEPARATOR}{addendum}"
            if type_row:
                resolved.source = "database"
                resolved.version = type_row.version
                resolved.published_at = type_row.published_at or resolved.published_at

    return resolved


def _code_content(section_id: str, report_type: str | None) -> str:
    if report_type is None:
        return code_prompt(section_id) or ""
    return code_addendum(section_id, report_type) or ""


def _override_dict(row: Prompt | None) -> Dict[str, Any] | None:
    if row is None:
        return None
    return {
        "id": row.id,
        "content": row.content,
        "status": row.status,
        "version": row.version,
        "created_at": row.created_at,
        "published_at": row.published_at,
    }


def list_all_prompts(db: Session) -> List[Dict[str, Any]]:
    """
    Every (section, report type) slot with its code default and current DB
    override. A draft takes precedence over the published row for display.
    """
    rows: List[Dict[str, Any]] = []
    for section in list_all_sections():
        sid = section["id"]
        slots: List[str | None] = [None]
        if sid in REPORT_TYPE_ADDENDUMS and sid != APPENDIX:
            slots.extend(REPORT_TYPES)
        for rt in slots:
            override = _latest(db, sid, rt, PromptStatus.DRAFT) or _latest(
                db, sid, rt, PromptStatus.PUBLISHED
            )
            rows.append(
                {
                    "section_id": sid,
                    "report_type": rt,
                    "name": section["name"],
                    "description": section["description"],
                    "code_content": _code_content(sid, rt),
                    "db_override": _override_dict(override),
                }
            )
    return rows


def prompt_versions(db: Session, section_id: str, report_type: str | None = None) -> List[Prompt]:
    _require_section(section_id)
    report_type = _normalize_report_type(report_type)
    return (
        _slot(db, section_id, report_type)
        .filter(Prompt.status.in_([PromptStatus.PUBLISHED, PromptStatus.ARCHIVED]))
        .order_by(Prompt.version.desc())
        .all()
    )


def save_draft(
    db: Session,
    section_id: str,
    content: str,
    report_type: str | None = None,
    created_by: str | None = None,
) -> Prompt:
    _require_section(section_id)
    report_type = _normalize_report_type(report_type)
    if not content or not content.strip():
        raise ValueError("Prompt content must not be empty")

    draft = _latest(db, section_id, report_type, PromptStatus.DRAFT)
    if draft is None:
        draft = Prompt(
            section_id=section_id,
            report_type=report_type,
            status=PromptStatus.DRAFT,
            version=0,
            content=content,
            created_by=created_by,
        )
        db.add(draft)
    else:
        draft.content = content
        draft.created_by = created_by or draft.created_by
    db.commit()
    db.refresh(draft)
    return draft


def publish_prompt(db: Session, section_id: str, report_type: str | None = None) -> Prompt:
    """Promote the current draft to a new published version; archive the previous one."""
    _require_section(section_id)
    report_type = _normalize_report_type(report_type)

    draft = _latest(db, section_id, report_type, PromptStatus.DRAFT)
    if draft is None:
        raise ValueError("No draft to publish")

    current = _latest(db, section_id, report_type, PromptStatus.PUBLISHED)
    newest = _slot(db, section_id, report_type).order_by(Prompt.version.desc()).first()
    next_version = (newest.version if newest else 0) + 1

    if current is not None:
        current.status = PromptStatus.ARCHIVED

    draft.status = PromptStatus.PUBLISHED
    draft.version = next_version
    draft.published_at = datetime.utcnow()
    db.commit()
    db.refresh(draft)

    logger.info(
        "Prompt published",
        extra={"step": "prompt_publish", "stage": section_id},
    )
    return draft


def revert_prompt(db: Session, section_id: str, report_type: str | None = None) -> int:
    """Archive published rows and drop drafts so the code prompt is used again."""
    _require_section(section_id)
    report_type = _normalize_report_type(report_type)

    changed = 0
    for row in _slot(db, section_id, report_type).all():
        if row.status == PromptStatus.DRAFT:
            db.delete(row)
            changed += 1
        elif row.status == PromptStatus.PUBLISHED:
            row.status = PromptStatus.ARCHIVED
            changed += 1
    db.commit()
    return changed
