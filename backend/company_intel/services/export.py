"""
Structured export of a finished report: section outputs in blueprint order.
"""
from __future__ import annotations

from typing import Any, Dict, List, Sequence

from ..models.research_job import JobStatus
from ..models.research_sub_job import SubJobStatus
from .blueprints import default_sections, get_blueprint, section_title
from .stages import FOUNDATION, STAGE_ORDER, _field

EXPORTABLE_STATUSES = (JobStatus.COMPLETED, JobStatus.COMPLETED_WITH_ERRORS)


def is_export_ready(status: str | None) -> bool:
    return status in EXPORTABLE_STATUSES


def export_section_ids(report_type: str | None, selected: Sequence[str] | None) -> List[str]:
    """
    Sections to export, in blueprint order.

    Uses the user's selection, else the blueprint defaults, else every
    section. Foundation is internal research and never exported.
    """
    wanted = list(selected or []) or default_sections(report_type) or list(STAGE_ORDER)
    blueprint = get_blueprint(report_type)
    order = [s.id for s in blueprint.sections] if blueprint else list(STAGE_ORDER)
    rank = {sid: i for i, sid in enumerate(order)}
    ids = [s for s in dict.fromkeys(wanted) if s != FOUNDATION]
    return sorted(ids, key=lambda s: rank.get(s, len(rank)))


def build_export_sections(
    report_type: str | None,
    selected: Sequence[str] | None,
    sub_jobs: Sequence[Any],
) -> List[Dict[str, Any]]:
    completed = {
        _field(sj, "stage"): sj
        for sj in sub_jobs
        if _field(sj, "status") == SubJobStatus.COMPLETED
    }
    sections = []
    for sid in export_section_ids(report_type, selected):
        sj = completed.get(sid)
        if sj is None:
            continue
        sections.append(
            {
                "id": sid,
                "title": section_title(sid, report_type),
                "confidence": _field(sj, "confidence"),
                "output": _field(sj, "output") or {},
            }
        )
    return sections
