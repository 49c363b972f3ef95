"""
Stage graph for research jobs.

Every report is a DAG rooted at ``foundation``. Helpers in this module work on
either ORM rows (``ResearchSubJob``) or plain dicts with ``stage`` / ``status``
keys so they can be reused by the API layer and by tests.
"""
from __future__ import annotations

from collections import deque
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Set

from ..models.research_sub_job import SubJobStatus

FOUNDATION = "foundation"
APPENDIX = "appendix"

# Canonical execution / display order.
STAGE_ORDER: List[str] = [
    FOUNDATION,
    "financial_snapshot",
    "company_overview",
    "segment_analysis",
    "trends",
    "peer_benchmarking",
    "sku_opportunities",
    "recent_news",
    "investment_strategy",
    "portfolio_snapshot",
    "deal_activity",
    "deal_team",
    "portfolio_maturity",
    "leadership_and_governance",
    "strategic_priorities",
    "operating_capabilities",
    "exec_summary",
    "conversation_starters",
    APPENDIX,
]

SECTION_DEPENDENCIES: Dict[str, List[str]] = {
    FOUNDATION: [],
    "financial_snapshot": [FOUNDATION],
    "company_overview": [FOUNDATION],
    "segment_analysis": [FOUNDATION],
    "trends": [FOUNDATION],
    "peer_benchmarking": [FOUNDATION, "financial_snapshot"],
    "sku_opportunities": [FOUNDATION],
    "recent_news": [FOUNDATION],
    "investment_strategy": [FOUNDATION],
    "portfolio_snapshot": [FOUNDATION],
    "deal_activity": [FOUNDATION],
    "deal_team": [FOUNDATION],
    "portfolio_maturity": [FOUNDATION],
    "leadership_and_governance": [FOUNDATION],
    "strategic_priorities": [FOUNDATION],
    "operating_capabilities": [FOUNDATION],
    "exec_summary": [FOUNDATION, "financial_snapshot", "company_overview"],
    "conversation_starters": [FOUNDATION],
    # Built from every completed section, no LLM call.
    APPENDIX: [],
}

ALL_STAGES: Set[str] = set(STAGE_ORDER)


def _field(item: Any, key: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(key)
    return getattr(item, key, None)


def is_known_stage(stage: str) -> bool:
    return stage in ALL_STAGES


def stage_dependencies(stage: str) -> List[str]:
    return list(SECTION_DEPENDENCIES.get(stage, [FOUNDATION]))


def resolve_stage_selection(selected: Iterable[str] | None) -> List[str]:
    """
    Expand a user's section selection into the full list of stages to run.

    - ``foundation`` is always included.
    - Dependencies of selected sections are pulled in transitively.
    - ``None`` or an empty selection means every stage.
    - Unknown ids raise ``ValueError``.
    """
    requested = [s.strip() for s in (selected or []) if s and s.strip()]
    if not requested:
        return list(STAGE_ORDER)

    unknown = [s for s in requested if s not in ALL_STAGES]
    if unknown:
        raise ValueError(f"Unknown sections: {', '.join(sorted(set(unknown)))}")

    wanted: Set[str] = {FOUNDATION}
    queue = deque(requested)
    while queue:
        stage = queue.popleft()
        if stage in wanted:
            continue
        wanted.add(stage)
        queue.extend(stage_dependencies(stage))

    return [s for s in STAGE_ORDER if s in wanted]


def status_by_stage(sub_jobs: Iterable[Any]) -> Dict[str, str]:
    return {_field(sj, "stage"): _field(sj, "status") for sj in sub_jobs}


def runnable_stages(sub_jobs: Sequence[Any]) -> List[str]:
    """
    Pending stages whose dependencies are all completed.

    The appendix waits until every other stage has reached a terminal status.
    """
    statuses = status_by_stage(sub_jobs)
    others_open = any(
        stage != APPENDIX and status not in SubJobStatus.TERMINAL
        for stage, status in statuses.items()
    )
    runnable: List[str] = []
    for sj in sub_jobs:
        if _field(sj, "status") != SubJobStatus.PENDING:
            continue
        if _field(sj, "stage") == APPENDIX and others_open:
            continue
        deps = _field(sj, "dependencies")
        if deps is None:
            deps = stage_dependencies(_field(sj, "stage"))
        # A dependency that is not part of this job cannot block it.
        if all(statuses.get(dep, SubJobStatus.COMPLETED) == SubJobStatus.COMPLETED for dep in deps):
            runnable.append(_field(sj, "stage"))
    return runnable


def collect_blocked_stages(
    failed_stages: Iterable[str],
    sub_jobs: Sequence[Any],
    deps: Mapping[str, Sequence[str]] | None = None,
) -> Set[str]:
    """
    Stages that can never run because a dependency failed.

    Only pending or running stages are considered. Blocking propagates: a
    stage whose dependency is itself blocked is blocked too.
    """
    deps = deps or SECTION_DEPENDENCIES
    failed = set(failed_stages)
    blocked: Set[str] = set()

    candidates = [
        _field(sj, "stage")
        for sj in sub_jobs
        if _field(sj, "status") in (SubJobStatus.PENDING, SubJobStatus.RUNNING)
    ]

    changed = True
    while changed:
        changed = False
        for stage in candidates:
            if stage in blocked:
                continue
            if any(d in failed or d in blocked for d in deps.get(stage, [])):
                blocked.add(stage)
                changed = True

    return blocked


def compute_rerun_stages(
    requested: Iterable[str],
    sub_jobs: Sequence[Any],
    deps: Mapping[str, Sequence[str]] | None = None,
) -> List[str]:
    """
    Requested stages plus every failed or cancelled upstream dependency.

    Input is trimmed and de-duplicated (first occurrence wins); failed
    dependencies are discovered breadth-first and appended.
    """
    deps = deps or SECTION_DEPENDENCIES
    statuses = status_by_stage(sub_jobs)

    result: List[str] = []
    seen: Set[str] = set()
    for stage in requested:
        stage = (stage or "").strip()
        if stage and stage not in seen:
            seen.add(stage)
            result.append(stage)

    queue = deque(result)
    while queue:
        stage = queue.popleft()
        for dep in deps.get(stage, []):
            if dep in seen:
                continue
            if statuses.get(dep) in (SubJobStatus.FAILED, SubJobStatus.CANCELLED):
                seen.add(dep)
                result.append(dep)
                queue.append(dep)

    return result


def build_completed_stages(
    sub_jobs: Sequence[Any],
    selected: Sequence[str] | None = None,
) -> List[str]:
    """Completed section ids (foundation excluded), optionally restricted to ``selected``."""
    completed: List[str] = []
    seen: Set[str] = set()
    for sj in sub_jobs:
        stage = _field(sj, "stage")
        if stage == FOUNDATION or stage in seen:
            continue
        if _field(sj, "status") == SubJobStatus.COMPLETED:
            seen.add(stage)
            completed.append(stage)

    if selected:
        return [s for s in selected if s in seen]
    return completed


def sort_stages(stages: Iterable[str]) -> List[str]:
    order = {s: i for i, s in enumerate(STAGE_ORDER)}
    return sorted(stages, key=lambda s: order.get(s, len(order)))
