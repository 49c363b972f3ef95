from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Sequence, Tuple

from ..models.research_job import JobStatus
from ..models.research_sub_job import SubJobStatus
from .stages import FOUNDATION, _field

CONFIDENCE_SCORES = {"HIGH": 0.9, "MEDIUM": 0.6, "LOW": 0.3}
FAILED_STAGE_SCORE = 0.3


def compute_terminal_progress(sub_jobs: Sequence[Any]) -> float:
    """Share of sub-jobs in a terminal status (0.0 when there are none)."""
    if not sub_jobs:
        return 0.0
    done = sum(1 for sj in sub_jobs if _field(sj, "status") in SubJobStatus.TERMINAL)
    return done / len(sub_jobs)


def compute_final_status(job_status: str, sub_jobs: Sequence[Any]) -> str:
    if job_status in (JobStatus.CANCELLED, JobStatus.FAILED):
        return job_status

    statuses = [_field(sj, "status") for sj in sub_jobs]

    foundation_failed = any(
        _field(sj, "stage") == FOUNDATION and _field(sj, "status") == SubJobStatus.FAILED
        for sj in sub_jobs
    )
    if foundation_failed:
        return JobStatus.FAILED

    if not all(s in SubJobStatus.TERMINAL for s in statuses):
        return job_status

    if SubJobStatus.FAILED in statuses:
        return JobStatus.COMPLETED_WITH_ERRORS
    if SubJobStatus.CANCELLED in statuses:
        return JobStatus.CANCELLED
    return JobStatus.COMPLETED


def compute_overall_confidence(sub_jobs: Iterable[Any]) -> Tuple[float | None, str | None]:
    """
    Average per-stage confidence into a (score, label) pair.

    Failed stages count as LOW; stages with no recognised confidence are
    skipped. Returns ``(None, None)`` when nothing can be scored.
    """
    scores: List[float] = []
    for sj in sub_jobs:
        if _field(sj, "status") == SubJobStatus.FAILED:
            scores.append(FAILED_STAGE_SCORE)
            continue
        level = str(_field(sj, "confidence") or "").upper()
        if level in CONFIDENCE_SCORES:
            scores.append(CONFIDENCE_SCORES[level])

    if not scores:
        return None, None

    score = sum(scores) / len(scores)
    if score >= 0.75:
        label = "HIGH"
    elif score >= 0.5:
        label = "MEDIUM"
    else:
        label = "LOW"
    return round(score, 4), label


def derive_job_status(status: str, sub_jobs: Sequence[Any]) -> str:
    """
    Status shown in list views.

    The stored job status can lag behind its sub-jobs (e.g. a worker died
    mid-round), so it is reconciled with the sub-job states here.
    """
    if not sub_jobs:
        return status
    if status in (JobStatus.CANCELLED, JobStatus.FAILED):
        return status

    statuses = [_field(sj, "status") for sj in sub_jobs]
    has_running = SubJobStatus.RUNNING in statuses
    has_pending = SubJobStatus.PENDING in statuses
    has_completed = SubJobStatus.COMPLETED in statuses
    has_failed = SubJobStatus.FAILED in statuses

    if has_running:
        return JobStatus.RUNNING
    if has_pending and has_completed:
        return JobStatus.RUNNING
    if not has_pending and has_failed:
        return JobStatus.COMPLETED_WITH_ERRORS
    if not has_pending and has_completed:
        return JobStatus.COMPLETED
    if status == JobStatus.QUEUED and has_pending and not has_completed:
        return JobStatus.QUEUED
    return status


def filter_jobs_by_derived_status(
    jobs: Iterable[Mapping[str, Any]],
    status: str | None,
) -> List[Mapping[str, Any]]:
    """
    Keep jobs whose derived status equals ``status``.

    Each job is a mapping with ``status`` and ``sub_jobs`` keys.
    """
    jobs = list(jobs)
    if not status:
        return jobs
    return [
        job
        for job in jobs
        if derive_job_status(job.get("status"), job.get("sub_jobs") or []) == status
    ]
