"""
Shared test data for research job tests: sub-job snapshots, section outputs
and canned LLM results.
"""
from typing import Any, Dict, List

from company_intel.services.llm import LLMResult


def sub_job(stage: str, status: str, confidence: str | None = None, **extra) -> Dict[str, Any]:
    """Plain-dict stand-in for a ResearchSubJob row."""
    return {"stage": stage, "status": status, "confidence": confidence, **extra}


# Completed foundation with one failed downstream section.
MIXED_SUB_JOBS: List[Dict[str, Any]] = [
    sub_job("foundation", "completed", "HIGH"),
    sub_job("financial_snapshot", "failed"),
    sub_job("company_overview", "completed", "MEDIUM"),
    sub_job("exec_summary", "failed"),
]

ALL_COMPLETED_SUB_JOBS: List[Dict[str, Any]] = [
    sub_job("foundation", "completed", "HIGH"),
    sub_job("financial_snapshot", "completed", "HIGH"),
    sub_job("company_overview", "completed", "MEDIUM"),
]

FOUNDATION_OUTPUT: Dict[str, Any] = {
    "company_basics": {"name": "Acme Industrial", "hq": "Cleveland, OH"},
    "confidence": {"level": "HIGH", "reason": "Annual report and investor deck"},
    "sources_used": ["S1", "S2"],
    "source_catalog": [
        {"id": "S1", "title": "Annual report 2025", "url": "https://acme.example.com/ir/annual-report", "tier": 1},
        {"id": "S2", "title": "Q3 investor deck", "url": "https://acme.example.com/ir/q3", "tier": 1},
        {"id": "S3", "title": "Trade press profile", "url": "https://news.example.com/acme", "tier": 2},
    ],
}


def section_output(level: str = "MEDIUM", sources: List[str] | None = None, **body) -> Dict[str, Any]:
    return {
        **body,
        "confidence": {"level": level, "reason": "test"},
        "sources_used": sources or [],
    }


def llm_result(text: str, *, model: str = "openai/gpt-5.1", provider: str = "openai", **kwargs) -> LLMResult:
    return LLMResult(text=text, model=model, provider=provider, **kwargs)
