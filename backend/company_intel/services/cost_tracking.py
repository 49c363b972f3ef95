from __future__ import annotations

import json
import logging
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..models.cost_event import CostEvent
from ..models.pricing_rate import PricingRate
from .llm import LLMResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelRate:
    """USD per 1M tokens."""
    input_per_mtok: float
    output_per_mtok: float
    cache_read_per_mtok: Optional[float] = None
    cache_write_per_mtok: Optional[float] = None


DEFAULT_RATE = ModelRate(
    input_per_mtok=3.0,
    output_per_mtok=15.0,
    cache_read_per_mtok=0.3,
    cache_write_per_mtok=3.75,
)

# Short model names as returned by some routes, mapped to the dated names
# pricing rows are stored under.
MODEL_ALIASES: Dict[str, str] = {
    "claude-sonnet-4-5": "claude-sonnet-4-5-20250514",
    "claude-sonnet-4.5": "claude-sonnet-4-5-20250514",
    "claude-sonnet-4": "claude-sonnet-4-20250514",
    "claude-opus-4-1": "claude-opus-4-1-20250805",
    "claude-haiku-4-5": "claude-haiku-4-5-20251001",
}

_DATE_SUFFIX_RE = re.compile(r"-\d{8}$")


def _build_default_pricebook() -> Dict[str, ModelRate]:
    # Prices sourced from OpenAI API pricing (USD per 1M tokens).
    return {
        "gpt-5.1": ModelRate(input_per_mtok=1.250, output_per_mtok=10.000, cache_read_per_mtok=0.125),
        "gpt-5": ModelRate(input_per_mtok=1.250, output_per_mtok=10.000, cache_read_per_mtok=0.125),
        "gpt-5-mini": ModelRate(input_per_mtok=0.250, output_per_mtok=2.000, cache_read_per_mtok=0.025),
        "claude-sonnet-4-5-20250514": DEFAULT_RATE,
    }


def _load_pricebook() -> Dict[str, ModelRate]:
    settings = get_settings()
    pricebook = _build_default_pricebook()
    override_raw = settings.LLM_PRICEBOOK_JSON
    if not override_raw:
        return pricebook

    try:
        override = json.loads(override_raw)
    except json.JSONDecodeError:
        logger.warning("LLM_PRICEBOOK_JSON is not valid JSON; using defaults")
        return pricebook

    if not isinstance(override, dict):
        return pricebook

    for key, value in override.items():
        if not isinstance(value, dict):
            continue
        try:
            pricebook[normalize_model_name(key)] = ModelRate(
                input_per_mtok=float(value["input_per_mtok"]),
                output_per_mtok=float(value["output_per_mtok"]),
                cache_read_per_mtok=float(value["cache_read_per_mtok"])
                if value.get("cache_read_per_mtok") is not None
                else None,
                cache_write_per_mtok=float(value["cache_write_per_mtok"])
                if value.get("cache_write_per_mtok") is not None
                else None,
            )
        except (KeyError, ValueError, TypeError):
            continue
    return pricebook


def normalize_model_name(model: str | None) -> str:
    m = (model or "").strip().lower()
    if "/" in m:
        m = m.split("/")[-1]
    if ":" in m:
        m = m.split(":")[0]
    return MODEL_ALIASES.get(m, m)


def base_model_name(model: str) -> str:
    """``claude-sonnet-4-5-20250514`` -> ``claude-sonnet-4-5``."""
    return _DATE_SUFFIX_RE.sub("", model)


_PRICEBOOK: Dict[str, ModelRate] | None = None
_pricing_cache: Dict[Tuple[str, str], Tuple[ModelRate, float]] = {}
_cache_lock = threading.Lock()


def _pricebook() -> Dict[str, ModelRate]:
    global _PRICEBOOK
    if _PRICEBOOK is None:
        _PRICEBOOK = _load_pricebook()
    return _PRICEBOOK


def clear_pricing_cache() -> None:
    with _cache_lock:
        _pricing_cache.clear()


def _active_rate(db: Session, provider: str, model: str, now: datetime) -> PricingRate | None:
    return (
        db.query(PricingRate)
        .filter(
            PricingRate.provider == provider,
            PricingRate.model == model,
            PricingRate.effective_from <= now,
            or_(PricingRate.effective_to.is_(None), PricingRate.effective_to > now),
        )
        .order_by(PricingRate.effective_from.desc())
        .first()
    )


def get_pricing(db: Session, provider: str, model: str | None) -> ModelRate:
    """
    Active rate for (provider, model).

    Lookup order: DB rate for the normalized name, DB rate for the undated
    base name, code pricebook, ``DEFAULT_RATE``. Results are cached in-process
    for ``PRICING_CACHE_TTL_SECONDS``.
    """
    provider = (provider or "unknown").lower()
    normalized = normalize_model_name(model)
    key = (provider, normalized)
    ttl = get_settings().PRICING_CACHE_TTL_SECONDS

    with _cache_lock:
        cached = _pricing_cache.get(key)
        if cached and time.monotonic() - cached[1] < ttl:
            return cached[0]

    now = datetime.utcnow()
    row = _active_rate(db, provider, normalized, now)
    base = base_model_name(normalized)
    if row is None and base != normalized:
        row = _active_rate(db, provider, base, now)

    if row is not None:
        rate = ModelRate(
            input_per_mtok=row.input_per_mtok,
            output_per_mtok=row.output_per_mtok,
            cache_read_per_mtok=row.cache_read_per_mtok,
            cache_write_per_mtok=row.cache_write_per_mtok,
        )
    else:
        book = _pricebook()
        rate = book.get(normalized) or book.get(base) or DEFAULT_RATE

    with _cache_lock:
        _pricing_cache[key] = (rate, time.monotonic())
    return rate


def calculate_cost(
    rate: ModelRate,
    input_tokens: int,
    output_tokens: int,
    cache_read_tokens: int = 0,
    cache_write_tokens: int = 0,
) -> float:
    cache_read_rate = rate.cache_read_per_mtok if rate.cache_read_per_mtok is not None else rate.input_per_mtok
    cache_write_rate = rate.cache_write_per_mtok if rate.cache_write_per_mtok is not None else rate.input_per_mtok
    total = (
        max(0, int(input_tokens)) * rate.input_per_mtok
        + max(0, int(output_tokens)) * rate.output_per_mtok
        + max(0, int(cache_read_tokens)) * cache_read_rate
        + max(0, int(cache_write_tokens)) * cache_write_rate
    )
    return total / 1_000_000


def cost_for_web_search_calls(call_count: int) -> float:
    return max(0, int(call_count)) * get_settings().WEB_SEARCH_PER_CALL_USD


def record_cost_event(
    db: Session,
    *,
    stage: str,
    provider: str,
    model: str | None,
    input_tokens: int = 0,
    output_tokens: int = 0,
    cache_read_tokens: int = 0,
    cache_write_tokens: int = 0,
    web_search_calls: int = 0,
    job_id: UUID | None = None,
    draft_id: str | None = None,
    metadata: Dict[str, Any] | None = None,
    commit: bool = True,
) -> CostEvent:
    rate = get_pricing(db, provider, model)
    cost = calculate_cost(rate, input_tokens, output_tokens, cache_read_tokens, cache_write_tokens)
    cost += cost_for_web_search_calls(web_search_calls)

    event = CostEvent(
        job_id=job_id,
        draft_id=draft_id,
        stage=stage,
        provider=provider or "unknown",
        model=model or "",
        input_tokens=int(input_tokens or 0),
        output_tokens=int(output_tokens or 0),
        cache_read_tokens=int(cache_read_tokens or 0),
        cache_write_tokens=int(cache_write_tokens or 0),
        web_search_calls=int(web_search_calls or 0),
        cost_usd=Decimal(str(round(cost, 6))),
        meta=metadata or None,
    )
    db.add(event)
    if commit:
        db.commit()
    else:
        db.flush()
    return event


def record_llm_result(
    db: Session,
    result: LLMResult,
    *,
    stage: str,
    job_id: UUID | None = None,
    draft_id: str | None = None,
    metadata: Dict[str, Any] | None = None,
    commit: bool = True,
) -> CostEvent:
    """Record an ``LLMResult``; cached prompt tokens are billed at the cache-read rate."""
    cached = max(0, result.cached_input_tokens)
    return record_cost_event(
        db,
        stage=stage,
        provider=result.provider,
        model=result.model,
        input_tokens=max(0, result.input_tokens - cached),
        output_tokens=result.output_tokens,
        cache_read_tokens=cached,
        web_search_calls=result.web_search_calls,
        job_id=job_id,
        draft_id=draft_id,
        metadata=metadata,
        commit=commit,
    )


def link_draft_costs(db: Session, draft_id: str | None, job_id: UUID) -> int:
    """Attach pre-job cost events recorded under ``draft_id`` to ``job_id``."""
    if not draft_id:
        return 0
    updated = (
        db.query(CostEvent)
        .filter(CostEvent.draft_id == draft_id, CostEvent.job_id.is_(None))
        .update({CostEvent.job_id: job_id}, synchronize_session=False)
    )
    db.commit()
    return updated


def job_total_cost(db: Session, job_id: UUID) -> float:
    total = db.query(func.sum(CostEvent.cost_usd)).filter(CostEvent.job_id == job_id).scalar()
    return float(total or 0)


def job_cost_breakdown(db: Session, job_id: UUID) -> Dict[str, Any]:
    rows = (
        db.query(
            CostEvent.stage,
            func.sum(CostEvent.cost_usd),
            func.sum(CostEvent.input_tokens),
            func.sum(CostEvent.output_tokens),
            func.count(CostEvent.id),
        )
        .filter(CostEvent.job_id == job_id)
        .group_by(CostEvent.stage)
        .all()
    )
    by_stage = {
        stage or "unknown": {
            "cost_usd": float(cost or 0),
            "input_tokens": int(inp or 0),
            "output_tokens": int(out or 0),
            "calls": int(calls or 0),
        }
        for stage, cost, inp, out, calls in rows
    }
    return {
        "total_cost_usd": sum(v["cost_usd"] for v in by_stage.values()),
        "by_stage": by_stage,
    }


def list_pricing_rates(db: Session):
    return (
        db.query(PricingRate)
        .order_by(PricingRate.provider.asc(), PricingRate.model.asc(), PricingRate.effective_from.desc())
        .all()
    )


def create_pricing_rate(
    db: Session,
    *,
    provider: str,
    model: str,
    input_per_mtok: float,
    output_per_mtok: float,
    cache_read_per_mtok: float | None = None,
    cache_write_per_mtok: float | None = None,
) -> PricingRate:
    """
    Add a new active rate for (provider, model), closing the previously
    active one at the same instant so exactly one rate is open.
    """
    for value in (input_per_mtok, output_per_mtok, cache_read_per_mtok, cache_write_per_mtok):
        if value is not None and value < 0:
            raise ValueError("Rates must be non-negative")

    provider = provider.strip().lower()
    model = normalize_model_name(model)
    if not provider or not model:
        raise ValueError("provider and model are required")

    now = datetime.utcnow()
    (
        db.query(PricingRate)
        .filter(
            PricingRate.provider == provider,
            PricingRate.model == model,
            PricingRate.effective_to.is_(None),
        )
        .update({PricingRate.effective_to: now}, synchronize_session=False)
    )
    rate = PricingRate(
        provider=provider,
        model=model,
        input_per_mtok=input_per_mtok,
        output_per_mtok=output_per_mtok,
        cache_read_per_mtok=cache_read_per_mtok,
        cache_write_per_mtok=cache_write_per_mtok,
        effective_from=now,
        effective_to=None,
    )
    db.add(rate)
    db.commit()
    db.refresh(rate)
    clear_pricing_cache()
    logger.info("Pricing rate created for %s/%s", provider, model, extra={"step": "pricing"})
    return rate
