"""
Hybrid news fetcher.

Layer 1 (RSS) and layer 2 (LLM web search) run concurrently; the merged
stream goes through heuristic dedup, a recency filter, an LLM semantic dedup,
a historical dedup against stored articles, and finally LLM categorization
and summarization.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...core.config import get_settings
from ...models.news_article import ArticleStatus, FetchLayer, NewsArticle
from ..cost_tracking import record_llm_result
from ..llm import LLMResponseError, LLMResult, complete, parse_json_response, repair_truncated_array, web_search
from .articles import ArticleSourceInfo, CallDiet, FetchResult, ProcessedArticle, RawArticle, parse_published, utcnow
from .dedup import deduplicate_articles, filter_recent_articles, normalize_url
from .layer1 import fetch_layer1

logger = logging.getLogger(__name__)

PROGRESS_STEPS = (
    "Loading revenue owners",
    "Layer 1: RSS feeds & APIs",
    "Layer 2: AI web search",
    "Combining & deduplicating",
    "AI processing & categorization",
    "Saving to database",
)

CATEGORIES = (
    "M&A / Deal Activity",
    "Leadership Changes",
    "Earnings & Operational Performance",
    "Strategy",
    "Value Creation / Cost Initiatives",
    "Digital & Technology Modernization",
    "Fundraising / New Funds",
    "Operating Partner Activity",
    "Supply Chain & Logistics",
    "Plant & Footprint Changes",
)

LAYER2_MAX_PEOPLE = 10
LAYER2_MAX_RESULTS = 25
LLM_DEDUP_MIN_ARTICLES = 5
HISTORY_LLM_NEW_THRESHOLD = 20
HISTORY_LLM_EXISTING_THRESHOLD = 100
PROCESS_MAX_ARTICLES = 50
FALLBACK_MAX_ARTICLES = 30

# (progress 0-100, message, step update {"index", "status", "detail"} or None)
ProgressCallback = Callable[[int, str, Optional[Dict[str, Any]]], None]

SYSTEM_PROMPT = "You are a news intelligence analyst. Respond only with valid JSON."

EXCLUSION_RULES = """\
- Articles where the tracked entity is mentioned only tangentially or for context
- Articles about a different entity with a similar name
- General industry news without specific entity focus
- Generic press releases with no substantive news
- Routine product updates without strategic significance
- Event sponsorship or award/recognition announcements
- Minor personnel changes (non-executive level)
- Rehashed information from prior announcements
- Promotional content disguised as news
- Opinion pieces without new factual information
- Speculation without substantive basis
- Analyst ratings, upgrades or downgrades where the tracked company is the ANALYST rather than the subject
- Marketing campaigns, advertising or brand promotion
- Price target changes or stock rating changes for the company's shares
- Share purchases, buybacks or insider trading, unless a controlling stake, takeover attempt or >10% ownership change"""

KEEP_RULES = """\
- Mergers, acquisitions, divestitures, strategic partnerships
- C-suite appointments/departures, board changes
- Earnings releases, significant revenue/profit changes
- Major contract wins/losses, facility changes
- PE/VC investments, debt refinancing, IPOs
- Market share changes, competitive threats
- Technology implementations, workforce restructuring"""


def _time_window(days: int) -> str:
    return "last 24 hours" if days == 1 else f"last {days} days"


def _date(article: RawArticle) -> str:
    return article.published_at.strftime("%Y-%m-%d")


def _notify(on_progress: ProgressCallback | None, progress: int, message: str, step: Dict[str, Any] | None = None):
    if on_progress is not None:
        on_progress(progress, message, step)


def _record_cost(db: Session | None, result: LLMResult, stage: str, meta: Dict[str, Any] | None = None) -> None:
    if db is None:
        return
    try:
        record_llm_result(db, result, stage=stage, metadata=meta)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to record news LLM cost", extra={"step": stage})


def merge_call_diets(call_diets: Sequence[CallDiet]):
    """Unique companies and people across call diets (case-insensitive, last one wins)."""
    companies: Dict[str, Dict[str, Any]] = {}
    people: Dict[str, Dict[str, Any]] = {}
    for diet in call_diets:
        for company in diet.companies:
            companies[company["name"].lower()] = company
        for person in diet.people:
            people[person["name"].lower()] = person
    return list(companies.values()), list(people.values())


# ---------------------------------------------------------------------------
# Layer 2
# ---------------------------------------------------------------------------


def layer2_prompt(companies: Sequence[str], people: Sequence[str], days: int) -> str:
    window = _time_window(days)
    blocks = []
    if companies:
        blocks.append("## Companies to Search\n" + "\n".join(f"- {c}" for c in companies))
    if people:
        blocks.append("## Key People to Search\n" + "\n".join(f"- {p}" for p in people))
    entities = "\n\n".join(blocks)
    return f"""You are a news intelligence analyst. Search for recent news ({window} only) about these companies and people. This is an INDEPENDENT search to complement RSS feeds, so search comprehensively.

{entities}

## Search Strategy
For each company/person include direct news mentions and press releases, M&A activity, deals and investments, leadership changes, earnings and financial performance, strategic initiatives and partnerships, parent or subsidiary news, and executive interviews.

IMPORTANT:
- Only include articles published within the {window}
- Prioritize high-quality sources (Reuters, WSJ, Bloomberg, etc.)

Return JSON:
{{
  "results": [
    {{
      "headline": "Article headline",
      "description": "Brief description (2-3 sentences)",
      "sourceUrl": "https://...",
      "sourceName": "Source name",
      "publishedAt": "2026-01-15",
      "relatedEntity": "Company or person name this relates to"
    }}
  ]
}}

Return at most {LAYER2_MAX_RESULTS} results, most actionable first."""


def run_layer2_search(companies: Sequence[str], people: Sequence[str], days: int = 1) -> LLMResult | None:
    """LLM web search across every tracked entity. Errors degrade to no result."""
    if not companies and not people:
        return None
    try:
        return web_search(layer2_prompt(companies, people, days))
    except Exception:
        logger.exception("Layer 2 web search failed", extra={"step": "news:layer2"})
        return None


def parse_layer2_results(result: LLMResult | None) -> List[RawArticle]:
    if result is None:
        return []
    try:
        parsed = parse_json_response(result.text, allow_repair=True)
    except LLMResponseError as exc:
        logger.error("Layer 2 returned unparseable JSON: %s", exc, extra={"step": "news:layer2"})
        return []

    now = utcnow()
    articles = []
    for r in (parsed.get("results") if isinstance(parsed, dict) else None) or []:
        if not isinstance(r, dict) or not r.get("sourceUrl"):
            continue
        articles.append(
            RawArticle(
                headline=r.get("headline") or "",
                description=r.get("description") or "",
                source_url=r["sourceUrl"],
                source_name=r.get("sourceName") or "Web Search",
                published_at=parse_published(r.get("publishedAt"), now) if r.get("publishedAt") else now,
                fetch_layer=FetchLayer.LAYER2_LLM,
                query_used=r.get("relatedEntity"),
            )
        )
    return articles


# ---------------------------------------------------------------------------
# LLM dedup passes
# ---------------------------------------------------------------------------


def deduplicate_with_llm(articles: List[RawArticle], db: Session | None = None) -> List[RawArticle]:
    """Pick one article per story. Small batches and any failure return the input unchanged."""
    if len(articles) <= LLM_DEDUP_MIN_ARTICLES:
        return articles

    payload = [
        {
            "id": i,
            "headline": a.headline,
            "description": (a.description or "")[:200],
            "source": a.source_name,
            "date": _date(a),
        }
        for i, a in enumerate(articles)
    ]
    prompt = f"""You are deduplicating news articles. Multiple sources often report the same story with different headlines.

## Articles to Analyze
{json.dumps(payload, indent=2)}

## Instructions
1. Identify groups of articles that cover the SAME story/event.
2. For each group select the BEST article by source authority, headline completeness, then recency.
3. Source authority (high to low): Reuters, WSJ, Bloomberg, FT, CNBC, AP; then Business Wire, PR Newswire, Yahoo Finance, MarketWatch; then industry publications; then regional news, aggregators and blogs.

Return ONLY valid JSON:
{{
  "uniqueArticles": [{{"keepId": 0, "story": "...", "duplicateIds": [1, 5], "reason": "..."}}],
  "standalone": [2, 3, 8]
}}"""

    try:
        result = complete(SYSTEM_PROMPT, prompt, max_tokens=4000, temperature=0)
        _record_cost(db, result, "news_dedup")
        parsed = parse_json_response(result.text, allow_repair=True)
    except Exception:
        logger.exception("LLM dedup failed; keeping heuristic result", extra={"step": "news:llm_dedup"})
        return articles
    if not isinstance(parsed, dict):
        return articles

    keep = set()
    for group in parsed.get("uniqueArticles") or []:
        if isinstance(group, dict) and isinstance(group.get("keepId"), int):
            keep.add(group["keepId"])
    for idx in parsed.get("standalone") or []:
        if isinstance(idx, int):
            keep.add(idx)

    kept = [a for i, a in enumerate(articles) if i in keep]
    logger.info(
        "LLM dedup kept %d of %d articles",
        len(kept),
        len(articles),
        extra={"step": "news:llm_dedup"},
    )
    return kept


def _llm_historical_dedup(
    new_articles: List[RawArticle],
    existing: Sequence[NewsArticle],
    db: Session | None = None,
) -> List[RawArticle]:
    existing_payload = [
        {
            "id": f"E{i}",
            "headline": a.headline,
            "summary": a.short_summary or "",
            "publishedAt": a.published_at.strftime("%Y-%m-%d") if a.published_at else "unknown",
        }
        for i, a in enumerate(existing[:HISTORY_LLM_EXISTING_THRESHOLD])
    ]
    new_payload = [
        {"id": f"N{i}", "headline": a.headline, "description": a.description or "", "publishedAt": _date(a)}
        for i, a in enumerate(new_articles)
    ]
    prompt = f"""You are deduplicating news articles. Compare the NEW articles against EXISTING articles already in our database.

## EXISTING ARTICLES
{json.dumps(existing_payload, indent=2)}

## NEW ARTICLES
{json.dumps(new_payload, indent=2)}

Two articles are duplicates if they cover THE SAME story/event, even from different sources.
Return JSON with the IDs of NEW articles to KEEP:
{{"keepIds": ["N0", "N2"], "duplicates": [{{"newId": "N1", "existingId": "E3", "reason": "..."}}]}}

If unsure whether an article is a duplicate, EXCLUDE it."""

    try:
        result = complete(SYSTEM_PROMPT, prompt, max_tokens=2000, temperature=0)
        _record_cost(db, result, "news_history_dedup")
        parsed = parse_json_response(result.text, allow_repair=True)
    except Exception:
        logger.exception("Historical LLM dedup failed", extra={"step": "news:history_dedup"})
        return new_articles
    if not isinstance(parsed, dict):
        return new_articles

    keep = set(parsed.get("keepIds") or [])
    return [a for i, a in enumerate(new_articles) if f"N{i}" in keep]


def deduplicate_against_history(
    db: Session,
    new_articles: List[RawArticle],
    days: int | None = None,
) -> List[RawArticle]:
    """
    Drop articles already stored in the last ``NEWS_HISTORY_DAYS``: exact URL
    match first, then an LLM comparison for large batches.
    """
    if not new_articles:
        return new_articles

    cutoff = utcnow() - timedelta(days=days or get_settings().NEWS_HISTORY_DAYS)
    existing = (
        db.query(NewsArticle)
        .filter(NewsArticle.fetched_at >= cutoff)
        .order_by(NewsArticle.fetched_at.desc())
        .all()
    )
    if not existing:
        return new_articles

    known = {normalize_url(a.source_url).lower() for a in existing}
    fresh = [a for a in new_articles if normalize_url(a.source_url).lower() not in known]
    if not fresh:
        return []

    if len(fresh) > HISTORY_LLM_NEW_THRESHOLD or len(existing) > HISTORY_LLM_EXISTING_THRESHOLD:
        return _llm_historical_dedup(fresh, existing, db)
    return fresh


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


def fallback_articles(raw: Sequence[RawArticle], call_diets: Sequence[CallDiet]) -> List[ProcessedArticle]:
    owners = [cd.revenue_owner_name for cd in call_diets]
    out = []
    for a in raw[:FALLBACK_MAX_ARTICLES]:
        description = a.description or ""
        out.append(
            ProcessedArticle(
                headline=a.headline,
                source_url=a.source_url,
                source_name=a.source_name,
                published_at=_date(a),
                short_summary=description[:150] or None,
                long_summary=description or None,
                summary=description[:200] or None,
                sources=[ArticleSourceInfo(a.source_url, a.source_name, a.fetch_layer)],
                category="News",
                status=ArticleStatus.NEW_ARTICLE,
                match_type="contextual",
                fetch_layer=a.fetch_layer,
                revenue_owners=owners,
            )
        )
    return out


def _sources_from(item: Dict[str, Any], default: ArticleSourceInfo) -> List[ArticleSourceInfo]:
    sources = []
    for s in item.get("sources") or []:
        if isinstance(s, dict) and s.get("sourceUrl"):
            sources.append(
                ArticleSourceInfo(
                    source_url=s["sourceUrl"],
                    source_name=s.get("sourceName") or "",
                    fetch_layer=s.get("fetchLayer") or default.fetch_layer,
                )
            )
    return sources or [default]


def to_processed_article(item: Dict[str, Any], original: RawArticle | None = None) -> ProcessedArticle:
    """Map the model's camelCase article onto ``ProcessedArticle``, filling gaps from ``original``."""
    summary = item.get("summary")
    source_url = item.get("sourceUrl") or (original.source_url if original else "")
    source_name = item.get("sourceName") or (original.source_name if original else "")
    fetch_layer = item.get("fetchLayer") or (original.fetch_layer if original else FetchLayer.LAYER2_LLM)
    return ProcessedArticle(
        headline=item.get("headline") or (original.headline if original else ""),
        source_url=source_url,
        source_name=source_name,
        published_at=item.get("publishedAt") or (_date(original) if original else ""),
        short_summary=item.get("shortSummary") or (summary[:150] if summary else None),
        long_summary=item.get("longSummary") or summary or None,
        summary=summary or item.get("longSummary") or None,
        why_it_matters=item.get("whyItMatters") or None,
        sources=_sources_from(item, ArticleSourceInfo(source_url, source_name, fetch_layer)),
        company=item.get("company") or None,
        person=item.get("person") or None,
        category=item.get("category") or "News",
        status=item.get("status") or ArticleStatus.NEW_ARTICLE,
        match_type=item.get("matchType") or "contextual",
        fetch_layer=fetch_layer,
        revenue_owners=list(item.get("revenueOwners") or []),
    )


def parse_processing_response(text: str) -> Dict[str, Any]:
    try:
        return parse_json_response(text, allow_repair=True)
    except LLMResponseError:
        # Long digests get cut off by max_tokens; keep the complete articles.
        return repair_truncated_array(text, "articles", closing='], "coverageGaps": []}')


def process_articles_with_llm(
    raw: List[RawArticle],
    call_diets: Sequence[CallDiet],
    companies: Sequence[str],
    people: Sequence[str],
    db: Session | None = None,
) -> FetchResult:
    if not raw:
        return FetchResult()

    batch = raw[:PROCESS_MAX_ARTICLES]
    payload = [
        {
            "id": i,
            "headline": a.headline,
            "description": (a.description or "")[:300],
            "source": a.source_name,
            "url": a.source_url,
            "date": _date(a),
            "layer": a.fetch_layer,
        }
        for i, a in enumerate(batch)
    ]
    owner_map = "\n".join(
        f"- {cd.revenue_owner_name}: tracks "
        + ", ".join([c["name"] for c in cd.companies] + [p["name"] for p in cd.people])
        for cd in call_diets
    )
    prompt = f"""You are a news intelligence analyst helping consultants prepare for client engagements. Process these raw news articles for revenue owners tracking PE and industrial companies.

## Raw Articles
{json.dumps(payload, indent=2)}

## Companies Being Tracked
{", ".join(companies)}

## People Being Tracked
{", ".join(people)}

## Revenue Owner Mapping
{owner_map}

## Instructions
1. STRICTLY filter out (when in doubt, EXCLUDE):
{EXCLUSION_RULES}

   KEEP only articles definitively ABOUT a tracked company/person covering:
{KEEP_RULES}

2. For each relevant article:
   - Match it to a tracked company/person
   - Assign one category: {", ".join(CATEGORIES)}
   - shortSummary: 1-2 sentences; longSummary: 3-5 sentences; whyItMatters: 1-2 sentences for consultants
   - matchType: "exact" if the entity is named explicitly, else "contextual"
   - List the relevant revenue owner(s)
   - Merge articles covering the SAME story and list all of their sources

3. Report companies with no relevant news as coverage gaps.

Return ONLY valid JSON:
{{
  "articles": [
    {{
      "id": 0,
      "headline": "...",
      "shortSummary": "...",
      "longSummary": "...",
      "whyItMatters": "...",
      "sourceUrl": "primary url from input",
      "sourceName": "primary source from input",
      "sources": [{{"sourceUrl": "...", "sourceName": "...", "fetchLayer": "layer1_rss"}}],
      "publishedAt": "date from input",
      "company": "matched company or null",
      "person": "matched person or null",
      "category": "...",
      "status": "new_article",
      "matchType": "exact|contextual",
      "fetchLayer": "layer from input",
      "revenueOwners": ["Owner Name"]
    }}
  ],
  "coverageGaps": [{{"company": "...", "note": "No relevant news found"}}]
}}

Return ALL relevant articles, most recent first."""

    try:
        result = complete(SYSTEM_PROMPT, prompt, max_tokens=16000, temperature=0)
        _record_cost(db, result, "news_processing", {"articles": len(batch)})
        parsed = parse_processing_response(result.text)
    except Exception:
        logger.exception("Article processing failed; using raw fallback", extra={"step": "news:process"})
        return FetchResult(articles=fallback_articles(raw, call_diets))
    if not isinstance(parsed, dict):
        return FetchResult(articles=fallback_articles(raw, call_diets))

    articles = []
    for item in parsed.get("articles") or []:
        if not isinstance(item, dict):
            continue
        idx = item.get("id")
        original = batch[idx] if isinstance(idx, int) and 0 <= idx < len(batch) else None
        articles.append(to_processed_article(item, original))

    gaps = [g for g in parsed.get("coverageGaps") or [] if isinstance(g, dict)]
    return FetchResult(articles=articles, coverage_gaps=gaps)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


async def fetch_news_hybrid(
    db: Session,
    call_diets: Sequence[CallDiet],
    on_progress: ProgressCallback | None = None,
    days: int | None = None,
) -> FetchResult:
    settings = get_settings()
    days = days or settings.NEWS_RECENT_DAYS
    stats = {"layer1": 0, "layer2": 0, "total_raw": 0, "after_dedup": 0, "after_processing": 0}

    companies, people = merge_call_diets(call_diets)
    if not companies and not people:
        return FetchResult(stats=stats)
    company_names = [c["name"] for c in companies]
    people_names = [p["name"] for p in people]

    _notify(on_progress, 10, "Starting Layer 1 and Layer 2 in parallel...", {"index": 1, "status": "in_progress"})
    _notify(on_progress, 10, "Starting Layer 1 and Layer 2 in parallel...", {"index": 2, "status": "in_progress"})

    # The search runs in a worker thread; its cost is recorded here so ``db`` stays on this thread.
    layer1, layer2_result = await asyncio.gather(
        fetch_layer1(company_names, people_names),
        asyncio.to_thread(run_layer2_search, company_names, people_names[:LAYER2_MAX_PEOPLE], days),
    )
    if layer2_result is not None:
        _record_cost(db, layer2_result, "news_layer2")
    layer2 = parse_layer2_results(layer2_result)
    stats["layer1"], stats["layer2"] = len(layer1), len(layer2)
    _notify(on_progress, 30, f"Layer 1: {len(layer1)} articles",
            {"index": 1, "status": "completed", "detail": f"{len(layer1)} from Google News & PE feeds"})
    _notify(on_progress, 40, f"Layer 2: {len(layer2)} articles",
            {"index": 2, "status": "completed", "detail": f"{len(layer2)} from AI web search"})

    _notify(on_progress, 45, "Combining and deduplicating articles...", {"index": 3, "status": "in_progress"})
    raw = [*layer1, *layer2]
    stats["total_raw"] = len(raw)
    recent = filter_recent_articles(deduplicate_articles(raw), days=days)
    llm_deduped = deduplicate_with_llm(recent, db)
    _notify(on_progress, 60, "Checking against historical articles...",
            {"index": 3, "status": "in_progress", "detail": f"Comparing with last {settings.NEWS_HISTORY_DAYS} days"})
    unique = deduplicate_against_history(db, llm_deduped)
    stats["after_dedup"] = len(unique)
    _notify(on_progress, 65, f"Deduplicated to {len(unique)} unique articles",
            {"index": 3, "status": "completed",
             "detail": f"{len(raw)} raw -> {len(recent)} -> {len(llm_deduped)} -> {len(unique)} unique"})

    _notify(on_progress, 70, "Processing articles with AI...", {"index": 4, "status": "in_progress"})
    result = process_articles_with_llm(unique, call_diets, company_names, people_names, db)
    stats["after_processing"] = len(result.articles)
    result.stats = stats
    _notify(on_progress, 90, f"Processed {len(result.articles)} relevant articles",
            {"index": 4, "status": "completed",
             "detail": f"{len(result.articles)} categorized, {len(result.coverage_gaps)} gaps identified"})

    logger.info(
        "Hybrid fetch finished: %s",
        stats,
        extra={"step": "news:fetch"},
    )
    return result


def search_news(
    company: str | None = None,
    person: str | None = None,
    days: int = 1,
    db: Session | None = None,
) -> FetchResult:
    """Deep-dive web search for one company or person with the same strict filtering."""
    entity = company or person
    if not entity:
        return FetchResult()

    window = _time_window(days)
    target = f"Company: {company}" if company else f"Person: {person}"
    prompt = f"""You are a news intelligence analyst helping consultants prepare for client engagements. Search for recent news ({window} only) about:

{target}

## EXCLUDE
{EXCLUSION_RULES.replace("the tracked entity", entity).replace("the tracked company", entity)}

## KEEP only articles definitively ABOUT {entity} as the main subject covering:
{KEEP_RULES}

Generate a short (1-2 sentences) and long (3-5 sentences) summary and explain why it matters for client engagement.

Return ONLY valid JSON:
{{
  "articles": [
    {{
      "headline": "...",
      "shortSummary": "...",
      "longSummary": "...",
      "whyItMatters": "...",
      "sourceUrl": "https://...",
      "sourceName": "...",
      "publishedAt": "2026-01-15",
      "company": {json.dumps(company)},
      "person": {json.dumps(person)},
      "category": "one of: {", ".join(CATEGORIES)}",
      "matchType": "exact",
      "fetchLayer": "layer2_llm"
    }}
  ],
  "coverageGaps": []
}}"""

    try:
        result = web_search(prompt)
        _record_cost(db, result, "news_search", {"entity": entity})
        parsed = parse_processing_response(result.text)
    except Exception:
        logger.exception("News search failed for %s", entity, extra={"step": "news:search"})
        return FetchResult()
    if not isinstance(parsed, dict):
        return FetchResult()

    articles = [to_processed_article(a) for a in parsed.get("articles") or [] if isinstance(a, dict)]
    gaps = [g for g in parsed.get("coverageGaps") or [] if isinstance(g, dict)]
    return FetchResult(articles=articles, coverage_gaps=gaps)
