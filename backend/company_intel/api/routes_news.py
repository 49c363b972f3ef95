import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.db import get_db
from ..models.news_article import ArticleRevenueOwner, NewsArticle
from ..models.news_tracking import NewsTag, RevenueOwner, TrackedCompany, TrackedPerson
from ..schemas.news import (
    ArticleUpdate,
    NewsArticleOut,
    NewsSearchRequest,
    NewsTagIn,
    NewsTagOut,
    RevenueOwnerIn,
    RevenueOwnerOut,
    TrackedCompanyIn,
    TrackedCompanyOut,
    TrackedPersonIn,
    TrackedPersonOut,
)
from ..services.news.fetcher import search_news
from ..services.news.refresh import RefreshInProgressError, get_refresh_status, start_refresh
from .routes_research import verify_api_key

router = APIRouter(prefix="/news", tags=["news"])
logger = logging.getLogger(__name__)

MAX_ARTICLES_LIMIT = 100


def _get_or_404(db: Session, model, item_id: int, label: str):
    row = db.get(model, item_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return row


def _commit_or_400(db: Session, detail: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail=detail)


def _load_many(db: Session, model, ids: list[int], label: str) -> list:
    if not ids:
        return []
    rows = db.query(model).filter(model.id.in_(ids)).all()
    missing = sorted(set(ids) - {r.id for r in rows})
    if missing:
        raise HTTPException(status_code=400, detail=f"Unknown {label} ids: {missing}")
    return rows


# ---------------------------------------------------------------------------
# Revenue owners
# ---------------------------------------------------------------------------


def _apply_call_diet(db: Session, owner: RevenueOwner, payload: RevenueOwnerIn) -> None:
    owner.name = payload.name.strip()
    owner.email = payload.email
    owner.companies = _load_many(db, TrackedCompany, payload.company_ids, "company")
    owner.people = _load_many(db, TrackedPerson, payload.person_ids, "person")
    owner.tags = _load_many(db, NewsTag, payload.tag_ids, "tag")


@router.get("/revenue-owners", response_model=list[RevenueOwnerOut])
def list_revenue_owners(db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    return db.query(RevenueOwner).order_by(RevenueOwner.name.asc()).all()


@router.post("/revenue-owners", response_model=RevenueOwnerOut, status_code=201)
def create_revenue_owner(
    payload: RevenueOwnerIn,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    owner = RevenueOwner()
    _apply_call_diet(db, owner, payload)
    db.add(owner)
    _commit_or_400(db, "A revenue owner with this name already exists")
    db.refresh(owner)
    return owner


@router.get("/revenue-owners/{owner_id}", response_model=RevenueOwnerOut)
def get_revenue_owner(owner_id: int, db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    return _get_or_404(db, RevenueOwner, owner_id, "Revenue owner")


@router.put("/revenue-owners/{owner_id}", response_model=RevenueOwnerOut)
def update_revenue_owner(
    owner_id: int,
    payload: RevenueOwnerIn,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    owner = _get_or_404(db, RevenueOwner, owner_id, "Revenue owner")
    _apply_call_diet(db, owner, payload)
    _commit_or_400(db, "A revenue owner with this name already exists")
    db.refresh(owner)
    return owner


@router.delete("/revenue-owners/{owner_id}")
def delete_revenue_owner(owner_id: int, db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    owner = _get_or_404(db, RevenueOwner, owner_id, "Revenue owner")
    db.query(ArticleRevenueOwner).filter(ArticleRevenueOwner.revenue_owner_id == owner.id).delete(
        synchronize_session=False
    )
    db.delete(owner)
    db.commit()
    return {"success": True}


# ---------------------------------------------------------------------------
# Companies, people, tags
# ---------------------------------------------------------------------------


@router.get("/companies", response_model=list[TrackedCompanyOut])
def list_companies(db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    return db.query(TrackedCompany).order_by(TrackedCompany.name.asc()).all()


@router.post("/companies", response_model=TrackedCompanyOut, status_code=201)
def create_company(
    payload: TrackedCompanyIn,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    company = TrackedCompany(**payload.model_dump())
    db.add(company)
    _commit_or_400(db, "A company with this name already exists")
    db.refresh(company)
    return company


@router.put("/companies/{company_id}", response_model=TrackedCompanyOut)
def update_company(
    company_id: int,
    payload: TrackedCompanyIn,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    company = _get_or_404(db, TrackedCompany, company_id, "Company")
    for key, value in payload.model_dump().items():
        setattr(company, key, value)
    _commit_or_400(db, "A company with this name already exists")
    db.refresh(company)
    return company


@router.delete("/companies/{company_id}")
def delete_company(company_id: int, db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    company = _get_or_404(db, TrackedCompany, company_id, "Company")
    db.query(TrackedPerson).filter(TrackedPerson.company_id == company.id).update(
        {TrackedPerson.company_id: None}, synchronize_session=False
    )
    db.delete(company)
    db.commit()
    return {"success": True}


@router.get("/people", response_model=list[TrackedPersonOut])
def list_people(db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    return db.query(TrackedPerson).order_by(TrackedPerson.name.asc()).all()


@router.post("/people", response_model=TrackedPersonOut, status_code=201)
def create_person(
    payload: TrackedPersonIn,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    if payload.company_id is not None:
        _get_or_404(db, TrackedCompany, payload.company_id, "Company")
    person = TrackedPerson(**payload.model_dump())
    db.add(person)
    db.commit()
    db.refresh(person)
    return person


@router.put("/people/{person_id}", response_model=TrackedPersonOut)
def update_person(
    person_id: int,
    payload: TrackedPersonIn,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    person = _get_or_404(db, TrackedPerson, person_id, "Person")
    if payload.company_id is not None:
        _get_or_404(db, TrackedCompany, payload.company_id, "Company")
    for key, value in payload.model_dump().items():
        setattr(person, key, value)
    db.commit()
    db.refresh(person)
    return person


@router.delete("/people/{person_id}")
def delete_person(person_id: int, db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    person = _get_or_404(db, TrackedPerson, person_id, "Person")
    db.delete(person)
    db.commit()
    return {"success": True}


@router.get("/tags", response_model=list[NewsTagOut])
def list_tags(db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    return db.query(NewsTag).order_by(NewsTag.name.asc()).all()


@router.post("/tags", response_model=NewsTagOut, status_code=201)
def create_tag(payload: NewsTagIn, db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    tag = NewsTag(name=payload.name.strip(), category=payload.category)
    db.add(tag)
    _commit_or_400(db, "A tag with this name already exists")
    db.refresh(tag)
    return tag


@router.delete("/tags/{tag_id}")
def delete_tag(tag_id: int, db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    tag = _get_or_404(db, NewsTag, tag_id, "Tag")
    db.delete(tag)
    db.commit()
    return {"success": True}


# ---------------------------------------------------------------------------
# Articles
# ---------------------------------------------------------------------------


def _article_out(article: NewsArticle) -> dict:
    out = NewsArticleOut.model_validate(article)
    out.revenue_owner_ids = sorted(link.revenue_owner_id for link in article.revenue_owner_links)
    return out.model_dump()


@router.get("/articles")
def list_articles(
    revenue_owner_id: int | None = None,
    company_id: int | None = None,
    person_id: int | None = None,
    tag_id: int | None = None,
    is_sent: bool | None = None,
    is_archived: bool | None = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    safe_limit = max(1, min(limit, MAX_ARTICLES_LIMIT))

    q = db.query(NewsArticle)
    if revenue_owner_id is not None:
        q = q.join(ArticleRevenueOwner, ArticleRevenueOwner.article_id == NewsArticle.id).filter(
            ArticleRevenueOwner.revenue_owner_id == revenue_owner_id
        )
    if company_id is not None:
        q = q.filter(NewsArticle.company_id == company_id)
    if person_id is not None:
        q = q.filter(NewsArticle.person_id == person_id)
    if tag_id is not None:
        q = q.filter(NewsArticle.tag_id == tag_id)
    if is_sent is not None:
        q = q.filter(NewsArticle.is_sent.is_(is_sent))
    if is_archived is not None:
        q = q.filter(NewsArticle.is_archived.is_(is_archived))

    total = q.count()
    articles = (
        q.order_by(NewsArticle.published_at.desc(), NewsArticle.fetched_at.desc())
        .offset(max(0, offset))
        .limit(safe_limit)
        .all()
    )
    return {
        "articles": [_article_out(a) for a in articles],
        "total": total,
        "limit": safe_limit,
        "offset": max(0, offset),
    }


@router.patch("/articles/{article_id}")
def update_article(
    article_id: int,
    payload: ArticleUpdate,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    article = _get_or_404(db, NewsArticle, article_id, "Article")
    for key, value in payload.model_dump(exclude_none=True).items():
        setattr(article, key, value)
    db.commit()
    db.refresh(article)
    return _article_out(article)


# ---------------------------------------------------------------------------
# Refresh and search
# ---------------------------------------------------------------------------


@router.post("/refresh", status_code=202)
def trigger_refresh(db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    try:
        status = start_refresh(db, triggered_by="manual")
    except RefreshInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info("News refresh queued", extra={"step": "news:refresh"})
    return status


@router.get("/refresh/status")
def refresh_status(db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    return get_refresh_status(db)


@router.post("/search")
def search(payload: NewsSearchRequest, db: Session = Depends(get_db), _: None = Depends(verify_api_key)):
    result = search_news(company=payload.company, person=payload.person, days=payload.days, db=db)
    return result.to_dict()
