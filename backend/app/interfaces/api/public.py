from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.application.services.issue_service import (
    find_issue,
    get_article,
    list_ad_slots,
    list_articles,
    list_published_issues,
    public_issue_url,
    render_reading_html,
    serialize_ad_slot,
    serialize_article,
    serialize_issue,
)
from app.application.services.magazine_service import get_magazine_by_slug, get_tenant_by_slug
from app.core.errors import NotFoundError
from app.domain.models.issue import Issue, IssueStatus
from app.infrastructure.db.session import get_db

router = APIRouter(prefix="/api/public", tags=["public"])


def _published_issue(db: Session, *, tenant_slug: str, magazine_slug: str, issue_slug: str):
    tenant = get_tenant_by_slug(db, slug=tenant_slug)
    magazine = get_magazine_by_slug(db, tenant_id=tenant.id, slug=magazine_slug)
    issue = find_issue(db, magazine_id=magazine.id, slug=issue_slug)
    if issue is None or issue.status != IssueStatus.PUBLISHED.value:
        raise NotFoundError("Issue not found")
    return tenant, magazine, issue


def _public_issue(tenant, magazine, issue: Issue) -> dict:
    return {
        **serialize_issue(issue),
        "magazine": {"title": magazine.title, "slug": magazine.slug},
        "url": public_issue_url(tenant, issue.slug),
    }


@router.get("/issue")
def public_issue(
    tenant_slug: str = Query(min_length=1),
    magazine_slug: str = Query(min_length=1),
    issue_slug: str = Query(min_length=1),
    db: Session = Depends(get_db),
) -> dict:
    tenant, magazine, issue = _published_issue(
        db, tenant_slug=tenant_slug, magazine_slug=magazine_slug, issue_slug=issue_slug
    )
    return {
        "ok": True,
        "issue": _public_issue(tenant, magazine, issue),
        "articles": [serialize_article(article, include_html=False) for article in list_articles(db, issue_id=issue.id)],
        "ad_slots": [serialize_ad_slot(slot) for slot in list_ad_slots(db, issue_id=issue.id)],
    }


@router.get("/article")
def public_article(
    tenant_slug: str = Query(min_length=1),
    magazine_slug: str = Query(min_length=1),
    issue_slug: str = Query(min_length=1),
    article_slug: str = Query(min_length=1),
    db: Session = Depends(get_db),
) -> dict:
    _, _, issue = _published_issue(db, tenant_slug=tenant_slug, magazine_slug=magazine_slug, issue_slug=issue_slug)
    article = get_article(db, issue_id=issue.id, article_ref=article_slug)
    return {
        "ok": True,
        "article": serialize_article(article, include_html=False),
        **render_reading_html(article),
    }


@router.get("/latest")
def latest_issue(
    tenant_slug: str = Query(min_length=1),
    magazine_slug: str = Query(min_length=1),
    db: Session = Depends(get_db),
) -> RedirectResponse:
    tenant = get_tenant_by_slug(db, slug=tenant_slug)
    magazine = get_magazine_by_slug(db, tenant_id=tenant.id, slug=magazine_slug)
    issues = list_published_issues(db, magazine_id=magazine.id, limit=1)
    if not issues:
        raise NotFoundError("No published issues")
    return RedirectResponse(public_issue_url(tenant, issues[0].slug), status_code=status.HTTP_302_FOUND)


@router.get("/archive")
def archive(
    tenant_slug: str = Query(min_length=1),
    magazine_slug: str = Query(min_length=1),
    limit: int = Query(default=24, ge=1, le=100),
    db: Session = Depends(get_db),
) -> dict:
    tenant = get_tenant_by_slug(db, slug=tenant_slug)
    magazine = get_magazine_by_slug(db, tenant_id=tenant.id, slug=magazine_slug)
    issues = list_published_issues(db, magazine_id=magazine.id, limit=limit)
    return {"ok": True, "issues": [_public_issue(tenant, magazine, issue) for issue in issues]}
