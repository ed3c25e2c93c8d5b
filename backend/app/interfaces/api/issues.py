from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.application.services.access_policy import Permission
from app.application.services.audit_service import log_audit_event
from app.application.services.generation_service import (
    regenerate_issue_article,
    request_issue_generation,
    request_issue_retry,
)
from app.application.services.issue_service import (
    get_article,
    get_issue,
    list_ad_slots,
    list_articles,
    list_issues,
    serialize_ad_slot,
    serialize_article,
    serialize_issue,
    update_ad_slots,
    update_issue,
)
from app.application.services.magazine_service import get_magazine_by_slug
from app.application.services.publishing_service import cancel_issue, publish_issue
from app.domain.models.tenant import Tenant
from app.domain.models.user import User
from app.infrastructure.db.session import get_db
from app.interfaces.api.deps import get_current_tenant_model, require_permission

router = APIRouter(prefix="/api/issues", tags=["issues"])

ISSUE_SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


class IssueRef(BaseModel):
    magazine_slug: str = Field(min_length=1)
    issue_slug: str = Field(min_length=1, max_length=64, pattern=ISSUE_SLUG_PATTERN)


class RegenerateArticleRequest(IssueRef):
    article_id: str = Field(min_length=1)
    prompt_override: str | None = None


class UpdateIssueRequest(IssueRef):
    patch: dict


class AdSlotPayload(BaseModel):
    slot_key: str
    creative_url: str | None = None
    target_url: str | None = None
    sponsor: str | None = None
    tracking_code: str | None = None


class UpdateAdsRequest(IssueRef):
    ads: list[AdSlotPayload]


class PublishRequest(IssueRef):
    publish_at: datetime | None = None


def _load_issue(db: Session, tenant: Tenant, payload: IssueRef):
    magazine = get_magazine_by_slug(db, tenant_id=tenant.id, slug=payload.magazine_slug)
    return get_issue(db, magazine_id=magazine.id, slug=payload.issue_slug)


@router.post("/generate", status_code=status.HTTP_202_ACCEPTED)
def generate_issue(
    payload: IssueRef,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    current_user: User = Depends(require_permission(Permission.ISSUE_GENERATE)),
) -> dict:
    magazine = get_magazine_by_slug(db, tenant_id=tenant.id, slug=payload.magazine_slug)
    issue, job = request_issue_generation(
        db,
        tenant=tenant,
        magazine=magazine,
        issue_slug=payload.issue_slug,
        requested_by=current_user.email,
    )
    return {"ok": True, "issue_id": str(issue.id), "job_id": str(job.id), "status": issue.status}


@router.post("/regenerate-article")
def regenerate_article(
    payload: RegenerateArticleRequest,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    _: User = Depends(require_permission(Permission.ISSUE_EDIT)),
) -> dict:
    issue = _load_issue(db, tenant, payload)
    article = get_article(db, issue_id=issue.id, article_ref=payload.article_id)
    article, degraded = regenerate_issue_article(
        db,
        issue=issue,
        article=article,
        prompt_override=payload.prompt_override,
    )
    db.commit()
    db.refresh(article)
    return {"ok": True, "degraded": degraded, "article": serialize_article(article)}


@router.post("/update")
def update(
    payload: UpdateIssueRequest,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    current_user: User = Depends(require_permission(Permission.ISSUE_EDIT)),
) -> dict:
    issue = _load_issue(db, tenant, payload)
    update_issue(db, issue=issue, patch=payload.patch)
    log_audit_event(
        db,
        tenant_id=tenant.id,
        action="issue.updated",
        metadata={"issue_id": str(issue.id), "fields": sorted(payload.patch), "actor": current_user.email},
    )
    db.commit()
    db.refresh(issue)
    return {"ok": True, "issue": serialize_issue(issue)}


@router.post("/ads")
def update_ads(
    payload: UpdateAdsRequest,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    _: User = Depends(require_permission(Permission.ISSUE_EDIT)),
) -> dict:
    issue = _load_issue(db, tenant, payload)
    slots = update_ad_slots(db, issue=issue, ads=[ad.model_dump() for ad in payload.ads])
    db.commit()
    return {"ok": True, "ad_slots": [serialize_ad_slot(slot) for slot in slots]}


@router.post("/publish")
def publish(
    payload: PublishRequest,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    _: User = Depends(require_permission(Permission.ISSUE_PUBLISH)),
) -> dict:
    issue = _load_issue(db, tenant, payload)
    result = publish_issue(db, tenant=tenant, issue=issue, publish_at=payload.publish_at)
    return {"ok": True, **result}


@router.post("/cancel")
def cancel(
    payload: IssueRef,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    current_user: User = Depends(require_permission(Permission.ISSUE_CANCEL)),
) -> dict:
    issue = _load_issue(db, tenant, payload)
    issue = cancel_issue(db, issue=issue, actor=current_user)
    return {"ok": True, "issue": serialize_issue(issue)}


@router.post("/retry", status_code=status.HTTP_202_ACCEPTED)
def retry(
    payload: IssueRef,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    current_user: User = Depends(require_permission(Permission.ISSUE_RETRY)),
) -> dict:
    issue = _load_issue(db, tenant, payload)
    job = request_issue_retry(db, issue=issue, requested_by=current_user.email)
    return {"ok": True, "issue_id": str(issue.id), "job_id": str(job.id), "status": issue.status}


@router.get("")
def list_magazine_issues(
    magazine_slug: str = Query(min_length=1),
    status_filter: list[str] | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    _: User = Depends(require_permission(Permission.ISSUE_READ)),
) -> dict:
    magazine = get_magazine_by_slug(db, tenant_id=tenant.id, slug=magazine_slug)
    issues = list_issues(db, magazine_id=magazine.id, statuses=status_filter, limit=limit)
    return {"ok": True, "issues": [serialize_issue(issue) for issue in issues]}


@router.get("/{magazine_slug}/{issue_slug}")
def issue_detail(
    magazine_slug: str,
    issue_slug: str,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    _: User = Depends(require_permission(Permission.ISSUE_READ)),
) -> dict:
    magazine = get_magazine_by_slug(db, tenant_id=tenant.id, slug=magazine_slug)
    issue = get_issue(db, magazine_id=magazine.id, slug=issue_slug)
    return {
        "ok": True,
        "issue": serialize_issue(issue),
        "articles": [serialize_article(article) for article in list_articles(db, issue_id=issue.id)],
        "ad_slots": [serialize_ad_slot(slot) for slot in list_ad_slots(db, issue_id=issue.id)],
    }
