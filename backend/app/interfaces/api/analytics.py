from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from redis import Redis
from sqlalchemy.orm import Session

from app.application.services.access_policy import Permission
from app.application.services.analytics_service import (
    check_rate_limit,
    get_detailed,
    get_summary,
    ingest_limit,
    ingest_rate_limit_key,
    parse_event_type,
    record_event,
)
from app.application.services.issue_service import find_issue
from app.application.services.magazine_service import get_magazine_by_slug, get_tenant_by_slug
from app.core.errors import NotFoundError, RateLimitedError
from app.domain.models.issue import IssueStatus
from app.domain.models.tenant import Tenant
from app.domain.models.user import User
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.db.session import get_db
from app.interfaces.api.deps import get_current_tenant_model, require_permission

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


class IngestRequest(BaseModel):
    tenant_slug: str = Field(min_length=1)
    magazine_slug: str = Field(min_length=1)
    issue_slug: str = Field(min_length=1)
    article_id: str | None = None
    event: str
    payload: dict = Field(default_factory=dict)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@router.post("/ingest")
def ingest(
    payload: IngestRequest,
    request: Request,
    db: Session = Depends(get_db),
    redis_client: Redis = Depends(get_redis_client),
) -> dict:
    ip = client_ip(request)
    limit, window_seconds = ingest_limit()
    if not check_rate_limit(redis_client, key=ingest_rate_limit_key(ip), limit=limit, window_seconds=window_seconds):
        raise RateLimitedError("Analytics rate limit exceeded")

    event = parse_event_type(payload.event)
    tenant = get_tenant_by_slug(db, slug=payload.tenant_slug)
    magazine = get_magazine_by_slug(db, tenant_id=tenant.id, slug=payload.magazine_slug)
    issue = find_issue(db, magazine_id=magazine.id, slug=payload.issue_slug)
    if issue is None or issue.status != IssueStatus.PUBLISHED.value:
        raise NotFoundError("Issue not found")

    record_event(
        db,
        tenant=tenant,
        magazine=magazine,
        issue=issue,
        event=event,
        payload=payload.payload,
        article_id=payload.article_id,
        client={
            "ip": ip,
            "user_agent": request.headers.get("User-Agent"),
            "referer": request.headers.get("Referer"),
        },
    )
    return {"ok": True}


@router.get("/summary")
def summary(
    range_value: str = Query(default="30d", alias="range"),
    magazine_slug: str | None = Query(default=None),
    issue_slug: str | None = Query(default=None),
    db: Session = Depends(get_db),
    redis_client: Redis = Depends(get_redis_client),
    tenant: Tenant = Depends(get_current_tenant_model),
    _: User = Depends(require_permission(Permission.ANALYTICS_READ)),
) -> dict:
    magazine_id = get_magazine_by_slug(db, tenant_id=tenant.id, slug=magazine_slug).id if magazine_slug else None
    result = get_summary(
        db,
        redis_client,
        tenant_id=tenant.id,
        range_value=range_value,
        magazine_id=magazine_id,
        issue_slug=issue_slug,
    )
    return {"ok": True, **result}


@router.get("/detailed")
def detailed(
    range_value: str = Query(default="30d", alias="range"),
    group_by: str = Query(default="day"),
    magazine_slug: str | None = Query(default=None),
    issue_slug: str | None = Query(default=None),
    db: Session = Depends(get_db),
    redis_client: Redis = Depends(get_redis_client),
    tenant: Tenant = Depends(get_current_tenant_model),
    _: User = Depends(require_permission(Permission.ANALYTICS_READ)),
) -> dict:
    magazine_id = get_magazine_by_slug(db, tenant_id=tenant.id, slug=magazine_slug).id if magazine_slug else None
    result = get_detailed(
        db,
        redis_client,
        tenant_id=tenant.id,
        range_value=range_value,
        group_by=group_by,
        magazine_id=magazine_id,
        issue_slug=issue_slug,
    )
    return {"ok": True, **result}
