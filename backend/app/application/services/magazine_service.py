import logging
import re
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.application.services.billing_service import enforce_magazine_limit
from app.application.services.blueprint_service import create_default_blueprint
from app.core.errors import InvalidStateError, NotFoundError
from app.domain.models.ad_slot import AdSlot
from app.domain.models.analytics_event import AnalyticsEvent
from app.domain.models.article import Article
from app.domain.models.blueprint import Blueprint
from app.domain.models.generation_job import GenerationJob
from app.domain.models.issue import Issue
from app.domain.models.magazine import Magazine
from app.domain.models.tenant import Tenant

logger = logging.getLogger(__name__)

SLUG_SANITIZE_PATTERN = re.compile(r"[^a-z0-9]+")
TENANT_MUTABLE_FIELDS = {"name", "website", "custom_domain"}


def build_slug_base(value: str, *, fallback: str = "item") -> str:
    normalized = SLUG_SANITIZE_PATTERN.sub("-", value.lower()).strip("-")
    return normalized or fallback


def get_tenant(db: Session, *, tenant_id: UUID) -> Tenant:
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found")
    return tenant


def get_tenant_by_slug(db: Session, *, slug: str) -> Tenant:
    tenant = db.execute(select(Tenant).where(Tenant.slug == slug)).scalar_one_or_none()
    if tenant is None:
        raise NotFoundError(f"Tenant {slug} not found")
    return tenant


def update_tenant(db: Session, *, tenant: Tenant, patch: dict) -> Tenant:
    for key, value in patch.items():
        if key in TENANT_MUTABLE_FIELDS:
            setattr(tenant, key, value)
    db.flush()
    return tenant


def get_magazine_by_slug(db: Session, *, tenant_id: UUID, slug: str) -> Magazine:
    magazine = db.execute(
        select(Magazine).where(Magazine.tenant_id == tenant_id, Magazine.slug == slug)
    ).scalar_one_or_none()
    if magazine is None:
        raise NotFoundError(f"Magazine {slug} not found")
    return magazine


def list_magazines(db: Session, *, tenant_id: UUID) -> list[Magazine]:
    return list(
        db.execute(select(Magazine).where(Magazine.tenant_id == tenant_id).order_by(Magazine.created_at.asc()))
        .scalars()
        .all()
    )


def create_magazine(
    db: Session,
    *,
    tenant: Tenant,
    title: str,
    slug: str | None = None,
    description: str | None = None,
    theme: dict | None = None,
) -> Magazine:
    enforce_magazine_limit(db, tenant=tenant)

    magazine_slug = build_slug_base(slug or title, fallback="magazine")
    exists = db.execute(
        select(Magazine.id).where(Magazine.tenant_id == tenant.id, Magazine.slug == magazine_slug)
    ).scalar_one_or_none()
    if exists is not None:
        raise InvalidStateError(f"Magazine {magazine_slug} already exists")

    magazine = Magazine(
        tenant_id=tenant.id,
        title=title.strip(),
        slug=magazine_slug,
        description=description,
        theme=theme or {},
    )
    db.add(magazine)
    db.flush()
    create_default_blueprint(db, tenant_id=tenant.id, magazine_id=magazine.id)
    logger.info("magazine_created tenant_id=%s magazine_id=%s slug=%s", tenant.id, magazine.id, magazine_slug)
    return magazine


def delete_magazine(db: Session, *, magazine: Magazine) -> dict:
    issue_ids = list(db.execute(select(Issue.id).where(Issue.magazine_id == magazine.id)).scalars().all())
    counts = {"issues": len(issue_ids), "articles": 0, "ad_slots": 0, "analytics_events": 0}
    if issue_ids:
        counts["articles"] = db.execute(delete(Article).where(Article.issue_id.in_(issue_ids))).rowcount or 0
        counts["ad_slots"] = db.execute(delete(AdSlot).where(AdSlot.issue_id.in_(issue_ids))).rowcount or 0
        db.execute(delete(GenerationJob).where(GenerationJob.issue_id.in_(issue_ids)))
    counts["analytics_events"] = (
        db.execute(delete(AnalyticsEvent).where(AnalyticsEvent.magazine_id == magazine.id)).rowcount or 0
    )
    db.execute(delete(Issue).where(Issue.magazine_id == magazine.id))
    db.execute(delete(Blueprint).where(Blueprint.magazine_id == magazine.id))
    db.delete(magazine)
    db.flush()
    logger.info("magazine_deleted tenant_id=%s magazine_id=%s counts=%s", magazine.tenant_id, magazine.id, counts)
    return counts


def serialize_magazine(magazine: Magazine) -> dict:
    return {
        "id": str(magazine.id),
        "title": magazine.title,
        "slug": magazine.slug,
        "description": magazine.description,
        "theme": magazine.theme or {},
        "created_at": magazine.created_at.isoformat() if magazine.created_at else None,
    }


def serialize_tenant(tenant: Tenant) -> dict:
    return {
        "id": str(tenant.id),
        "name": tenant.name,
        "slug": tenant.slug,
        "plan": tenant.plan,
        "billing_status": tenant.billing_status,
        "feature_flags": tenant.feature_flags or {},
        "custom_domain": tenant.custom_domain,
        "website": tenant.website,
        "is_active": tenant.is_active,
    }
