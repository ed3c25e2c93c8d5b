from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.application.services.access_policy import Permission
from app.application.services.audit_service import log_audit_event
from app.application.services.magazine_service import (
    create_magazine,
    delete_magazine,
    get_magazine_by_slug,
    list_magazines,
    serialize_magazine,
)
from app.domain.models.tenant import Tenant
from app.domain.models.user import User
from app.infrastructure.db.session import get_db
from app.interfaces.api.deps import get_current_tenant_model, require_permission

router = APIRouter(prefix="/api/magazines", tags=["magazines"])


class CreateMagazineRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    slug: str | None = Field(default=None, max_length=255)
    description: str | None = None
    theme: dict | None = None


@router.post("", status_code=status.HTTP_201_CREATED)
def create(
    payload: CreateMagazineRequest,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    current_user: User = Depends(require_permission(Permission.MAGAZINE_MANAGE)),
) -> dict:
    magazine = create_magazine(
        db,
        tenant=tenant,
        title=payload.title,
        slug=payload.slug,
        description=payload.description,
        theme=payload.theme,
    )
    log_audit_event(
        db,
        tenant_id=tenant.id,
        action="magazine.created",
        metadata={"magazine_id": str(magazine.id), "slug": magazine.slug, "actor": current_user.email},
    )
    db.commit()
    db.refresh(magazine)
    return {"ok": True, "magazine": serialize_magazine(magazine)}


@router.get("")
def list_all(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    _: User = Depends(require_permission(Permission.ISSUE_READ)),
) -> dict:
    return {"ok": True, "magazines": [serialize_magazine(item) for item in list_magazines(db, tenant_id=tenant.id)]}


@router.get("/{slug}")
def detail(
    slug: str,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    _: User = Depends(require_permission(Permission.ISSUE_READ)),
) -> dict:
    magazine = get_magazine_by_slug(db, tenant_id=tenant.id, slug=slug)
    return {"ok": True, "magazine": serialize_magazine(magazine)}


@router.delete("/{slug}")
def remove(
    slug: str,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    current_user: User = Depends(require_permission(Permission.MAGAZINE_MANAGE)),
) -> dict:
    magazine = get_magazine_by_slug(db, tenant_id=tenant.id, slug=slug)
    magazine_id = str(magazine.id)
    counts = delete_magazine(db, magazine=magazine)
    log_audit_event(
        db,
        tenant_id=tenant.id,
        action="magazine.deleted",
        metadata={"magazine_id": magazine_id, "slug": slug, "deleted": counts, "actor": current_user.email},
    )
    db.commit()
    return {"ok": True, "deleted": counts}
