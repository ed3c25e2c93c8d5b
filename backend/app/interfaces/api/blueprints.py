from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.application.services.access_policy import Permission
from app.application.services.audit_service import log_audit_event
from app.application.services.blueprint_service import (
    get_blueprint_or_default,
    save_blueprint,
    serialize_blueprint,
)
from app.application.services.magazine_service import get_magazine_by_slug
from app.domain.models.tenant import Tenant
from app.domain.models.user import User
from app.infrastructure.db.session import get_db
from app.interfaces.api.deps import get_current_tenant_model, require_permission

router = APIRouter(prefix="/api/blueprints", tags=["blueprints"])


class SaveBlueprintRequest(BaseModel):
    magazine_slug: str = Field(min_length=1)
    structure: dict
    voice: dict = Field(default_factory=dict)
    niche: dict = Field(default_factory=dict)
    sources: dict = Field(default_factory=dict)
    cadence: str = "monthly"
    approval_mode: str = "semi_auto"


@router.get("")
def get_blueprint(
    magazine_slug: str = Query(min_length=1),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    _: User = Depends(require_permission(Permission.BLUEPRINT_READ)),
) -> dict:
    magazine = get_magazine_by_slug(db, tenant_id=tenant.id, slug=magazine_slug)
    return {"ok": True, "blueprint": get_blueprint_or_default(db, magazine_id=magazine.id)}


@router.post("/save")
def save(
    payload: SaveBlueprintRequest,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    current_user: User = Depends(require_permission(Permission.BLUEPRINT_WRITE)),
) -> dict:
    magazine = get_magazine_by_slug(db, tenant_id=tenant.id, slug=payload.magazine_slug)
    blueprint = save_blueprint(
        db,
        tenant=tenant,
        magazine_id=magazine.id,
        structure=payload.structure,
        voice=payload.voice,
        niche=payload.niche,
        sources=payload.sources,
        cadence=payload.cadence,
        approval_mode=payload.approval_mode,
    )
    log_audit_event(
        db,
        tenant_id=tenant.id,
        action="blueprint.saved",
        metadata={
            "magazine_id": str(magazine.id),
            "pages": blueprint.structure.get("pages"),
            "actor": current_user.email,
        },
    )
    db.commit()
    db.refresh(blueprint)
    return {"ok": True, "blueprint": serialize_blueprint(blueprint)}
