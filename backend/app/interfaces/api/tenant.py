from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.application.services.access_policy import Permission
from app.application.services.activation_service import activate_tenant
from app.application.services.audit_service import list_audit_events, log_audit_event, serialize_audit_event
from app.application.services.auth_service import AuthService
from app.application.services.billing_service import (
    UNLIMITED,
    check_activation_eligibility,
    count_issues_this_month,
    tenant_limit,
)
from app.application.services.magazine_service import serialize_tenant, update_tenant
from app.domain.models.tenant import Tenant
from app.domain.models.user import User
from app.infrastructure.db.session import get_db
from app.interfaces.api.deps import get_current_tenant_model, require_permission

router = APIRouter(prefix="/api/tenant", tags=["tenant"])


class TenantUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=255)
    website: str | None = None
    custom_domain: str | None = None


class MemberCreateRequest(BaseModel):
    email: str
    password: str = Field(min_length=8)
    role: str


@router.get("")
def tenant_info(
    tenant: Tenant = Depends(get_current_tenant_model),
    _: User = Depends(require_permission(Permission.ISSUE_READ)),
) -> dict:
    return {"ok": True, "tenant": serialize_tenant(tenant)}


@router.patch("")
def tenant_update(
    payload: TenantUpdateRequest,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    current_user: User = Depends(require_permission(Permission.MEMBERS_MANAGE)),
) -> dict:
    patch = payload.model_dump(exclude_unset=True)
    update_tenant(db, tenant=tenant, patch=patch)
    log_audit_event(
        db,
        tenant_id=tenant.id,
        action="tenant.updated",
        metadata={"fields": sorted(patch), "actor": current_user.email},
    )
    db.commit()
    db.refresh(tenant)
    return {"ok": True, "tenant": serialize_tenant(tenant)}


@router.get("/eligibility")
def eligibility(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    _: User = Depends(require_permission(Permission.ISSUE_READ)),
) -> dict:
    eligible, reason = check_activation_eligibility(db, tenant=tenant)
    limit = tenant_limit(tenant, "maxIssuesPerMonth")
    used = count_issues_this_month(db, tenant_id=tenant.id)
    return {
        "ok": True,
        "eligible": eligible,
        "reason": reason,
        "is_active": tenant.is_active,
        "billing_status": tenant.billing_status,
        "issues_this_month": used,
        "quota_remaining": None if limit == UNLIMITED else max(0, limit - used),
    }


@router.post("/members", status_code=status.HTTP_201_CREATED)
def add_member(
    payload: MemberCreateRequest,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    current_user: User = Depends(require_permission(Permission.MEMBERS_MANAGE)),
) -> dict:
    member = AuthService.add_member(
        db,
        tenant_id=tenant.id,
        email=payload.email,
        password=payload.password,
        role=payload.role,
    )
    log_audit_event(
        db,
        tenant_id=tenant.id,
        action="tenant.member_added",
        metadata={"user_id": str(member.id), "role": member.role, "actor": current_user.email},
    )
    db.commit()
    return {"ok": True, "member": {"id": str(member.id), "email": member.email, "role": member.role}}


@router.get("/audit-log")
def audit_log(
    action_prefix: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    _: User = Depends(require_permission(Permission.MEMBERS_MANAGE)),
) -> dict:
    events = list_audit_events(db, tenant_id=tenant.id, action_prefix=action_prefix, limit=limit)
    return {"ok": True, "events": [serialize_audit_event(entry) for entry in events]}


@router.post("/activate", status_code=status.HTTP_202_ACCEPTED)
def activate(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    current_user: User = Depends(require_permission(Permission.MAGAZINE_MANAGE)),
) -> dict:
    details = activate_tenant(db, tenant=tenant, requested_by=current_user.email)
    return {"ok": True, "results": details}
