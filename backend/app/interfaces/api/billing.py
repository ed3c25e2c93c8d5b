from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.application.services.access_policy import Permission
from app.application.services.audit_service import log_audit_event
from app.application.services.billing_service import get_billing_status_payload
from app.application.services.stripe_checkout_service import create_checkout_session
from app.domain.models.tenant import Tenant
from app.domain.models.user import User
from app.infrastructure.db.session import get_db
from app.interfaces.api.deps import get_current_tenant_model, require_permission

router = APIRouter(prefix="/api/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    plan: str
    success_url: str | None = None
    cancel_url: str | None = None


@router.post("/checkout")
def checkout(
    payload: CheckoutRequest,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    current_user: User = Depends(require_permission(Permission.BILLING_MANAGE)),
) -> dict:
    result = create_checkout_session(
        db,
        tenant=tenant,
        plan=payload.plan,
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
    )
    log_audit_event(
        db,
        tenant_id=tenant.id,
        action="billing.checkout_started",
        metadata={"plan": payload.plan, "session_id": result.session_id, "actor": current_user.email},
    )
    db.commit()
    return {"ok": True, "checkout_url": result.checkout_url, "session_id": result.session_id}


@router.get("/status")
def billing_status(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant_model),
    _: User = Depends(require_permission(Permission.ISSUE_READ)),
) -> dict:
    return {"ok": True, **get_billing_status_payload(db, tenant=tenant)}
