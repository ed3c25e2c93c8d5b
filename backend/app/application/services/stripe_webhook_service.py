from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.application.services.audit_service import log_audit_event
from app.application.services.billing_service import apply_plan
from app.core.config import PLAN_CATALOG
from app.core.errors import BadRequestError
from app.domain.models.stripe_event import StripeEvent
from app.domain.models.tenant import BillingStatus, Tenant

logger = logging.getLogger(__name__)

SUBSCRIPTION_STATUS_MAP = {
    "active": BillingStatus.ACTIVE,
    "trialing": BillingStatus.TRIALING,
    "past_due": BillingStatus.PAST_DUE,
    "unpaid": BillingStatus.UNPAID,
    "canceled": BillingStatus.CANCELED,
    "incomplete": BillingStatus.UNPAID,
    "incomplete_expired": BillingStatus.CANCELED,
    "paused": BillingStatus.PAST_DUE,
}


def _from_unix(value) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=UTC)
    except (TypeError, ValueError, OverflowError):
        return None


def _extract_tenant_id(event_object: dict) -> UUID | None:
    metadata = event_object.get("metadata")
    raw = metadata.get("tenant_id") if isinstance(metadata, dict) else None
    raw = raw or event_object.get("client_reference_id")
    if not raw:
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        return None


def _plan_from_event(event_object: dict) -> str | None:
    metadata = event_object.get("metadata")
    plan = metadata.get("plan") if isinstance(metadata, dict) else None
    if plan and str(plan) in PLAN_CATALOG:
        return str(plan)
    return None


def _tenant_by_subscription(db: Session, stripe_subscription_id: str) -> Tenant | None:
    if not stripe_subscription_id:
        return None
    return db.execute(
        select(Tenant).where(Tenant.stripe_subscription_id == stripe_subscription_id)
    ).scalar_one_or_none()


def _tenant_for_subscription_object(db: Session, event_object: dict) -> Tenant | None:
    tenant = _tenant_by_subscription(db, str(event_object.get("id") or ""))
    if tenant is not None:
        return tenant
    tenant_id = _extract_tenant_id(event_object)
    if tenant_id is not None:
        return db.get(Tenant, tenant_id)
    customer_id = str(event_object.get("customer") or "")
    if customer_id:
        return db.execute(select(Tenant).where(Tenant.stripe_customer_id == customer_id)).scalar_one_or_none()
    return None


def _handle_checkout_completed(db: Session, event_object: dict) -> Tenant | None:
    tenant_id = _extract_tenant_id(event_object)
    tenant = db.get(Tenant, tenant_id) if tenant_id is not None else None
    if tenant is None:
        return None
    plan = _plan_from_event(event_object)
    if plan is not None:
        apply_plan(tenant, plan=plan)
    tenant.billing_status = BillingStatus.ACTIVE.value
    tenant.stripe_customer_id = str(event_object.get("customer") or tenant.stripe_customer_id or "") or None
    tenant.stripe_subscription_id = (
        str(event_object.get("subscription") or tenant.stripe_subscription_id or "") or None
    )
    return tenant


def _handle_subscription_change(db: Session, event_type: str, event_object: dict) -> Tenant | None:
    tenant = _tenant_for_subscription_object(db, event_object)
    if tenant is None:
        return None
    if event_type == "customer.subscription.deleted":
        tenant.billing_status = BillingStatus.CANCELED.value
        return tenant

    status_value = SUBSCRIPTION_STATUS_MAP.get(str(event_object.get("status") or ""))
    if status_value is not None:
        tenant.billing_status = status_value.value
    tenant.stripe_subscription_id = str(event_object.get("id") or tenant.stripe_subscription_id or "") or None
    period_end = _from_unix(event_object.get("current_period_end"))
    if period_end is not None:
        tenant.current_period_end = period_end
    plan = _plan_from_event(event_object)
    if plan is not None and plan != tenant.plan:
        apply_plan(tenant, plan=plan)
    return tenant


def _handle_invoice(db: Session, event_type: str, event_object: dict) -> Tenant | None:
    tenant = _tenant_by_subscription(db, str(event_object.get("subscription") or ""))
    if tenant is None:
        return None
    if event_type == "invoice.paid":
        tenant.billing_status = BillingStatus.ACTIVE.value
    else:
        tenant.billing_status = BillingStatus.PAST_DUE.value
    return tenant


def process_stripe_event_payload(db: Session, payload: dict) -> dict:
    """Apply one Stripe webhook event to the owning tenant.

    Events are recorded in ``stripe_events`` by id; an event that was already
    processed is acknowledged without being applied twice. The caller commits.
    """
    event_id = str(payload.get("id") or "").strip()
    event_type = str(payload.get("type") or "unknown")
    event_object = (payload.get("data") or {}).get("object") or {}

    if not event_id:
        raise BadRequestError("Missing Stripe event id")

    existing = db.execute(select(StripeEvent).where(StripeEvent.stripe_event_id == event_id)).scalar_one_or_none()
    if existing is not None and existing.status == "processed":
        logger.info("stripe_event_deduplicated stripe_event_id=%s", event_id)
        return {"received": True, "deduplicated": True, "stripe_event_id": event_id}

    stripe_event = existing or StripeEvent(stripe_event_id=event_id, event_type=event_type, status="processing")
    stripe_event.event_type = event_type
    stripe_event.status = "processing"
    stripe_event.error = None
    db.add(stripe_event)
    db.flush()

    try:
        tenant = None
        if event_type == "checkout.session.completed":
            tenant = _handle_checkout_completed(db, event_object)
        elif event_type in {
            "customer.subscription.created",
            "customer.subscription.updated",
            "customer.subscription.deleted",
        }:
            tenant = _handle_subscription_change(db, event_type, event_object)
        elif event_type in {"invoice.paid", "invoice.payment_failed"}:
            tenant = _handle_invoice(db, event_type, event_object)

        if tenant is not None:
            db.add(tenant)
            log_audit_event(
                db,
                tenant_id=tenant.id,
                action="billing.webhook_applied",
                metadata={
                    "event_type": event_type,
                    "stripe_event_id": event_id,
                    "plan": tenant.plan,
                    "billing_status": tenant.billing_status,
                },
            )
            logger.info(
                "stripe_event_applied stripe_event_id=%s type=%s tenant_id=%s billing_status=%s",
                event_id,
                event_type,
                tenant.id,
                tenant.billing_status,
            )

        stripe_event.status = "processed" if tenant is not None else "ignored"
        stripe_event.processed_at = datetime.now(UTC)
        db.add(stripe_event)
        return {"received": True, "processed": tenant is not None, "stripe_event_id": event_id}

    except Exception as exc:
        stripe_event.status = "error"
        stripe_event.error = str(exc)[:4000]
        stripe_event.processed_at = datetime.now(UTC)
        db.add(stripe_event)
        logger.exception("stripe_event_failed stripe_event_id=%s type=%s", event_id, event_type)
        raise
