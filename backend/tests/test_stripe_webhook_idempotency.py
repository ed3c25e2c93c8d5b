import hashlib
import hmac
import json
from datetime import UTC, datetime

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from sqlalchemy import select

from app.application.services.auth_service import AuthService
from app.application.services.stripe_checkout_service import verify_stripe_signature
from app.application.services.stripe_webhook_service import process_stripe_event_payload
from app.core.config import settings
from app.domain.models.stripe_event import StripeEvent
from app.domain.models.tenant import Tenant


def _sign(payload: bytes, secret: str, timestamp: int) -> str:
    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def tenant(db_session) -> Tenant:
    tenant, _ = AuthService.signup_tenant(
        db_session,
        tenant_name="Billing Co",
        owner_email="owner@billing.test",
        owner_password="secret123",
    )
    return tenant


def _checkout_completed(tenant: Tenant, event_id: str = "evt_test_checkout_completed") -> dict:
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_test_123",
                "customer": "cus_123",
                "subscription": "sub_123",
                "client_reference_id": str(tenant.id),
                "metadata": {"tenant_id": str(tenant.id), "plan": "pro"},
            }
        },
    }


def test_verify_stripe_signature_valid_and_invalid(monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test")
    payload = b'{"id":"evt_1","type":"invoice.paid"}'
    timestamp = int(datetime.now(UTC).timestamp())

    verify_stripe_signature(payload_bytes=payload, signature_header=_sign(payload, "whsec_test", timestamp))

    with pytest.raises(HTTPException):
        verify_stripe_signature(payload_bytes=payload, signature_header=f"t={timestamp},v1=bad")
    with pytest.raises(HTTPException) as exc_info:
        verify_stripe_signature(
            payload_bytes=payload,
            signature_header=_sign(payload, "whsec_test", timestamp - 3600),
        )
    assert exc_info.value.detail["message"] == "Expired Stripe signature"


def test_process_stripe_event_idempotent(db_session, tenant):
    payload = _checkout_completed(tenant)

    first = process_stripe_event_payload(db_session, payload)
    db_session.commit()
    second = process_stripe_event_payload(db_session, payload)
    db_session.commit()

    assert first["processed"] is True
    assert second["deduplicated"] is True
    events = (
        db_session.execute(select(StripeEvent).where(StripeEvent.stripe_event_id == "evt_test_checkout_completed"))
        .scalars()
        .all()
    )
    assert len(events) == 1
    db_session.refresh(tenant)
    assert tenant.plan == "pro"
    assert tenant.feature_flags["maxIssuesPerMonth"] == 4
    assert tenant.stripe_subscription_id == "sub_123"


def test_subscription_lifecycle_updates_billing_status(db_session, tenant):
    process_stripe_event_payload(db_session, _checkout_completed(tenant))
    process_stripe_event_payload(
        db_session,
        {
            "id": "evt_invoice_failed",
            "type": "invoice.payment_failed",
            "data": {"object": {"subscription": "sub_123"}},
        },
    )
    assert tenant.billing_status == "past_due"

    process_stripe_event_payload(
        db_session,
        {
            "id": "evt_sub_deleted",
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": "sub_123", "customer": "cus_123", "status": "canceled"}},
        },
    )
    db_session.commit()
    assert tenant.billing_status == "canceled"


def test_unknown_tenant_event_is_ignored(db_session):
    result = process_stripe_event_payload(
        db_session,
        {"id": "evt_orphan", "type": "invoice.paid", "data": {"object": {"subscription": "sub_missing"}}},
    )
    db_session.commit()

    assert result["processed"] is False
    stored = db_session.execute(select(StripeEvent).where(StripeEvent.stripe_event_id == "evt_orphan")).scalar_one()
    assert stored.status == "ignored"


def test_webhook_endpoint_rejects_bad_signature(client: TestClient, monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test")
    body = json.dumps({"id": "evt_1", "type": "invoice.paid", "data": {"object": {}}}).encode("utf-8")

    response = client.post(
        "/webhooks/stripe",
        content=body,
        headers={"Stripe-Signature": "t=1,v1=bad", "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["ok"] is False
