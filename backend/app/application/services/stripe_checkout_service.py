from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx
from sqlalchemy.orm import Session

from app.core.config import PLAN_CATALOG, settings
from app.core.errors import APIError, BadRequestError, InvalidInputError, UpstreamServiceError
from app.domain.models.tenant import Tenant

STRIPE_API_BASE = "https://api.stripe.com/v1"


class StripeNotConfiguredError(APIError):
    error_code = "503_STRIPE_NOT_CONFIGURED"
    status_code_default = 503
    default_message = "Stripe is not configured"


@dataclass(frozen=True)
class CheckoutSessionResult:
    checkout_url: str
    session_id: str


def _headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {settings.stripe_api_key}"}


def _require_stripe() -> None:
    if not settings.stripe_api_key:
        raise StripeNotConfiguredError()


def _post(path: str, data: dict, *, label: str) -> dict:
    try:
        with httpx.Client(timeout=20.0) as client:
            response = client.post(f"{STRIPE_API_BASE}{path}", headers=_headers(), data=data)
    except httpx.HTTPError as exc:
        raise UpstreamServiceError(f"Stripe {label} request failed: {exc}") from exc
    if response.status_code >= 400:
        raise UpstreamServiceError(f"Stripe {label} error: {response.text[:200]}")
    return response.json()


def _ensure_customer(db: Session, *, tenant: Tenant) -> str:
    if tenant.stripe_customer_id:
        return tenant.stripe_customer_id

    body = _post(
        "/customers",
        {"name": tenant.name, "metadata[tenant_id]": str(tenant.id)},
        label="customer",
    )
    customer_id = str(body.get("id") or "")
    if not customer_id:
        raise UpstreamServiceError("Stripe customer response invalid")
    tenant.stripe_customer_id = customer_id
    db.add(tenant)
    db.flush()
    return customer_id


def create_checkout_session(
    db: Session,
    *,
    tenant: Tenant,
    plan: str,
    success_url: str | None = None,
    cancel_url: str | None = None,
) -> CheckoutSessionResult:
    if plan not in PLAN_CATALOG:
        raise InvalidInputError(f"Unknown plan: {plan}")
    _require_stripe()
    price_id = settings.stripe_price_ids.get(plan)
    if not price_id:
        raise BadRequestError(f"Plan '{plan}' has no Stripe price mapping")

    customer_id = _ensure_customer(db, tenant=tenant)
    payload = {
        "mode": "subscription",
        "line_items[0][price]": price_id,
        "line_items[0][quantity]": "1",
        "success_url": success_url or settings.stripe_checkout_success_url,
        "cancel_url": cancel_url or settings.stripe_checkout_cancel_url,
        "customer": customer_id,
        "client_reference_id": str(tenant.id),
        "metadata[tenant_id]": str(tenant.id),
        "metadata[plan]": plan,
    }
    body = _post("/checkout/sessions", payload, label="checkout")
    checkout_url = str(body.get("url") or "")
    session_id = str(body.get("id") or "")
    if not checkout_url or not session_id:
        raise UpstreamServiceError("Stripe checkout response invalid")
    return CheckoutSessionResult(checkout_url=checkout_url, session_id=session_id)


def verify_stripe_signature(*, payload_bytes: bytes, signature_header: str | None, now: datetime | None = None) -> None:
    """Check a ``Stripe-Signature`` header against the webhook secret.

    Verification is skipped when no secret is configured.
    """
    if not settings.stripe_webhook_secret:
        return
    if not signature_header:
        raise BadRequestError("Missing Stripe signature")

    parts = {}
    for chunk in signature_header.split(","):
        if "=" not in chunk:
            continue
        key, value = chunk.split("=", 1)
        parts.setdefault(key.strip(), value.strip())

    timestamp = parts.get("t")
    signature = parts.get("v1")
    if not timestamp or not signature:
        raise BadRequestError("Invalid Stripe signature header")

    try:
        signed_at = int(timestamp)
    except ValueError as exc:
        raise BadRequestError("Invalid Stripe signature timestamp") from exc

    moment = now or datetime.now(UTC)
    age = abs(int(moment.timestamp()) - signed_at)
    if age > max(1, settings.stripe_webhook_tolerance_seconds):
        raise BadRequestError("Expired Stripe signature")

    signed_payload = f"{timestamp}.".encode("utf-8") + payload_bytes
    expected = hmac.new(
        settings.stripe_webhook_secret.encode("utf-8"),
        signed_payload,
        hashlib.sha256,
    ).hexdigest()

    if not hmac.compare_digest(expected, signature):
        raise BadRequestError("Invalid Stripe signature")


def parse_stripe_webhook_payload(payload_bytes: bytes) -> dict:
    try:
        payload = json.loads(payload_bytes.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise BadRequestError("Invalid Stripe payload") from exc
    if not isinstance(payload, dict):
        raise BadRequestError("Invalid Stripe payload")
    return payload
