from fastapi import APIRouter, Depends, Header, Request, status
from sqlalchemy.orm import Session

from app.application.services.stripe_checkout_service import parse_stripe_webhook_payload, verify_stripe_signature
from app.application.services.stripe_webhook_service import process_stripe_event_payload
from app.infrastructure.db.session import get_db

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe", status_code=status.HTTP_200_OK)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
) -> dict:
    payload_bytes = await request.body()
    verify_stripe_signature(payload_bytes=payload_bytes, signature_header=stripe_signature)
    payload = parse_stripe_webhook_payload(payload_bytes)
    result = process_stripe_event_payload(db, payload)
    db.commit()
    return {"ok": True, **result}
