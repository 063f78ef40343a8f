"""Payment webhook endpoints."""

from typing import Annotated, Any

from fastapi import APIRouter, Header, Request

from ugc_engine.api.deps import PaymentServiceDep
from ugc_engine.logging import get_logger
from ugc_engine.services.payments import payment_event_from_stripe, verify_stripe_webhook

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = get_logger(__name__)


@router.post("/stripe", summary="Stripe webhook")
async def stripe_webhook(
    request: Request,
    payments: PaymentServiceDep,
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> dict[str, Any]:
    """Verify a Stripe event and apply it to the ledger."""
    payload = await request.body()
    event = verify_stripe_webhook(payload, stripe_signature)

    payment_event = payment_event_from_stripe(event)
    if payment_event is None:
        logger.info("stripe_event_ignored", event_id=event.get("id"), event_type=event.get("type"))
        return {"received": True, "ignored": True}

    return payments.apply(payment_event)
