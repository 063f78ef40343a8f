"""Payment event handling.

Payment webhooks are applied to the ledger at most once per provider event
id: the event row is written in the same transaction as the credit grant,
and the ledger writes carry keys derived from the event id as a second
line of defence.
"""

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

import stripe
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ugc_engine.config import settings
from ugc_engine.db.models import WebhookEventModel, utcnow
from ugc_engine.db.session import SessionLocal
from ugc_engine.domain.enums import PaymentEventType, TransactionType
from ugc_engine.exceptions import TransactionNotFoundError, WebhookVerificationError
from ugc_engine.logging import get_logger
from ugc_engine.services.credits import CreditLedger

logger = get_logger(__name__)


@dataclass
class PaymentEvent:
    """Provider-agnostic payment event."""

    event_id: str
    event_type: PaymentEventType
    user_id: UUID
    credits: int = 0
    bonus_credits: int = 0
    external_reference: str | None = None
    provider: str = "stripe"
    payload: dict[str, Any] = field(default_factory=dict)


class PaymentService:
    """Apply payment events to the credit ledger exactly once."""

    def __init__(
        self,
        ledger: CreditLedger,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self.ledger = ledger
        self._session_factory = session_factory

    def apply(self, event: PaymentEvent) -> dict[str, Any]:
        """Apply an event, or report it as a duplicate.

        Returns:
            Dict with ``received`` and ``duplicate`` flags
        """
        log = logger.bind(event_id=event.event_id, event_type=str(event.event_type))

        try:
            with self._session_factory() as session:
                with session.begin():
                    record = session.execute(
                        select(WebhookEventModel)
                        .where(WebhookEventModel.event_id == event.event_id)
                        .with_for_update()
                    ).scalar_one_or_none()
                    if record is not None and record.processed:
                        log.info("payment_event_duplicate")
                        return {"received": True, "duplicate": True}

                    if record is None:
                        record = WebhookEventModel(
                            event_id=event.event_id,
                            provider=event.provider,
                            event_type=str(event.event_type),
                            payload=event.payload,
                        )
                        session.add(record)
                        session.flush()

                    self._dispatch(session, event)
                    record.processed = True
                    record.processed_at = utcnow()
                    record.error = None
        except IntegrityError:
            # A concurrent delivery of the same event inserted first
            log.info("payment_event_duplicate", concurrent=True)
            return {"received": True, "duplicate": True}
        except Exception as e:
            log.error("payment_event_failed", error=str(e))
            self._record_error(event, str(e))
            raise

        log.info(
            "payment_event_applied",
            user_id=str(event.user_id),
            credits=event.credits,
            bonus_credits=event.bonus_credits,
        )
        return {"received": True, "duplicate": False}

    def _dispatch(self, session: Session, event: PaymentEvent) -> None:
        if event.event_type == PaymentEventType.PURCHASE_COMPLETED:
            self._purchase(session, event)
        elif event.event_type == PaymentEventType.SUBSCRIPTION_RENEWED:
            self._grant_pair(
                session,
                event,
                TransactionType.SUBSCRIPTION_CREDIT,
                f"Subscription: {event.credits} credits",
                TransactionType.SUBSCRIPTION_BONUS,
                "Subscription bonus credits",
            )
        elif event.event_type == PaymentEventType.REFUND_ISSUED:
            total = event.credits + event.bonus_credits
            if total > 0:
                self.ledger.adjust(
                    event.user_id,
                    -total,
                    "Payment refunded",
                    idempotency_key=f"payment:{event.event_id}:refund",
                    session=session,
                )

    def _purchase(self, session: Session, event: PaymentEvent) -> None:
        if event.external_reference:
            try:
                self.ledger.complete_purchase(event.external_reference, session=session)
                return
            except TransactionNotFoundError:
                logger.warning(
                    "payment_purchase_not_opened",
                    event_id=event.event_id,
                    external_reference=event.external_reference,
                )

        self._grant_pair(
            session,
            event,
            TransactionType.PURCHASE,
            f"Purchase: {event.credits} credits",
            TransactionType.BONUS,
            "Purchase bonus credits",
        )

    def _grant_pair(
        self,
        session: Session,
        event: PaymentEvent,
        credit_type: TransactionType,
        credit_description: str,
        bonus_type: TransactionType,
        bonus_description: str,
    ) -> None:
        if event.credits > 0:
            self.ledger.grant(
                event.user_id,
                event.credits,
                credit_type,
                credit_description,
                idempotency_key=f"payment:{event.event_id}:credits",
                session=session,
            )
        if event.bonus_credits > 0:
            self.ledger.grant(
                event.user_id,
                event.bonus_credits,
                bonus_type,
                bonus_description,
                idempotency_key=f"payment:{event.event_id}:bonus",
                session=session,
            )

    def _record_error(self, event: PaymentEvent, error: str) -> None:
        with self._session_factory() as session:
            with session.begin():
                record = session.execute(
                    select(WebhookEventModel).where(WebhookEventModel.event_id == event.event_id)
                ).scalar_one_or_none()
                if record is None:
                    record = WebhookEventModel(
                        event_id=event.event_id,
                        provider=event.provider,
                        event_type=str(event.event_type),
                        payload=event.payload,
                    )
                    session.add(record)
                record.error = error


# =============================================================================
# Stripe
# =============================================================================


def verify_stripe_webhook(
    payload: bytes, signature: str | None, secret: str | None = None
) -> dict[str, Any]:
    """Verify a Stripe webhook signature and return the decoded event body.

    Raises:
        WebhookVerificationError: Missing secret, missing header or bad signature
    """
    secret = secret or settings.stripe_webhook_secret
    if not secret:
        raise WebhookVerificationError("Stripe webhook secret is not configured")
    if not signature:
        raise WebhookVerificationError("Missing stripe-signature header")

    try:
        event = stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as e:
        logger.error("stripe_webhook_verification_failed", error=str(e))
        raise WebhookVerificationError("Webhook signature verification failed") from e
    except ValueError as e:
        logger.error("stripe_webhook_parsing_failed", error=str(e))
        raise WebhookVerificationError(f"Failed to parse Stripe webhook: {e}") from e

    logger.info("stripe_webhook_verified", event_id=event["id"], event_type=event["type"])
    return json.loads(payload)


def payment_event_from_stripe(event: dict[str, Any]) -> PaymentEvent | None:
    """Map a verified Stripe event onto a PaymentEvent.

    Returns None for event types that do not move credits.
    """
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == "checkout.session.completed":
        metadata = obj.get("metadata") or {}
        subscription = obj.get("mode") == "subscription" or metadata.get("type") == "subscription"
        kind = (
            PaymentEventType.SUBSCRIPTION_RENEWED
            if subscription
            else PaymentEventType.PURCHASE_COMPLETED
        )
        reference = None if subscription else obj.get("id")
    elif event_type == "invoice.paid":
        # The first invoice is covered by checkout.session.completed
        if obj.get("billing_reason") == "subscription_create":
            return None
        metadata = (obj.get("subscription_details") or {}).get("metadata") or obj.get(
            "metadata"
        ) or {}
        kind = PaymentEventType.SUBSCRIPTION_RENEWED
        reference = obj.get("id")
    elif event_type == "charge.refunded":
        metadata = obj.get("metadata") or {}
        kind = PaymentEventType.REFUND_ISSUED
        reference = obj.get("id")
    else:
        return None

    user_id = metadata.get("userId") or metadata.get("user_id")
    if not user_id:
        logger.warning("stripe_event_missing_user", event_id=event.get("id"), event_type=event_type)
        return None

    return PaymentEvent(
        event_id=str(event["id"]),
        event_type=kind,
        user_id=UUID(str(user_id)),
        credits=_int(metadata.get("credits")),
        bonus_credits=_int(metadata.get("bonusCredits") or metadata.get("bonus_credits")),
        external_reference=reference,
        provider="stripe",
        payload={"type": event_type, "object_id": obj.get("id"), "metadata": dict(metadata)},
    )


def _int(value: Any) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0
