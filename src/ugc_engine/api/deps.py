"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header

from ugc_engine.exceptions import AuthenticationError
from ugc_engine.jobs.tasks import get_generation_queue
from ugc_engine.services.credits import CreditLedger
from ugc_engine.services.payments import PaymentService
from ugc_engine.services.providers import get_script_generator
from ugc_engine.services.video_store import VideoStore
from ugc_engine.services.videos import VideoService


def get_current_user_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
) -> UUID:
    """Caller identity, set by the authentication gateway."""
    if not x_user_id:
        raise AuthenticationError("Authentication required")
    try:
        return UUID(x_user_id)
    except ValueError as e:
        raise AuthenticationError("Invalid user id") from e


CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]


def get_ledger() -> CreditLedger:
    """Get the credit ledger instance."""
    return CreditLedger()


LedgerDep = Annotated[CreditLedger, Depends(get_ledger)]


def get_video_service(ledger: LedgerDep) -> VideoService:
    """Get the video service instance."""
    return VideoService(
        store=VideoStore(),
        ledger=ledger,
        queue=get_generation_queue(),
        script_generator=get_script_generator(),
    )


VideoServiceDep = Annotated[VideoService, Depends(get_video_service)]


def get_payment_service(ledger: LedgerDep) -> PaymentService:
    """Get the payment service instance."""
    return PaymentService(ledger=ledger)


PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
