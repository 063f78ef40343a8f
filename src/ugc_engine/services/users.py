"""User provisioning.

Accounts normally arrive from the authentication gateway; this module is
what it (and the operator CLI) calls to register one with its signup bonus.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ugc_engine.config import settings
from ugc_engine.db.models import UserModel
from ugc_engine.domain.enums import TransactionType
from ugc_engine.exceptions import UGCEngineError
from ugc_engine.logging import get_logger
from ugc_engine.services.credits import CreditLedger

logger = get_logger(__name__)


class UserExistsError(UGCEngineError):
    """Raised when registering an email that is already taken."""

    code = "CONFLICT"
    status_code = 409

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__(f"A user with email {email} already exists")


def create_user(
    session: Session,
    ledger: CreditLedger,
    email: str,
    name: str | None = None,
    signup_credits: int | None = None,
) -> UserModel:
    """Create a user and grant the signup bonus in the caller's transaction."""
    credits = settings.free_credits_on_signup if signup_credits is None else signup_credits

    user = UserModel(email=email.lower(), name=name, credit_balance=0)
    session.add(user)
    try:
        session.flush()
    except IntegrityError as e:
        raise UserExistsError(email) from e

    if credits > 0:
        ledger.grant(
            user.id,
            credits,
            TransactionType.BONUS,
            "Welcome bonus - free credits",
            idempotency_key=f"signup:{user.id}",
            session=session,
        )
        session.refresh(user)

    logger.info("user_created", user_id=str(user.id), signup_credits=credits)
    return user


def get_user(session: Session, user_id: UUID) -> UserModel | None:
    return session.get(UserModel, user_id)


def find_user_by_email(session: Session, email: str) -> UserModel | None:
    return session.execute(
        select(UserModel).where(UserModel.email == email.lower())
    ).scalar_one_or_none()
