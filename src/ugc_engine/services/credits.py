"""Credit ledger.

Balances live denormalized on ``users.credit_balance``; every change is
recorded as an immutable ``credit_transactions`` row whose
``balance_after`` is computed inside the same database transaction.

Write path for every mutation:
1. Lock the user row (``SELECT ... FOR UPDATE``) and read the balance
2. Check the floor (debits only)
3. Compare-and-swap the balance (``UPDATE ... WHERE credit_balance = :seen``)
4. Insert the ledger row
5. Re-read the balance and verify it against the arithmetic
"""

from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ugc_engine.db.models import CreditTransactionModel, UserModel, utcnow
from ugc_engine.db.session import SessionLocal, session_scope
from ugc_engine.domain.enums import TransactionStatus, TransactionType
from ugc_engine.domain.models import LedgerEntry
from ugc_engine.exceptions import (
    InsufficientCreditsError,
    LedgerInvariantError,
    ServiceUnavailableError,
    TransactionNotFoundError,
    UserNotFoundError,
)
from ugc_engine.logging import get_logger

logger = get_logger(__name__)

GRANT_TYPES = frozenset(
    {
        TransactionType.PURCHASE,
        TransactionType.BONUS,
        TransactionType.ADJUSTMENT,
        TransactionType.SUBSCRIPTION_CREDIT,
        TransactionType.SUBSCRIPTION_BONUS,
    }
)


@dataclass
class LedgerAudit:
    """Stored balance versus the sum of settled ledger rows."""

    user_id: UUID
    balance: int
    ledger_total: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_total


class CreditLedger:
    """Append-only credit ledger with a denormalized balance.

    Mutating methods take an optional ``session`` so callers can bundle a
    ledger write with their own changes (a status transition, say) in one
    transaction. Without it the ledger commits its own unit of work.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        max_cas_retries: int = 5,
    ) -> None:
        self._session_factory = session_factory
        self._max_cas_retries = max_cas_retries

    # =============================================================================
    # Mutations
    # =============================================================================

    def deduct(
        self,
        user_id: UUID,
        amount: int,
        video_id: UUID | None,
        description: str,
        idempotency_key: str | None = None,
        session: Session | None = None,
    ) -> LedgerEntry:
        """Debit credits. Fails with InsufficientCreditsError, never partially."""
        if amount <= 0:
            raise ValueError("amount must be positive")
        with self._unit_of_work(session) as s:
            return self._record(
                s,
                user_id=user_id,
                delta=-amount,
                tx_type=TransactionType.CONSUMPTION,
                description=description,
                video_id=video_id,
                idempotency_key=idempotency_key,
                enforce_floor=True,
            )

    def refund(
        self,
        user_id: UUID,
        amount: int,
        video_id: UUID | None,
        description: str,
        idempotency_key: str | None = None,
        session: Session | None = None,
    ) -> LedgerEntry:
        """Return credits for an attempt that did not complete."""
        if amount <= 0:
            raise ValueError("amount must be positive")
        with self._unit_of_work(session) as s:
            return self._record(
                s,
                user_id=user_id,
                delta=amount,
                tx_type=TransactionType.REFUND,
                description=description,
                video_id=video_id,
                idempotency_key=idempotency_key,
            )

    def grant(
        self,
        user_id: UUID,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        idempotency_key: str | None = None,
        video_id: UUID | None = None,
        session: Session | None = None,
    ) -> LedgerEntry:
        """Add purchased, bonus or subscription credits."""
        if amount <= 0:
            raise ValueError("amount must be positive")
        if transaction_type not in GRANT_TYPES:
            raise ValueError(f"{transaction_type} is not a grant type")
        with self._unit_of_work(session) as s:
            return self._record(
                s,
                user_id=user_id,
                delta=amount,
                tx_type=transaction_type,
                description=description,
                video_id=video_id,
                idempotency_key=idempotency_key,
            )

    def adjust(
        self,
        user_id: UUID,
        amount: int,
        description: str,
        idempotency_key: str | None = None,
        session: Session | None = None,
    ) -> LedgerEntry:
        """Apply a signed correction. Negative amounts are clamped at zero balance."""
        with self._unit_of_work(session) as s:
            return self._record(
                s,
                user_id=user_id,
                delta=amount,
                tx_type=TransactionType.ADJUSTMENT,
                description=description,
                idempotency_key=idempotency_key,
                clamp_at_zero=True,
            )

    def open_purchase(
        self,
        user_id: UUID,
        credits: int,
        external_reference: str,
        description: str,
        session: Session | None = None,
    ) -> LedgerEntry:
        """Record a PENDING purchase awaiting payment confirmation.

        The balance is untouched; ``balance_after`` holds the current balance
        until ``complete_purchase`` settles the row.
        """
        if credits <= 0:
            raise ValueError("credits must be positive")
        key = f"purchase:{external_reference}"
        with self._unit_of_work(session) as s:
            existing = self._find_by_key(s, key)
            if existing is not None:
                return self._to_entry(existing, replayed=True)

            balance = self._read_balance(s, user_id)
            row = CreditTransactionModel(
                user_id=user_id,
                type=TransactionType.PURCHASE.value,
                status=TransactionStatus.PENDING.value,
                amount=credits,
                balance_after=balance,
                description=description,
                idempotency_key=key,
                external_reference=external_reference,
            )
            s.add(row)
            s.flush()
            logger.info(
                "purchase_opened",
                user_id=str(user_id),
                credits=credits,
                external_reference=external_reference,
            )
            return self._to_entry(row)

    def complete_purchase(
        self,
        external_reference: str,
        session: Session | None = None,
    ) -> LedgerEntry:
        """Settle a PENDING purchase. A second call returns the settled entry."""
        with self._unit_of_work(session) as s:
            row = s.execute(
                select(CreditTransactionModel)
                .where(
                    CreditTransactionModel.external_reference == external_reference,
                    CreditTransactionModel.type == TransactionType.PURCHASE.value,
                )
                .with_for_update()
            ).scalar_one_or_none()
            if row is None:
                raise TransactionNotFoundError(external_reference)
            if row.status == TransactionStatus.COMPLETED.value:
                return self._to_entry(row, replayed=True)

            _, balance_after = self._apply_delta(s, row.user_id, row.amount)
            row.status = TransactionStatus.COMPLETED.value
            row.balance_after = balance_after
            s.flush()
            self._verify(s, row.user_id, balance_after)

            logger.info(
                "purchase_completed",
                user_id=str(row.user_id),
                credits=row.amount,
                balance_after=balance_after,
                external_reference=external_reference,
            )
            return self._to_entry(row)

    # =============================================================================
    # Queries
    # =============================================================================

    def get_balance(self, user_id: UUID, session: Session | None = None) -> int:
        with self._unit_of_work(session) as s:
            return self._read_balance(s, user_id)

    def get_history(
        self,
        user_id: UUID,
        page: int = 1,
        limit: int = 20,
        session: Session | None = None,
    ) -> tuple[list[CreditTransactionModel], int]:
        """Return one page of ledger rows, newest first, plus the total count."""
        page = max(page, 1)
        with self._unit_of_work(session) as s:
            total = s.execute(
                select(func.count())
                .select_from(CreditTransactionModel)
                .where(CreditTransactionModel.user_id == user_id)
            ).scalar_one()
            rows = (
                s.execute(
                    select(CreditTransactionModel)
                    .where(CreditTransactionModel.user_id == user_id)
                    .order_by(
                        CreditTransactionModel.created_at.desc(), CreditTransactionModel.id.desc()
                    )
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
                .scalars()
                .all()
            )
            return list(rows), total

    def audit(self, user_id: UUID, session: Session | None = None) -> LedgerAudit:
        """Compare the stored balance with the sum of settled ledger amounts."""
        with self._unit_of_work(session) as s:
            balance = self._read_balance(s, user_id)
            total = s.execute(
                select(func.coalesce(func.sum(CreditTransactionModel.amount), 0)).where(
                    CreditTransactionModel.user_id == user_id,
                    CreditTransactionModel.status == TransactionStatus.COMPLETED.value,
                )
            ).scalar_one()
            return LedgerAudit(user_id=user_id, balance=balance, ledger_total=int(total))

    # =============================================================================
    # Internals
    # =============================================================================

    def _unit_of_work(self, session: Session | None) -> AbstractContextManager[Session]:
        return session_scope(session, self._session_factory)

    def _record(
        self,
        session: Session,
        *,
        user_id: UUID,
        delta: int,
        tx_type: TransactionType,
        description: str,
        video_id: UUID | None = None,
        idempotency_key: str | None = None,
        enforce_floor: bool = False,
        clamp_at_zero: bool = False,
    ) -> LedgerEntry:
        # The key is checked after the row lock so a concurrent writer with
        # the same key is observed once it commits.
        self._lock_user(session, user_id)
        if idempotency_key:
            existing = self._find_by_key(session, idempotency_key)
            if existing is not None:
                logger.info(
                    "ledger_write_replayed",
                    user_id=str(user_id),
                    idempotency_key=idempotency_key,
                    transaction_id=str(existing.id),
                )
                return self._to_entry(existing, replayed=True)

        balance_before, balance_after = self._apply_delta(
            session,
            user_id,
            delta,
            enforce_floor=enforce_floor,
            clamp_at_zero=clamp_at_zero,
        )
        row = CreditTransactionModel(
            user_id=user_id,
            type=tx_type.value,
            status=TransactionStatus.COMPLETED.value,
            amount=balance_after - balance_before,
            balance_after=balance_after,
            video_id=video_id,
            description=description,
            idempotency_key=idempotency_key,
        )
        session.add(row)
        session.flush()
        self._verify(session, user_id, balance_after)

        logger.info(
            "ledger_write",
            user_id=str(user_id),
            type=tx_type.value,
            amount=row.amount,
            balance_after=balance_after,
            video_id=str(video_id) if video_id else None,
        )
        return self._to_entry(row)

    def _apply_delta(
        self,
        session: Session,
        user_id: UUID,
        delta: int,
        enforce_floor: bool = False,
        clamp_at_zero: bool = False,
    ) -> tuple[int, int]:
        """Move the stored balance by ``delta`` with a compare-and-swap."""
        for attempt in range(1, self._max_cas_retries + 1):
            balance_before = self._lock_user(session, user_id)
            if enforce_floor and balance_before + delta < 0:
                raise InsufficientCreditsError(balance=balance_before, required=-delta)
            balance_after = balance_before + delta
            if clamp_at_zero and balance_after < 0:
                balance_after = 0

            result = session.execute(
                update(UserModel)
                .where(
                    UserModel.id == user_id,
                    UserModel.credit_balance == balance_before,
                )
                .values(credit_balance=balance_after, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return balance_before, balance_after

            logger.warning(
                "ledger_cas_conflict",
                user_id=str(user_id),
                expected_balance=balance_before,
                attempt=attempt,
            )

        raise ServiceUnavailableError("Credit balance is busy, please try again")

    def _verify(self, session: Session, user_id: UUID, expected: int) -> None:
        actual = self._read_balance(session, user_id)
        if actual != expected:
            logger.error(
                "ledger_invariant_violated",
                user_id=str(user_id),
                expected=expected,
                actual=actual,
            )
            raise LedgerInvariantError(user_id=user_id, expected=expected, actual=actual)

    def _lock_user(self, session: Session, user_id: UUID) -> int:
        balance = session.execute(
            select(UserModel.credit_balance).where(UserModel.id == user_id).with_for_update()
        ).scalar_one_or_none()
        if balance is None:
            raise UserNotFoundError(user_id)
        return balance

    def _read_balance(self, session: Session, user_id: UUID) -> int:
        balance = session.execute(
            select(UserModel.credit_balance).where(UserModel.id == user_id)
        ).scalar_one_or_none()
        if balance is None:
            raise UserNotFoundError(user_id)
        return balance

    def _find_by_key(self, session: Session, key: str) -> CreditTransactionModel | None:
        return session.execute(
            select(CreditTransactionModel).where(CreditTransactionModel.idempotency_key == key)
        ).scalar_one_or_none()

    def _to_entry(self, row: CreditTransactionModel, replayed: bool = False) -> LedgerEntry:
        return LedgerEntry(
            transaction_id=row.id,
            user_id=row.user_id,
            type=TransactionType(row.type),
            amount=row.amount,
            balance_after=row.balance_after,
            replayed=replayed,
        )
