"""Credit balance and history endpoints."""

import math
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict

from ugc_engine.api.deps import CurrentUserId, LedgerDep
from ugc_engine.domain.enums import TransactionStatus, TransactionType

router = APIRouter(prefix="/credits", tags=["Credits"])


class BalanceResponse(BaseModel):
    """Current credit balance."""

    balance: int


class TransactionResponse(BaseModel):
    """One ledger row."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: TransactionType
    status: TransactionStatus
    amount: int
    balance_after: int
    video_id: UUID | None
    description: str | None
    created_at: datetime


class HistoryResponse(BaseModel):
    """One page of ledger history."""

    transactions: list[TransactionResponse]
    page: int
    limit: int
    total: int
    total_pages: int


@router.get("/balance", response_model=BalanceResponse, summary="Get balance")
def get_balance(user_id: CurrentUserId, ledger: LedgerDep) -> BalanceResponse:
    """Get the caller's credit balance."""
    return BalanceResponse(balance=ledger.get_balance(user_id))


@router.get("/history", response_model=HistoryResponse, summary="Get history")
def get_history(
    user_id: CurrentUserId,
    ledger: LedgerDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> HistoryResponse:
    """Get the caller's ledger history, newest first."""
    rows, total = ledger.get_history(user_id, page=page, limit=limit)
    return HistoryResponse(
        transactions=[TransactionResponse.model_validate(row) for row in rows],
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit) if total else 0,
    )
