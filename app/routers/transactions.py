from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from app.deps import get_current_user, require_admin, transactions_dep
from app.models.user import UserRecord
from app.services.ledger import TransactionLedger

router = APIRouter()


class TransactionRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["deposit", "withdrawal"]
    amount: Decimal


class BalanceAdjustment(BaseModel):
    user_id: str
    amount: Decimal


def _dump(entity) -> dict:
    return entity.model_dump(mode="json", by_alias=True)


@router.post("", status_code=201)
def transactions_submit(
    body: TransactionRequest,
    user: UserRecord = Depends(get_current_user),
    ledger: TransactionLedger = Depends(transactions_dep),
):
    """Request a deposit or withdrawal; it stays pending until an admin decides."""
    extra = body.model_extra or {}
    return _dump(ledger.submit(user.id, body.type, body.amount, **extra))


@router.get("/mine")
def transactions_mine(
    user: UserRecord = Depends(get_current_user),
    ledger: TransactionLedger = Depends(transactions_dep),
):
    return {
        "pending": [_dump(t) for t in ledger.pending_for_user(user.id)],
        "completed": [_dump(t) for t in ledger.list_completed() if t.user_id == user.id],
    }


@router.get("/pending")
def transactions_pending(
    _admin: UserRecord = Depends(require_admin),
    ledger: TransactionLedger = Depends(transactions_dep),
):
    return {"transactions": [_dump(t) for t in ledger.list_pending()]}


@router.get("/completed")
def transactions_completed(
    _admin: UserRecord = Depends(require_admin),
    ledger: TransactionLedger = Depends(transactions_dep),
):
    """Completed and rejected transactions, newest first."""
    return {"transactions": [_dump(t) for t in ledger.list_completed()]}


@router.post("/{transaction_id}/approve")
def transactions_approve(
    transaction_id: str,
    _admin: UserRecord = Depends(require_admin),
    ledger: TransactionLedger = Depends(transactions_dep),
):
    return _dump(ledger.approve(transaction_id))


@router.post("/{transaction_id}/reject")
def transactions_reject(
    transaction_id: str,
    _admin: UserRecord = Depends(require_admin),
    ledger: TransactionLedger = Depends(transactions_dep),
):
    return _dump(ledger.reject(transaction_id))


@router.post("/adjust")
def transactions_adjust(
    body: BalanceAdjustment,
    _admin: UserRecord = Depends(require_admin),
    ledger: TransactionLedger = Depends(transactions_dep),
):
    """Admin: apply a signed balance change directly."""
    return _dump(ledger.adjust_balance(body.user_id, body.amount))
