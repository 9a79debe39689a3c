"""Endpoints for recording ledger transactions."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from kidledger.database import get_session
from kidledger.schemas import (
    TransactionCreate,
    TransactionRead,
    TransferCreate,
    TransferRead,
    SpendingRequestCreate,
    ApprovalDecision,
    GoalDeposit,
    GoalRead,
)
from kidledger import ledger
from kidledger.exceptions import ValidationError
from kidledger.models import TransactionKind

router = APIRouter(prefix="/transactions", tags=["transactions"])

# Kinds a parent may post directly; the rest come from the engines.
DIRECT_KINDS = {
    TransactionKind.EARNING.value,
    TransactionKind.SPENDING.value,
    TransactionKind.ALLOWANCE.value,
}


@router.post("/", response_model=TransactionRead)
async def add_transaction(
    data: TransactionCreate, db: AsyncSession = Depends(get_session)
):
    """Post an earning, spending or manual allowance."""
    if data.kind not in DIRECT_KINDS:
        raise ValidationError(
            f"Cannot post {data.kind!r} directly", details={"kind": data.kind}
        )
    return await ledger.post_transaction(
        db, data.child_id, data.kind, data.amount, data.description, data.category
    )


@router.post("/transfer", response_model=TransferRead)
async def transfer(data: TransferCreate, db: AsyncSession = Depends(get_session)):
    debit, credit = await ledger.transfer(
        db, data.from_child_id, data.to_child_id, data.amount, data.description
    )
    return TransferRead(
        debit=TransactionRead.model_validate(debit),
        credit=TransactionRead.model_validate(credit),
    )


@router.post("/spending-request", response_model=TransactionRead)
async def request_spending(
    data: SpendingRequestCreate, db: AsyncSession = Depends(get_session)
):
    return await ledger.request_spending(
        db, data.child_id, data.amount, data.description, data.category
    )


@router.post("/goal-deposit", response_model=GoalRead)
async def deposit_to_goal(data: GoalDeposit, db: AsyncSession = Depends(get_session)):
    return await ledger.deposit_to_goal(db, data.child_id, data.goal_id, data.amount)


@router.post("/{transaction_id}/approve", response_model=TransactionRead)
async def approve(
    transaction_id: int,
    decision: ApprovalDecision,
    db: AsyncSession = Depends(get_session),
):
    """Approve or reject a pending spending request."""
    return await ledger.approve_transaction(
        db, transaction_id, decision.approved, decision.parent_note
    )


@router.post("/{transaction_id}/cancel", response_model=TransactionRead)
async def cancel(transaction_id: int, db: AsyncSession = Depends(get_session)):
    return await ledger.cancel_transaction(db, transaction_id)
