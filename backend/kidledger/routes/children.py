"""Routes for child accounts, their ledger and savings goals."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from kidledger.schemas import (
    ChildCreate,
    ChildRead,
    ChildSnapshot,
    MonthlySummary,
    BalanceCheck,
    GoalCreate,
    GoalRead,
    LedgerResponse,
)
from kidledger.models import Child, Goal
from kidledger.database import get_session
from kidledger.crud import create_child, create_goal, get_all_children, require_child
from kidledger import ledger

router = APIRouter(prefix="/children", tags=["children"])


@router.post("/", response_model=ChildRead)
async def add_child(data: ChildCreate, db: AsyncSession = Depends(get_session)):
    """Create a child account with a zero balance."""
    return await create_child(db, Child(name=data.name))


@router.get("/", response_model=list[ChildRead])
async def list_children(db: AsyncSession = Depends(get_session)):
    return await get_all_children(db)


@router.get("/{child_id}", response_model=ChildRead)
async def read_child(child_id: int, db: AsyncSession = Depends(get_session)):
    return await require_child(db, child_id)


@router.get("/{child_id}/snapshot", response_model=ChildSnapshot)
async def read_snapshot(child_id: int, db: AsyncSession = Depends(get_session)):
    """Child and recent rows, served from the local cache if the store is down."""
    return await ledger.load_child_snapshot(db, child_id)


@router.get("/{child_id}/ledger", response_model=LedgerResponse)
async def read_ledger(
    child_id: int,
    kind: Optional[str] = None,
    limit: int = 50,
    db: AsyncSession = Depends(get_session),
):
    child = await require_child(db, child_id)
    transactions = await ledger.get_transactions(db, child_id, kind=kind, limit=limit)
    return LedgerResponse(balance=child.balance, transactions=transactions)


@router.get("/{child_id}/summary", response_model=MonthlySummary)
async def read_summary(
    child_id: int,
    year: Optional[int] = None,
    month: Optional[int] = None,
    db: AsyncSession = Depends(get_session),
):
    """Monthly totals; defaults to the current month."""
    today = date.today()
    await require_child(db, child_id)
    return await ledger.get_monthly_summary(
        db, child_id, year or today.year, month or today.month
    )


@router.get("/{child_id}/balance-check", response_model=BalanceCheck)
async def check_balance(child_id: int, db: AsyncSession = Depends(get_session)):
    return await ledger.verify_balance(db, child_id)


@router.post("/{child_id}/goals", response_model=GoalRead)
async def add_goal(
    child_id: int, data: GoalCreate, db: AsyncSession = Depends(get_session)
):
    await require_child(db, child_id)
    goal = Goal(child_id=child_id, title=data.title, target_amount=data.target_amount)
    return await create_goal(db, goal)
