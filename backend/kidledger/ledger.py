"""Transaction ledger and the balance derivation rule.

Every change to a child's ``balance``, ``total_earned`` or ``total_spent``
goes through this module. A ledger row and its balance effect are always
written in the same unit of work.

Functions prefixed with ``stage_`` add rows to the session without locking
or committing; the engines compose them inside their own
:func:`~kidledger.database.atomic` block while holding :func:`child_lock`.
"""

import asyncio
import calendar
import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import func, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from kidledger.crud import (
    require_child,
    get_goal,
    get_transaction,
    get_transactions_by_child,
)
from kidledger.database import atomic, get_local_cache, store_call
from kidledger.exceptions import (
    InsufficientBalance,
    InvalidState,
    NotFound,
    StorageUnavailable,
    ValidationError,
)
from kidledger.models import (
    Child,
    Direction,
    Goal,
    Transaction,
    TransactionKind,
    TransactionStatus,
    utcnow,
)
from kidledger.money import ZERO, AmountLike, require_positive, round2

logger = logging.getLogger(__name__)

CREDIT_KINDS = {
    TransactionKind.EARNING.value,
    TransactionKind.ALLOWANCE.value,
    TransactionKind.INTEREST.value,
    TransactionKind.GOAL_INTEREST.value,
}
DEBIT_KINDS = {TransactionKind.SPENDING.value, TransactionKind.GOAL_DEPOSIT.value}
EARNED_KINDS = CREDIT_KINDS
SPENT_KINDS = {TransactionKind.SPENDING.value}

_locks: Dict[int, tuple] = {}


def child_lock(child_id: int) -> asyncio.Lock:
    """Return the lock serializing ledger writes for one child.

    Locks are tied to the running event loop, so a new loop gets new locks.
    """

    loop = asyncio.get_running_loop()
    entry = _locks.get(child_id)
    if entry is None or entry[0] is not loop:
        entry = (loop, asyncio.Lock())
        _locks[child_id] = entry
    return entry[1]


def coerce_kind(kind: Any) -> TransactionKind:
    try:
        return TransactionKind(kind)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown transaction kind: {kind!r}", details={"kind": kind}
        ) from exc


def direction_for(kind: TransactionKind) -> Direction:
    if kind.value in CREDIT_KINDS:
        return Direction.CREDIT
    if kind.value in DEBIT_KINDS:
        return Direction.DEBIT
    raise ValidationError(
        "Transfers are posted with transfer()", details={"kind": kind.value}
    )


def apply_to_child(child: Child, tx: Transaction) -> None:
    """Apply a completed row's effect to the child's balance fields."""

    signed = tx.signed_amount
    new_balance = child.balance + signed
    if new_balance < ZERO:
        raise InsufficientBalance(child.id, child.balance, tx.amount)
    child.balance = round2(new_balance)
    if tx.direction == Direction.CREDIT and tx.kind in EARNED_KINDS:
        child.total_earned = round2(child.total_earned + tx.amount)
    elif tx.kind in SPENT_KINDS:
        child.total_spent = round2(child.total_spent + tx.amount)


def stage_transaction(
    db: AsyncSession,
    child: Child,
    kind: TransactionKind,
    amount: Decimal,
    description: str = "",
    category: Optional[str] = None,
    direction: Optional[Direction] = None,
    **extra: Any,
) -> Transaction:
    """Add a completed row and its balance effect to the session."""

    tx = Transaction(
        child_id=child.id,
        kind=kind.value,
        direction=(direction or direction_for(kind)).value,
        amount=amount,
        description=description,
        category=category,
        status=TransactionStatus.COMPLETED.value,
        **extra,
    )
    apply_to_child(child, tx)
    db.add(tx)
    db.add(child)
    return tx


async def post_transaction(
    db: AsyncSession,
    child_id: int,
    kind: Any,
    amount: AmountLike,
    description: str = "",
    category: Optional[str] = None,
    **extra: Any,
) -> Transaction:
    """Append a completed transaction and update the child's balance.

    Credits (earning, allowance, interest, goal_interest) raise the
    balance and debits (spending, goal_deposit) lower it. A debit larger
    than the balance raises :class:`InsufficientBalance` and nothing is
    written.
    """

    kind = coerce_kind(kind)
    direction_for(kind)
    value = require_positive(amount)
    async with child_lock(child_id):
        async with atomic(db):
            child = await require_child(db, child_id)
            tx = stage_transaction(
                db, child, kind, value, description, category, **extra
            )
    logger.info(
        "Posted %s %s for child %s (balance %s)",
        kind.value,
        value,
        child_id,
        child.balance,
    )
    return tx


async def transfer(
    db: AsyncSession,
    from_child_id: int,
    to_child_id: int,
    amount: AmountLike,
    description: str = "",
) -> tuple[Transaction, Transaction]:
    """Move money between two children as a debit and a matching credit."""

    if from_child_id == to_child_id:
        raise ValidationError("Cannot transfer to the same child")
    value = require_positive(amount)
    first, second = sorted((from_child_id, to_child_id))
    async with child_lock(first), child_lock(second):
        async with atomic(db):
            sender = await require_child(db, from_child_id)
            receiver = await require_child(db, to_child_id)
            text = description or f"Transfer to {receiver.name}"
            debit = stage_transaction(
                db,
                sender,
                TransactionKind.TRANSFER,
                value,
                text,
                "transfer",
                direction=Direction.DEBIT,
                counterparty_child_id=receiver.id,
            )
            credit = stage_transaction(
                db,
                receiver,
                TransactionKind.TRANSFER,
                value,
                description or f"Transfer from {sender.name}",
                "transfer",
                direction=Direction.CREDIT,
                counterparty_child_id=sender.id,
            )
    logger.info("Transferred %s from child %s to child %s", value, first, second)
    return debit, credit


async def request_spending(
    db: AsyncSession,
    child_id: int,
    amount: AmountLike,
    description: str,
    category: Optional[str] = None,
) -> Transaction:
    """Record a spending request that waits for a parent's decision."""

    value = require_positive(amount)
    async with atomic(db):
        await require_child(db, child_id)
        tx = Transaction(
            child_id=child_id,
            kind=TransactionKind.SPENDING.value,
            direction=Direction.DEBIT.value,
            amount=value,
            description=description,
            category=category,
            status=TransactionStatus.PENDING.value,
            requires_approval=True,
        )
        db.add(tx)
    return tx


async def _require_pending(db: AsyncSession, transaction_id: int) -> Transaction:
    tx = await get_transaction(db, transaction_id)
    if tx is None:
        raise NotFound("Transaction", transaction_id)
    if tx.status != TransactionStatus.PENDING:
        raise InvalidState(
            f"Transaction {transaction_id} is {tx.status}",
            details={"status": tx.status},
        )
    return tx


async def approve_transaction(
    db: AsyncSession,
    transaction_id: int,
    approved: bool,
    parent_note: Optional[str] = None,
) -> Transaction:
    """Complete or reject a pending transaction.

    Approval applies the balance effect at that moment and can fail with
    :class:`InsufficientBalance`, leaving the row pending.
    """

    async with store_call(db):
        child_id = (await _require_pending(db, transaction_id)).child_id
    async with child_lock(child_id):
        async with atomic(db):
            tx = await _require_pending(db, transaction_id)
            if approved:
                child = await require_child(db, child_id)
                apply_to_child(child, tx)
                tx.status = TransactionStatus.COMPLETED.value
                db.add(child)
            else:
                tx.status = TransactionStatus.REJECTED.value
            tx.approved_by_parent = approved
            tx.parent_note = parent_note
            tx.approved_at = utcnow()
            db.add(tx)
    logger.info("Transaction %s %s", transaction_id, tx.status)
    return tx


async def cancel_transaction(db: AsyncSession, transaction_id: int) -> Transaction:
    async with store_call(db):
        child_id = (await _require_pending(db, transaction_id)).child_id
    async with child_lock(child_id):
        async with atomic(db):
            tx = await _require_pending(db, transaction_id)
            tx.status = TransactionStatus.CANCELLED.value
            db.add(tx)
    return tx


async def deposit_to_goal(
    db: AsyncSession, child_id: int, goal_id: int, amount: AmountLike
) -> Goal:
    """Move money from the child's balance into one of their goals."""

    value = require_positive(amount)
    async with child_lock(child_id):
        async with atomic(db):
            child = await require_child(db, child_id)
            goal = await get_goal(db, goal_id)
            if goal is None or goal.child_id != child_id:
                raise NotFound("Goal", goal_id)
            if not goal.is_active:
                raise InvalidState(f"Goal {goal_id} is not active")
            stage_transaction(
                db,
                child,
                TransactionKind.GOAL_DEPOSIT,
                value,
                f"Deposit to goal: {goal.title}",
                "goal",
                related_goal_id=goal.id,
            )
            goal.current_amount = round2(goal.current_amount + value)
            if goal.current_amount >= goal.target_amount > ZERO:
                goal.is_completed = True
            db.add(goal)
    logger.info("Child %s moved %s into goal %s", child_id, value, goal_id)
    return goal


async def get_transactions(
    db: AsyncSession, child_id: int, kind: Any = None, limit: int = 50
) -> list[Transaction]:
    if kind is not None:
        kind = coerce_kind(kind).value
    async with store_call(db):
        return await get_transactions_by_child(db, child_id, kind=kind, limit=limit)


def _signed_sum():
    return func.coalesce(
        func.sum(
            case(
                (Transaction.direction == Direction.CREDIT.value, Transaction.amount),
                (Transaction.direction == Direction.DEBIT.value, -Transaction.amount),
                else_=0,
            )
        ),
        0,
    )


async def calculate_balance(db: AsyncSession, child_id: int) -> Decimal:
    """Derive the balance from the child's completed ledger rows."""

    async with store_call(db):
        result = await db.execute(
            select(_signed_sum()).where(
                Transaction.child_id == child_id,
                Transaction.status == TransactionStatus.COMPLETED.value,
            )
        )
    return round2(Decimal(str(result.scalar_one())))


async def verify_balance(db: AsyncSession, child_id: int) -> Dict[str, Any]:
    """Compare the stored balance with the one derived from the ledger."""

    async with store_call(db):
        child = await require_child(db, child_id)
    derived = await calculate_balance(db, child_id)
    stored = round2(child.balance)
    if stored != derived:
        logger.warning(
            "Balance mismatch for child %s: stored %s, ledger %s",
            child_id,
            stored,
            derived,
        )
    return {
        "child_id": child_id,
        "stored": stored,
        "derived": derived,
        "matches": stored == derived,
    }


async def get_monthly_summary(
    db: AsyncSession, child_id: int, year: int, month: int
) -> Dict[str, Any]:
    """Earnings, spending and net savings for one calendar month."""

    if month < 1 or month > 12:
        raise ValidationError("month must be between 1 and 12")
    start = datetime.combine(date(year, month, 1), time.min)
    last = calendar.monthrange(year, month)[1]
    end = datetime.combine(date(year, month, last), time.min) + timedelta(days=1)
    async with store_call(db):
        result = await db.execute(
            select(Transaction).where(
                Transaction.child_id == child_id,
                Transaction.status == TransactionStatus.COMPLETED.value,
                Transaction.created_at >= start,
                Transaction.created_at < end,
            )
        )
        rows = result.scalars().all()
    earnings = ZERO
    spending = ZERO
    for tx in rows:
        if tx.kind in EARNED_KINDS:
            earnings += tx.amount
        elif tx.kind in SPENT_KINDS:
            spending += tx.amount
    return {
        "year": year,
        "month": month,
        "total_earnings": round2(earnings),
        "total_spending": round2(spending),
        "net_savings": round2(earnings - spending),
        "transaction_count": len(rows),
    }


async def load_child_snapshot(db: AsyncSession, child_id: int) -> Dict[str, Any]:
    """Read a child and recent rows, falling back to the local cache.

    The result carries ``degraded=True`` when it came from the cache.
    """

    try:
        child = await db.get(Child, child_id)
        if child is None:
            raise NotFound("Child", child_id)
        rows = await get_transactions_by_child(db, child_id, limit=50)
    except SQLAlchemyError as exc:
        cache = get_local_cache(db)
        snapshot = cache.get_child(child_id) if cache else None
        if snapshot is None:
            raise StorageUnavailable(
                "Record store unavailable and no cached copy",
                details={"child_id": child_id},
            ) from exc
        logger.warning("Serving child %s from the local cache", child_id)
        transactions = sorted(
            cache.get_transactions(child_id),
            key=lambda row: (row["created_at"], row["id"]),
            reverse=True,
        )
        return {"child": snapshot, "transactions": transactions, "degraded": True}
    return {
        "child": child.model_dump(),
        "transactions": [tx.model_dump() for tx in rows],
        "degraded": False,
    }
