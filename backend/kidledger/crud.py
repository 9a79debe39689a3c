"""Asynchronous CRUD helpers for the ledger's data models.

Query helpers here never commit; the engines wrap their writes in
:func:`kidledger.database.atomic`. The few standalone create/save helpers
commit on their own like any simple record store call.

Lookups of rows an engine may change refresh them from the store
(``populate_existing``) instead of returning the copy already held by the
session, so code that waited on a child lock sees the committed state.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlmodel import select

from kidledger.exceptions import NotFound
from kidledger.models import (
    Child,
    Transaction,
    Goal,
    PurchaseRequest,
    AllowanceConfig,
    InterestConfig,
    Loan,
    LoanInstallment,
    Settings,
    LOAN_REQUEST_CATEGORY,
)


async def get_settings(db: AsyncSession) -> Settings:
    """Fetch the singleton settings record, creating it if necessary."""
    result = await db.execute(select(Settings).where(Settings.id == 1))
    settings = result.scalar_one_or_none()
    if not settings:
        settings = Settings()
        db.add(settings)
        await db.commit()
        await db.refresh(settings)
    return settings


async def save_settings(db: AsyncSession, settings: Settings) -> Settings:
    """Persist settings changes and return the refreshed object."""

    db.add(settings)
    await db.commit()
    await db.refresh(settings)
    return settings


async def create_child(db: AsyncSession, child: Child) -> Child:
    """Persist a new child record."""

    db.add(child)
    await db.commit()
    await db.refresh(child)
    return child


async def require_child(db: AsyncSession, child_id: int) -> Child:
    """Return the child as currently stored or raise :class:`NotFound`."""
    child = await db.get(Child, child_id, populate_existing=True)
    if child is None:
        raise NotFound("Child", child_id)
    return child


async def get_all_children(db: AsyncSession) -> list[Child]:
    result = await db.execute(select(Child).order_by(Child.id))
    return result.scalars().all()


async def get_transaction(db: AsyncSession, transaction_id: int) -> Transaction | None:
    """Return a transaction by id or ``None`` if missing."""
    result = await db.execute(
        select(Transaction)
        .where(Transaction.id == transaction_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_transactions_by_child(
    db: AsyncSession,
    child_id: int,
    kind: str | None = None,
    limit: int | None = None,
) -> list[Transaction]:
    """Return a child's transactions, newest first."""
    query = select(Transaction).where(Transaction.child_id == child_id)
    if kind:
        query = query.where(Transaction.kind == kind)
    query = query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
    if limit:
        query = query.limit(limit)
    result = await db.execute(query)
    return result.scalars().all()


async def create_goal(db: AsyncSession, goal: Goal) -> Goal:
    db.add(goal)
    await db.commit()
    await db.refresh(goal)
    return goal


async def get_goal(db: AsyncSession, goal_id: int) -> Goal | None:
    return await db.get(Goal, goal_id, populate_existing=True)


async def get_active_goals(db: AsyncSession, child_id: int) -> list[Goal]:
    result = await db.execute(
        select(Goal)
        .where(
            Goal.child_id == child_id,
            Goal.is_active == True,  # noqa: E712
            Goal.current_amount > Decimal("0"),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


async def get_purchase_request(
    db: AsyncSession, request_id: int
) -> PurchaseRequest | None:
    return await db.get(PurchaseRequest, request_id, populate_existing=True)


async def get_loan_requests(
    db: AsyncSession, child_id: int | None = None
) -> list[PurchaseRequest]:
    query = select(PurchaseRequest).where(
        PurchaseRequest.category == LOAN_REQUEST_CATEGORY
    )
    if child_id is not None:
        query = query.where(PurchaseRequest.child_id == child_id)
    result = await db.execute(query.order_by(PurchaseRequest.created_at.desc()))
    return result.scalars().all()


async def get_allowance_config(
    db: AsyncSession, child_id: int
) -> AllowanceConfig | None:
    result = await db.execute(
        select(AllowanceConfig)
        .where(AllowanceConfig.child_id == child_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_due_allowance_configs(
    db: AsyncSession, today: date
) -> list[AllowanceConfig]:
    """Active allowance configs whose next payment date has arrived."""
    result = await db.execute(
        select(AllowanceConfig)
        .where(
            AllowanceConfig.is_active == True,  # noqa: E712
            AllowanceConfig.next_payment_date <= today,
        )
        .order_by(AllowanceConfig.child_id)
    )
    return result.scalars().all()


async def get_interest_config(
    db: AsyncSession, child_id: int
) -> InterestConfig | None:
    result = await db.execute(
        select(InterestConfig)
        .where(InterestConfig.child_id == child_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_active_interest_configs(db: AsyncSession) -> list[InterestConfig]:
    result = await db.execute(
        select(InterestConfig)
        .where(InterestConfig.is_active == True)  # noqa: E712
        .order_by(InterestConfig.child_id)
    )
    return result.scalars().all()


async def get_loan(db: AsyncSession, loan_id: int) -> Loan | None:
    """Return a loan with its installments loaded."""
    result = await db.execute(
        select(Loan)
        .where(Loan.id == loan_id)
        .options(selectinload(Loan.installments))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_loans_by_child(db: AsyncSession, child_id: int) -> list[Loan]:
    result = await db.execute(
        select(Loan)
        .where(Loan.child_id == child_id)
        .options(selectinload(Loan.installments))
        .execution_options(populate_existing=True)
        .order_by(Loan.created_at.desc(), Loan.id.desc())
    )
    return result.scalars().all()


async def get_installment(
    db: AsyncSession, installment_id: int
) -> LoanInstallment | None:
    return await db.get(LoanInstallment, installment_id, populate_existing=True)
