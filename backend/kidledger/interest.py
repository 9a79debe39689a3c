"""Interest accrual on saved balances and savings goals.

Interest is paid on the *eligible* balance: money that has been in the
account for at least 30 days. Every credit of kind earning, allowance,
transfer or interest received since midnight of ``today - 30 days`` is
subtracted from the balance before the monthly rate is applied.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from kidledger.crud import (
    get_active_goals,
    get_active_interest_configs,
    get_interest_config,
    get_settings,
    require_child,
)
from kidledger.database import atomic, store_call
from kidledger.exceptions import LedgerError, NotFound, ValidationError
from kidledger.ledger import child_lock, stage_transaction
from kidledger.models import (
    CompoundFrequency,
    Direction,
    InterestConfig,
    Transaction,
    TransactionKind,
    TransactionStatus,
    utcnow,
)
from kidledger.money import ZERO, CENT, AmountLike, apply_rate, round2, to_decimal

logger = logging.getLogger(__name__)

LOOKBACK_DAYS = 30
MAX_MONTHLY_RATE = Decimal("100")
RECENT_INFLOW_KINDS = (
    TransactionKind.EARNING.value,
    TransactionKind.ALLOWANCE.value,
    TransactionKind.TRANSFER.value,
    TransactionKind.INTEREST.value,
)


@dataclass
class AccrualResult:
    child_id: int
    interest: Optional[Transaction] = None
    goal_interest: List[Transaction] = field(default_factory=list)
    eligible_balance: Decimal = ZERO
    skipped_reason: Optional[str] = None

    @property
    def posted(self) -> bool:
        return self.interest is not None or bool(self.goal_interest)


def validate_rate(rate: AmountLike) -> Decimal:
    """Return a monthly percentage rate, rejecting values outside 0..100."""

    try:
        value = Decimal(str(rate))
    except ArithmeticError as exc:
        raise ValidationError(f"Invalid rate: {rate!r}") from exc
    if not value.is_finite() or value < 0 or value > MAX_MONTHLY_RATE:
        raise ValidationError(
            "monthly_rate must be between 0 and 100", details={"monthly_rate": str(rate)}
        )
    if value == 0:
        logger.info("A monthly rate of 0 pays no interest")
    return value


def validate_minimum_balance(amount: AmountLike) -> Decimal:
    value = to_decimal(amount)
    if value < ZERO:
        raise ValidationError(
            "minimum_balance cannot be negative",
            details={"minimum_balance": str(amount)},
        )
    return value


def validate_compound_frequency(frequency: str) -> str:
    try:
        return CompoundFrequency(frequency).value
    except ValueError as exc:
        raise ValidationError(
            f"Unknown compound frequency: {frequency!r}",
            details={"compound_frequency": frequency},
        ) from exc


def calculate_preview(balance: AmountLike, monthly_rate: AmountLike) -> Dict[str, Decimal]:
    """Expected yield of ``balance`` at a monthly rate, over several periods."""

    amount = to_decimal(balance)
    rate = validate_rate(monthly_rate)
    monthly = amount * rate / Decimal(100)
    yearly = monthly * 12
    return {
        "daily": round2(yearly / 365),
        "weekly": round2(yearly / 52),
        "monthly": round2(monthly),
        "yearly": round2(yearly),
    }


async def get_config(db: AsyncSession, child_id: int) -> InterestConfig:
    async with store_call(db):
        config = await get_interest_config(db, child_id)
    if config is None:
        raise NotFound("Interest config for child", child_id)
    return config


async def upsert_config(
    db: AsyncSession,
    child_id: int,
    monthly_rate: Optional[AmountLike] = None,
    compound_frequency: Optional[str] = None,
    minimum_balance: Optional[AmountLike] = None,
    is_active: Optional[bool] = None,
) -> InterestConfig:
    """Create the child's interest config or update the given fields.

    New configs take any missing value from the family settings.
    """

    rate = validate_rate(monthly_rate) if monthly_rate is not None else None
    minimum = (
        validate_minimum_balance(minimum_balance)
        if minimum_balance is not None
        else None
    )
    frequency = (
        validate_compound_frequency(compound_frequency)
        if compound_frequency is not None
        else None
    )
    async with store_call(db):
        await require_child(db, child_id)
        config = await get_interest_config(db, child_id)
        settings = await get_settings(db) if config is None else None
    if config is None:
        config = InterestConfig(
            child_id=child_id,
            monthly_rate=rate if rate is not None else settings.default_monthly_rate,
            compound_frequency=frequency or settings.default_compound_frequency,
            minimum_balance=(
                minimum if minimum is not None else settings.default_minimum_balance
            ),
            is_active=True if is_active is None else is_active,
        )
        logger.info("Creating interest config for child %s", child_id)
    else:
        if rate is not None:
            config.monthly_rate = rate
        if frequency is not None:
            config.compound_frequency = frequency
        if minimum is not None:
            config.minimum_balance = minimum
        if is_active is not None:
            config.is_active = is_active
        logger.info("Updating interest config for child %s", child_id)
    async with atomic(db):
        db.add(config)
    return config


async def _set_active(db: AsyncSession, child_id: int, active: bool) -> InterestConfig:
    config = await get_config(db, child_id)
    config.is_active = active
    async with atomic(db):
        db.add(config)
    logger.info(
        "Interest %s for child %s", "activated" if active else "deactivated", child_id
    )
    return config


async def activate_config(db: AsyncSession, child_id: int) -> InterestConfig:
    return await _set_active(db, child_id, True)


async def deactivate_config(db: AsyncSession, child_id: int) -> InterestConfig:
    return await _set_active(db, child_id, False)


def lookback_cutoff(today: date) -> datetime:
    """Start of the window whose inflows are not yet eligible."""
    return datetime.combine(today - timedelta(days=LOOKBACK_DAYS), time.min)


async def recent_inflows(db: AsyncSession, child_id: int, today: date) -> Decimal:
    result = await db.execute(
        select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.child_id == child_id,
            Transaction.status == TransactionStatus.COMPLETED.value,
            Transaction.direction == Direction.CREDIT.value,
            Transaction.kind.in_(RECENT_INFLOW_KINDS),
            Transaction.created_at >= lookback_cutoff(today),
        )
    )
    return round2(Decimal(str(result.scalar_one())))


def _already_accrued(config: InterestConfig, today: date) -> bool:
    last = config.last_interest_date
    return last is not None and (last.year, last.month) == (today.year, today.month)


async def _stage_goal_interest(
    db: AsyncSession, child, config: InterestConfig, today: date
) -> List[Transaction]:
    posted = []
    oldest = today - timedelta(days=LOOKBACK_DAYS)
    for goal in await get_active_goals(db, child.id):
        if goal.created_at.date() > oldest:
            continue
        amount = apply_rate(goal.current_amount, config.monthly_rate)
        if amount < CENT:
            continue
        goal.current_amount = round2(goal.current_amount + amount)
        db.add(goal)
        posted.append(
            stage_transaction(
                db,
                child,
                TransactionKind.GOAL_INTEREST,
                amount,
                f"Goal interest: {goal.title} ({config.monthly_rate:.1f}%)",
                "interest",
                related_goal_id=goal.id,
            )
        )
    return posted


async def accrue_interest(
    db: AsyncSession, child_id: int, today: Optional[date] = None
) -> AccrualResult:
    """Run one accrual cycle for a child.

    Nothing happens without an active config, or when interest was already
    applied during ``today``'s calendar month. The main interest and any
    goal interest are written in one unit of work.
    """

    today = today or date.today()
    result = AccrualResult(child_id=child_id)
    async with child_lock(child_id):
        async with atomic(db):
            config = await get_interest_config(db, child_id)
            if config is None or not config.is_active:
                result.skipped_reason = "no active interest config"
                logger.debug("Child %s has no active interest config", child_id)
                return result
            if _already_accrued(config, today):
                result.skipped_reason = "already applied this month"
                logger.debug("Interest already applied this month for child %s", child_id)
                return result

            child = await require_child(db, child_id)
            inflows = await recent_inflows(db, child_id, today)
            eligible = max(ZERO, round2(child.balance - inflows))
            result.eligible_balance = eligible

            if eligible < config.minimum_balance:
                result.skipped_reason = "eligible balance below minimum"
                logger.debug(
                    "Eligible balance %s below minimum %s for child %s",
                    eligible,
                    config.minimum_balance,
                    child_id,
                )
            else:
                amount = apply_rate(eligible, config.monthly_rate)
                if amount < CENT:
                    result.skipped_reason = "interest too small"
                else:
                    result.interest = stage_transaction(
                        db,
                        child,
                        TransactionKind.INTEREST,
                        amount,
                        f"Monthly interest ({config.monthly_rate:.1f}% on {eligible:.2f})",
                        "interest",
                    )

            result.goal_interest = await _stage_goal_interest(db, child, config, today)
            if result.posted:
                config.last_interest_date = today
                db.add(config)
    if result.interest is not None:
        logger.info(
            "Interest %s posted for child %s on eligible balance %s",
            result.interest.amount,
            child_id,
            result.eligible_balance,
        )
    return result


async def accrue_all(db: AsyncSession, today: Optional[date] = None) -> Dict[str, Any]:
    """Accrue interest for every child with an active config.

    One child's failure is reported and the batch moves on.
    """

    today = today or date.today()
    async with store_call(db):
        configs = await get_active_interest_configs(db)
    child_ids = [config.child_id for config in configs]
    results = []
    total = ZERO
    for child_id in child_ids:
        try:
            outcome = await accrue_interest(db, child_id, today)
        except LedgerError as exc:
            logger.warning("Interest failed for child %s: %s", child_id, exc.message)
            results.append(
                {"child_id": child_id, "status": "error", "error": exc.message}
            )
            continue
        if outcome.posted:
            amount = outcome.interest.amount if outcome.interest else ZERO
            total += amount
            results.append(
                {
                    "child_id": child_id,
                    "status": "success",
                    "interest_amount": amount,
                    "goal_interest_amount": round2(
                        sum((tx.amount for tx in outcome.goal_interest), ZERO)
                    ),
                }
            )
        else:
            results.append(
                {
                    "child_id": child_id,
                    "status": "skipped",
                    "reason": outcome.skipped_reason,
                }
            )
    logger.info(
        "Interest run for %s: %s children, %s applied", today, len(child_ids), total
    )
    return {
        "timestamp": utcnow().isoformat(),
        "total_children": len(child_ids),
        "total_interest_applied": round2(total),
        "results": results,
    }
