"""Recurring allowance configuration and payment.

Each child has at most one :class:`AllowanceConfig`. The next payment date
is computed by :mod:`kidledger.schedule` whenever the cadence changes and
again after every payment, always counting from the day of processing.
Missed periods are not paid retroactively.
"""

import logging
from datetime import date
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from kidledger.crud import (
    get_allowance_config,
    get_due_allowance_configs,
    get_settings,
    require_child,
)
from kidledger.database import atomic, store_call
from kidledger.exceptions import LedgerError, NotFound, ValidationError
from kidledger.ledger import child_lock, stage_transaction
from kidledger.models import AllowanceConfig, Frequency, TransactionKind, utcnow
from kidledger.money import ZERO, AmountLike, round2, to_decimal
from kidledger.schedule import (
    FREQUENCIES,
    clamp_day_of_month,
    next_payment_date,
)

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)
CADENCE_FIELDS = ("frequency", "day_of_week", "day_of_month")


def get_frequency_description(config: AllowanceConfig) -> str:
    """Human readable cadence, e.g. ``Every Monday``."""

    if config.frequency == Frequency.DAILY:
        return "Every day"
    if config.frequency == Frequency.WEEKLY:
        return f"Every {WEEKDAY_NAMES[config.day_of_week or 0]}"
    if config.frequency == Frequency.BIWEEKLY:
        return "Twice a month (1st and 15th)"
    if config.frequency == Frequency.MONTHLY:
        return f"Every month on day {config.day_of_month or 1}"
    return "Not configured"


def validate_config(
    amount: Optional[AmountLike] = None,
    frequency: Optional[str] = None,
    day_of_week: Optional[int] = None,
    day_of_month: Optional[int] = None,
) -> Dict[str, Any]:
    """Check allowance fields and return the normalized values.

    All problems are collected and raised together as one
    :class:`ValidationError`. A ``day_of_month`` of 29 to 31 is clamped to
    28 so every month has a payment day.
    """

    errors = []
    values: Dict[str, Any] = {}
    if amount is not None:
        try:
            values["amount"] = to_decimal(amount)
        except ValidationError as exc:
            errors.append(exc.message)
        else:
            if values["amount"] < ZERO:
                errors.append("amount cannot be negative")
    if frequency is not None:
        if frequency not in FREQUENCIES:
            errors.append(f"invalid frequency {frequency!r}")
        else:
            values["frequency"] = Frequency(frequency).value
    if day_of_week is not None:
        if not 0 <= day_of_week <= 6:
            errors.append("day_of_week must be between 0 and 6")
        else:
            values["day_of_week"] = day_of_week
    if day_of_month is not None:
        try:
            values["day_of_month"] = clamp_day_of_month(day_of_month)
        except ValidationError as exc:
            errors.append(exc.message)
    if errors:
        raise ValidationError("Invalid allowance config", details={"errors": errors})
    return values


async def get_config(db: AsyncSession, child_id: int) -> AllowanceConfig:
    async with store_call(db):
        config = await get_allowance_config(db, child_id)
    if config is None:
        raise NotFound("Allowance config for child", child_id)
    return config


async def upsert_config(
    db: AsyncSession,
    child_id: int,
    amount: Optional[AmountLike] = None,
    frequency: Optional[str] = None,
    day_of_week: Optional[int] = None,
    day_of_month: Optional[int] = None,
    is_active: Optional[bool] = None,
    today: Optional[date] = None,
) -> AllowanceConfig:
    """Create or update a child's allowance.

    The next payment date is recalculated on create and whenever the
    frequency or anchor day changes.
    """

    today = today or date.today()
    values = validate_config(amount, frequency, day_of_week, day_of_month)
    async with store_call(db):
        await require_child(db, child_id)
        config = await get_allowance_config(db, child_id)
        settings = await get_settings(db) if config is None else None
    if config is None:
        config = AllowanceConfig(
            child_id=child_id,
            amount=values.get("amount", ZERO),
            frequency=values.get("frequency", settings.default_allowance_frequency),
            day_of_week=values.get("day_of_week", 0),
            day_of_month=values.get("day_of_month", 1),
            is_active=True if is_active is None else is_active,
            next_payment_date=today,
        )
        cadence_changed = True
        logger.info("Creating allowance config for child %s", child_id)
    else:
        cadence_changed = any(
            field in values and values[field] != getattr(config, field)
            for field in CADENCE_FIELDS
        )
        for field, value in values.items():
            setattr(config, field, value)
        if is_active is not None:
            config.is_active = is_active
        config.updated_at = utcnow()
        logger.info("Updating allowance config for child %s", child_id)
    if cadence_changed:
        config.next_payment_date = next_payment_date(
            today, config.frequency, config.day_of_week, config.day_of_month
        )
    async with atomic(db):
        db.add(config)
    return config


async def _set_active(db: AsyncSession, child_id: int, active: bool) -> AllowanceConfig:
    config = await get_config(db, child_id)
    config.is_active = active
    config.updated_at = utcnow()
    async with atomic(db):
        db.add(config)
    logger.info(
        "Allowance %s for child %s", "activated" if active else "deactivated", child_id
    )
    return config


async def activate_config(db: AsyncSession, child_id: int) -> AllowanceConfig:
    return await _set_active(db, child_id, True)


async def deactivate_config(db: AsyncSession, child_id: int) -> AllowanceConfig:
    return await _set_active(db, child_id, False)


async def _pay(
    db: AsyncSession, config_id: int, child_id: int, today: date
) -> Dict[str, Any]:
    entry = {"config_id": config_id, "child_id": child_id}
    async with child_lock(child_id):
        async with atomic(db):
            config = await db.get(AllowanceConfig, config_id, populate_existing=True)
            if config is None:
                raise NotFound("Allowance config", config_id)
            if not config.is_active or config.next_payment_date > today:
                entry.update(status="skipped", reason="not due")
                return entry
            child = await require_child(db, config.child_id)
            amount = round2(config.amount)
            if amount > ZERO:
                stage_transaction(
                    db,
                    child,
                    TransactionKind.ALLOWANCE,
                    amount,
                    f"Automatic allowance ({get_frequency_description(config)})",
                    "allowance",
                )
            config.next_payment_date = next_payment_date(
                today, config.frequency, config.day_of_week, config.day_of_month
            )
            config.updated_at = utcnow()
            db.add(config)
    entry.update(
        child_name=child.name,
        amount=amount,
        next_payment_date=config.next_payment_date,
    )
    if amount > ZERO:
        entry["status"] = "success"
        entry["new_balance"] = child.balance
        logger.info("Paid allowance %s to child %s", amount, config.child_id)
    else:
        entry.update(status="skipped", reason="zero amount")
    return entry


async def process_due(
    db: AsyncSession, configs: Iterable[AllowanceConfig], today: Optional[date] = None
) -> Dict[str, Any]:
    """Pay every due allowance in ``configs``.

    Each config is paid in its own unit of work. A failure is reported in
    the results and the remaining configs are still processed.
    """

    today = today or date.today()
    # A rollback expires loaded objects, so keep plain ids.
    config_ids = [(config.id, config.child_id) for config in configs]
    results = []
    total = ZERO
    for config_id, child_id in config_ids:
        try:
            entry = await _pay(db, config_id, child_id, today)
        except LedgerError as exc:
            logger.warning(
                "Allowance failed for child %s: %s", child_id, exc.message
            )
            entry = {
                "config_id": config_id,
                "child_id": child_id,
                "status": "error",
                "error": exc.message,
            }
        if entry["status"] == "success":
            total += entry["amount"]
        results.append(entry)
    logger.info("Allowance run for %s: %s configs, %s paid", today, len(results), total)
    return {
        "timestamp": utcnow().isoformat(),
        "payment_date": today,
        "total_configs_processed": len(results),
        "total_amount_paid": round2(total),
        "results": results,
    }


async def process_due_allowances(
    db: AsyncSession, today: Optional[date] = None
) -> Dict[str, Any]:
    today = today or date.today()
    async with store_call(db):
        configs = await get_due_allowance_configs(db, today)
    return await process_due(db, configs, today)
