"""Date math for recurring cadences.

Everything here is pure: the same inputs always give the same date and no
function reads the clock. Weekdays follow the calendar convention used by
parents in the UI, ``0`` is Sunday and ``6`` is Saturday.
"""

import calendar
import logging
from datetime import date, timedelta
from typing import Optional

from kidledger.exceptions import ValidationError
from kidledger.models import Frequency

logger = logging.getLogger(__name__)

FREQUENCIES = tuple(f.value for f in Frequency)
MAX_ANCHOR_DAY = 28
BIWEEKLY_ANCHORS = (1, 15)


def sunday_weekday(day: date) -> int:
    """Weekday of ``day`` with Sunday as 0."""
    return (day.weekday() + 1) % 7


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(start: date, months: int) -> date:
    """Return ``start`` shifted by ``months``, clamped to the month's last day."""

    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, last_day_of_month(year, month))
    return date(year, month, day)


def clamp_day_of_month(day_of_month: int) -> int:
    """Restrict a monthly anchor to 1..28 so every month has it."""

    if day_of_month < 1 or day_of_month > 31:
        raise ValidationError(
            "day_of_month must be between 1 and 28",
            details={"day_of_month": day_of_month},
        )
    if day_of_month > MAX_ANCHOR_DAY:
        logger.warning(
            "day_of_month %s clamped to %s", day_of_month, MAX_ANCHOR_DAY
        )
        return MAX_ANCHOR_DAY
    return day_of_month


def _next_weekly(today: date, day_of_week: int) -> date:
    gap = (day_of_week - sunday_weekday(today) + 7) % 7
    return today + timedelta(days=gap or 7)


def _next_biweekly(today: date) -> date:
    if today.day < BIWEEKLY_ANCHORS[1]:
        return today.replace(day=BIWEEKLY_ANCHORS[1])
    return add_months(today.replace(day=1), 1)


def _month_day(year: int, month: int, day_of_month: int) -> date:
    return date(year, month, min(day_of_month, last_day_of_month(year, month)))


def _next_monthly(today: date, day_of_month: int) -> date:
    if today.day < day_of_month:
        target = _month_day(today.year, today.month, day_of_month)
        if target > today:
            return target
    following = add_months(today.replace(day=1), 1)
    return _month_day(following.year, following.month, day_of_month)


def next_payment_date(
    today: date,
    frequency: str,
    day_of_week: Optional[int] = None,
    day_of_month: Optional[int] = None,
) -> date:
    """Return the next occurrence of a cadence strictly after ``today``.

    ``daily`` is tomorrow. ``weekly`` is the next ``day_of_week``; the same
    weekday as today wraps to next week. ``biweekly`` uses the fixed anchors
    on the 1st and 15th. ``monthly`` lands on ``day_of_month``, clamped to
    the last day of short months.
    """

    if frequency == Frequency.DAILY:
        return today + timedelta(days=1)
    if frequency == Frequency.WEEKLY:
        dow = 0 if day_of_week is None else day_of_week
        if dow < 0 or dow > 6:
            raise ValidationError(
                "day_of_week must be between 0 and 6",
                details={"day_of_week": day_of_week},
            )
        return _next_weekly(today, dow)
    if frequency == Frequency.BIWEEKLY:
        return _next_biweekly(today)
    if frequency == Frequency.MONTHLY:
        dom = 1 if day_of_month is None else day_of_month
        if dom < 1 or dom > 31:
            raise ValidationError(
                "day_of_month must be between 1 and 31",
                details={"day_of_month": day_of_month},
            )
        return _next_monthly(today, dom)
    raise ValidationError(
        f"Unknown frequency: {frequency!r}", details={"frequency": frequency}
    )
