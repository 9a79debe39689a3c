"""Tests for the recurring-cadence date calculator."""

import pathlib
import sys
from datetime import date

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from kidledger.exceptions import ValidationError
from kidledger.schedule import (
    add_months,
    clamp_day_of_month,
    next_payment_date,
    sunday_weekday,
)


def test_daily_is_tomorrow():
    assert next_payment_date(date(2024, 1, 31), "daily") == date(2024, 2, 1)
    assert next_payment_date(date(2023, 12, 31), "daily") == date(2024, 1, 1)


def test_weekly_next_monday_from_wednesday():
    # 2024-01-03 is a Wednesday
    wednesday = date(2024, 1, 3)
    assert sunday_weekday(wednesday) == 3
    assert next_payment_date(wednesday, "weekly", day_of_week=1) == date(2024, 1, 8)


def test_weekly_same_weekday_wraps_a_full_week():
    monday = date(2024, 1, 1)
    assert next_payment_date(monday, "weekly", day_of_week=1) == date(2024, 1, 8)


def test_weekly_sunday_is_zero():
    assert sunday_weekday(date(2024, 1, 7)) == 0
    assert next_payment_date(date(2024, 1, 3), "weekly", day_of_week=0) == date(2024, 1, 7)


def test_biweekly_anchors():
    assert next_payment_date(date(2024, 1, 10), "biweekly") == date(2024, 1, 15)
    assert next_payment_date(date(2024, 1, 15), "biweekly") == date(2024, 2, 1)
    assert next_payment_date(date(2024, 1, 1), "biweekly") == date(2024, 1, 15)
    # day 20 of a 30-day month
    assert next_payment_date(date(2024, 4, 20), "biweekly") == date(2024, 5, 1)
    assert next_payment_date(date(2024, 12, 20), "biweekly") == date(2025, 1, 1)


def test_monthly_before_and_after_anchor():
    assert next_payment_date(date(2024, 1, 10), "monthly", day_of_month=15) == date(2024, 1, 15)
    assert next_payment_date(date(2024, 1, 15), "monthly", day_of_month=15) == date(2024, 2, 15)
    assert next_payment_date(date(2024, 12, 20), "monthly", day_of_month=5) == date(2025, 1, 5)


def test_monthly_clamps_to_last_day():
    assert next_payment_date(date(2024, 4, 10), "monthly", day_of_month=31) == date(2024, 4, 30)
    # clamped target equal to today rolls to next month
    assert next_payment_date(date(2024, 4, 30), "monthly", day_of_month=31) == date(2024, 5, 31)
    assert next_payment_date(date(2024, 1, 31), "monthly", day_of_month=31) == date(2024, 2, 29)


def test_monthly_end_of_february():
    assert next_payment_date(date(2023, 2, 27), "monthly", day_of_month=30) == date(2023, 2, 28)
    # Feb 28 is both today and the clamped target, so the payment moves on
    assert next_payment_date(date(2023, 2, 28), "monthly", day_of_month=30) == date(2023, 3, 30)
    assert next_payment_date(date(2024, 2, 29), "monthly", day_of_month=30) == date(2024, 3, 30)


def test_calculator_is_pure():
    today = date(2024, 6, 14)
    first = next_payment_date(today, "monthly", day_of_month=28)
    second = next_payment_date(today, "monthly", day_of_month=28)
    assert first == second == date(2024, 6, 28)
    assert today == date(2024, 6, 14)


def test_invalid_inputs_rejected():
    with pytest.raises(ValidationError):
        next_payment_date(date(2024, 1, 1), "yearly")
    with pytest.raises(ValidationError):
        next_payment_date(date(2024, 1, 1), "weekly", day_of_week=7)
    with pytest.raises(ValidationError):
        next_payment_date(date(2024, 1, 1), "monthly", day_of_month=0)


def test_add_months_clamps():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2023, 11, 30), 3) == date(2024, 2, 29)
    assert add_months(date(2024, 1, 15), 12) == date(2025, 1, 15)


def test_clamp_day_of_month():
    assert clamp_day_of_month(15) == 15
    assert clamp_day_of_month(31) == 28
    with pytest.raises(ValidationError):
        clamp_day_of_month(32)
