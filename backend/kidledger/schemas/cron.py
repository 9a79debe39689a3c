"""Summaries returned by the scheduled batch endpoints."""

from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel


class AllowanceRunSummary(BaseModel):
    timestamp: str
    payment_date: date
    total_configs_processed: int
    total_amount_paid: Decimal
    results: list[dict[str, Any]]


class InterestRunSummary(BaseModel):
    timestamp: str
    total_children: int
    total_interest_applied: Decimal
    results: list[dict[str, Any]]


class CronResponse(BaseModel):
    success: bool
    message: str
    summary: dict[str, Any]
