"""Schemas for child accounts."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChildCreate(BaseModel):
    name: str = Field(min_length=1)


class ChildRead(BaseModel):
    id: int
    name: str
    balance: Decimal
    total_earned: Decimal
    total_spent: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChildSnapshot(BaseModel):
    """Child plus recent rows; ``degraded`` marks a copy served from cache."""

    child: dict[str, Any]
    transactions: list[dict[str, Any]]
    degraded: bool = False


class MonthlySummary(BaseModel):
    year: int
    month: int
    total_earnings: Decimal
    total_spending: Decimal
    net_savings: Decimal
    transaction_count: int


class BalanceCheck(BaseModel):
    child_id: int
    stored: Decimal
    derived: Decimal
    matches: bool


class GoalCreate(BaseModel):
    title: str = Field(min_length=1)
    target_amount: Decimal = Field(gt=0)


class GoalRead(BaseModel):
    id: int
    child_id: int
    title: str
    target_amount: Decimal
    current_amount: Decimal
    is_active: bool
    is_completed: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
