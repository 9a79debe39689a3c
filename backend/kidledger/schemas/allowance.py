"""Allowance configuration schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict


class AllowanceConfigUpdate(BaseModel):
    amount: Optional[Decimal] = None
    frequency: Optional[str] = None
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    is_active: Optional[bool] = None


class AllowanceConfigRead(BaseModel):
    id: int
    child_id: int
    amount: Decimal
    frequency: str
    day_of_week: int
    day_of_month: int
    is_active: bool
    next_payment_date: date
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
