"""Interest configuration schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict


class InterestConfigUpdate(BaseModel):
    monthly_rate: Optional[Decimal] = None
    compound_frequency: Optional[str] = None
    minimum_balance: Optional[Decimal] = None
    is_active: Optional[bool] = None


class InterestConfigRead(BaseModel):
    id: int
    child_id: int
    monthly_rate: Decimal
    compound_frequency: str
    minimum_balance: Decimal
    is_active: bool
    last_interest_date: Optional[date] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InterestPreview(BaseModel):
    daily: Decimal
    weekly: Decimal
    monthly: Decimal
    yearly: Decimal
