"""Pydantic models for family-wide settings."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class SettingsRead(BaseModel):
    site_name: str
    default_monthly_rate: Decimal
    default_minimum_balance: Decimal
    default_compound_frequency: str
    default_allowance_frequency: str
    currency_symbol: str

    model_config = ConfigDict(from_attributes=True)


class SettingsUpdate(BaseModel):
    site_name: str | None = None
    default_monthly_rate: Decimal | None = None
    default_minimum_balance: Decimal | None = None
    default_compound_frequency: str | None = None
    default_allowance_frequency: str | None = None
    currency_symbol: str | None = None
