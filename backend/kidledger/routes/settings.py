"""Endpoints for viewing and updating family-wide settings."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from kidledger.database import get_session
from kidledger.schemas import SettingsRead, SettingsUpdate
from kidledger.crud import get_settings, save_settings
from kidledger.interest import (
    validate_rate,
    validate_minimum_balance,
    validate_compound_frequency,
)
from kidledger.allowance import validate_config

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/", response_model=SettingsRead)
async def read_settings(db: AsyncSession = Depends(get_session)):
    """Retrieve the current defaults."""
    return await get_settings(db)


@router.put("/", response_model=SettingsRead)
async def update_settings(data: SettingsUpdate, db: AsyncSession = Depends(get_session)):
    """Update defaults used when new configs are created."""
    values = data.model_dump(exclude_unset=True)
    if values.get("default_monthly_rate") is not None:
        values["default_monthly_rate"] = validate_rate(values["default_monthly_rate"])
    if values.get("default_minimum_balance") is not None:
        values["default_minimum_balance"] = validate_minimum_balance(
            values["default_minimum_balance"]
        )
    if values.get("default_compound_frequency") is not None:
        values["default_compound_frequency"] = validate_compound_frequency(
            values["default_compound_frequency"]
        )
    if values.get("default_allowance_frequency") is not None:
        validate_config(frequency=values["default_allowance_frequency"])
    settings = await get_settings(db)
    for field, value in values.items():
        if value is not None:
            setattr(settings, field, value)
    return await save_settings(db, settings)
