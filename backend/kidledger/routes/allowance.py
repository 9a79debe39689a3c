"""Endpoints for a child's recurring allowance."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from kidledger.database import get_session
from kidledger.schemas import AllowanceConfigRead, AllowanceConfigUpdate
from kidledger import allowance

router = APIRouter(prefix="/allowance", tags=["allowance"])


def _read(config) -> AllowanceConfigRead:
    result = AllowanceConfigRead.model_validate(config)
    result.description = allowance.get_frequency_description(config)
    return result


@router.get("/child/{child_id}", response_model=AllowanceConfigRead)
async def read_config(child_id: int, db: AsyncSession = Depends(get_session)):
    return _read(await allowance.get_config(db, child_id))


@router.put("/child/{child_id}", response_model=AllowanceConfigRead)
async def save_config(
    child_id: int,
    data: AllowanceConfigUpdate,
    db: AsyncSession = Depends(get_session),
):
    """Create or update the allowance; the next payment date follows the cadence."""
    config = await allowance.upsert_config(
        db, child_id, **data.model_dump(exclude_unset=True)
    )
    return _read(config)


@router.post("/child/{child_id}/activate", response_model=AllowanceConfigRead)
async def activate(child_id: int, db: AsyncSession = Depends(get_session)):
    return _read(await allowance.activate_config(db, child_id))


@router.post("/child/{child_id}/deactivate", response_model=AllowanceConfigRead)
async def deactivate(child_id: int, db: AsyncSession = Depends(get_session)):
    return _read(await allowance.deactivate_config(db, child_id))
