"""Endpoints for savings interest settings."""

from decimal import Decimal

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from kidledger.database import get_session
from kidledger.schemas import InterestConfigRead, InterestConfigUpdate, InterestPreview
from kidledger import interest

router = APIRouter(prefix="/interest", tags=["interest"])


@router.get("/preview", response_model=InterestPreview)
async def preview(balance: Decimal, monthly_rate: Decimal):
    """Expected yield for a balance at a monthly rate."""
    return interest.calculate_preview(balance, monthly_rate)


@router.get("/child/{child_id}", response_model=InterestConfigRead)
async def read_config(child_id: int, db: AsyncSession = Depends(get_session)):
    return await interest.get_config(db, child_id)


@router.put("/child/{child_id}", response_model=InterestConfigRead)
async def save_config(
    child_id: int,
    data: InterestConfigUpdate,
    db: AsyncSession = Depends(get_session),
):
    return await interest.upsert_config(
        db, child_id, **data.model_dump(exclude_unset=True)
    )


@router.post("/child/{child_id}/activate", response_model=InterestConfigRead)
async def activate(child_id: int, db: AsyncSession = Depends(get_session)):
    return await interest.activate_config(db, child_id)


@router.post("/child/{child_id}/deactivate", response_model=InterestConfigRead)
async def deactivate(child_id: int, db: AsyncSession = Depends(get_session)):
    return await interest.deactivate_config(db, child_id)
