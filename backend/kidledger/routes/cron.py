"""Batch endpoints called by an external scheduler.

Requests must carry ``Authorization: Bearer <CRON_SECRET>``.
"""

import os
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from kidledger.database import get_session
from kidledger.schemas import CronResponse
from kidledger.allowance import process_due_allowances
from kidledger.interest import accrue_all

logger = logging.getLogger(__name__)

CRON_SECRET = os.getenv("CRON_SECRET", "dev-cron-secret")

router = APIRouter(prefix="/cron", tags=["cron"])


async def require_cron_secret(authorization: Optional[str] = Header(default=None)):
    if authorization != f"Bearer {CRON_SECRET}":
        logger.warning("Rejected cron call with bad credentials")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post(
    "/apply-allowance",
    response_model=CronResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def apply_allowance(
    today: Optional[date] = None, db: AsyncSession = Depends(get_session)
):
    """Pay every allowance due on or before ``today``."""
    summary = await process_due_allowances(db, today)
    return CronResponse(
        success=True,
        message=(
            f"{summary['total_configs_processed']} allowances processed, "
            f"{summary['total_amount_paid']} paid"
        ),
        summary=summary,
    )


@router.post(
    "/apply-interest",
    response_model=CronResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def apply_interest(
    today: Optional[date] = None, db: AsyncSession = Depends(get_session)
):
    """Accrue monthly interest for every child with an active config."""
    summary = await accrue_all(db, today)
    return CronResponse(
        success=True,
        message=(
            f"{summary['total_children']} children processed, "
            f"{summary['total_interest_applied']} applied"
        ),
        summary=summary,
    )
