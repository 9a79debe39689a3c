"""Endpoints for loan requests, loans and installment payments."""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from kidledger.database import get_session
from kidledger.schemas import (
    LoanRequestCreate,
    LoanRequestRead,
    LoanApprove,
    LoanReject,
    InstallmentPayment,
    InstallmentRead,
    LoanRead,
    LoanDetails,
)
from kidledger import loans

router = APIRouter(prefix="/loans", tags=["loans"])


@router.post("/requests", response_model=LoanRequestRead)
async def request_loan(data: LoanRequestCreate, db: AsyncSession = Depends(get_session)):
    return await loans.create_loan_request(db, data.child_id, data.reason, data.amount)


@router.get("/requests", response_model=list[LoanRequestRead])
async def list_requests(
    child_id: Optional[int] = None, db: AsyncSession = Depends(get_session)
):
    return await loans.get_loan_requests(db, child_id)


@router.post("/requests/{request_id}/approve", response_model=LoanRead)
async def approve_request(
    request_id: int, data: LoanApprove, db: AsyncSession = Depends(get_session)
):
    """Approve a pending request and create the loan's installment plan."""
    return await loans.approve_loan_request(
        db, request_id, data.installment_count, data.parent_note
    )


@router.post("/requests/{request_id}/reject", response_model=LoanRequestRead)
async def reject_request(
    request_id: int, data: LoanReject, db: AsyncSession = Depends(get_session)
):
    return await loans.reject_loan_request(db, request_id, data.parent_note)


@router.get("/child/{child_id}", response_model=list[LoanRead])
async def child_loans(child_id: int, db: AsyncSession = Depends(get_session)):
    return await loans.get_loans_by_child(db, child_id)


@router.get("/{loan_id}", response_model=LoanDetails)
async def read_loan(loan_id: int, db: AsyncSession = Depends(get_session)):
    return await loans.get_loan_details(db, loan_id)


@router.post("/installments/{installment_id}/pay", response_model=InstallmentRead)
async def pay(
    installment_id: int,
    data: InstallmentPayment,
    db: AsyncSession = Depends(get_session),
):
    return await loans.pay_installment(db, installment_id, data.paid_from)


@router.post("/{loan_id}/cancel", response_model=LoanRead)
async def cancel(loan_id: int, db: AsyncSession = Depends(get_session)):
    return await loans.cancel_loan(db, loan_id)
