"""Installment loans granted against a child's loan request.

A loan splits ``total_amount`` into ``installment_count`` monthly
installments. Each payment is posted to the ledger as spending, and the
loan becomes ``paid_off`` once the paid amount reaches the total. Paid off
and cancelled are terminal states.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from kidledger import crud
from kidledger.crud import require_child
from kidledger.database import atomic, store_call
from kidledger.exceptions import AlreadyPaid, InvalidState, NotFound, ValidationError
from kidledger.ledger import child_lock, stage_transaction
from kidledger.models import (
    InstallmentStatus,
    Loan,
    LoanInstallment,
    LoanStatus,
    PaidFrom,
    PurchaseRequest,
    RequestStatus,
    TransactionKind,
    LOAN_REQUEST_CATEGORY,
    utcnow,
)
from kidledger.money import ZERO, AmountLike, require_positive, round2
from kidledger.schedule import add_months

logger = logging.getLogger(__name__)

LOAN_PAYMENT_CATEGORY = "loan_payment"
OVERDUE = "overdue"

STATUS_BADGES = {
    LoanStatus.ACTIVE.value: "ongoing",
    LoanStatus.PAID_OFF.value: "success",
    LoanStatus.CANCELLED.value: "aborted",
}


def split_installments(total: Decimal, count: int) -> List[Decimal]:
    """Split ``total`` into ``count`` amounts that sum to it exactly.

    Every installment is ``round2(total / count)`` except the last, which
    takes the rounding remainder.
    """

    if count < 1:
        raise ValidationError("installment_count must be at least 1")
    base = round2(total / count)
    last = total - base * (count - 1)
    if base <= ZERO or last <= ZERO:
        raise ValidationError(
            "Too many installments for this amount",
            details={"total_amount": str(total), "installment_count": count},
        )
    return [base] * (count - 1) + [round2(last)]


def installment_display_status(installment: LoanInstallment, today: Optional[date] = None) -> str:
    """Status shown to the family; a pending installment past due is overdue."""

    today = today or date.today()
    if installment.status == InstallmentStatus.PENDING and installment.due_date < today:
        return OVERDUE
    return installment.status


def loan_status_badge(status: str) -> str:
    return STATUS_BADGES.get(status, "unknown")


async def _stage_loan(
    db: AsyncSession,
    child_id: int,
    purchase_request_id: Optional[int],
    total_amount: Decimal,
    installment_count: int,
    today: date,
) -> Loan:
    amounts = split_installments(total_amount, installment_count)
    loan = Loan(
        child_id=child_id,
        purchase_request_id=purchase_request_id,
        total_amount=total_amount,
        installment_count=installment_count,
        installment_amount=amounts[0],
        paid_amount=ZERO,
        status=LoanStatus.ACTIVE.value,
    )
    db.add(loan)
    await db.flush()  # ensure loan.id is populated
    for number, amount in enumerate(amounts, start=1):
        db.add(
            LoanInstallment(
                loan_id=loan.id,
                installment_number=number,
                amount=amount,
                due_date=add_months(today, number),
                status=InstallmentStatus.PENDING.value,
            )
        )
    return loan


async def create_loan(
    db: AsyncSession,
    child_id: int,
    purchase_request_id: Optional[int],
    total_amount: AmountLike,
    installment_count: int,
    today: Optional[date] = None,
) -> Loan:
    """Create an active loan and its installment schedule."""

    today = today or date.today()
    total = require_positive(total_amount)
    split_installments(total, installment_count)
    async with child_lock(child_id):
        async with atomic(db):
            await require_child(db, child_id)
            loan = await _stage_loan(
                db, child_id, purchase_request_id, total, installment_count, today
            )
    logger.info(
        "Loan %s created for child %s: %s in %s installments",
        loan.id,
        child_id,
        total,
        installment_count,
    )
    async with store_call(db):
        return await crud.get_loan(db, loan.id)


async def pay_installment(
    db: AsyncSession,
    installment_id: int,
    paid_from: str = PaidFrom.MANUAL.value,
    today: Optional[date] = None,
) -> LoanInstallment:
    """Pay one installment from the child's balance.

    Installments may be paid in any order. If the ledger rejects the
    payment nothing about the loan changes.
    """

    try:
        source = PaidFrom(paid_from).value
    except ValueError as exc:
        raise ValidationError(
            f"Invalid paid_from: {paid_from!r}", details={"paid_from": paid_from}
        ) from exc
    async with store_call(db):
        installment = await crud.get_installment(db, installment_id)
        if installment is None:
            raise NotFound("Installment", installment_id)
        loan = await crud.get_loan(db, installment.loan_id)
        child_id = loan.child_id

    async with child_lock(child_id):
        async with atomic(db):
            installment = await crud.get_installment(db, installment_id)
            if installment.status == InstallmentStatus.PAID:
                raise AlreadyPaid(installment_id)
            loan = await crud.get_loan(db, installment.loan_id)
            if loan.status != LoanStatus.ACTIVE:
                raise InvalidState(
                    f"Loan {loan.id} is {loan.status}",
                    details={"loan_id": loan.id, "status": loan.status},
                )
            child = await require_child(db, child_id)
            stage_transaction(
                db,
                child,
                TransactionKind.SPENDING,
                installment.amount,
                f"Loan #{loan.id} installment {installment.installment_number}/{loan.installment_count}",
                LOAN_PAYMENT_CATEGORY,
            )
            installment.status = InstallmentStatus.PAID.value
            installment.paid_date = utcnow()
            installment.paid_from = source
            loan.paid_amount = round2(loan.paid_amount + installment.amount)
            if loan.paid_amount >= loan.total_amount:
                loan.status = LoanStatus.PAID_OFF.value
            loan.updated_at = utcnow()
            db.add(installment)
            db.add(loan)
    logger.info(
        "Installment %s of loan %s paid (%s/%s)",
        installment.installment_number,
        loan.id,
        loan.paid_amount,
        loan.total_amount,
    )
    if loan.status == LoanStatus.PAID_OFF:
        logger.info("Loan %s paid off", loan.id)
    return installment


async def cancel_loan(db: AsyncSession, loan_id: int) -> Loan:
    """Cancel an active loan. Payments already made are not refunded."""

    async with store_call(db):
        loan = await crud.get_loan(db, loan_id)
        if loan is None:
            raise NotFound("Loan", loan_id)
        child_id = loan.child_id
    async with child_lock(child_id):
        async with atomic(db):
            loan = await crud.get_loan(db, loan_id)
            if loan.status != LoanStatus.ACTIVE:
                raise InvalidState(
                    f"Loan {loan_id} is {loan.status}",
                    details={"loan_id": loan_id, "status": loan.status},
                )
            loan.status = LoanStatus.CANCELLED.value
            loan.updated_at = utcnow()
            db.add(loan)
    logger.info("Loan %s cancelled", loan_id)
    async with store_call(db):
        return await crud.get_loan(db, loan_id)


async def get_loans_by_child(db: AsyncSession, child_id: int) -> List[Loan]:
    async with store_call(db):
        await require_child(db, child_id)
        return await crud.get_loans_by_child(db, child_id)


async def get_loan_details(
    db: AsyncSession, loan_id: int, today: Optional[date] = None
) -> Dict[str, Any]:
    """Loan with its installments, display statuses and remaining amount."""

    today = today or date.today()
    async with store_call(db):
        loan = await crud.get_loan(db, loan_id)
    if loan is None:
        raise NotFound("Loan", loan_id)
    installments = sorted(loan.installments, key=lambda i: i.installment_number)
    pending = [i for i in installments if i.status == InstallmentStatus.PENDING]
    details = loan.model_dump()
    details.update(
        badge=loan_status_badge(loan.status),
        remaining_amount=round2(loan.total_amount - loan.paid_amount),
        paid_installments=len(installments) - len(pending),
        pending_installments=len(pending),
        next_due_date=pending[0].due_date if pending else None,
        installments=[
            dict(i.model_dump(), display_status=installment_display_status(i, today))
            for i in installments
        ],
    )
    return details


async def create_loan_request(
    db: AsyncSession, child_id: int, reason: str, amount: AmountLike
) -> PurchaseRequest:
    """Record a child's request to borrow ``amount``."""

    value = require_positive(amount)
    if not reason or not reason.strip():
        raise ValidationError("A reason is required")
    async with atomic(db):
        await require_child(db, child_id)
        request = PurchaseRequest(
            child_id=child_id,
            title=reason.strip(),
            description=f"Loan requested: {reason.strip()}",
            amount=value,
            category=LOAN_REQUEST_CATEGORY,
            status=RequestStatus.PENDING.value,
        )
        db.add(request)
    logger.info("Loan request %s created for child %s", request.id, child_id)
    return request


async def get_loan_requests(
    db: AsyncSession, child_id: Optional[int] = None
) -> List[PurchaseRequest]:
    async with store_call(db):
        return await crud.get_loan_requests(db, child_id)


async def _require_pending_request(db: AsyncSession, request_id: int) -> PurchaseRequest:
    request = await crud.get_purchase_request(db, request_id)
    if request is None or request.category != LOAN_REQUEST_CATEGORY:
        raise NotFound("Loan request", request_id)
    if request.status != RequestStatus.PENDING:
        raise InvalidState(
            f"Loan request {request_id} is {request.status}",
            details={"status": request.status},
        )
    return request


async def approve_loan_request(
    db: AsyncSession,
    request_id: int,
    installment_count: int,
    parent_note: Optional[str] = None,
    today: Optional[date] = None,
) -> Loan:
    """Approve a pending loan request and create its loan together."""

    today = today or date.today()
    async with store_call(db):
        request = await _require_pending_request(db, request_id)
        child_id = request.child_id
    async with child_lock(child_id):
        async with atomic(db):
            request = await _require_pending_request(db, request_id)
            loan = await _stage_loan(
                db, child_id, request.id, round2(request.amount), installment_count, today
            )
            request.status = RequestStatus.APPROVED.value
            request.parent_note = parent_note
            request.updated_at = utcnow()
            db.add(request)
    logger.info("Loan request %s approved as loan %s", request_id, loan.id)
    async with store_call(db):
        return await crud.get_loan(db, loan.id)


async def reject_loan_request(
    db: AsyncSession, request_id: int, parent_note: Optional[str] = None
) -> PurchaseRequest:
    async with store_call(db):
        child_id = (await _require_pending_request(db, request_id)).child_id
    async with child_lock(child_id):
        async with atomic(db):
            request = await _require_pending_request(db, request_id)
            request.status = RequestStatus.REJECTED.value
            request.parent_note = parent_note
            request.updated_at = utcnow()
            db.add(request)
    logger.info("Loan request %s rejected", request_id)
    return request
