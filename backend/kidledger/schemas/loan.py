from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class LoanRequestCreate(BaseModel):
    child_id: int
    reason: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)


class LoanRequestRead(BaseModel):
    id: int
    child_id: int
    title: str
    description: Optional[str]
    amount: Decimal
    category: str
    status: str
    parent_note: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LoanApprove(BaseModel):
    installment_count: int = Field(ge=1)
    parent_note: Optional[str] = None


class LoanReject(BaseModel):
    parent_note: Optional[str] = None


class InstallmentPayment(BaseModel):
    paid_from: str = "manual"


class InstallmentRead(BaseModel):
    id: int
    loan_id: int
    installment_number: int
    amount: Decimal
    due_date: date
    status: str
    paid_date: Optional[datetime]
    paid_from: Optional[str]
    display_status: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class LoanRead(BaseModel):
    id: int
    child_id: int
    purchase_request_id: Optional[int]
    total_amount: Decimal
    installment_count: int
    installment_amount: Decimal
    paid_amount: Decimal
    status: str
    created_at: datetime
    installments: list[InstallmentRead] = []

    model_config = ConfigDict(from_attributes=True)


class LoanDetails(LoanRead):
    badge: str
    remaining_amount: Decimal
    paid_installments: int
    pending_installments: int
    next_due_date: Optional[date]
