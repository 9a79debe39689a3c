"""Transaction-related request and response models."""

from typing import Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field


class TransactionCreate(BaseModel):
    child_id: int
    kind: str
    amount: Decimal = Field(gt=0)
    description: str = ""
    category: Optional[str] = None


class TransferCreate(BaseModel):
    from_child_id: int
    to_child_id: int
    amount: Decimal = Field(gt=0)
    description: str = ""


class SpendingRequestCreate(BaseModel):
    child_id: int
    amount: Decimal = Field(gt=0)
    description: str
    category: Optional[str] = None


class ApprovalDecision(BaseModel):
    approved: bool
    parent_note: Optional[str] = None


class GoalDeposit(BaseModel):
    child_id: int
    goal_id: int
    amount: Decimal = Field(gt=0)


class TransactionRead(BaseModel):
    id: int
    child_id: int
    kind: str
    direction: str
    amount: Decimal
    description: str
    category: Optional[str] = None
    status: str
    requires_approval: bool
    approved_by_parent: bool
    parent_note: Optional[str] = None
    approved_at: Optional[datetime] = None
    related_goal_id: Optional[int] = None
    counterparty_child_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransferRead(BaseModel):
    debit: TransactionRead
    credit: TransactionRead


class LedgerResponse(BaseModel):
    balance: Decimal
    transactions: list[TransactionRead]
