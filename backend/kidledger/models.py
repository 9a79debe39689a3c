"""Database models for the kid ledger.

The models are defined with SQLModel (built on SQLAlchemy and Pydantic).
Money columns are ``NUMERIC(12, 2)`` and map to :class:`~decimal.Decimal`.
Comments are kept concise to avoid distracting from the field
definitions.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional, List
from datetime import datetime, date, timezone
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import DateTime, UniqueConstraint


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every timestamp column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _timestamp(nullable: bool = False, **kwargs):
    # Naive columns; newer SQLModel releases default to timezone-aware ones.
    if nullable:
        return Field(default=None, sa_type=DateTime(timezone=False), **kwargs)
    return Field(default_factory=utcnow, sa_type=DateTime(timezone=False), **kwargs)


def _money(**kwargs):
    return Field(default=Decimal("0.00"), max_digits=12, decimal_places=2, **kwargs)


class TransactionKind(str, Enum):
    EARNING = "earning"
    SPENDING = "spending"
    TRANSFER = "transfer"
    INTEREST = "interest"
    GOAL_INTEREST = "goal_interest"
    ALLOWANCE = "allowance"
    GOAL_DEPOSIT = "goal_deposit"


class Direction(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class CompoundFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class LoanStatus(str, Enum):
    ACTIVE = "active"
    PAID_OFF = "paid_off"
    CANCELLED = "cancelled"


class InstallmentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class PaidFrom(str, Enum):
    ALLOWANCE = "allowance"
    MANUAL = "manual"
    GIFT = "gift"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


LOAN_REQUEST_CATEGORY = "loan"


class Child(SQLModel, table=True):
    """Child account holder with the balance fields the ledger maintains."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    balance: Decimal = _money()
    total_earned: Decimal = _money()
    total_spent: Decimal = _money()
    created_at: datetime = _timestamp()


class Transaction(SQLModel, table=True):
    """Ledger row. ``amount`` is a magnitude; ``direction`` gives its sign."""

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    kind: str
    direction: str
    amount: Decimal = _money()
    description: str = ""
    category: Optional[str] = None
    status: str = TransactionStatus.COMPLETED.value

    # approval
    requires_approval: bool = False
    approved_by_parent: bool = False
    parent_note: Optional[str] = None
    approved_at: Optional[datetime] = _timestamp(nullable=True)

    related_goal_id: Optional[int] = Field(default=None, foreign_key="goal.id")
    counterparty_child_id: Optional[int] = Field(default=None, foreign_key="child.id")
    created_at: datetime = _timestamp(index=True)

    @property
    def signed_amount(self) -> Decimal:
        if self.direction == Direction.DEBIT:
            return -self.amount
        return self.amount


class Goal(SQLModel, table=True):
    """Savings goal owned by a child; money here is outside ``balance``."""

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    title: str
    target_amount: Decimal = _money()
    current_amount: Decimal = _money()
    is_active: bool = True
    is_completed: bool = False
    created_at: datetime = _timestamp()


class PurchaseRequest(SQLModel, table=True):
    """Child request awaiting a parent decision; loans come from these."""

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    title: str
    description: Optional[str] = None
    amount: Decimal = _money()
    category: str = LOAN_REQUEST_CATEGORY
    status: str = RequestStatus.PENDING.value
    parent_note: Optional[str] = None
    created_at: datetime = _timestamp()
    updated_at: datetime = _timestamp()


class AllowanceConfig(SQLModel, table=True):
    """Recurring allowance, at most one row per child."""

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", unique=True)
    amount: Decimal = _money()
    frequency: str = Frequency.WEEKLY.value
    day_of_week: int = 0  # 0=Sunday
    day_of_month: int = 1
    is_active: bool = True
    next_payment_date: date
    created_at: datetime = _timestamp()
    updated_at: datetime = _timestamp()


class InterestConfig(SQLModel, table=True):
    """Savings interest settings, at most one row per child."""

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", unique=True)
    monthly_rate: Decimal = Field(default=Decimal("0"), max_digits=5, decimal_places=2)  # percent
    compound_frequency: str = CompoundFrequency.MONTHLY.value
    minimum_balance: Decimal = _money()
    is_active: bool = True
    last_interest_date: Optional[date] = None
    created_at: datetime = _timestamp()


class Loan(SQLModel, table=True):
    """Installment loan granted against a purchase request."""

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    purchase_request_id: Optional[int] = Field(
        default=None, foreign_key="purchaserequest.id"
    )
    total_amount: Decimal = _money()
    installment_count: int
    installment_amount: Decimal = _money()
    paid_amount: Decimal = _money()
    status: str = LoanStatus.ACTIVE.value
    created_at: datetime = _timestamp()
    updated_at: datetime = _timestamp()

    installments: List["LoanInstallment"] = Relationship(back_populates="loan")


class LoanInstallment(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("loan_id", "installment_number", name="uq_loan_installment_number"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    loan_id: int = Field(foreign_key="loan.id", index=True)
    installment_number: int
    amount: Decimal = _money()
    due_date: date
    status: str = InstallmentStatus.PENDING.value
    paid_date: Optional[datetime] = _timestamp(nullable=True)
    paid_from: Optional[str] = None

    loan: Optional[Loan] = Relationship(back_populates="installments")


class Settings(SQLModel, table=True):
    """Singleton table storing family-wide defaults."""

    id: Optional[int] = Field(default=1, primary_key=True)
    site_name: str = "Kid Ledger"
    default_monthly_rate: Decimal = Field(default=Decimal("9.9"), max_digits=5, decimal_places=2)
    default_minimum_balance: Decimal = Field(default=Decimal("5.00"), max_digits=12, decimal_places=2)
    default_compound_frequency: str = CompoundFrequency.MONTHLY.value
    default_allowance_frequency: str = Frequency.WEEKLY.value
    currency_symbol: str = "$"
