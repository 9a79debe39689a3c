"""Convenience imports for all schema classes used by the API."""

from .child import (
    ChildCreate,
    ChildRead,
    ChildSnapshot,
    MonthlySummary,
    BalanceCheck,
    GoalCreate,
    GoalRead,
)
from .transaction import (
    TransactionCreate,
    TransactionRead,
    TransferCreate,
    TransferRead,
    SpendingRequestCreate,
    ApprovalDecision,
    GoalDeposit,
    LedgerResponse,
)
from .allowance import AllowanceConfigUpdate, AllowanceConfigRead
from .interest import InterestConfigUpdate, InterestConfigRead, InterestPreview
from .loan import (
    LoanRequestCreate,
    LoanRequestRead,
    LoanApprove,
    LoanReject,
    InstallmentPayment,
    InstallmentRead,
    LoanRead,
    LoanDetails,
)
from .settings import SettingsRead, SettingsUpdate
from .cron import AllowanceRunSummary, InterestRunSummary, CronResponse

__all__ = [
    "ChildCreate",
    "ChildRead",
    "ChildSnapshot",
    "MonthlySummary",
    "BalanceCheck",
    "GoalCreate",
    "GoalRead",
    "TransactionCreate",
    "TransactionRead",
    "TransferCreate",
    "TransferRead",
    "SpendingRequestCreate",
    "ApprovalDecision",
    "GoalDeposit",
    "LedgerResponse",
    "AllowanceConfigUpdate",
    "AllowanceConfigRead",
    "InterestConfigUpdate",
    "InterestConfigRead",
    "InterestPreview",
    "LoanRequestCreate",
    "LoanRequestRead",
    "LoanApprove",
    "LoanReject",
    "InstallmentPayment",
    "InstallmentRead",
    "LoanRead",
    "LoanDetails",
    "SettingsRead",
    "SettingsUpdate",
    "AllowanceRunSummary",
    "InterestRunSummary",
    "CronResponse",
]
