"""Error types raised by the ledger engines.

Every error carries a stable ``code`` and the HTTP status the API layer
answers with, so route handlers never translate errors by hand.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base class for all domain errors."""

    code = "ledger_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(LedgerError):
    """Input rejected before any write took place."""

    code = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InsufficientBalance(LedgerError):
    """A debit would take the balance below zero."""

    code = "insufficient_balance"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, child_id: int, balance: Any, requested: Any):
        super().__init__(
            "Insufficient balance",
            details={
                "child_id": child_id,
                "balance": str(balance),
                "requested": str(requested),
            },
        )


class NotFound(LedgerError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} {resource_id} not found"
        super().__init__(message, details={"resource": resource, "id": resource_id})


class AlreadyPaid(LedgerError):
    code = "already_paid"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, installment_id: int):
        super().__init__(
            f"Installment {installment_id} is already paid",
            details={"installment_id": installment_id},
        )


class InvalidState(LedgerError):
    """Operation not allowed in the record's current status."""

    code = "invalid_state"
    status_code = status.HTTP_409_CONFLICT


class StorageUnavailable(LedgerError):
    """The record store could not complete a read or write."""

    code = "storage_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "message": exc.message, "details": exc.details},
    )


async def storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Answer a store error that escaped the engines as :class:`StorageUnavailable`."""

    logger.error("Record store call failed during %s: %s", request.url.path, exc)
    return await ledger_error_handler(
        request, StorageUnavailable("Record store unavailable")
    )
