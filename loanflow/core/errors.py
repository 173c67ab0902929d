"""Domain error taxonomy.

Services raise these directly; FastAPI renders them like any other
``HTTPException`` so routes never translate errors by hand.

    DomainError
    +-- ValidationFailed      400  bad input shape/range
    |   +-- InsufficientBalance  debit larger than the wallet balance
    +-- Forbidden             403  ownership, permission, suspended account
    +-- NotFound              404  missing entity
    +-- Conflict              409  duplicates, stale state, already processed
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status


class DomainError(HTTPException):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "DOMAIN_ERROR"

    def __init__(self, detail: str, *, code: str | None = None, **context: Any) -> None:
        super().__init__(status_code=type(self).status_code, detail=detail)
        if code:
            self.code = code
        self.context = context

    def __str__(self) -> str:
        return str(self.detail)


class ValidationFailed(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_FAILED"


class Forbidden(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class Conflict(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class InsufficientBalance(ValidationFailed):
    code = "INSUFFICIENT_BALANCE"

    def __init__(self, *, available: Decimal, requested: Decimal) -> None:
        super().__init__(
            f"Insufficient balance: available {available}, requested {requested}",
            available=str(available),
            requested=str(requested),
        )
        self.available = available
        self.requested = requested
