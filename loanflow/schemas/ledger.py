from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from loanflow.models.ledger import TransactionType, WithdrawalStatus


class WalletRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    balance: Decimal
    created_at: datetime
    updated_at: datetime


class WalletTransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    wallet_id: str
    type: TransactionType
    amount: Decimal
    balance_after: Decimal
    reference_id: Optional[str] = None
    reference_type: Optional[str] = None
    description: Optional[str] = None
    meta: Optional[dict] = None
    created_at: datetime


class WalletTransactionPageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    items: list[WalletTransactionRead]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_previous: bool


class WalletIntegrityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    wallet_id: str
    is_valid: bool
    stored_balance: Decimal
    derived_balance: Decimal


class WithdrawalCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    bank_name: str = Field(..., min_length=1, max_length=255)
    bank_account: str = Field(..., min_length=1, max_length=64)
    account_holder: str = Field(..., min_length=1, max_length=255)


class WithdrawalProcess(BaseModel):
    action: Literal["approve", "reject", "pay"]
    note: Optional[str] = Field(None, max_length=2000)


class WithdrawalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    wallet_id: str
    amount: Decimal
    bank_name: str
    bank_account: str
    account_holder: str
    status: WithdrawalStatus
    admin_note: Optional[str] = None
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


class WithdrawalPageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    items: list[WithdrawalRead]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_previous: bool
