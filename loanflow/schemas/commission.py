from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from loanflow.models.commission import CommissionStatus, KpiRewardType, SnapshotStatus


def _upper(v: str) -> str:
    return v.strip().upper()


class CommissionConfigCreate(BaseModel):
    role_code: str = Field(..., min_length=1, max_length=64)
    rate: Decimal = Field(..., ge=0, le=1)
    description: Optional[str] = None
    is_active: bool = True

    @field_validator("role_code")
    @classmethod
    def _normalize_role(cls, v: str) -> str:
        return _upper(v)


class CommissionConfigUpdate(BaseModel):
    rate: Optional[Decimal] = Field(None, ge=0, le=1)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class CommissionConfigRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    role_code: str
    rate: Decimal
    description: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class KpiTierCreate(BaseModel):
    role_code: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=128)
    tier_order: int = 0
    min_contracts: Optional[int] = Field(None, ge=0)
    min_disbursement: Optional[Decimal] = Field(None, ge=0)
    reward_type: KpiRewardType = KpiRewardType.FIXED_AMOUNT
    bonus_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    bonus_amount: Optional[Decimal] = Field(None, ge=0)
    is_active: bool = True

    @field_validator("role_code")
    @classmethod
    def _normalize_role(cls, v: str) -> str:
        return _upper(v)

    @model_validator(mode="after")
    def _check_reward(self):
        if self.reward_type == KpiRewardType.RATE and self.bonus_rate is None:
            raise ValueError("bonus_rate is required for RATE tiers")
        if self.reward_type == KpiRewardType.FIXED_AMOUNT and self.bonus_amount is None:
            raise ValueError("bonus_amount is required for FIXED_AMOUNT tiers")
        return self


class KpiTierUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=128)
    tier_order: Optional[int] = None
    min_contracts: Optional[int] = Field(None, ge=0)
    min_disbursement: Optional[Decimal] = Field(None, ge=0)
    reward_type: Optional[KpiRewardType] = None
    bonus_rate: Optional[Decimal] = Field(None, ge=0, le=1)
    bonus_amount: Optional[Decimal] = Field(None, ge=0)
    is_active: Optional[bool] = None


class KpiTierRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    role_code: str
    name: str
    tier_order: int
    min_contracts: Optional[int] = None
    min_disbursement: Optional[Decimal] = None
    reward_type: KpiRewardType
    bonus_rate: Optional[Decimal] = None
    bonus_amount: Optional[Decimal] = None
    is_active: bool


class CommissionRecordRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    contract_id: str
    referred_user_id: str
    amount: Decimal
    rate: Decimal
    role_code: str
    disbursement_amount: Decimal
    revenue_percentage: Decimal
    total_revenue: Decimal
    status: CommissionStatus
    snapshot_id: Optional[str] = None
    credited_at: Optional[datetime] = None
    created_at: datetime


class CommissionSnapshotRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    period_year: int
    period_month: int
    role_code: str
    total_contracts: int
    total_disbursement: Decimal
    base_commission: Decimal
    kpi_tier_id: Optional[str] = None
    kpi_tier: Optional[KpiTierRead] = None
    bonus_commission: Decimal
    total_commission: Decimal
    status: SnapshotStatus
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


class SnapshotRunRequest(BaseModel):
    year: int = Field(..., ge=2000, le=9999)
    month: int = Field(..., ge=1, le=12)


class SnapshotUserResultRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    ok: bool
    snapshot_id: Optional[str] = None
    error: Optional[str] = None


class SnapshotBatchRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    year: int
    month: int
    processed: int
    failed: int
    results: list[SnapshotUserResultRead] = []


class CommissionSummaryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_earned: Decimal
    current_month_contracts: int
    current_month_commission: Decimal
    referred_users: int
    wallet_balance: Decimal


class CommissionRecordPageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    items: list[CommissionRecordRead]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_previous: bool


class CommissionSnapshotPageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    items: list[CommissionSnapshotRead]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_previous: bool


class RevenueSummaryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period: str
    start: datetime
    end: datetime
    contracts: int
    disbursed_amount: Decimal
    total_revenue: Decimal


class CreatorRevenueRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    creator_id: str
    contracts: int
    disbursed_amount: Decimal
    total_revenue: Decimal
