from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from loanflow.core.periods import utc_now
from loanflow.database import Base
from loanflow.models.identity import new_id


class CommissionStatus(PyEnum):
    PENDING = "PENDING"
    CREDITED = "CREDITED"


class SnapshotStatus(PyEnum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    PAID = "PAID"


class KpiRewardType(PyEnum):
    RATE = "RATE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


class CommissionConfig(Base):
    __tablename__ = "commission_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    role_code: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Fraction in [0, 1]; 0.05 means 5% of total revenue.
    rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    @validates("role_code")
    def _upper_role(self, _key, value):
        return str(value).strip().upper()


class CommissionRecord(Base):
    __tablename__ = "commission_records"
    __table_args__ = (UniqueConstraint("contract_id", name="uq_commission_records_contract"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    # Referrer who earns the commission.
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    contract_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("contracts.id"), nullable=False
    )
    referred_user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)
    role_code: Mapped[str] = mapped_column(String(64), nullable=False)
    disbursement_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    revenue_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    total_revenue: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    status: Mapped[CommissionStatus] = mapped_column(
        Enum(CommissionStatus, native_enum=False),
        nullable=False,
        default=CommissionStatus.PENDING,
        index=True,
    )
    snapshot_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("commission_snapshots.id"), nullable=True
    )
    wallet_transaction_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    credited_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, nullable=False, index=True
    )

    contract = relationship("Contract")


class KpiCommissionTier(Base):
    __tablename__ = "kpi_commission_tiers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    role_code: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    # Higher order is evaluated first (best tier wins).
    tier_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_contracts: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_disbursement: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    reward_type: Mapped[KpiRewardType] = mapped_column(
        Enum(KpiRewardType, native_enum=False), nullable=False, default=KpiRewardType.FIXED_AMOUNT
    )
    bonus_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 4), nullable=True)
    bonus_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    @validates("role_code")
    def _upper_role(self, _key, value):
        return str(value).strip().upper()


def _validate_tier_reward(_mapper, _connection, target: KpiCommissionTier) -> None:
    if target.reward_type == KpiRewardType.RATE:
        if target.bonus_rate is None:
            raise ValueError("bonus_rate is required for RATE tiers")
        if not Decimal("0") <= Decimal(target.bonus_rate) <= Decimal("1"):
            raise ValueError("bonus_rate must be within [0, 1]")
    elif target.reward_type == KpiRewardType.FIXED_AMOUNT:
        if target.bonus_amount is None:
            raise ValueError("bonus_amount is required for FIXED_AMOUNT tiers")
        if Decimal(target.bonus_amount) < 0:
            raise ValueError("bonus_amount must not be negative")


event.listen(KpiCommissionTier, "before_insert", _validate_tier_reward)
event.listen(KpiCommissionTier, "before_update", _validate_tier_reward)


class CommissionSnapshot(Base):
    __tablename__ = "commission_snapshots"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "period_year", "period_month", name="uq_commission_snapshots_period"
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    role_code: Mapped[str] = mapped_column(String(64), nullable=False)
    total_contracts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_disbursement: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0")
    )
    base_commission: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0")
    )
    kpi_tier_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("kpi_commission_tiers.id"), nullable=True
    )
    bonus_commission: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0")
    )
    total_commission: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0")
    )
    status: Mapped[SnapshotStatus] = mapped_column(
        Enum(SnapshotStatus, native_enum=False),
        nullable=False,
        default=SnapshotStatus.PENDING,
        index=True,
    )
    processed_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    kpi_tier = relationship("KpiCommissionTier", lazy="joined")
