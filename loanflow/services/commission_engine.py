"""Referral commissions, KPI tiers and monthly snapshots.

Money only moves in two places: ``process_contract_completion`` credits the
referrer's commission, and ``process_snapshot_bonus`` credits a KPI bonus.
Both write the justifying record and the ledger entry in one transaction,
so a credit never exists without its record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loanflow import models
from loanflow.core.errors import Conflict, NotFound
from loanflow.core.pagination import Page, paginate
from loanflow.core.periods import month_window, utc_now
from loanflow.models.identity import RoleCode
from loanflow.services import rbac, wallet_ledger
from loanflow.services.audit import SYSTEM_ACTOR_ID, audit_event
from loanflow.services.wallet_ledger import ZERO, to_money

logger = logging.getLogger("loanflow.commission")


@dataclass(frozen=True)
class ReferrerRate:
    rate: Decimal
    role_code: str | None = None


@dataclass(frozen=True)
class RateReward:
    rate: Decimal

    def bonus_for(self, total_disbursement: Decimal) -> Decimal:
        return to_money(Decimal(total_disbursement) * Decimal(self.rate))


@dataclass(frozen=True)
class FixedAmountReward:
    amount: Decimal

    def bonus_for(self, total_disbursement: Decimal) -> Decimal:
        return to_money(self.amount)


KpiReward = Union[RateReward, FixedAmountReward]


@dataclass(frozen=True)
class KpiEvaluation:
    tier: models.KpiCommissionTier | None
    reward: KpiReward | None
    bonus: Decimal


@dataclass(frozen=True)
class CommissionSummary:
    total_earned: Decimal
    current_month_contracts: int
    current_month_commission: Decimal
    referred_users: int
    wallet_balance: Decimal


NO_TIER = KpiEvaluation(tier=None, reward=None, bonus=ZERO)


def reward_for_tier(tier: models.KpiCommissionTier) -> KpiReward:
    if tier.reward_type == models.KpiRewardType.RATE:
        return RateReward(rate=Decimal(tier.bonus_rate or 0))
    return FixedAmountReward(amount=Decimal(tier.bonus_amount or 0))


def _active_rate(db: Session, role_code: str) -> models.CommissionConfig | None:
    return (
        db.query(models.CommissionConfig)
        .filter(
            models.CommissionConfig.role_code == role_code,
            models.CommissionConfig.is_active.is_(True),
        )
        .order_by(models.CommissionConfig.updated_at.desc())
        .first()
    )


def _commission_role(db: Session, user_id: str) -> str:
    return RoleCode.CTV if RoleCode.CTV in rbac.get_user_roles(db, user_id) else RoleCode.USER


def get_referrer_commission_rate(db: Session, referrer_id: str) -> ReferrerRate:
    """CTV rate when the referrer is a CTV, else the USER rate, else zero."""

    candidates = []
    if RoleCode.CTV in rbac.get_user_roles(db, referrer_id):
        candidates.append(RoleCode.CTV)
    candidates.append(RoleCode.USER)

    for role_code in candidates:
        config = _active_rate(db, role_code)
        if config is not None:
            return ReferrerRate(rate=Decimal(config.rate), role_code=role_code)
    return ReferrerRate(rate=ZERO)


def process_contract_completion(
    db: Session,
    *,
    contract_id: str,
    user_id: str,
    disbursement_amount,
    revenue_percentage,
    total_revenue,
    now: datetime | None = None,
) -> models.CommissionRecord | None:
    """Pay the owner's referrer for a completed contract, at most once.

    Returns None when there is nothing to pay: no referrer, an existing
    record for the contract, or a zero rate.
    """

    now = now or utc_now()
    owner = db.get(models.User, str(user_id))
    if owner is None:
        raise NotFound("User not found", user_id=str(user_id))
    referrer_id = owner.referred_by
    if not referrer_id:
        logger.info(
            "commission_skipped", extra={"contract_id": contract_id, "reason": "no_referrer"}
        )
        return None

    existing = (
        db.query(models.CommissionRecord.id)
        .filter(models.CommissionRecord.contract_id == str(contract_id))
        .first()
    )
    if existing is not None:
        logger.info(
            "commission_skipped",
            extra={"contract_id": contract_id, "reason": "already_processed"},
        )
        return None

    rate = get_referrer_commission_rate(db, referrer_id)
    if rate.rate <= 0:
        logger.info("commission_skipped", extra={"contract_id": contract_id, "reason": "zero_rate"})
        return None

    revenue = to_money(total_revenue)
    amount = to_money(revenue * rate.rate)
    if amount <= 0:
        logger.info(
            "commission_skipped", extra={"contract_id": contract_id, "reason": "zero_amount"}
        )
        return None

    contract_number = (
        db.query(models.Contract.contract_number)
        .filter(models.Contract.id == str(contract_id))
        .scalar()
    )

    try:
        record = models.CommissionRecord(
            user_id=referrer_id,
            contract_id=str(contract_id),
            referred_user_id=owner.id,
            amount=amount,
            rate=rate.rate,
            role_code=rate.role_code or RoleCode.USER,
            disbursement_amount=to_money(disbursement_amount),
            revenue_percentage=Decimal(str(revenue_percentage)),
            total_revenue=revenue,
            status=models.CommissionStatus.PENDING,
            created_at=now,
        )
        db.add(record)
        db.flush()

        wallet = wallet_ledger.get_or_create_wallet(db, referrer_id)
        posting = wallet_ledger.credit(
            db,
            wallet_id=wallet.id,
            amount=amount,
            reference_id=record.id,
            reference_type=models.ReferenceType.COMMISSION,
            description=f"Commission for contract {contract_number or contract_id}",
            meta={
                "contract_id": str(contract_id),
                "referred_user_id": owner.id,
                "rate": str(rate.rate),
                "role_code": record.role_code,
            },
        )
        record.status = models.CommissionStatus.CREDITED
        record.credited_at = now
        record.wallet_transaction_id = posting.transaction.id
        db.commit()
    except IntegrityError:
        # A concurrent trigger recorded this contract first.
        db.rollback()
        logger.info(
            "commission_skipped",
            extra={"contract_id": contract_id, "reason": "already_processed"},
        )
        return None
    except Exception:
        db.rollback()
        raise

    logger.info(
        "commission_credited",
        extra={
            "contract_id": str(contract_id),
            "referrer_id": referrer_id,
            "amount": str(amount),
            "rate": str(rate.rate),
        },
    )
    audit_event(
        "COMMISSION_CREDITED",
        SYSTEM_ACTOR_ID,
        {
            "contract_id": str(contract_id),
            "referrer_id": referrer_id,
            "amount": str(amount),
            "rate": str(rate.rate),
        },
        db=db,
        target_type="commission_record",
        target_id=record.id,
    )
    db.refresh(record)
    return record


def calculate_kpi_tier(
    db: Session,
    *,
    role_code: str,
    total_contracts: int,
    total_disbursement,
) -> KpiEvaluation:
    """Best qualifying active tier for the role; a missing threshold always passes."""

    disbursement = Decimal(total_disbursement or 0)
    tiers = (
        db.query(models.KpiCommissionTier)
        .filter(
            models.KpiCommissionTier.role_code == str(role_code).strip().upper(),
            models.KpiCommissionTier.is_active.is_(True),
        )
        .order_by(models.KpiCommissionTier.tier_order.desc())
        .all()
    )
    for tier in tiers:
        if tier.min_contracts is not None and int(total_contracts) < tier.min_contracts:
            continue
        if tier.min_disbursement is not None and disbursement < Decimal(tier.min_disbursement):
            continue
        reward = reward_for_tier(tier)
        return KpiEvaluation(tier=tier, reward=reward, bonus=reward.bonus_for(disbursement))
    return NO_TIER


def _find_snapshot(db: Session, user_id: str, year: int, month: int):
    return (
        db.query(models.CommissionSnapshot)
        .filter(
            models.CommissionSnapshot.user_id == str(user_id),
            models.CommissionSnapshot.period_year == int(year),
            models.CommissionSnapshot.period_month == int(month),
        )
        .first()
    )


def create_monthly_snapshot(
    db: Session,
    *,
    user_id: str,
    year: int,
    month: int,
    evaluate_kpi: bool = True,
    actor_id: str = SYSTEM_ACTOR_ID,
) -> models.CommissionSnapshot:
    """Roll up a user's credited commissions for one calendar month.

    Idempotent: an existing snapshot for the period is returned unchanged.
    Creating a snapshot never moves money.
    """

    existing = _find_snapshot(db, user_id, year, month)
    if existing is not None:
        return existing

    if db.get(models.User, str(user_id)) is None:
        raise NotFound("User not found", user_id=str(user_id))

    window = month_window(year, month)
    records = (
        db.query(models.CommissionRecord)
        .filter(
            models.CommissionRecord.user_id == str(user_id),
            models.CommissionRecord.status == models.CommissionStatus.CREDITED,
            models.CommissionRecord.created_at >= window.start,
            models.CommissionRecord.created_at < window.until,
        )
        .all()
    )
    total_contracts = len(records)
    total_disbursement = to_money(sum((Decimal(r.disbursement_amount) for r in records), ZERO))
    base_commission = to_money(sum((Decimal(r.amount) for r in records), ZERO))

    role_code = _commission_role(db, user_id)
    kpi = (
        calculate_kpi_tier(
            db,
            role_code=role_code,
            total_contracts=total_contracts,
            total_disbursement=total_disbursement,
        )
        if evaluate_kpi
        else NO_TIER
    )

    try:
        snapshot = models.CommissionSnapshot(
            user_id=str(user_id),
            period_year=int(year),
            period_month=int(month),
            role_code=role_code,
            total_contracts=total_contracts,
            total_disbursement=total_disbursement,
            base_commission=base_commission,
            kpi_tier_id=kpi.tier.id if kpi.tier is not None else None,
            bonus_commission=kpi.bonus,
            total_commission=to_money(base_commission + kpi.bonus),
            status=models.SnapshotStatus.PENDING,
        )
        db.add(snapshot)
        db.flush()
        for r in records:
            r.snapshot_id = snapshot.id
        db.commit()
    except IntegrityError:
        db.rollback()
        concurrent = _find_snapshot(db, user_id, year, month)
        if concurrent is None:
            raise
        return concurrent
    except Exception:
        db.rollback()
        raise

    logger.info(
        "commission_snapshot_created",
        extra={
            "snapshot_id": snapshot.id,
            "user_id": str(user_id),
            "period": f"{int(year):04d}-{int(month):02d}",
            "total_contracts": total_contracts,
            "bonus": str(kpi.bonus),
        },
    )
    audit_event(
        "COMMISSION_SNAPSHOT_CREATED",
        actor_id,
        {
            "user_id": str(user_id),
            "year": int(year),
            "month": int(month),
            "total_contracts": total_contracts,
            "base_commission": str(base_commission),
            "bonus_commission": str(kpi.bonus),
            "kpi_tier": kpi.tier.name if kpi.tier is not None else None,
        },
        db=db,
        target_type="commission_snapshot",
        target_id=snapshot.id,
    )
    return get_snapshot(db, snapshot.id)


def get_snapshot(db: Session, snapshot_id: str) -> models.CommissionSnapshot:
    snapshot = db.get(models.CommissionSnapshot, str(snapshot_id))
    if snapshot is None:
        raise NotFound("Snapshot not found", snapshot_id=str(snapshot_id))
    return snapshot


def process_snapshot_bonus(
    db: Session,
    *,
    snapshot_id: str,
    admin_id: str,
    now: datetime | None = None,
) -> models.CommissionSnapshot:
    """Pay a PENDING snapshot's KPI bonus and mark it PROCESSED."""

    now = now or utc_now()
    snapshot = get_snapshot(db, snapshot_id)
    if snapshot.status != models.SnapshotStatus.PENDING:
        raise Conflict("Snapshot has already been processed", snapshot_id=snapshot.id)

    bonus = to_money(snapshot.bonus_commission)
    user_id = snapshot.user_id
    period = f"{snapshot.period_year:04d}-{snapshot.period_month:02d}"

    try:
        rowcount = (
            db.query(models.CommissionSnapshot)
            .filter(
                models.CommissionSnapshot.id == snapshot.id,
                models.CommissionSnapshot.status == models.SnapshotStatus.PENDING,
            )
            .update(
                {
                    "status": models.SnapshotStatus.PROCESSED,
                    "processed_by": str(admin_id),
                    "processed_at": now,
                },
                synchronize_session=False,
            )
        )
        if not rowcount:
            raise Conflict("Snapshot has already been processed", snapshot_id=snapshot.id)

        if bonus > 0:
            wallet = wallet_ledger.get_or_create_wallet(db, user_id)
            wallet_ledger.credit(
                db,
                wallet_id=wallet.id,
                amount=bonus,
                reference_id=snapshot.id,
                reference_type=models.ReferenceType.KPI_BONUS,
                description=f"KPI bonus for {period}",
                meta={"snapshot_id": snapshot.id, "kpi_tier_id": snapshot.kpi_tier_id},
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "commission_bonus_processed",
        extra={"snapshot_id": snapshot_id, "user_id": user_id, "bonus": str(bonus)},
    )
    audit_event(
        "COMMISSION_BONUS_PROCESSED",
        admin_id,
        {"user_id": user_id, "period": period, "bonus": str(bonus)},
        db=db,
        target_type="commission_snapshot",
        target_id=str(snapshot_id),
    )
    return get_snapshot(db, snapshot_id)


def list_commission_records(
    db: Session,
    *,
    user_id: str | None = None,
    status: models.CommissionStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> Page[models.CommissionRecord]:
    q = db.query(models.CommissionRecord)
    if user_id:
        q = q.filter(models.CommissionRecord.user_id == str(user_id))
    if status is not None:
        q = q.filter(models.CommissionRecord.status == status)
    q = q.order_by(models.CommissionRecord.created_at.desc(), models.CommissionRecord.id.desc())
    return paginate(q, page=page, limit=limit)


def get_commission_history(
    db: Session, user_id: str, *, page: int = 1, limit: int = 20
) -> Page[models.WalletTransaction]:
    """Commission credits on the user's wallet, newest first."""

    wallet = (
        db.query(models.Wallet.id).filter(models.Wallet.user_id == str(user_id)).scalar()
    )
    if wallet is None:
        return Page(items=[], total=0, page=max(1, int(page)), limit=max(1, int(limit)))
    return wallet_ledger.list_transactions(
        db,
        wallet_id=wallet,
        page=page,
        limit=limit,
        reference_type=models.ReferenceType.COMMISSION,
    )


def list_user_snapshots(db: Session, user_id: str) -> list[models.CommissionSnapshot]:
    return (
        db.query(models.CommissionSnapshot)
        .filter(models.CommissionSnapshot.user_id == str(user_id))
        .order_by(
            models.CommissionSnapshot.period_year.desc(),
            models.CommissionSnapshot.period_month.desc(),
        )
        .all()
    )


def list_snapshots(
    db: Session,
    *,
    year: int | None = None,
    month: int | None = None,
    status: models.SnapshotStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> Page[models.CommissionSnapshot]:
    q = db.query(models.CommissionSnapshot)
    if year is not None:
        q = q.filter(models.CommissionSnapshot.period_year == int(year))
    if month is not None:
        q = q.filter(models.CommissionSnapshot.period_month == int(month))
    if status is not None:
        q = q.filter(models.CommissionSnapshot.status == status)
    q = q.order_by(
        models.CommissionSnapshot.period_year.desc(),
        models.CommissionSnapshot.period_month.desc(),
        models.CommissionSnapshot.created_at.desc(),
    )
    return paginate(q, page=page, limit=limit)


def get_user_commission_summary(
    db: Session, user_id: str, *, now: datetime | None = None
) -> CommissionSummary:
    now = now or utc_now()
    credited = (
        models.CommissionRecord.user_id == str(user_id),
        models.CommissionRecord.status == models.CommissionStatus.CREDITED,
    )

    total_earned = (
        db.query(func.coalesce(func.sum(models.CommissionRecord.amount), 0))
        .filter(*credited)
        .scalar()
    )

    window = month_window(now.year, now.month)
    month_count, month_amount = (
        db.query(
            func.count(models.CommissionRecord.id),
            func.coalesce(func.sum(models.CommissionRecord.amount), 0),
        )
        .filter(
            *credited,
            models.CommissionRecord.created_at >= window.start,
            models.CommissionRecord.created_at < window.until,
        )
        .one()
    )

    referred_users = (
        db.query(func.count(models.User.id))
        .filter(models.User.referred_by == str(user_id))
        .scalar()
    )

    return CommissionSummary(
        total_earned=to_money(total_earned or 0),
        current_month_contracts=int(month_count or 0),
        current_month_commission=to_money(month_amount or 0),
        referred_users=int(referred_users or 0),
        wallet_balance=wallet_ledger.get_balance(db, user_id),
    )
