from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from loanflow import models
from loanflow.core.errors import Conflict, NotFound, ValidationFailed
from loanflow.schemas.commission import (
    CommissionConfigCreate,
    CommissionConfigUpdate,
    KpiTierCreate,
    KpiTierUpdate,
)

logger = logging.getLogger("loanflow.commission")

_ONE = Decimal("1")


def _ensure_role_exists(db: Session, role_code: str) -> None:
    if db.query(models.Role.id).filter(models.Role.code == role_code).first() is None:
        raise NotFound(f"Role not found: {role_code}", role_code=role_code)


def _check_rate(rate: Decimal) -> None:
    if not Decimal("0") <= Decimal(rate) <= _ONE:
        raise ValidationFailed("Commission rate must be between 0 and 1")


def _active_config_exists(db: Session, role_code: str, *, exclude_id: str | None = None) -> bool:
    q = db.query(models.CommissionConfig.id).filter(
        models.CommissionConfig.role_code == role_code,
        models.CommissionConfig.is_active.is_(True),
    )
    if exclude_id:
        q = q.filter(models.CommissionConfig.id != exclude_id)
    return q.first() is not None


def create_commission_config(
    db: Session, payload: CommissionConfigCreate
) -> models.CommissionConfig:
    _ensure_role_exists(db, payload.role_code)
    _check_rate(payload.rate)
    if payload.is_active and _active_config_exists(db, payload.role_code):
        raise Conflict(
            "Active commission config already exists for this role",
            role_code=payload.role_code,
        )

    config = models.CommissionConfig(
        role_code=payload.role_code,
        rate=payload.rate,
        description=payload.description,
        is_active=payload.is_active,
    )
    db.add(config)
    db.commit()
    db.refresh(config)
    logger.info(
        "commission_config_created",
        extra={"role_code": config.role_code, "rate": str(config.rate)},
    )
    return config


def get_commission_config(db: Session, config_id: str) -> models.CommissionConfig:
    config = db.get(models.CommissionConfig, str(config_id))
    if config is None:
        raise NotFound("Commission config not found", config_id=str(config_id))
    return config


def update_commission_config(
    db: Session, config_id: str, payload: CommissionConfigUpdate
) -> models.CommissionConfig:
    config = get_commission_config(db, config_id)

    if payload.rate is not None:
        _check_rate(payload.rate)
        config.rate = payload.rate
    if payload.description is not None:
        config.description = payload.description
    if payload.is_active is not None:
        if payload.is_active and _active_config_exists(db, config.role_code, exclude_id=config.id):
            raise Conflict(
                "Active commission config already exists for this role",
                role_code=config.role_code,
            )
        config.is_active = bool(payload.is_active)

    db.commit()
    db.refresh(config)
    return config


def list_commission_configs(
    db: Session, *, active_only: bool = False
) -> list[models.CommissionConfig]:
    q = db.query(models.CommissionConfig)
    if active_only:
        q = q.filter(models.CommissionConfig.is_active.is_(True))
    return q.order_by(
        models.CommissionConfig.role_code.asc(), models.CommissionConfig.created_at.desc()
    ).all()


def _check_reward(
    reward_type: models.KpiRewardType,
    bonus_rate: Decimal | None,
    bonus_amount: Decimal | None,
) -> None:
    if reward_type == models.KpiRewardType.RATE:
        if bonus_rate is None:
            raise ValidationFailed("bonus_rate is required for RATE tiers")
        _check_rate(bonus_rate)
    elif bonus_amount is None or Decimal(bonus_amount) < 0:
        raise ValidationFailed("bonus_amount is required for FIXED_AMOUNT tiers")


def create_kpi_tier(db: Session, payload: KpiTierCreate) -> models.KpiCommissionTier:
    _ensure_role_exists(db, payload.role_code)
    _check_reward(payload.reward_type, payload.bonus_rate, payload.bonus_amount)

    tier = models.KpiCommissionTier(
        role_code=payload.role_code,
        name=payload.name,
        tier_order=payload.tier_order,
        min_contracts=payload.min_contracts,
        min_disbursement=payload.min_disbursement,
        reward_type=payload.reward_type,
        bonus_rate=payload.bonus_rate if payload.reward_type == models.KpiRewardType.RATE else None,
        bonus_amount=(
            payload.bonus_amount
            if payload.reward_type == models.KpiRewardType.FIXED_AMOUNT
            else None
        ),
        is_active=payload.is_active,
    )
    db.add(tier)
    db.commit()
    db.refresh(tier)
    return tier


def get_kpi_tier(db: Session, tier_id: str) -> models.KpiCommissionTier:
    tier = db.get(models.KpiCommissionTier, str(tier_id))
    if tier is None:
        raise NotFound("KPI tier not found", tier_id=str(tier_id))
    return tier


def update_kpi_tier(
    db: Session, tier_id: str, payload: KpiTierUpdate
) -> models.KpiCommissionTier:
    tier = get_kpi_tier(db, tier_id)

    fields = payload.model_fields_set
    for name in (
        "name",
        "tier_order",
        "min_contracts",
        "min_disbursement",
        "reward_type",
        "bonus_rate",
        "bonus_amount",
        "is_active",
    ):
        if name in fields:
            value = getattr(payload, name)
            if value is None and name in {"name", "tier_order", "reward_type", "is_active"}:
                continue
            setattr(tier, name, value)

    try:
        _check_reward(tier.reward_type, tier.bonus_rate, tier.bonus_amount)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(tier)
    return tier


def list_kpi_tiers(
    db: Session, *, role_code: str | None = None, active_only: bool = False
) -> list[models.KpiCommissionTier]:
    q = db.query(models.KpiCommissionTier)
    if role_code:
        q = q.filter(models.KpiCommissionTier.role_code == role_code.strip().upper())
    if active_only:
        q = q.filter(models.KpiCommissionTier.is_active.is_(True))
    return q.order_by(
        models.KpiCommissionTier.role_code.asc(), models.KpiCommissionTier.tier_order.desc()
    ).all()


def delete_kpi_tier(db: Session, tier_id: str) -> None:
    tier = get_kpi_tier(db, tier_id)
    used = (
        db.query(models.CommissionSnapshot.id)
        .filter(models.CommissionSnapshot.kpi_tier_id == tier.id)
        .first()
    )
    if used is not None:
        raise Conflict("Cannot delete KPI tier that has been used in snapshots", tier_id=tier.id)
    db.delete(tier)
    db.commit()
