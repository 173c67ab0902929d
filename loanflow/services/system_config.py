from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from loanflow import models
from loanflow.core.errors import ValidationFailed
from loanflow.services.audit import audit_event

logger = logging.getLogger("loanflow.system_config")

COMMISSION_SNAPSHOT_DAY = "commission_snapshot_day"
KPI_EVALUATION_ENABLED = "kpi_evaluation_enabled"
OTP_REQUIRED = "otp_required"

DEFAULT_SNAPSHOT_DAY = 1
# Days past the 28th do not exist in every month.
MAX_SNAPSHOT_DAY = 28


def get_value(db: Session, key: str, default: Any = None) -> Any:
    row = db.get(models.SystemConfig, str(key))
    if row is None or row.value is None:
        return default
    return row.value


def _parse_snapshot_day(raw: Any) -> int | None:
    if isinstance(raw, dict):
        raw = raw.get("day")
    if isinstance(raw, bool):
        return None
    try:
        day = int(raw)
    except (TypeError, ValueError):
        return None
    if not 1 <= day <= MAX_SNAPSHOT_DAY:
        return None
    return day


def _parse_flag(raw: Any, default: bool) -> bool:
    if isinstance(raw, dict):
        raw = raw.get("enabled", default)
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        return raw.strip().lower() in {"1", "true", "yes", "y", "on"}
    if isinstance(raw, (int, float)):
        return bool(raw)
    return default


def _validate(key: str, value: Any) -> Any:
    if key == COMMISSION_SNAPSHOT_DAY:
        day = _parse_snapshot_day(value)
        if day is None:
            raise ValidationFailed(
                f"Snapshot day must be between 1 and {MAX_SNAPSHOT_DAY}", key=key
            )
        return {"day": day}
    if key in {KPI_EVALUATION_ENABLED, OTP_REQUIRED}:
        if not isinstance(value, (bool, dict)):
            raise ValidationFailed(f"{key} must be a boolean", key=key)
        return {"enabled": _parse_flag(value, False)}
    return value


def set_value(
    db: Session,
    key: str,
    value: Any,
    *,
    actor_id: str,
    description: str | None = None,
) -> models.SystemConfig:
    normalized = _validate(str(key), value)

    row = db.get(models.SystemConfig, str(key))
    if row is None:
        row = models.SystemConfig(key=str(key))
        db.add(row)
    previous = row.value
    row.value = normalized
    row.updated_by = str(actor_id)
    if description is not None:
        row.description = description

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(row)

    audit_event(
        "SYSTEM_CONFIG_UPDATED",
        actor_id,
        {"key": row.key, "previous": previous, "value": normalized},
        db=db,
        target_type="system_config",
        target_id=row.key,
    )
    return row


def list_values(db: Session) -> list[models.SystemConfig]:
    return db.query(models.SystemConfig).order_by(models.SystemConfig.key.asc()).all()


def get_snapshot_day(db: Session) -> int:
    raw = get_value(db, COMMISSION_SNAPSHOT_DAY)
    if raw is None:
        return DEFAULT_SNAPSHOT_DAY
    day = _parse_snapshot_day(raw)
    if day is None:
        logger.warning("invalid_snapshot_day_config", extra={"value": raw})
        return DEFAULT_SNAPSHOT_DAY
    return day


def is_kpi_evaluation_enabled(db: Session) -> bool:
    return _parse_flag(get_value(db, KPI_EVALUATION_ENABLED), True)


def is_otp_required(db: Session) -> bool:
    return _parse_flag(get_value(db, OTP_REQUIRED), False)
