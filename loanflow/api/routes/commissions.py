# ruff: noqa: B008
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from loanflow import models
from loanflow.api.deps import get_current_user, require_roles
from loanflow.core.periods import utc_now
from loanflow.database import get_db
from loanflow.schemas.commission import (
    CommissionConfigCreate,
    CommissionConfigRead,
    CommissionConfigUpdate,
    CommissionRecordPageRead,
    CommissionSnapshotPageRead,
    CommissionSnapshotRead,
    CommissionSummaryRead,
    CreatorRevenueRead,
    KpiTierCreate,
    KpiTierRead,
    KpiTierUpdate,
    RevenueSummaryRead,
    SnapshotRunRequest,
)
from loanflow.schemas.ledger import WalletTransactionPageRead
from loanflow.services import commission_engine, commission_settings, rbac, revenue_stats

router = APIRouter(prefix="/commissions", tags=["commissions"])

_admin_dep = require_roles(models.RoleCode.ADMIN)
_stats_dep = require_roles(models.RoleCode.CTV)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@router.get("/configs", response_model=list[CommissionConfigRead])
def list_commission_configs(
    active_only: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return commission_settings.list_commission_configs(db, active_only=active_only)


@router.post(
    "/configs", response_model=CommissionConfigRead, status_code=status.HTTP_201_CREATED
)
def create_commission_config(
    payload: CommissionConfigCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return commission_settings.create_commission_config(db, payload)


@router.patch("/configs/{config_id}", response_model=CommissionConfigRead)
def update_commission_config(
    config_id: str,
    payload: CommissionConfigUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return commission_settings.update_commission_config(db, config_id, payload)


@router.get("/kpi-tiers", response_model=list[KpiTierRead])
def list_kpi_tiers(
    role_code: Optional[str] = Query(None),
    active_only: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return commission_settings.list_kpi_tiers(db, role_code=role_code, active_only=active_only)


@router.post("/kpi-tiers", response_model=KpiTierRead, status_code=status.HTTP_201_CREATED)
def create_kpi_tier(
    payload: KpiTierCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return commission_settings.create_kpi_tier(db, payload)


@router.patch("/kpi-tiers/{tier_id}", response_model=KpiTierRead)
def update_kpi_tier(
    tier_id: str,
    payload: KpiTierUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return commission_settings.update_kpi_tier(db, tier_id, payload)


@router.delete("/kpi-tiers/{tier_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_kpi_tier(
    tier_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    commission_settings.delete_kpi_tier(db, tier_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Earnings
# ---------------------------------------------------------------------------


@router.get("/me/summary", response_model=CommissionSummaryRead)
def my_commission_summary(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    summary = commission_engine.get_user_commission_summary(db, current_user.id)
    return CommissionSummaryRead.model_validate(summary)


@router.get("/me/history", response_model=WalletTransactionPageRead)
def my_commission_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    result = commission_engine.get_commission_history(db, current_user.id, page=page, limit=limit)
    return WalletTransactionPageRead.model_validate(result)


@router.get("/me/snapshots", response_model=list[CommissionSnapshotRead])
def my_snapshots(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return commission_engine.list_user_snapshots(db, current_user.id)


@router.get("/records", response_model=CommissionRecordPageRead)
def list_commission_records(
    user_id: Optional[str] = Query(None),
    status_filter: Optional[models.CommissionStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    result = commission_engine.list_commission_records(
        db, user_id=user_id, status=status_filter, page=page, limit=limit
    )
    return CommissionRecordPageRead.model_validate(result)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@router.get("/snapshots", response_model=CommissionSnapshotPageRead)
def list_snapshots(
    year: Optional[int] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    status_filter: Optional[models.SnapshotStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    result = commission_engine.list_snapshots(
        db, year=year, month=month, status=status_filter, page=page, limit=limit
    )
    return CommissionSnapshotPageRead.model_validate(result)


@router.post(
    "/snapshots/users/{user_id}",
    response_model=CommissionSnapshotRead,
    status_code=status.HTTP_201_CREATED,
)
def create_user_snapshot(
    user_id: str,
    payload: SnapshotRunRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return commission_engine.create_monthly_snapshot(
        db, user_id=user_id, year=payload.year, month=payload.month, actor_id=current_user.id
    )


@router.get("/snapshots/{snapshot_id}", response_model=CommissionSnapshotRead)
def get_snapshot(
    snapshot_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    snapshot = commission_engine.get_snapshot(db, snapshot_id)
    if snapshot.user_id != current_user.id and not rbac.has_any_role(
        db, current_user.id, models.RoleCode.ADMIN
    ):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
    return snapshot


@router.post("/snapshots/{snapshot_id}/process", response_model=CommissionSnapshotRead)
def process_snapshot_bonus(
    snapshot_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return commission_engine.process_snapshot_bonus(
        db, snapshot_id=snapshot_id, admin_id=current_user.id
    )


# ---------------------------------------------------------------------------
# Revenue statistics
# ---------------------------------------------------------------------------


def _scoped_creator(db: Session, user: models.User, creator_id: Optional[str]) -> Optional[str]:
    """Agents only see their own numbers; admins may filter by anyone."""

    if rbac.has_any_role(db, user.id, models.RoleCode.ADMIN):
        return creator_id
    return user.id


@router.get("/stats/revenue", response_model=RevenueSummaryRead)
def revenue_summary(
    period: str = Query("month"),
    anchor: Optional[date] = Query(None),
    creator_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_stats_dep),
):
    summary = revenue_stats.revenue_summary(
        db,
        period=period,
        anchor=anchor or utc_now().date(),
        creator_id=_scoped_creator(db, current_user, creator_id),
    )
    return RevenueSummaryRead.model_validate(summary)


@router.get("/stats/revenue/series", response_model=list[RevenueSummaryRead])
def revenue_series(
    period: str = Query("month"),
    anchor: Optional[date] = Query(None),
    buckets: int = Query(6, ge=1, le=revenue_stats.MAX_BUCKETS),
    creator_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_stats_dep),
):
    series = revenue_stats.revenue_series(
        db,
        period=period,
        anchor=anchor or utc_now().date(),
        buckets=buckets,
        creator_id=_scoped_creator(db, current_user, creator_id),
    )
    return [RevenueSummaryRead.model_validate(s) for s in series]


@router.get("/stats/revenue/by-creator", response_model=list[CreatorRevenueRead])
def revenue_by_creator(
    start: datetime = Query(...),
    end: datetime = Query(...),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    rows = revenue_stats.revenue_by_creator(db, start=start, end=end)
    return [CreatorRevenueRead.model_validate(r) for r in rows]
