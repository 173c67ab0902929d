# ruff: noqa: B008
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from loanflow import models
from loanflow.api.deps import require_roles
from loanflow.database import get_db
from loanflow.schemas.commission import SnapshotBatchRead, SnapshotRunRequest
from loanflow.services import scheduler, system_config

router = APIRouter(prefix="/scheduler", tags=["scheduler"])

_admin_dep = require_roles(models.RoleCode.ADMIN)


@router.get("/status")
def scheduler_status(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return {
        "running": scheduler.runner.is_running,
        "daily_utc_hour": scheduler.runner.hour_utc,
        "snapshot_day": system_config.get_snapshot_day(db),
        "kpi_evaluation_enabled": system_config.is_kpi_evaluation_enabled(db),
    }


@router.post("/commission-snapshots/run", response_model=SnapshotBatchRead)
def run_commission_snapshots(
    payload: SnapshotRunRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    batch = scheduler.run_manual_snapshot(
        db, year=payload.year, month=payload.month, actor_id=current_user.id
    )
    return SnapshotBatchRead.model_validate(batch)
