# ruff: noqa: B008
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from loanflow import models
from loanflow.api.deps import require_roles
from loanflow.database import get_db
from loanflow.schemas.system import SystemConfigRead, SystemConfigUpdate
from loanflow.services import system_config

router = APIRouter(prefix="/system-config", tags=["system-config"])

_admin_dep = require_roles(models.RoleCode.ADMIN)


@router.get("", response_model=list[SystemConfigRead])
def list_system_config(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return system_config.list_values(db)


@router.put("/{key}", response_model=SystemConfigRead)
def set_system_config(
    key: str,
    payload: SystemConfigUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return system_config.set_value(
        db, key, payload.value, actor_id=current_user.id, description=payload.description
    )
