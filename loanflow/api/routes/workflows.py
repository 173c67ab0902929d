# ruff: noqa: B008
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from loanflow import models
from loanflow.api.deps import get_current_user, require_roles
from loanflow.database import get_db
from loanflow.schemas.workflows import (
    StageCreate,
    StageDefinition,
    StageRead,
    StageUpdate,
    TransitionCheckRead,
    TransitionCreate,
    TransitionRead,
    TransitionUpdate,
    WorkflowCreate,
    WorkflowRead,
    WorkflowUpdate,
)
from loanflow.services import rbac, workflow_engine

router = APIRouter(prefix="/workflows", tags=["workflows"])

_admin_dep = require_roles(models.RoleCode.ADMIN)


@router.get("", response_model=list[WorkflowRead])
def list_workflows(
    active_only: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return workflow_engine.list_workflows(db, active_only=active_only)


@router.post("", response_model=WorkflowRead, status_code=status.HTTP_201_CREATED)
def create_workflow(
    payload: WorkflowCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return workflow_engine.create_workflow(db, payload, actor_id=current_user.id)


@router.get("/default-stages", response_model=list[StageDefinition])
def default_stages(current_user: models.User = Depends(_admin_dep)):
    return workflow_engine.default_stage_definitions()


@router.get("/{workflow_id}", response_model=WorkflowRead)
def get_workflow(
    workflow_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return workflow_engine.get_workflow(db, workflow_id)


@router.patch("/{workflow_id}", response_model=WorkflowRead)
def update_workflow(
    workflow_id: str,
    payload: WorkflowUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    workflow_engine.update_workflow(db, workflow_id, payload)
    return workflow_engine.get_workflow(db, workflow_id)


@router.post(
    "/{workflow_id}/stages", response_model=StageRead, status_code=status.HTTP_201_CREATED
)
def create_stage(
    workflow_id: str,
    payload: StageCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return workflow_engine.create_stage(db, workflow_id, payload)


@router.patch("/{workflow_id}/stages/{stage_id}", response_model=StageRead)
def update_stage(
    workflow_id: str,
    stage_id: str,
    payload: StageUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return workflow_engine.update_stage(db, workflow_id, stage_id, payload)


@router.delete("/{workflow_id}/stages/{stage_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_stage(
    workflow_id: str,
    stage_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    workflow_engine.delete_stage(db, workflow_id, stage_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{workflow_id}/transitions",
    response_model=TransitionRead,
    status_code=status.HTTP_201_CREATED,
)
def create_transition(
    workflow_id: str,
    payload: TransitionCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return workflow_engine.create_transition(db, workflow_id, payload)


@router.patch("/{workflow_id}/transitions/{transition_id}", response_model=TransitionRead)
def update_transition(
    workflow_id: str,
    transition_id: str,
    payload: TransitionUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return workflow_engine.update_transition(db, workflow_id, transition_id, payload)


@router.delete(
    "/{workflow_id}/transitions/{transition_id}", status_code=status.HTTP_204_NO_CONTENT
)
def delete_transition(
    workflow_id: str,
    transition_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    workflow_engine.delete_transition(db, workflow_id, transition_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{workflow_id}/can-transition", response_model=TransitionCheckRead)
def can_transition(
    workflow_id: str,
    from_stage_id: str = Query(...),
    to_stage_id: str = Query(...),
    user_id: Optional[str] = Query(None, description="Check for another user (admin only)"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    actor_id = current_user.id
    if user_id and user_id != current_user.id:
        if not rbac.has_any_role(db, current_user.id, models.RoleCode.ADMIN):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        actor_id = user_id
    check = workflow_engine.can_transition(db, workflow_id, from_stage_id, to_stage_id, actor_id)
    return TransitionCheckRead(allowed=check.allowed, reason=check.reason)
