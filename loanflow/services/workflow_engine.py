"""Workflow definitions and transition validation.

A workflow is a versioned graph of stages; contracts move along its
transitions. Only one version per workflow name is active at a time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from loanflow import models
from loanflow.core.errors import Conflict, Forbidden, NotFound, ValidationFailed
from loanflow.models.workflow import DEFAULT_STAGE_COLOR
from loanflow.schemas.workflows import (
    StageCreate,
    StageDefinition,
    StageUpdate,
    TransitionCreate,
    TransitionUpdate,
    WorkflowCreate,
    WorkflowUpdate,
)
from loanflow.services import rbac
from loanflow.services.audit import audit_event

logger = logging.getLogger("loanflow.workflow")

REQUIRED_STAGE_CODES = ("DRAFT", "SUBMITTED", "COMPLETED")
DRAFT_STAGE_CODE = "DRAFT"


@dataclass(frozen=True)
class TransitionCheck:
    allowed: bool
    reason: str | None = None
    transition: models.WorkflowTransition | None = None


def default_stage_definitions() -> list[StageDefinition]:
    return [
        StageDefinition(code="DRAFT", name="Draft", stage_order=0, color="#6B7280"),
        StageDefinition(code="SUBMITTED", name="Submitted", stage_order=1, color="#F59E0B"),
        StageDefinition(code="REVIEWING", name="Reviewing", stage_order=2, color="#3B82F6"),
        StageDefinition(code="APPROVED", name="Approved", stage_order=3, color="#10B981"),
        StageDefinition(code="DISBURSED", name="Disbursed", stage_order=4, color="#8B5CF6"),
        StageDefinition(
            code="COMPLETED",
            name="Completed",
            stage_order=5,
            color="#22C55E",
            triggers_commission=True,
        ),
        StageDefinition(code="REJECTED", name="Rejected", stage_order=6, color="#EF4444"),
    ]


def missing_required_stage_codes(codes) -> list[str]:
    present = {str(c).strip().upper() for c in codes}
    return [code for code in REQUIRED_STAGE_CODES if code not in present]


def _validate_stage_list(stages: list[StageDefinition]) -> None:
    missing = missing_required_stage_codes(s.code for s in stages)
    if missing:
        raise ValidationFailed(
            f"Workflow must include required stages: {', '.join(missing)}. "
            "These stages are mandatory for proper contract flow.",
            code="WORKFLOW_REQUIRED_STAGES_MISSING",
            missing=missing,
        )

    seen: set[str] = set()
    for s in stages:
        if s.code in seen:
            raise ValidationFailed(f"Duplicate stage code in workflow: {s.code}")
        seen.add(s.code)


def _workflow_query(db: Session):
    return db.query(models.Workflow).options(
        selectinload(models.Workflow.stages),
        selectinload(models.Workflow.transitions),
    )


def create_workflow(
    db: Session,
    payload: WorkflowCreate,
    *,
    actor_id: str | None = None,
) -> models.Workflow:
    """Create the next version of a workflow and make it the only active one.

    Stages and transitions are created in the same transaction; any invalid
    transition reference aborts the whole creation.
    """

    stages = list(payload.stages or [])
    if stages:
        _validate_stage_list(stages)

    latest_version = (
        db.query(func.max(models.Workflow.version))
        .filter(models.Workflow.name == payload.name)
        .scalar()
    )
    version = int(latest_version or 0) + 1

    try:
        workflow = models.Workflow(
            name=payload.name,
            description=payload.description,
            version=version,
            is_active=True,
            created_by=actor_id,
        )
        db.add(workflow)
        db.flush()

        stage_ids: dict[str, str] = {}
        for s in stages:
            stage = models.WorkflowStage(
                workflow_id=workflow.id,
                code=s.code,
                name=s.name,
                stage_order=s.stage_order,
                color=s.color or DEFAULT_STAGE_COLOR,
                is_required=s.code in REQUIRED_STAGE_CODES or bool(s.is_required),
                triggers_commission=bool(s.triggers_commission),
            )
            db.add(stage)
            db.flush()
            stage_ids[stage.code] = stage.id

        for t in payload.transitions or []:
            from_id = stage_ids.get(t.from_stage_code.strip().upper())
            to_id = stage_ids.get(t.to_stage_code.strip().upper())
            if not from_id or not to_id:
                raise ValidationFailed(
                    f"Invalid stage code in transition: {t.from_stage_code} -> {t.to_stage_code}"
                )
            db.add(
                models.WorkflowTransition(
                    workflow_id=workflow.id,
                    from_stage_id=from_id,
                    to_stage_id=to_id,
                    name=t.name,
                    required_permission=t.required_permission or None,
                )
            )
        db.flush()

        (
            db.query(models.Workflow)
            .filter(models.Workflow.name == payload.name, models.Workflow.id != workflow.id)
            .update({"is_active": False}, synchronize_session=False)
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict(
            "Workflow definition conflicts with an existing one (duplicate stage or transition)"
        ) from exc
    except Exception:
        db.rollback()
        raise

    logger.info(
        "workflow_created",
        extra={"workflow_id": workflow.id, "workflow_name": workflow.name, "version": version},
    )
    audit_event(
        "WORKFLOW_CREATED",
        actor_id,
        {"name": workflow.name, "version": version, "stages": len(stages)},
        db=db,
        target_type="workflow",
        target_id=workflow.id,
    )
    return get_workflow(db, workflow.id)


def get_workflow(db: Session, workflow_id: str) -> models.Workflow:
    workflow = _workflow_query(db).filter(models.Workflow.id == str(workflow_id)).first()
    if workflow is None:
        raise NotFound("Workflow not found", workflow_id=str(workflow_id))
    return workflow


def list_workflows(db: Session, *, active_only: bool = False) -> list[models.Workflow]:
    q = _workflow_query(db)
    if active_only:
        q = q.filter(models.Workflow.is_active.is_(True))
    return q.order_by(models.Workflow.name.asc(), models.Workflow.version.desc()).all()


def find_active_by_name(db: Session, name: str) -> models.Workflow:
    workflow = (
        _workflow_query(db)
        .filter(models.Workflow.name == name, models.Workflow.is_active.is_(True))
        .first()
    )
    if workflow is None:
        raise NotFound("Active workflow not found", name=name)
    return workflow


def update_workflow(db: Session, workflow_id: str, payload: WorkflowUpdate) -> models.Workflow:
    """Update metadata only; the stage graph is not re-validated here."""

    workflow = get_workflow(db, workflow_id)
    if payload.description is not None:
        workflow.description = payload.description
    if payload.is_active is not None:
        workflow.is_active = bool(payload.is_active)
        if workflow.is_active:
            (
                db.query(models.Workflow)
                .filter(models.Workflow.name == workflow.name, models.Workflow.id != workflow.id)
                .update({"is_active": False}, synchronize_session=False)
            )
    db.commit()
    db.refresh(workflow)
    return workflow


def get_initial_stage(db: Session, workflow_id: str) -> models.WorkflowStage:
    stage = (
        db.query(models.WorkflowStage)
        .filter(models.WorkflowStage.workflow_id == str(workflow_id))
        .order_by(models.WorkflowStage.stage_order.asc())
        .first()
    )
    if stage is None:
        raise ValidationFailed("Workflow has no stages", workflow_id=str(workflow_id))
    return stage


def get_stage_by_code(db: Session, workflow_id: str, code: str) -> models.WorkflowStage:
    stage = (
        db.query(models.WorkflowStage)
        .filter(
            models.WorkflowStage.workflow_id == str(workflow_id),
            models.WorkflowStage.code == str(code).strip().upper(),
        )
        .first()
    )
    if stage is None:
        raise NotFound(f"Stage with code '{code}' not found", workflow_id=str(workflow_id))
    return stage


def get_next_stage(db: Session, stage: models.WorkflowStage) -> models.WorkflowStage | None:
    """Next stage in the default linear order of ``stage``'s workflow."""

    return (
        db.query(models.WorkflowStage)
        .filter(
            models.WorkflowStage.workflow_id == stage.workflow_id,
            models.WorkflowStage.stage_order > stage.stage_order,
        )
        .order_by(models.WorkflowStage.stage_order.asc())
        .first()
    )


def get_available_transitions(
    db: Session, workflow_id: str, current_stage_id: str
) -> list[models.WorkflowTransition]:
    return (
        db.query(models.WorkflowTransition)
        .filter(
            models.WorkflowTransition.workflow_id == str(workflow_id),
            models.WorkflowTransition.from_stage_id == str(current_stage_id),
        )
        .all()
    )


def can_transition(
    db: Session,
    workflow_id: str,
    from_stage_id: str,
    to_stage_id: str,
    actor_id: str,
) -> TransitionCheck:
    transition = (
        db.query(models.WorkflowTransition)
        .filter(
            models.WorkflowTransition.workflow_id == str(workflow_id),
            models.WorkflowTransition.from_stage_id == str(from_stage_id),
            models.WorkflowTransition.to_stage_id == str(to_stage_id),
        )
        .first()
    )
    if transition is None:
        return TransitionCheck(allowed=False, reason="Invalid transition")

    permission = transition.required_permission
    if permission and not rbac.has_permission(db, actor_id, permission):
        return TransitionCheck(
            allowed=False,
            reason=f"Missing permission: {permission}",
            transition=transition,
        )

    return TransitionCheck(allowed=True, transition=transition)


def validate_transition(
    db: Session,
    workflow_id: str,
    from_stage_id: str,
    to_stage_id: str,
    actor_id: str,
) -> models.WorkflowTransition:
    check = can_transition(db, workflow_id, from_stage_id, to_stage_id, actor_id)
    if not check.allowed:
        raise Forbidden(
            check.reason or "Invalid transition",
            code="TRANSITION_NOT_ALLOWED",
            from_stage_id=str(from_stage_id),
            to_stage_id=str(to_stage_id),
        )
    return check.transition


def _get_stage_in_workflow(
    db: Session, workflow_id: str, stage_id: str
) -> models.WorkflowStage | None:
    return (
        db.query(models.WorkflowStage)
        .filter(
            models.WorkflowStage.id == str(stage_id),
            models.WorkflowStage.workflow_id == str(workflow_id),
        )
        .first()
    )


def create_stage(db: Session, workflow_id: str, payload: StageCreate) -> models.WorkflowStage:
    get_workflow(db, workflow_id)

    exists = (
        db.query(models.WorkflowStage.id)
        .filter(
            models.WorkflowStage.workflow_id == str(workflow_id),
            models.WorkflowStage.code == payload.code,
        )
        .first()
    )
    if exists:
        raise Conflict(f"Stage with code '{payload.code}' already exists in this workflow")

    stage = models.WorkflowStage(
        workflow_id=str(workflow_id),
        code=payload.code,
        name=payload.name,
        stage_order=payload.stage_order,
        color=payload.color or DEFAULT_STAGE_COLOR,
        is_required=payload.code in REQUIRED_STAGE_CODES or bool(payload.is_required),
        triggers_commission=bool(payload.triggers_commission),
    )
    db.add(stage)
    db.commit()
    db.refresh(stage)
    return stage


def update_stage(
    db: Session, workflow_id: str, stage_id: str, payload: StageUpdate
) -> models.WorkflowStage:
    stage = _get_stage_in_workflow(db, workflow_id, stage_id)
    if stage is None:
        raise NotFound("Stage not found", stage_id=str(stage_id))

    if payload.name is not None:
        stage.name = payload.name
    if payload.stage_order is not None:
        stage.stage_order = payload.stage_order
    if payload.color is not None:
        stage.color = payload.color
    if payload.triggers_commission is not None:
        stage.triggers_commission = bool(payload.triggers_commission)
    db.commit()
    db.refresh(stage)
    return stage


def delete_stage(db: Session, workflow_id: str, stage_id: str) -> None:
    stage = _get_stage_in_workflow(db, workflow_id, stage_id)
    if stage is None:
        raise NotFound("Stage not found", stage_id=str(stage_id))

    in_use = (
        db.query(func.count(models.Contract.id))
        .filter(models.Contract.current_stage_id == stage.id)
        .scalar()
    )
    if in_use:
        raise Conflict(f"Cannot delete stage: {int(in_use)} contract(s) are using this stage")

    try:
        (
            db.query(models.WorkflowTransition)
            .filter(
                or_(
                    models.WorkflowTransition.from_stage_id == stage.id,
                    models.WorkflowTransition.to_stage_id == stage.id,
                )
            )
            .delete(synchronize_session=False)
        )
        db.delete(stage)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("Cannot delete stage: it is still referenced") from exc
    db.expire_all()


def create_transition(
    db: Session, workflow_id: str, payload: TransitionCreate
) -> models.WorkflowTransition:
    get_workflow(db, workflow_id)

    if _get_stage_in_workflow(db, workflow_id, payload.from_stage_id) is None:
        raise ValidationFailed("From stage not found in this workflow")
    if _get_stage_in_workflow(db, workflow_id, payload.to_stage_id) is None:
        raise ValidationFailed("To stage not found in this workflow")

    exists = (
        db.query(models.WorkflowTransition.id)
        .filter(
            models.WorkflowTransition.workflow_id == str(workflow_id),
            models.WorkflowTransition.from_stage_id == payload.from_stage_id,
            models.WorkflowTransition.to_stage_id == payload.to_stage_id,
        )
        .first()
    )
    if exists:
        raise Conflict("This transition already exists")

    transition = models.WorkflowTransition(
        workflow_id=str(workflow_id),
        from_stage_id=payload.from_stage_id,
        to_stage_id=payload.to_stage_id,
        name=payload.name,
        required_permission=payload.required_permission or None,
    )
    db.add(transition)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("This transition already exists") from exc
    db.refresh(transition)
    return transition


def update_transition(
    db: Session, workflow_id: str, transition_id: str, payload: TransitionUpdate
) -> models.WorkflowTransition:
    transition = (
        db.query(models.WorkflowTransition)
        .filter(
            models.WorkflowTransition.id == str(transition_id),
            models.WorkflowTransition.workflow_id == str(workflow_id),
        )
        .first()
    )
    if transition is None:
        raise NotFound("Transition not found", transition_id=str(transition_id))

    fields = payload.model_fields_set
    if "required_permission" in fields:
        transition.required_permission = payload.required_permission or None
    if "name" in fields:
        transition.name = payload.name
    db.commit()
    db.refresh(transition)
    return transition


def delete_transition(db: Session, workflow_id: str, transition_id: str) -> None:
    transition = (
        db.query(models.WorkflowTransition)
        .filter(
            models.WorkflowTransition.id == str(transition_id),
            models.WorkflowTransition.workflow_id == str(workflow_id),
        )
        .first()
    )
    if transition is None:
        raise NotFound("Transition not found", transition_id=str(transition_id))
    db.delete(transition)
    db.commit()
