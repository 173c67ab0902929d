"""Workflow definition, versioning and transition gating."""

import pytest

from loanflow import models
from loanflow.core.errors import Conflict, Forbidden, ValidationFailed
from loanflow.schemas.contracts import ContractCreate
from loanflow.schemas.workflows import (
    StageCreate,
    StageDefinition,
    TransitionCreate,
    TransitionDefinition,
    WorkflowCreate,
)
from loanflow.services import contracts, workflow_engine


def _stages(*codes):
    return [StageDefinition(code=c, name=c.title(), stage_order=i) for i, c in enumerate(codes)]


def test_create_workflow_persists_stages_and_transitions(db_session, lending_workflow):
    wf = workflow_engine.get_workflow(db_session, lending_workflow.id)

    assert wf.version == 1
    assert wf.is_active is True
    assert [s.code for s in wf.stages] == [
        "DRAFT",
        "SUBMITTED",
        "REVIEWING",
        "APPROVED",
        "DISBURSED",
        "COMPLETED",
        "REJECTED",
    ]
    assert len(wf.transitions) == 6

    completed = next(s for s in wf.stages if s.code == "COMPLETED")
    assert completed.triggers_commission is True
    assert completed.is_required is True
    assert workflow_engine.get_initial_stage(db_session, wf.id).code == "DRAFT"


def test_create_workflow_rejects_missing_required_stages(db_session, admin):
    payload = WorkflowCreate(name="Broken", stages=_stages("DRAFT", "REVIEWING"))

    with pytest.raises(ValidationFailed) as exc:
        workflow_engine.create_workflow(db_session, payload, actor_id=admin.id)

    assert "Workflow must include required stages: SUBMITTED, COMPLETED" in exc.value.detail
    assert exc.value.context["missing"] == ["SUBMITTED", "COMPLETED"]
    assert db_session.query(models.Workflow).count() == 0


def test_invalid_transition_code_aborts_whole_creation(db_session, admin):
    payload = WorkflowCreate(
        name="Typo",
        stages=_stages("DRAFT", "SUBMITTED", "COMPLETED"),
        transitions=[TransitionDefinition(from_stage_code="DRAFT", to_stage_code="SUBMITED")],
    )

    with pytest.raises(ValidationFailed) as exc:
        workflow_engine.create_workflow(db_session, payload, actor_id=admin.id)

    assert exc.value.detail == "Invalid stage code in transition: DRAFT -> SUBMITED"
    assert db_session.query(models.Workflow).count() == 0
    assert db_session.query(models.WorkflowStage).count() == 0


def test_new_version_deactivates_previous(db_session, admin, lending_workflow):
    payload = WorkflowCreate(name="Personal loan", stages=_stages("DRAFT", "SUBMITTED", "COMPLETED"))

    v2 = workflow_engine.create_workflow(db_session, payload, actor_id=admin.id)
    db_session.expire_all()

    assert v2.version == 2
    assert workflow_engine.get_workflow(db_session, lending_workflow.id).is_active is False
    assert workflow_engine.find_active_by_name(db_session, "Personal loan").id == v2.id


def test_stage_codes_are_upper_cased(db_session, admin):
    payload = WorkflowCreate(name="Lower", stages=_stages("draft", "submitted", "completed"))

    wf = workflow_engine.create_workflow(db_session, payload, actor_id=admin.id)

    assert {s.code for s in wf.stages} == {"DRAFT", "SUBMITTED", "COMPLETED"}


def test_empty_stage_list_creates_stageless_workflow(db_session, admin):
    wf = workflow_engine.create_workflow(
        db_session, WorkflowCreate(name="Empty"), actor_id=admin.id
    )

    assert wf.stages == []
    with pytest.raises(ValidationFailed, match="Workflow has no stages"):
        workflow_engine.get_initial_stage(db_session, wf.id)


def test_can_transition_reports_reasons(db_session, make_user, admin, lending_workflow, stage):
    agent = make_user("Agent", role_codes=(models.RoleCode.CTV,))
    wf_id = lending_workflow.id

    bad = workflow_engine.can_transition(
        db_session, wf_id, stage("DRAFT").id, stage("COMPLETED").id, admin.id
    )
    assert bad.allowed is False
    assert bad.reason == "Invalid transition"

    gated = workflow_engine.can_transition(
        db_session, wf_id, stage("DISBURSED").id, stage("COMPLETED").id, agent.id
    )
    assert gated.allowed is False
    assert gated.reason == "Missing permission: contract.complete"

    ok = workflow_engine.can_transition(
        db_session, wf_id, stage("DISBURSED").id, stage("COMPLETED").id, admin.id
    )
    assert ok.allowed is True
    assert ok.transition is not None

    with pytest.raises(Forbidden, match="Missing permission: contract.complete"):
        workflow_engine.validate_transition(
            db_session, wf_id, stage("DISBURSED").id, stage("COMPLETED").id, agent.id
        )


def test_duplicate_stage_code_is_conflict(db_session, lending_workflow):
    with pytest.raises(Conflict) as exc:
        workflow_engine.create_stage(
            db_session,
            lending_workflow.id,
            StageCreate(code="reviewing", name="Again", stage_order=9),
        )

    assert exc.value.detail == "Stage with code 'REVIEWING' already exists in this workflow"


def test_delete_stage_in_use_is_refused(db_session, lending_workflow, lending_service, stage, admin):
    contracts.create_contract(
        db_session,
        actor_id=admin.id,
        payload=ContractCreate(service_id=lending_service.id, requested_amount=2_000_000),
    )

    with pytest.raises(Conflict) as exc:
        workflow_engine.delete_stage(db_session, lending_workflow.id, stage("DRAFT").id)

    assert exc.value.detail == "Cannot delete stage: 1 contract(s) are using this stage"


def test_delete_unused_stage_removes_its_transitions(db_session, lending_workflow, stage):
    rejected_id = stage("REJECTED").id

    workflow_engine.delete_stage(db_session, lending_workflow.id, rejected_id)

    remaining = (
        db_session.query(models.WorkflowTransition)
        .filter(models.WorkflowTransition.to_stage_id == rejected_id)
        .count()
    )
    assert remaining == 0
    assert db_session.get(models.WorkflowStage, rejected_id) is None


def test_create_transition_validation(db_session, admin, lending_workflow, stage):
    other = workflow_engine.create_workflow(
        db_session,
        WorkflowCreate(name="Other", stages=_stages("DRAFT", "SUBMITTED", "COMPLETED")),
        actor_id=admin.id,
    )
    foreign_stage = workflow_engine.get_stage_by_code(db_session, other.id, "DRAFT")

    with pytest.raises(ValidationFailed, match="From stage not found in this workflow"):
        workflow_engine.create_transition(
            db_session,
            lending_workflow.id,
            TransitionCreate(from_stage_id=foreign_stage.id, to_stage_id=stage("SUBMITTED").id),
        )

    with pytest.raises(ValidationFailed, match="To stage not found in this workflow"):
        workflow_engine.create_transition(
            db_session,
            lending_workflow.id,
            TransitionCreate(from_stage_id=stage("DRAFT").id, to_stage_id=foreign_stage.id),
        )

    with pytest.raises(Conflict, match="This transition already exists"):
        workflow_engine.create_transition(
            db_session,
            lending_workflow.id,
            TransitionCreate(from_stage_id=stage("DRAFT").id, to_stage_id=stage("SUBMITTED").id),
        )

    created = workflow_engine.create_transition(
        db_session,
        lending_workflow.id,
        TransitionCreate(from_stage_id=stage("SUBMITTED").id, to_stage_id=stage("REJECTED").id),
    )
    assert created.workflow_id == lending_workflow.id


def test_next_stage_follows_stage_order(db_session, stage):
    assert workflow_engine.get_next_stage(db_session, stage("DRAFT")).code == "SUBMITTED"
    assert workflow_engine.get_next_stage(db_session, stage("REJECTED")) is None


def test_stage_left_behind_can_be_deleted_and_history_survives(
    db_session, admin, lending_workflow, lending_service, stage
):
    contract = contracts.create_contract(
        db_session,
        actor_id=admin.id,
        payload=ContractCreate(service_id=lending_service.id, requested_amount=2_000_000),
    )
    contracts.submit_contract(db_session, contract_id=contract.id, actor_id=admin.id)
    for code in ("REVIEWING", "APPROVED"):
        contracts.transition_stage(
            db_session, contract_id=contract.id, to_stage_id=stage(code).id, actor_id=admin.id
        )
    reviewing_id = stage("REVIEWING").id

    workflow_engine.delete_stage(db_session, lending_workflow.id, reviewing_id)

    history_table = models.ContractStageHistory.__table__
    assert not history_table.c.from_stage_id.foreign_keys
    assert not history_table.c.to_stage_id.foreign_keys
    history = contracts.get_stage_history(db_session, contract.id)
    assert [h.meta["to_stage_code"] for h in history] == [
        "DRAFT",
        "SUBMITTED",
        "REVIEWING",
        "APPROVED",
    ]
    assert history[2].to_stage_id == reviewing_id
