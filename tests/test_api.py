import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from loanflow import models
from loanflow.core.security import create_access_token
from loanflow.database import get_db
from loanflow.main import app
from loanflow.schemas.contracts import ContractCreate
from loanflow.services import contracts, wallet_ledger

client = TestClient(app)


def auth(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def test_health_endpoints():
    for path in ("/healthz", "/api/health"):
        res = client.get(path)
        assert res.status_code == 200
        assert res.json()["status"] == "ok"


def test_requests_without_token_are_unauthorized():
    res = client.get("/api/contracts/mine")

    assert res.status_code == 401
    assert res.json()["detail"] == "Not authenticated"


def test_garbage_and_suspended_tokens_are_rejected(make_user):
    assert client.get("/api/wallets/me", headers={"Authorization": "Bearer nope"}).status_code == 401

    suspended = make_user("Ghost", status=models.UserStatus.SUSPENDED)
    res = client.get("/api/wallets/me", headers=auth(suspended))
    assert res.status_code == 401


def test_admin_routes_need_admin_role(make_user, admin):
    plain = make_user("Plain")

    assert client.get("/api/workflows", headers=auth(plain)).status_code == 403
    assert client.get("/api/workflows", headers=auth(admin)).status_code == 200


def test_workflow_create_and_validation(admin):
    defaults = client.get("/api/workflows/default-stages", headers=auth(admin)).json()
    assert [s["code"] for s in defaults][:2] == ["DRAFT", "SUBMITTED"]

    created = client.post(
        "/api/workflows",
        json={
            "name": "Salary advance",
            "stages": defaults,
            "transitions": [{"from_stage_code": "DRAFT", "to_stage_code": "SUBMITTED"}],
        },
        headers=auth(admin),
    )
    assert created.status_code == 201
    body = created.json()
    assert body["version"] == 1
    assert len(body["transitions"]) == 1

    missing = client.post(
        "/api/workflows",
        json={"name": "Broken", "stages": [{"code": "DRAFT", "name": "Draft", "stage_order": 0}]},
        headers=auth(admin),
    )
    assert missing.status_code == 400
    assert "SUBMITTED, COMPLETED" in missing.json()["detail"]


def test_contract_lifecycle_over_http(db_session, make_user, admin, make_service, stage):
    service = make_service(required_document=True, allowed_types=["application/pdf"])
    owner = make_user("Borrower")

    too_small = client.post(
        "/api/contracts",
        json={"service_id": service.id, "requested_amount": "500"},
        headers=auth(owner),
    )
    assert too_small.status_code == 400

    created = client.post(
        "/api/contracts",
        json={"service_id": service.id, "requested_amount": "2000000"},
        headers=auth(owner),
    )
    assert created.status_code == 201
    contract = created.json()
    assert Decimal(contract["requested_amount"]) == Decimal("2000000")
    requirement_id = contract["documents"][0]["document_requirement_id"]
    question_id = service.questions[0].question_id

    no_files = client.post(f"/api/contracts/{contract['id']}/submit", headers=auth(owner))
    assert no_files.status_code == 400

    submitted = client.post(
        f"/api/contracts/{contract['id']}/submit",
        data={
            "answers": json.dumps([{"question_id": question_id, "answer": "15000000"}]),
            "document_ids": [requirement_id],
        },
        files=[("files", ("id.pdf", b"%PDF-1.7 test", "application/pdf"))],
        headers=auth(owner),
    )
    assert submitted.status_code == 200
    assert submitted.json()["current_stage_id"] == stage("SUBMITTED").id
    assert len(submitted.json()["documents"][0]["files"]) == 1

    again = client.post(f"/api/contracts/{contract['id']}/submit", headers=auth(owner))
    assert again.status_code == 409

    stranger = make_user("Stranger")
    assert client.get(f"/api/contracts/{contract['id']}", headers=auth(stranger)).status_code == 403

    moved = client.post(
        f"/api/contracts/{contract['id']}/transition",
        json={"to_stage_id": stage("REVIEWING").id, "note": "picked up"},
        headers=auth(admin),
    )
    assert moved.status_code == 200
    assert moved.json()["from_stage_code"] == "SUBMITTED"
    assert moved.json()["to_stage_code"] == "REVIEWING"
    assert moved.json()["commission_processed"] is None

    skipped = client.post(
        f"/api/contracts/{contract['id']}/transition",
        json={"to_stage_id": stage("COMPLETED").id},
        headers=auth(admin),
    )
    assert skipped.status_code == 403

    history = client.get(f"/api/contracts/{contract['id']}/history", headers=auth(owner))
    assert history.status_code == 200
    assert len(history.json()) == 3


@pytest.fixture
def draft_with_missing_document(db_session, make_user, make_service):
    service = make_service(required_document=True)
    owner = make_user("Borrower")
    contract = contracts.create_contract(
        db_session,
        actor_id=owner.id,
        payload=ContractCreate(service_id=service.id, requested_amount=2_000_000),
    )
    return contract, owner


def _grant(db_session, roles, role_code, permission_code):
    permission = models.Permission(code=permission_code, name=permission_code)
    db_session.add(permission)
    db_session.flush()
    db_session.add(
        models.RolePermission(role_id=roles[role_code].id, permission_id=permission.id)
    )
    db_session.commit()


def test_transition_route_requires_transition_permission(
    db_session, make_user, stage, draft_with_missing_document
):
    contract, owner = draft_with_missing_document
    stranger = make_user("Stranger")
    body = {"to_stage_id": stage("SUBMITTED").id}

    for user in (stranger, owner):
        res = client.post(
            f"/api/contracts/{contract.id}/transition", json=body, headers=auth(user)
        )
        assert res.status_code == 403
        assert res.json()["detail"] == "Missing permission: contract.transition"

    db_session.expire_all()
    assert contracts.get_contract(db_session, contract.id).current_stage.code == "DRAFT"


def test_transition_route_cannot_skip_submission(
    db_session, make_user, roles, admin, stage, draft_with_missing_document
):
    contract, _ = draft_with_missing_document
    _grant(db_session, roles, models.RoleCode.CTV, "contract.transition")
    agent = make_user("Agent", role_codes=(models.RoleCode.CTV,))
    body = {"to_stage_id": stage("SUBMITTED").id}

    for user in (agent, admin):
        res = client.post(
            f"/api/contracts/{contract.id}/transition", json=body, headers=auth(user)
        )
        assert res.status_code == 400
        assert res.json()["detail"] == contracts.SUBMIT_REQUIRED_REASON

    db_session.expire_all()
    assert contracts.get_contract(db_session, contract.id).current_stage.code == "DRAFT"


def test_withdrawal_over_http(db_session, make_user, admin):
    user = make_user("Earner")
    wallet = wallet_ledger.get_or_create_wallet(db_session, user.id)
    wallet_ledger.credit(db_session, wallet_id=wallet.id, amount="1000")
    db_session.commit()
    bank = {"bank_name": "ACB", "bank_account": "123456", "account_holder": "TRAN THI B"}

    too_much = client.post(
        "/api/withdrawals", json={"amount": "1000.01", **bank}, headers=auth(user)
    )
    assert too_much.status_code == 400
    assert too_much.json()["detail"].startswith("Insufficient balance")

    created = client.post("/api/withdrawals", json={"amount": "400", **bank}, headers=auth(user))
    assert created.status_code == 201
    withdrawal_id = created.json()["id"]

    me = client.get("/api/wallets/me", headers=auth(user)).json()
    assert Decimal(me["balance"]) == Decimal("600")

    forbidden = client.post(
        f"/api/withdrawals/{withdrawal_id}/process",
        json={"action": "approve"},
        headers=auth(user),
    )
    assert forbidden.status_code == 403

    rejected = client.post(
        f"/api/withdrawals/{withdrawal_id}/process",
        json={"action": "reject", "note": "name mismatch"},
        headers=auth(admin),
    )
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "REJECTED"
    assert Decimal(client.get("/api/wallets/me", headers=auth(user)).json()["balance"]) == Decimal(
        "1000"
    )


def test_system_config_and_scheduler_status(admin):
    bad = client.put(
        "/api/system-config/commission_snapshot_day", json={"value": 31}, headers=auth(admin)
    )
    assert bad.status_code == 400

    ok = client.put(
        "/api/system-config/commission_snapshot_day",
        json={"value": 10, "description": "Roll-up day"},
        headers=auth(admin),
    )
    assert ok.status_code == 200
    assert ok.json()["value"] == {"day": 10}

    status = client.get("/api/scheduler/status", headers=auth(admin)).json()
    assert status["snapshot_day"] == 10
    assert status["running"] is False

    run = client.post(
        "/api/scheduler/commission-snapshots/run",
        json={"year": 2026, "month": 3},
        headers=auth(admin),
    )
    assert run.status_code == 200
    assert run.json()["processed"] == 0


@pytest.fixture
def failing_db():
    def broken():
        raise RuntimeError("database exploded")

    app.dependency_overrides[get_db] = broken


def test_unhandled_errors_render_json_500(failing_db, admin):
    quiet = TestClient(app, raise_server_exceptions=False)

    res = quiet.get("/api/wallets/me", headers=auth(admin))

    assert res.status_code == 500
    body = res.json()
    assert body["code"] == "INTERNAL_SERVER_ERROR"
    assert "exploded" not in body["detail"]
    assert res.headers["X-Request-ID"] == body["request_id"]
