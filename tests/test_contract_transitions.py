from datetime import datetime
from decimal import Decimal

import pytest

from loanflow import models
from loanflow.core.errors import Forbidden, ValidationFailed
from loanflow.schemas.contracts import ContractCreate
from loanflow.services import commission_engine, contracts, wallet_ledger
from loanflow.services.contract_transitions import atomic_transition_contract_stage

PATH_TO_DISBURSED = ("SUBMITTED", "REVIEWING", "APPROVED", "DISBURSED")


@pytest.fixture
def referred_contract(db_session, make_user, admin, lending_service, set_commission_rate):
    set_commission_rate(models.RoleCode.USER, "0.1")
    referrer = make_user("Referrer")
    owner = make_user("Borrower", referred_by=referrer.id)
    contract = contracts.create_contract(
        db_session,
        actor_id=owner.id,
        payload=ContractCreate(service_id=lending_service.id, requested_amount=2_000_000),
    )
    return contract, owner, referrer


def _walk(db, contract, admin, stage, codes):
    for code in codes:
        if code == "SUBMITTED":
            contracts.submit_contract(db, contract_id=contract.id, actor_id=contract.user_id)
            continue
        contracts.transition_stage(
            db, contract_id=contract.id, to_stage_id=stage(code).id, actor_id=admin.id
        )


def _complete(db, contract, admin, stage, **kwargs):
    kwargs.setdefault("disbursement_amount", "2000000")
    kwargs.setdefault("revenue_percentage", "5")
    return contracts.transition_stage(
        db,
        contract_id=contract.id,
        to_stage_id=stage("COMPLETED").id,
        actor_id=admin.id,
        **kwargs,
    )


def test_completion_credits_referrer(db_session, admin, stage, referred_contract):
    contract, owner, referrer = referred_contract
    _walk(db_session, contract, admin, stage, PATH_TO_DISBURSED)

    result = _complete(db_session, contract, admin, stage, note="paid out")

    assert result.to_stage.code == "COMPLETED"
    assert result.commission_processed is True
    done = result.contract
    assert done.current_stage.code == "COMPLETED"
    assert done.disbursed_amount == Decimal("2000000.00")
    assert done.revenue_percentage == Decimal("5.00")
    assert done.total_revenue == Decimal("100000.00")
    assert done.disbursed_at is not None

    record = db_session.query(models.CommissionRecord).one()
    assert record.user_id == referrer.id
    assert record.referred_user_id == owner.id
    assert record.amount == Decimal("10000.00")
    assert record.status == models.CommissionStatus.CREDITED
    assert record.role_code == models.RoleCode.USER

    assert wallet_ledger.get_balance(db_session, referrer.id) == Decimal("10000.00")
    posting = db_session.get(models.WalletTransaction, record.wallet_transaction_id)
    assert posting.reference_type == models.ReferenceType.COMMISSION
    assert posting.reference_id == record.id

    history = contracts.get_stage_history(db_session, contract.id)
    last = history[-1]
    assert last.meta["note"] == "paid out"
    assert last.meta["total_revenue"] == "100000.00"


def test_commission_stage_requires_disbursement(db_session, admin, stage, referred_contract):
    contract, _, _ = referred_contract
    _walk(db_session, contract, admin, stage, PATH_TO_DISBURSED)

    with pytest.raises(ValidationFailed) as exc:
        _complete(db_session, contract, admin, stage, disbursement_amount=None)

    assert exc.value.code == "DISBURSEMENT_REQUIRED"
    db_session.expire_all()
    assert contracts.get_contract(db_session, contract.id).current_stage.code == "DISBURSED"

    with pytest.raises(ValidationFailed, match="at most 100"):
        _complete(db_session, contract, admin, stage, revenue_percentage="150")


def test_invalid_and_unpermitted_transitions_are_forbidden(
    db_session, make_user, admin, stage, referred_contract
):
    contract, _, _ = referred_contract
    agent = make_user("Agent", role_codes=(models.RoleCode.CTV,))

    with pytest.raises(Forbidden, match="Invalid transition"):
        _complete(db_session, contract, admin, stage)

    _walk(db_session, contract, admin, stage, PATH_TO_DISBURSED)
    with pytest.raises(Forbidden, match="Missing permission"):
        _complete(db_session, contract, agent, stage)

    assert db_session.query(models.CommissionRecord).count() == 0


def test_failed_commission_keeps_stage_move(
    db_session, admin, stage, referred_contract, monkeypatch
):
    contract, _, referrer = referred_contract
    _walk(db_session, contract, admin, stage, PATH_TO_DISBURSED)

    def explode(db, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(commission_engine, "process_contract_completion", explode)

    result = _complete(db_session, contract, admin, stage)

    assert result.commission_processed is False
    outcome = result.post_commit[0]
    assert outcome.error == "ledger unavailable"
    db_session.expire_all()
    assert contracts.get_contract(db_session, contract.id).current_stage.code == "COMPLETED"
    assert db_session.query(models.CommissionRecord).count() == 0
    assert db_session.query(models.Wallet).filter(models.Wallet.user_id == referrer.id).count() == 0


def test_commission_is_processed_once_per_contract(
    db_session, admin, stage, referred_contract
):
    contract, owner, referrer = referred_contract
    _walk(db_session, contract, admin, stage, PATH_TO_DISBURSED)
    _complete(db_session, contract, admin, stage)

    again = commission_engine.process_contract_completion(
        db_session,
        contract_id=contract.id,
        user_id=owner.id,
        disbursement_amount="2000000",
        revenue_percentage="5",
        total_revenue="100000",
    )

    assert again is None
    assert db_session.query(models.CommissionRecord).count() == 1
    assert wallet_ledger.get_balance(db_session, referrer.id) == Decimal("10000.00")


def test_no_referrer_means_no_commission(db_session, make_user, admin, lending_service, stage):
    owner = make_user("Solo")
    contract = contracts.create_contract(
        db_session,
        actor_id=owner.id,
        payload=ContractCreate(service_id=lending_service.id, requested_amount=2_000_000),
    )
    _walk(db_session, contract, admin, stage, PATH_TO_DISBURSED)

    result = _complete(db_session, contract, admin, stage)

    assert result.commission_processed is True
    assert result.post_commit[0].result is None
    assert db_session.query(models.CommissionRecord).count() == 0


def test_commission_disabled_service_skips_disbursement_inputs(
    db_session, make_user, admin, make_service, stage
):
    service = make_service(commission_enabled=False)
    owner = make_user("Borrower")
    contract = contracts.create_contract(
        db_session,
        actor_id=owner.id,
        payload=ContractCreate(service_id=service.id, requested_amount=2_000_000),
    )
    _walk(db_session, contract, admin, stage, PATH_TO_DISBURSED)

    result = contracts.transition_stage(
        db_session, contract_id=contract.id, to_stage_id=stage("COMPLETED").id, actor_id=admin.id
    )

    assert result.contract.current_stage.code == "COMPLETED"
    assert result.commission_processed is None


def test_stale_guard_refuses_second_writer(db_session, stage, referred_contract):
    contract, _, _ = referred_contract
    draft, submitted = stage("DRAFT").id, stage("SUBMITTED").id

    first = atomic_transition_contract_stage(
        db=db_session, contract_id=contract.id, from_stage_id=draft, to_stage_id=submitted
    )
    second = atomic_transition_contract_stage(
        db=db_session, contract_id=contract.id, from_stage_id=draft, to_stage_id=submitted
    )
    db_session.commit()

    assert first.updated is True
    assert second.updated is False
    assert second.rowcount == 0


def test_commission_timestamp_follows_transition_time(
    db_session, admin, stage, referred_contract
):
    contract, _, _ = referred_contract
    _walk(db_session, contract, admin, stage, PATH_TO_DISBURSED)
    when = datetime(2026, 4, 30, 23, 0)

    _complete(db_session, contract, admin, stage, now=when)

    record = db_session.query(models.CommissionRecord).one()
    assert record.created_at == when
    assert record.credited_at == when


def test_disbursed_amount_correction_rules(db_session, admin, stage, referred_contract):
    contract, _, _ = referred_contract

    with pytest.raises(ValidationFailed, match="draft"):
        contracts.update_disbursed_amount(
            db_session, contract_id=contract.id, amount="1500000", actor_id=admin.id
        )

    _walk(db_session, contract, admin, stage, ("SUBMITTED",))
    updated = contracts.update_disbursed_amount(
        db_session, contract_id=contract.id, amount="1500000", actor_id=admin.id
    )
    assert updated.disbursed_amount == Decimal("1500000.00")


def test_available_transitions_report_permission(
    db_session, make_user, admin, stage, referred_contract
):
    contract, owner, _ = referred_contract
    _walk(db_session, contract, admin, stage, PATH_TO_DISBURSED)

    options = contracts.get_available_transitions_for_contract(
        db_session, contract.id, actor_id=owner.id
    )

    assert [(o.to_stage.code, o.allowed) for o in options] == [("COMPLETED", False)]
    assert options[0].reason == "Missing permission: contract.complete"


def test_draft_contracts_move_only_through_submission(
    db_session, admin, stage, referred_contract
):
    contract, owner, _ = referred_contract

    with pytest.raises(ValidationFailed) as exc:
        contracts.transition_stage(
            db_session,
            contract_id=contract.id,
            to_stage_id=stage("SUBMITTED").id,
            actor_id=admin.id,
        )

    assert exc.value.code == "SUBMIT_REQUIRED"
    db_session.expire_all()
    assert contracts.get_contract(db_session, contract.id).current_stage.code == "DRAFT"

    options = contracts.get_available_transitions_for_contract(
        db_session, contract.id, actor_id=owner.id
    )
    assert [(o.to_stage.code, o.allowed) for o in options] == [("SUBMITTED", False)]
    assert options[0].reason == contracts.SUBMIT_REQUIRED_REASON
