from datetime import datetime
from types import SimpleNamespace

import pytest

from loanflow import models
from loanflow.core.errors import Conflict
from loanflow.schemas.contracts import ContractCreate
from loanflow.services import contracts
from loanflow.services.contract_numbering import (
    format_contract_number,
    next_contract_number,
    parse_sequence,
)


def test_format_and_parse():
    assert format_contract_number(prefix="HD", year=2026, seq=7) == "HD-2026-000007"
    assert parse_sequence("HD-2026-000042", prefix="HD", year=2026) == 42
    assert parse_sequence("HD-2025-000042", prefix="HD", year=2026) is None
    assert parse_sequence("garbage", prefix="HD", year=2026) is None
    assert parse_sequence(None, prefix="HD", year=2026) is None


def test_first_number_of_year_starts_at_one(db_session):
    number = next_contract_number(db_session, now=datetime(2026, 2, 1))

    assert number.year == 2026
    assert number.seq == 1
    assert number.formatted == "HD-2026-000001"


def test_sequence_increments_and_resets_each_year(db_session, admin, lending_service):
    def create(now):
        return contracts.create_contract(
            db_session,
            actor_id=admin.id,
            payload=ContractCreate(service_id=lending_service.id, requested_amount=2_000_000),
            now=now,
        )

    first = create(datetime(2025, 12, 30, 10, 0))
    second = create(datetime(2025, 12, 31, 23, 59))
    new_year = create(datetime(2026, 1, 1, 0, 1))

    assert first.contract_number == "HD-2025-000001"
    assert second.contract_number == "HD-2025-000002"
    assert new_year.contract_number == "HD-2026-000001"
    assert next_contract_number(db_session, now=datetime(2025, 6, 1)).seq == 3


def test_unparsable_predecessor_restarts_sequence(db_session, admin, lending_service, stage):
    db_session.add(
        models.Contract(
            contract_number="HD-2026-legacy",
            user_id=admin.id,
            service_id=lending_service.id,
            current_stage_id=stage("DRAFT").id,
            requested_amount=2_000_000,
        )
    )
    db_session.commit()

    assert next_contract_number(db_session, now=datetime(2026, 3, 1)).seq == 1


def test_number_collision_retries_with_a_fresh_number(
    db_session, admin, lending_service, monkeypatch
):
    existing = contracts.create_contract(
        db_session,
        actor_id=admin.id,
        payload=ContractCreate(service_id=lending_service.id, requested_amount=2_000_000),
        now=datetime(2026, 5, 1),
    )
    issued = iter([existing.contract_number, "HD-2026-000099"])
    monkeypatch.setattr(
        contracts,
        "next_contract_number",
        lambda db, now=None: SimpleNamespace(formatted=next(issued)),
    )

    retried = contracts.create_contract(
        db_session,
        actor_id=admin.id,
        payload=ContractCreate(service_id=lending_service.id, requested_amount=2_000_000),
    )

    assert retried.contract_number == "HD-2026-000099"
    assert db_session.query(models.Contract).count() == 2


def test_persistent_number_collision_is_conflict(db_session, admin, lending_service, monkeypatch):
    existing = contracts.create_contract(
        db_session,
        actor_id=admin.id,
        payload=ContractCreate(service_id=lending_service.id, requested_amount=2_000_000),
    )
    taken = existing.contract_number
    monkeypatch.setattr(
        contracts, "next_contract_number", lambda db, now=None: SimpleNamespace(formatted=taken)
    )

    with pytest.raises(Conflict) as exc:
        contracts.create_contract(
            db_session,
            actor_id=admin.id,
            payload=ContractCreate(service_id=lending_service.id, requested_amount=2_000_000),
        )

    assert exc.value.code == "CONTRACT_NUMBER_COLLISION"
    assert db_session.query(models.Contract).count() == 1
    assert db_session.query(models.ContractStageHistory).count() == 1
