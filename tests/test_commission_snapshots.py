from datetime import datetime
from decimal import Decimal

import pytest

from loanflow import models
from loanflow.core.errors import Conflict
from loanflow.schemas.commission import KpiTierCreate
from loanflow.services import commission_engine, commission_settings, wallet_ledger

MARCH = datetime(2026, 3, 10, 9, 30)
CTV = models.RoleCode.CTV


@pytest.fixture
def agent(make_user, set_commission_rate):
    set_commission_rate(CTV, "0.1")
    return make_user("Agent", role_codes=(CTV,))


@pytest.fixture
def complete_for(make_user, complete_contract):
    """Complete a contract for a new customer referred by ``referrer``."""

    def _complete(referrer, when):
        return complete_contract(make_user("Customer", referred_by=referrer.id), when)

    return _complete


@pytest.fixture
def tiers(db_session, roles):
    bronze = commission_settings.create_kpi_tier(
        db_session,
        KpiTierCreate(
            role_code=CTV, name="Bronze", tier_order=1, min_contracts=1, bonus_amount=Decimal("50000")
        ),
    )
    silver = commission_settings.create_kpi_tier(
        db_session,
        KpiTierCreate(
            role_code=CTV,
            name="Silver",
            tier_order=2,
            min_contracts=2,
            reward_type=models.KpiRewardType.RATE,
            bonus_rate=Decimal("0.01"),
        ),
    )
    return bronze, silver


def test_snapshot_rolls_up_month_and_evaluates_kpi(db_session, agent, complete_for, tiers):
    complete_for(agent, MARCH)
    complete_for(agent, datetime(2026, 3, 31, 23, 59))
    complete_for(agent, datetime(2026, 4, 1, 0, 0))

    snapshot = commission_engine.create_monthly_snapshot(
        db_session, user_id=agent.id, year=2026, month=3
    )

    assert snapshot.role_code == CTV
    assert snapshot.total_contracts == 2
    assert snapshot.total_disbursement == Decimal("4000000.00")
    assert snapshot.base_commission == Decimal("20000.00")
    assert snapshot.kpi_tier_id == tiers[1].id
    assert snapshot.bonus_commission == Decimal("40000.00")
    assert snapshot.total_commission == Decimal("60000.00")
    assert snapshot.status == models.SnapshotStatus.PENDING

    linked = (
        db_session.query(models.CommissionRecord)
        .filter(models.CommissionRecord.snapshot_id == snapshot.id)
        .count()
    )
    assert linked == 2
    # Creating a snapshot never moves money.
    assert wallet_ledger.get_balance(db_session, agent.id) == Decimal("30000.00")


def test_snapshot_is_idempotent(db_session, agent, complete_for, tiers):
    complete_for(agent, MARCH)

    first = commission_engine.create_monthly_snapshot(
        db_session, user_id=agent.id, year=2026, month=3
    )
    complete_for(agent, datetime(2026, 3, 20))
    second = commission_engine.create_monthly_snapshot(
        db_session, user_id=agent.id, year=2026, month=3
    )

    assert second.id == first.id
    assert second.total_contracts == 1
    assert db_session.query(models.CommissionSnapshot).count() == 1


def test_snapshot_without_kpi_evaluation(db_session, agent, complete_for, tiers):
    complete_for(agent, MARCH)

    snapshot = commission_engine.create_monthly_snapshot(
        db_session, user_id=agent.id, year=2026, month=3, evaluate_kpi=False
    )

    assert snapshot.kpi_tier_id is None
    assert snapshot.bonus_commission == Decimal("0.00")
    assert snapshot.total_commission == Decimal("10000.00")


def test_empty_month_still_produces_snapshot(db_session, agent):
    snapshot = commission_engine.create_monthly_snapshot(
        db_session, user_id=agent.id, year=2026, month=2
    )

    assert snapshot.total_contracts == 0
    assert snapshot.base_commission == Decimal("0.00")


def test_last_microseconds_of_month_belong_to_that_month(db_session, agent, complete_for):
    complete_for(agent, datetime(2026, 1, 31, 23, 59, 59, 999500))

    january = commission_engine.create_monthly_snapshot(
        db_session, user_id=agent.id, year=2026, month=1
    )
    february = commission_engine.create_monthly_snapshot(
        db_session, user_id=agent.id, year=2026, month=2
    )

    assert january.total_contracts == 1
    assert january.base_commission == Decimal("10000.00")
    assert february.total_contracts == 0


def test_bonus_is_paid_once(db_session, admin, agent, complete_for, tiers):
    complete_for(agent, MARCH)
    snapshot = commission_engine.create_monthly_snapshot(
        db_session, user_id=agent.id, year=2026, month=3
    )

    processed = commission_engine.process_snapshot_bonus(
        db_session, snapshot_id=snapshot.id, admin_id=admin.id
    )

    assert processed.status == models.SnapshotStatus.PROCESSED
    assert processed.processed_by == admin.id
    assert wallet_ledger.get_balance(db_session, agent.id) == Decimal("60000.00")
    bonus_tx = (
        db_session.query(models.WalletTransaction)
        .filter(models.WalletTransaction.reference_type == models.ReferenceType.KPI_BONUS)
        .one()
    )
    assert bonus_tx.reference_id == snapshot.id
    assert bonus_tx.amount == Decimal("50000.00")

    with pytest.raises(Conflict):
        commission_engine.process_snapshot_bonus(
            db_session, snapshot_id=snapshot.id, admin_id=admin.id
        )
    assert wallet_ledger.get_balance(db_session, agent.id) == Decimal("60000.00")


def test_used_tier_cannot_be_deleted(db_session, agent, complete_for, tiers):
    complete_for(agent, MARCH)
    commission_engine.create_monthly_snapshot(db_session, user_id=agent.id, year=2026, month=3)

    with pytest.raises(Conflict):
        commission_settings.delete_kpi_tier(db_session, tiers[0].id)


def test_summary_and_history(db_session, agent, complete_for):
    complete_for(agent, MARCH)
    complete_for(agent, datetime(2026, 2, 14))

    summary = commission_engine.get_user_commission_summary(
        db_session, agent.id, now=datetime(2026, 3, 15)
    )

    assert summary.total_earned == Decimal("20000.00")
    assert summary.current_month_contracts == 1
    assert summary.current_month_commission == Decimal("10000.00")
    assert summary.referred_users == 2
    assert summary.wallet_balance == Decimal("20000.00")

    history = commission_engine.get_commission_history(db_session, agent.id)
    assert history.total == 2
    records = commission_engine.list_commission_records(db_session, user_id=agent.id)
    assert records.total == 2
