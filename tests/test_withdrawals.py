from decimal import Decimal

import pytest

from loanflow import models
from loanflow.core.errors import Conflict, Forbidden, InsufficientBalance, NotFound, ValidationFailed
from loanflow.services import wallet_ledger, withdrawals

BANK = {"bank_name": "Vietcombank", "bank_account": "0011223344", "account_holder": "NGUYEN VAN A"}


@pytest.fixture
def funded_user(db_session, make_user):
    user = make_user("Earner")
    wallet = wallet_ledger.get_or_create_wallet(db_session, user.id)
    wallet_ledger.credit(db_session, wallet_id=wallet.id, amount="500000")
    db_session.commit()
    return user


def _request(db, user, amount="200000"):
    return withdrawals.request_withdrawal(db, user_id=user.id, amount=amount, **BANK)


def test_request_holds_funds(db_session, funded_user):
    w = _request(db_session, funded_user)

    assert w.status == models.WithdrawalStatus.PENDING
    assert w.amount == Decimal("200000.00")
    assert wallet_ledger.get_balance(db_session, funded_user.id) == Decimal("300000.00")
    hold = (
        db_session.query(models.WalletTransaction)
        .filter(models.WalletTransaction.reference_id == w.id)
        .one()
    )
    assert hold.type == models.TransactionType.DEBIT
    assert hold.reference_type == models.ReferenceType.WITHDRAWAL


def test_request_beyond_balance_creates_nothing(db_session, funded_user):
    with pytest.raises(InsufficientBalance):
        _request(db_session, funded_user, amount="500000.01")

    assert db_session.query(models.WithdrawalRequest).count() == 0
    assert wallet_ledger.get_balance(db_session, funded_user.id) == Decimal("500000.00")


def test_request_without_wallet_is_not_found(db_session, make_user):
    with pytest.raises(NotFound):
        _request(db_session, make_user("Broke"))


def test_request_requires_bank_details(db_session, funded_user):
    with pytest.raises(ValidationFailed, match="Bank details"):
        withdrawals.request_withdrawal(
            db_session,
            user_id=funded_user.id,
            amount="1000",
            bank_name=" ",
            bank_account="",
            account_holder="",
        )


def test_approve_then_pay(db_session, admin, funded_user):
    w = _request(db_session, funded_user)

    approved = withdrawals.process_withdrawal(
        db_session, withdrawal_id=w.id, admin_id=admin.id, action="approve"
    )
    assert approved.status == models.WithdrawalStatus.APPROVED
    assert approved.processed_by == admin.id

    paid = withdrawals.process_withdrawal(
        db_session, withdrawal_id=w.id, admin_id=admin.id, action="pay", note="transferred"
    )
    assert paid.status == models.WithdrawalStatus.PAID
    assert paid.admin_note == "transferred"
    assert wallet_ledger.get_balance(db_session, funded_user.id) == Decimal("300000.00")

    with pytest.raises(Conflict):
        withdrawals.process_withdrawal(
            db_session, withdrawal_id=w.id, admin_id=admin.id, action="reject"
        )


def test_reject_refunds_hold(db_session, admin, funded_user):
    w = _request(db_session, funded_user)

    rejected = withdrawals.process_withdrawal(
        db_session, withdrawal_id=w.id, admin_id=admin.id, action="reject", note="wrong account"
    )

    assert rejected.status == models.WithdrawalStatus.REJECTED
    assert wallet_ledger.get_balance(db_session, funded_user.id) == Decimal("500000.00")
    wallet = wallet_ledger.get_wallet_by_user_id(db_session, funded_user.id)
    assert wallet_ledger.verify_wallet_integrity(db_session, wallet.id).is_valid is True


def test_pay_requires_approval_first(db_session, admin, funded_user):
    w = _request(db_session, funded_user)

    with pytest.raises(Conflict, match="PENDING"):
        withdrawals.process_withdrawal(
            db_session, withdrawal_id=w.id, admin_id=admin.id, action="pay"
        )
    with pytest.raises(ValidationFailed, match="Unsupported action"):
        withdrawals.process_withdrawal(
            db_session, withdrawal_id=w.id, admin_id=admin.id, action="refund"
        )


def test_cancel_is_owner_only_and_refunds(db_session, make_user, funded_user):
    w = _request(db_session, funded_user)

    with pytest.raises(Forbidden):
        withdrawals.cancel_withdrawal(db_session, withdrawal_id=w.id, user_id=make_user("Other").id)

    cancelled = withdrawals.cancel_withdrawal(db_session, withdrawal_id=w.id, user_id=funded_user.id)

    assert cancelled.status == models.WithdrawalStatus.CANCELLED
    assert wallet_ledger.get_balance(db_session, funded_user.id) == Decimal("500000.00")
    with pytest.raises(Conflict):
        withdrawals.cancel_withdrawal(db_session, withdrawal_id=w.id, user_id=funded_user.id)


def test_list_withdrawals_filters(db_session, admin, funded_user):
    first = _request(db_session, funded_user, amount="1000")
    _request(db_session, funded_user, amount="2000")
    withdrawals.process_withdrawal(
        db_session, withdrawal_id=first.id, admin_id=admin.id, action="approve"
    )

    assert withdrawals.list_withdrawals(db_session, user_id=funded_user.id).total == 2
    pending = withdrawals.list_withdrawals(db_session, status=models.WithdrawalStatus.PENDING)
    assert [w.amount for w in pending.items] == [Decimal("2000.00")]
