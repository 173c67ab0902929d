"""Withdrawal requests against a user's wallet.

Requesting a withdrawal debits the wallet immediately so the funds are held;
rejection and cancellation give them back with a refund credit. Status moves
use a guarded UPDATE so two admins cannot process the same request twice.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session

from loanflow import models
from loanflow.core.errors import Conflict, Forbidden, NotFound, ValidationFailed
from loanflow.core.pagination import Page, paginate
from loanflow.core.periods import utc_now
from loanflow.services import rbac, wallet_ledger
from loanflow.services.audit import audit_event

logger = logging.getLogger("loanflow.ledger")

WithdrawalStatus = models.WithdrawalStatus

# action -> (allowed from, to, refunds the hold)
_ACTIONS: dict[str, tuple[tuple[WithdrawalStatus, ...], WithdrawalStatus, bool]] = {
    "approve": ((WithdrawalStatus.PENDING,), WithdrawalStatus.APPROVED, False),
    "reject": ((WithdrawalStatus.PENDING,), WithdrawalStatus.REJECTED, True),
    "pay": ((WithdrawalStatus.APPROVED,), WithdrawalStatus.PAID, False),
}


def get_withdrawal(db: Session, withdrawal_id: str) -> models.WithdrawalRequest:
    w = db.get(models.WithdrawalRequest, str(withdrawal_id))
    if w is None:
        raise NotFound("Withdrawal request not found", withdrawal_id=str(withdrawal_id))
    return w


def _guarded_status_update(
    db: Session,
    withdrawal_id: str,
    *,
    allowed_from: Iterable[WithdrawalStatus],
    to_status: WithdrawalStatus,
    updates: dict | None = None,
) -> bool:
    values = {"status": to_status, "updated_at": utc_now()}
    if updates:
        values.update(updates)
    rowcount = (
        db.query(models.WithdrawalRequest)
        .filter(models.WithdrawalRequest.id == str(withdrawal_id))
        .filter(models.WithdrawalRequest.status.in_(set(allowed_from)))
        .update(values, synchronize_session=False)
    )
    return bool(rowcount)


def _refund(db: Session, w: models.WithdrawalRequest, *, reason: str) -> None:
    wallet_ledger.credit(
        db,
        wallet_id=w.wallet_id,
        amount=w.amount,
        reference_id=w.id,
        reference_type=models.ReferenceType.WITHDRAWAL_REFUND,
        description=f"Withdrawal refund ({reason})",
        meta={"withdrawal_id": w.id},
    )


def request_withdrawal(
    db: Session,
    *,
    user_id: str,
    amount,
    bank_name: str,
    bank_account: str,
    account_holder: str,
) -> models.WithdrawalRequest:
    user = rbac.ensure_active_user(db, user_id)
    value = wallet_ledger.to_money(amount)
    if value <= 0:
        raise ValidationFailed("Withdrawal amount must be greater than zero")
    if not (bank_name or "").strip() or not (bank_account or "").strip():
        raise ValidationFailed("Bank details are required")

    wallet = wallet_ledger.get_wallet_by_user_id(db, user.id)
    try:
        w = models.WithdrawalRequest(
            user_id=user.id,
            wallet_id=wallet.id,
            amount=value,
            bank_name=bank_name.strip(),
            bank_account=bank_account.strip(),
            account_holder=(account_holder or "").strip(),
            status=WithdrawalStatus.PENDING,
        )
        db.add(w)
        db.flush()
        wallet_ledger.debit(
            db,
            wallet_id=wallet.id,
            amount=value,
            reference_id=w.id,
            reference_type=models.ReferenceType.WITHDRAWAL,
            description="Withdrawal request",
            meta={"withdrawal_id": w.id},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "withdrawal_requested",
        extra={"withdrawal_id": w.id, "user_id": user.id, "amount": str(value)},
    )
    audit_event(
        "WITHDRAWAL_REQUESTED",
        user.id,
        {"amount": str(value)},
        db=db,
        target_type="withdrawal_request",
        target_id=w.id,
    )
    return get_withdrawal(db, w.id)


def process_withdrawal(
    db: Session,
    *,
    withdrawal_id: str,
    admin_id: str,
    action: str,
    note: str | None = None,
    now: datetime | None = None,
) -> models.WithdrawalRequest:
    spec = _ACTIONS.get(str(action).lower())
    if spec is None:
        raise ValidationFailed(f"Unsupported action: {action}", allowed=sorted(_ACTIONS))
    allowed_from, to_status, refunds = spec

    w = get_withdrawal(db, withdrawal_id)
    if w.status not in allowed_from:
        raise Conflict(
            f"Cannot {action} a withdrawal in status {w.status.value}",
            status=w.status.value,
        )

    try:
        updated = _guarded_status_update(
            db,
            w.id,
            allowed_from=allowed_from,
            to_status=to_status,
            updates={
                "processed_by": str(admin_id),
                "processed_at": now or utc_now(),
                "admin_note": note,
            },
        )
        if not updated:
            raise Conflict("Withdrawal request was processed concurrently", withdrawal_id=w.id)
        if refunds:
            _refund(db, w, reason="rejected")
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "withdrawal_processed",
        extra={"withdrawal_id": w.id, "action": action, "status": to_status.value},
    )
    audit_event(
        "WITHDRAWAL_PROCESSED",
        admin_id,
        {"action": action, "status": to_status.value, "note": note},
        db=db,
        target_type="withdrawal_request",
        target_id=w.id,
    )
    db.refresh(w)
    return w


def cancel_withdrawal(db: Session, *, withdrawal_id: str, user_id: str) -> models.WithdrawalRequest:
    w = get_withdrawal(db, withdrawal_id)
    if w.user_id != str(user_id):
        raise Forbidden("You do not own this withdrawal request", withdrawal_id=w.id)
    if w.status != WithdrawalStatus.PENDING:
        raise Conflict("Only pending withdrawal requests can be cancelled", status=w.status.value)

    try:
        updated = _guarded_status_update(
            db,
            w.id,
            allowed_from=(WithdrawalStatus.PENDING,),
            to_status=WithdrawalStatus.CANCELLED,
        )
        if not updated:
            raise Conflict("Withdrawal request was processed concurrently", withdrawal_id=w.id)
        _refund(db, w, reason="cancelled")
        db.commit()
    except Exception:
        db.rollback()
        raise

    audit_event(
        "WITHDRAWAL_PROCESSED",
        user_id,
        {"action": "cancel", "status": WithdrawalStatus.CANCELLED.value},
        db=db,
        target_type="withdrawal_request",
        target_id=w.id,
    )
    db.refresh(w)
    return w


def list_withdrawals(
    db: Session,
    *,
    user_id: str | None = None,
    status: WithdrawalStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> Page[models.WithdrawalRequest]:
    q = db.query(models.WithdrawalRequest)
    if user_id:
        q = q.filter(models.WithdrawalRequest.user_id == str(user_id))
    if status is not None:
        q = q.filter(models.WithdrawalRequest.status == status)
    q = q.order_by(models.WithdrawalRequest.created_at.desc(), models.WithdrawalRequest.id.desc())
    return paginate(q, page=page, limit=limit)
