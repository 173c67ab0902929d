"""Wallet ledger.

Every balance change appends an immutable ``WalletTransaction`` and rewrites
the wallet's cached balance in the same unit of work. Callers own the
transaction: these helpers flush but never commit, so a credit can be
combined atomically with the record that justifies it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loanflow import models
from loanflow.core.errors import InsufficientBalance, NotFound, ValidationFailed
from loanflow.core.pagination import Page, paginate
from loanflow.database import supports_row_locks

logger = logging.getLogger("loanflow.ledger")

CENT = Decimal("0.01")
ZERO = Decimal("0")


@dataclass(frozen=True)
class LedgerPosting:
    transaction: models.WalletTransaction
    new_balance: Decimal


@dataclass(frozen=True)
class WalletIntegrity:
    wallet_id: str
    is_valid: bool
    stored_balance: Decimal
    derived_balance: Decimal

    @property
    def drift(self) -> Decimal:
        return self.stored_balance - self.derived_balance


def to_money(value: Any) -> Decimal:
    """Quantize to cents; floats go through ``str`` to avoid binary artefacts."""

    if isinstance(value, Decimal):
        d = value
    else:
        try:
            d = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationFailed(f"Invalid amount: {value!r}") from exc
    if not d.is_finite():
        raise ValidationFailed(f"Invalid amount: {value!r}")
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


def _positive_amount(value: Any) -> Decimal:
    amount = to_money(value)
    if amount <= ZERO:
        raise ValidationFailed("Amount must be greater than zero", amount=str(amount))
    return amount


def get_or_create_wallet(db: Session, user_id: str) -> models.Wallet:
    wallet = db.query(models.Wallet).filter(models.Wallet.user_id == str(user_id)).first()
    if wallet is not None:
        return wallet

    if db.get(models.User, str(user_id)) is None:
        raise NotFound("User not found", user_id=str(user_id))

    wallet = models.Wallet(user_id=str(user_id), balance=ZERO)
    if not supports_row_locks(db):
        # SQLite serialises writers; no creation race to absorb.
        db.add(wallet)
        db.flush()
        logger.info("wallet_created", extra={"wallet_id": wallet.id, "user_id": str(user_id)})
        return wallet

    try:
        with db.begin_nested():
            db.add(wallet)
    except IntegrityError:
        # Lost a creation race; the other writer's row is the wallet.
        wallet = db.query(models.Wallet).filter(models.Wallet.user_id == str(user_id)).one()
    else:
        logger.info("wallet_created", extra={"wallet_id": wallet.id, "user_id": str(user_id)})
    return wallet


def get_wallet_by_user_id(db: Session, user_id: str) -> models.Wallet:
    wallet = db.query(models.Wallet).filter(models.Wallet.user_id == str(user_id)).first()
    if wallet is None:
        raise NotFound("Wallet not found", user_id=str(user_id))
    return wallet


def get_balance(db: Session, user_id: str) -> Decimal:
    wallet = db.query(models.Wallet).filter(models.Wallet.user_id == str(user_id)).first()
    return to_money(wallet.balance) if wallet is not None else ZERO


def _lock_wallet(db: Session, wallet_id: str) -> models.Wallet:
    q = db.query(models.Wallet).filter(models.Wallet.id == str(wallet_id)).populate_existing()
    if supports_row_locks(db):
        q = q.with_for_update()
    wallet = q.first()
    if wallet is None:
        raise NotFound("Wallet not found", wallet_id=str(wallet_id))
    return wallet


def _post(
    db: Session,
    *,
    wallet_id: str,
    tx_type: models.TransactionType,
    amount: Any,
    reference_id: str | None,
    reference_type: str | None,
    description: str | None,
    meta: dict[str, Any] | None,
) -> LedgerPosting:
    value = _positive_amount(amount)
    wallet = _lock_wallet(db, wallet_id)
    current = to_money(wallet.balance)

    if tx_type == models.TransactionType.DEBIT:
        if value > current:
            raise InsufficientBalance(available=current, requested=value)
        new_balance = current - value
    else:
        new_balance = current + value

    tx = models.WalletTransaction(
        wallet_id=wallet.id,
        type=tx_type,
        amount=value,
        balance_after=new_balance,
        reference_id=reference_id,
        reference_type=reference_type,
        description=description,
        meta=meta,
    )
    db.add(tx)
    wallet.balance = new_balance
    db.flush()

    logger.info(
        "wallet_posted",
        extra={
            "wallet_id": wallet.id,
            "type": tx_type.value,
            "amount": str(value),
            "balance": str(new_balance),
            "reference_type": reference_type,
            "reference_id": reference_id,
        },
    )
    return LedgerPosting(transaction=tx, new_balance=new_balance)


def credit(
    db: Session,
    *,
    wallet_id: str,
    amount: Any,
    reference_id: str | None = None,
    reference_type: str | None = None,
    description: str | None = None,
    meta: dict[str, Any] | None = None,
) -> LedgerPosting:
    return _post(
        db,
        wallet_id=wallet_id,
        tx_type=models.TransactionType.CREDIT,
        amount=amount,
        reference_id=reference_id,
        reference_type=reference_type,
        description=description,
        meta=meta,
    )


def debit(
    db: Session,
    *,
    wallet_id: str,
    amount: Any,
    reference_id: str | None = None,
    reference_type: str | None = None,
    description: str | None = None,
    meta: dict[str, Any] | None = None,
) -> LedgerPosting:
    """Withdraw ``amount``; raises ``InsufficientBalance`` under the wallet lock."""

    return _post(
        db,
        wallet_id=wallet_id,
        tx_type=models.TransactionType.DEBIT,
        amount=amount,
        reference_id=reference_id,
        reference_type=reference_type,
        description=description,
        meta=meta,
    )


def calculate_derived_balance(db: Session, wallet_id: str) -> Decimal:
    signed = case(
        (
            models.WalletTransaction.type == models.TransactionType.CREDIT,
            models.WalletTransaction.amount,
        ),
        else_=-models.WalletTransaction.amount,
    )
    total = (
        db.query(func.coalesce(func.sum(signed), 0))
        .filter(models.WalletTransaction.wallet_id == str(wallet_id))
        .scalar()
    )
    return to_money(total if total is not None else ZERO)


def verify_wallet_integrity(db: Session, wallet_id: str) -> WalletIntegrity:
    wallet = db.get(models.Wallet, str(wallet_id))
    if wallet is None:
        raise NotFound("Wallet not found", wallet_id=str(wallet_id))

    stored = to_money(wallet.balance)
    derived = calculate_derived_balance(db, wallet.id)
    result = WalletIntegrity(
        wallet_id=wallet.id,
        is_valid=stored == derived,
        stored_balance=stored,
        derived_balance=derived,
    )
    if not result.is_valid:
        logger.warning(
            "wallet_integrity_drift",
            extra={"wallet_id": wallet.id, "stored": str(stored), "derived": str(derived)},
        )
    return result


def list_transactions(
    db: Session,
    *,
    wallet_id: str,
    page: int = 1,
    limit: int = 20,
    reference_type: str | None = None,
) -> Page[models.WalletTransaction]:
    q = db.query(models.WalletTransaction).filter(
        models.WalletTransaction.wallet_id == str(wallet_id)
    )
    if reference_type:
        q = q.filter(models.WalletTransaction.reference_type == reference_type)

    q = q.order_by(models.WalletTransaction.created_at.desc(), models.WalletTransaction.id.desc())
    return paginate(q, page=page, limit=limit)
