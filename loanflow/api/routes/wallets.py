# ruff: noqa: B008
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from loanflow import models
from loanflow.api.deps import get_current_user, require_roles
from loanflow.database import get_db
from loanflow.schemas.ledger import WalletIntegrityRead, WalletRead, WalletTransactionPageRead
from loanflow.services import wallet_ledger

router = APIRouter(prefix="/wallets", tags=["wallets"])

_admin_dep = require_roles(models.RoleCode.ADMIN)


@router.get("/me", response_model=WalletRead)
def get_my_wallet(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    wallet = wallet_ledger.get_or_create_wallet(db, current_user.id)
    db.commit()
    return wallet


@router.get("/me/transactions", response_model=WalletTransactionPageRead)
def list_my_transactions(
    reference_type: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    wallet = wallet_ledger.get_wallet_by_user_id(db, current_user.id)
    result = wallet_ledger.list_transactions(
        db, wallet_id=wallet.id, page=page, limit=limit, reference_type=reference_type
    )
    return WalletTransactionPageRead.model_validate(result)


@router.get("/users/{user_id}", response_model=WalletRead)
def get_user_wallet(
    user_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return wallet_ledger.get_wallet_by_user_id(db, user_id)


@router.get("/{wallet_id}/integrity", response_model=WalletIntegrityRead)
def verify_wallet_integrity(
    wallet_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return WalletIntegrityRead.model_validate(wallet_ledger.verify_wallet_integrity(db, wallet_id))
