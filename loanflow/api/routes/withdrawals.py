# ruff: noqa: B008
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from loanflow import models
from loanflow.api.deps import get_current_user, require_roles
from loanflow.database import get_db
from loanflow.schemas.ledger import (
    WithdrawalCreate,
    WithdrawalPageRead,
    WithdrawalProcess,
    WithdrawalRead,
)
from loanflow.services import withdrawals

router = APIRouter(prefix="/withdrawals", tags=["withdrawals"])

_admin_dep = require_roles(models.RoleCode.ADMIN)


@router.post("", response_model=WithdrawalRead, status_code=status.HTTP_201_CREATED)
def request_withdrawal(
    payload: WithdrawalCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return withdrawals.request_withdrawal(
        db,
        user_id=current_user.id,
        amount=payload.amount,
        bank_name=payload.bank_name,
        bank_account=payload.bank_account,
        account_holder=payload.account_holder,
    )


@router.get("/mine", response_model=WithdrawalPageRead)
def list_my_withdrawals(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    result = withdrawals.list_withdrawals(db, user_id=current_user.id, page=page, limit=limit)
    return WithdrawalPageRead.model_validate(result)


@router.get("", response_model=WithdrawalPageRead)
def list_withdrawals(
    status_filter: Optional[models.WithdrawalStatus] = Query(None, alias="status"),
    user_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    result = withdrawals.list_withdrawals(
        db, user_id=user_id, status=status_filter, page=page, limit=limit
    )
    return WithdrawalPageRead.model_validate(result)


@router.post("/{withdrawal_id}/process", response_model=WithdrawalRead)
def process_withdrawal(
    withdrawal_id: str,
    payload: WithdrawalProcess,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return withdrawals.process_withdrawal(
        db,
        withdrawal_id=withdrawal_id,
        admin_id=current_user.id,
        action=payload.action,
        note=payload.note,
    )


@router.post("/{withdrawal_id}/cancel", response_model=WithdrawalRead)
def cancel_withdrawal(
    withdrawal_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return withdrawals.cancel_withdrawal(db, withdrawal_id=withdrawal_id, user_id=current_user.id)
