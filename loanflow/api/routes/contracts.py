# ruff: noqa: B008
import json
from collections import defaultdict
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from loanflow import models
from loanflow.api.deps import get_current_user, require_permission, require_roles
from loanflow.database import get_db
from loanflow.schemas.contracts import (
    AnswerInput,
    AnswersUpdate,
    AvailableTransitionRead,
    ContractAnswerRead,
    ContractCreate,
    ContractDetailRead,
    ContractDocumentRead,
    ContractPageRead,
    ContractRead,
    DisbursedAmountUpdate,
    DocumentReviewRequest,
    FileValidationRead,
    StageHistoryRead,
    StageTransitionRead,
    StageTransitionRequest,
)
from loanflow.schemas.workflows import StageRead
from loanflow.services import catalog, contracts
from loanflow.services.storage import IncomingFile

router = APIRouter(prefix="/contracts", tags=["contracts"])

_admin_dep = require_roles(models.RoleCode.ADMIN)
_transition_dep = require_permission(contracts.TRANSITION_PERMISSION)

_answers_adapter = TypeAdapter(list[AnswerInput])


def _incoming(upload: UploadFile) -> IncomingFile:
    return IncomingFile(
        file_name=upload.filename or "upload",
        content=upload.file.read(),
        mime_type=upload.content_type or "application/octet-stream",
    )


def _parse_answers(raw: Optional[str]) -> list[AnswerInput]:
    if not raw:
        return []
    try:
        return _answers_adapter.validate_python(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid answers payload"
        ) from exc


@router.post("", response_model=ContractDetailRead, status_code=status.HTTP_201_CREATED)
def create_contract(
    payload: ContractCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return contracts.create_contract(db, actor_id=current_user.id, payload=payload)


@router.get("", response_model=ContractPageRead)
def search_contracts(
    search: Optional[str] = Query(None),
    service_id: Optional[str] = Query(None),
    stage_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    result = contracts.search_contracts(
        db, search=search, service_id=service_id, stage_id=stage_id, page=page, limit=limit
    )
    return ContractPageRead.model_validate(result)


@router.get("/mine", response_model=ContractPageRead)
def list_my_contracts(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    result = contracts.list_user_contracts(db, current_user.id, page=page, limit=limit)
    return ContractPageRead.model_validate(result)


@router.get("/created", response_model=ContractPageRead)
def list_contracts_created_for_others(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    result = contracts.list_created_for_others(db, current_user.id, page=page, limit=limit)
    return ContractPageRead.model_validate(result)


@router.get("/{contract_id}", response_model=ContractDetailRead)
def get_contract(
    contract_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return contracts.get_contract(db, contract_id, actor_id=current_user.id)


@router.put("/{contract_id}/answers", response_model=list[ContractAnswerRead])
def update_answers(
    contract_id: str,
    payload: AnswersUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return contracts.update_answers(
        db, contract_id=contract_id, actor_id=current_user.id, answers=payload.answers
    )


@router.post("/{contract_id}/submit", response_model=ContractDetailRead)
def submit_contract(
    contract_id: str,
    answers: Optional[str] = Form(None, description="JSON list of {question_id, answer}"),
    document_ids: list[str] = Form(default=[], description="Requirement id for each file"),
    files: list[UploadFile] = File(default=[]),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    if len(document_ids) != len(files):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Each uploaded file needs a matching document_ids entry",
        )

    grouped: dict[str, list[IncomingFile]] = defaultdict(list)
    for requirement_id, upload in zip(document_ids, files):
        grouped[requirement_id].append(_incoming(upload))

    return contracts.submit_contract(
        db,
        contract_id=contract_id,
        actor_id=current_user.id,
        answers=_parse_answers(answers),
        files=grouped,
    )


@router.post("/{contract_id}/documents/{document_id}/validate", response_model=FileValidationRead)
def validate_document_files(
    contract_id: str,
    document_id: str,
    files: list[UploadFile] = File(...),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    contract = contracts.get_contract(db, contract_id, actor_id=current_user.id)
    document = next((d for d in contract.documents if d.id == document_id), None)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")

    check = contracts.validate_document_files(
        catalog.document_config_for(document.document_requirement),
        [_incoming(f) for f in files],
        existing_count=len(document.files),
    )
    return FileValidationRead(valid=check.valid, errors=check.errors)


@router.post("/{contract_id}/documents/{document_id}/files", response_model=ContractDocumentRead)
def upload_document_files(
    contract_id: str,
    document_id: str,
    files: list[UploadFile] = File(...),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return contracts.add_document_files(
        db,
        contract_id=contract_id,
        document_id=document_id,
        actor_id=current_user.id,
        files=[_incoming(f) for f in files],
    )


@router.post("/{contract_id}/documents/{document_id}/review", response_model=ContractDocumentRead)
def review_document(
    contract_id: str,
    document_id: str,
    payload: DocumentReviewRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return contracts.review_document(
        db,
        contract_id=contract_id,
        document_id=document_id,
        reviewer_id=current_user.id,
        status=payload.status,
        note=payload.note,
    )


@router.get("/{contract_id}/transitions", response_model=list[AvailableTransitionRead])
def list_available_transitions(
    contract_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return [
        AvailableTransitionRead(
            transition_id=t.transition.id,
            name=t.transition.name,
            to_stage=StageRead.model_validate(t.to_stage),
            required_permission=t.transition.required_permission,
            allowed=t.allowed,
            reason=t.reason,
        )
        for t in contracts.get_available_transitions_for_contract(
            db, contract_id, actor_id=current_user.id
        )
    ]


@router.post("/{contract_id}/transition", response_model=StageTransitionRead)
def transition_stage(
    contract_id: str,
    payload: StageTransitionRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_transition_dep),
):
    result = contracts.transition_stage(
        db,
        contract_id=contract_id,
        to_stage_id=payload.to_stage_id,
        actor_id=current_user.id,
        note=payload.note,
        disbursement_amount=payload.disbursement_amount,
        revenue_percentage=payload.revenue_percentage,
    )
    return StageTransitionRead(
        contract=ContractRead.model_validate(result.contract),
        from_stage_code=result.from_stage.code,
        to_stage_code=result.to_stage.code,
        commission_processed=result.commission_processed,
    )


@router.patch("/{contract_id}/disbursed-amount", response_model=ContractRead)
def update_disbursed_amount(
    contract_id: str,
    payload: DisbursedAmountUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return contracts.update_disbursed_amount(
        db, contract_id=contract_id, amount=payload.amount, actor_id=current_user.id
    )


@router.get("/{contract_id}/history", response_model=list[StageHistoryRead])
def get_stage_history(
    contract_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return contracts.get_stage_history(db, contract_id, actor_id=current_user.id)
