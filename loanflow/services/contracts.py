"""Contract lifecycle orchestration.

Contracts are created in their workflow's first stage and only move through
validated transitions. Each public mutation here owns its transaction: it
commits on success and rolls back on any failure, so a contract never ends
up with a stage change but no history row, or files recorded without the
stage move they were submitted with.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Mapping, Sequence

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from loanflow import models
from loanflow.config import settings
from loanflow.core.errors import Conflict, Forbidden, NotFound, ValidationFailed
from loanflow.core.pagination import Page, paginate
from loanflow.core.periods import utc_now
from loanflow.models.identity import RoleCode
from loanflow.schemas.catalog import DocumentConfig
from loanflow.schemas.contracts import AnswerInput, ContractCreate
from loanflow.services import catalog, commission_engine, rbac, workflow_engine
from loanflow.services.audit import audit_event
from loanflow.services.contract_numbering import next_contract_number
from loanflow.services.contract_transitions import atomic_transition_contract_stage
from loanflow.services.post_commit import DeferredOutcome, defer_after_commit, run_after_commit
from loanflow.services.storage import IncomingFile, StorageBackend, StoredFile, get_storage
from loanflow.services.wallet_ledger import to_money

logger = logging.getLogger("loanflow.contracts")

NUMBER_ALLOCATION_ATTEMPTS = 3
HUNDRED = Decimal("100")
COMMISSION_ACTION = "commission.process_contract_completion"
TRANSITION_PERMISSION = "contract.transition"
SUBMIT_REQUIRED_REASON = "Draft contracts leave the draft stage through submission"


@dataclass(frozen=True)
class FileValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class StageTransitionResult:
    contract: models.Contract
    from_stage: models.WorkflowStage
    to_stage: models.WorkflowStage
    post_commit: list[DeferredOutcome] = field(default_factory=list)

    @property
    def commission_processed(self) -> bool | None:
        for outcome in self.post_commit:
            if outcome.name == COMMISSION_ACTION:
                return outcome.ok
        return None


@dataclass(frozen=True)
class AvailableTransition:
    transition: models.WorkflowTransition
    to_stage: models.WorkflowStage
    allowed: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Lookups and access
# ---------------------------------------------------------------------------


def _contract_query(db: Session):
    return db.query(models.Contract).options(
        selectinload(models.Contract.documents).selectinload(models.ContractDocument.files),
        selectinload(models.Contract.answers),
    )


def get_contract(db: Session, contract_id: str, *, actor_id: str | None = None) -> models.Contract:
    """Load a contract; with ``actor_id`` also enforce owner/creator/admin access."""

    contract = _contract_query(db).filter(models.Contract.id == str(contract_id)).first()
    if contract is None:
        raise NotFound("Contract not found", contract_id=str(contract_id))
    if actor_id is not None:
        _ensure_access(db, contract, actor_id)
    return contract


def _ensure_access(db: Session, contract: models.Contract, actor_id: str) -> None:
    if contract.is_accessible_by(str(actor_id)):
        return
    if rbac.has_any_role(db, actor_id, RoleCode.ADMIN):
        return
    raise Forbidden("You do not have access to this contract", contract_id=contract.id)


def _ensure_owner_or_creator(contract: models.Contract, actor_id: str) -> None:
    if not contract.is_accessible_by(str(actor_id)):
        raise Forbidden("You do not have access to this contract", contract_id=contract.id)


def _service_question_ids(service: models.Service) -> set[str]:
    return {q.question_id for q in service.questions}


def _check_answers_belong(service: models.Service, answers: Iterable[AnswerInput]) -> None:
    allowed = _service_question_ids(service)
    for a in answers:
        if a.question_id not in allowed:
            raise ValidationFailed(
                "Question does not belong to this service", question_id=a.question_id
            )


def _upsert_answers(db: Session, contract_id: str, answers: Sequence[AnswerInput]) -> None:
    if not answers:
        return
    existing = {
        a.question_id: a
        for a in db.query(models.ContractAnswer)
        .filter(models.ContractAnswer.contract_id == contract_id)
        .all()
    }
    for a in answers:
        row = existing.get(a.question_id)
        if row is None:
            row = models.ContractAnswer(contract_id=contract_id, question_id=a.question_id)
            db.add(row)
            existing[a.question_id] = row
        row.answer = a.answer


def _history_meta(action: str, **values) -> dict:
    meta = {"action": action}
    meta.update({k: v for k, v in values.items() if v is not None})
    return meta


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def _insert_with_contract_number(
    db: Session, insert: Callable[[str], models.Contract], *, now: datetime | None
) -> models.Contract:
    """Run ``insert`` under a fresh contract number, retrying on number collisions."""

    for attempt in range(1, NUMBER_ALLOCATION_ATTEMPTS + 1):
        try:
            contract = insert(next_contract_number(db, now=now).formatted)
            db.commit()
            return contract
        except IntegrityError:
            db.rollback()
            logger.warning("contract_number_collision", extra={"attempt": attempt})
        except Exception:
            db.rollback()
            raise
    raise Conflict(
        "Could not allocate a contract number, please retry",
        code="CONTRACT_NUMBER_COLLISION",
    )


def create_contract(
    db: Session,
    *,
    actor_id: str,
    payload: ContractCreate,
    now: datetime | None = None,
) -> models.Contract:
    actor = rbac.ensure_active_user(db, actor_id)
    owner_id = str(payload.user_id or actor.id)
    creator_id: str | None = None
    if owner_id != actor.id:
        if not rbac.has_any_role(db, actor.id, RoleCode.CTV, RoleCode.ADMIN):
            raise Forbidden(
                "Only agents can create contracts on behalf of other users",
                code="ON_BEHALF_NOT_ALLOWED",
            )
        rbac.ensure_active_user(db, owner_id)
        creator_id = actor.id

    service = catalog.get_service(db, payload.service_id)
    if not service.is_active:
        raise ValidationFailed("Service is not active", service_id=service.id)

    amount = to_money(payload.requested_amount)
    lo = to_money(service.min_loan_amount)
    hi = to_money(service.max_loan_amount)
    if amount < lo or amount > hi:
        raise ValidationFailed(
            f"Requested amount must be between {lo} and {hi}",
            code="AMOUNT_OUT_OF_RANGE",
            requested=str(amount),
        )

    _check_answers_belong(service, payload.answers)
    initial = workflow_engine.get_initial_stage(db, service.workflow_id)
    requirement_ids = [link.document_requirement_id for link in service.document_requirements]
    service_id = service.id
    initial_stage_id = initial.id
    initial_code = initial.code

    actor_ref = actor.id

    def insert(contract_number: str) -> models.Contract:
        contract = models.Contract(
            contract_number=contract_number,
            user_id=owner_id,
            creator_id=creator_id,
            service_id=service_id,
            current_stage_id=initial_stage_id,
            requested_amount=amount,
        )
        db.add(contract)
        db.flush()

        for requirement_id in requirement_ids:
            db.add(
                models.ContractDocument(
                    contract_id=contract.id, document_requirement_id=requirement_id
                )
            )
        _upsert_answers(db, contract.id, payload.answers)
        db.add(
            models.ContractStageHistory(
                contract_id=contract.id,
                from_stage_id=None,
                to_stage_id=initial_stage_id,
                changed_by=actor_ref,
                meta=_history_meta("contract_created", to_stage_code=initial_code),
            )
        )
        return contract

    contract = _insert_with_contract_number(db, insert, now=now)
    logger.info(
        "contract_created",
        extra={
            "contract_id": contract.id,
            "contract_number": contract.contract_number,
            "user_id": owner_id,
            "creator_id": creator_id,
        },
    )
    audit_event(
        "CONTRACT_CREATED",
        actor.id,
        {
            "contract_number": contract.contract_number,
            "service_id": service_id,
            "user_id": owner_id,
            "requested_amount": str(amount),
        },
        db=db,
        target_type="contract",
        target_id=contract.id,
    )
    return get_contract(db, contract.id)


def update_answers(
    db: Session,
    *,
    contract_id: str,
    actor_id: str,
    answers: Sequence[AnswerInput],
) -> list[models.ContractAnswer]:
    """Upsert answers by question; last write wins."""

    contract = get_contract(db, contract_id)
    _ensure_owner_or_creator(contract, actor_id)
    _check_answers_belong(contract.service, answers)

    try:
        _upsert_answers(db, contract.id, answers)
        db.commit()
    except Exception:
        db.rollback()
        raise

    return (
        db.query(models.ContractAnswer)
        .filter(models.ContractAnswer.contract_id == contract.id)
        .order_by(models.ContractAnswer.question_id.asc())
        .all()
    )


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def validate_document_files(
    config: DocumentConfig,
    files: Sequence[IncomingFile],
    *,
    existing_count: int = 0,
    required: bool = False,
) -> FileValidation:
    errors: list[str] = []
    total = int(existing_count) + len(files)

    if config.max_files is not None and total > config.max_files:
        errors.append(f"Maximum {config.max_files} file(s) allowed")
    if config.min_files and total < config.min_files and (required or total > 0):
        errors.append(f"At least {config.min_files} file(s) required")

    allowed = {t.lower() for t in config.allowed_types}
    max_size = config.max_size_bytes or settings.max_upload_bytes
    for f in files:
        if allowed and f.mime_type.lower() not in allowed:
            errors.append(f"File type {f.mime_type} is not allowed for {f.file_name}")
        if max_size and f.size > max_size:
            errors.append(f"File {f.file_name} exceeds the maximum size of {max_size} bytes")

    return FileValidation(valid=not errors, errors=errors)


def _upload_all(
    storage: StorageBackend,
    contract_id: str,
    batches: Mapping[str, tuple[DocumentConfig, Sequence[IncomingFile]]],
) -> dict[str, list[StoredFile]]:
    uploaded: dict[str, list[StoredFile]] = {}
    try:
        for requirement_id, (config, files) in batches.items():
            if not files:
                continue
            uploaded[requirement_id] = storage.upload_files(
                files,
                folder=f"contracts/{contract_id}/{requirement_id}",
                allowed_mime_types=config.allowed_types or None,
                max_size_bytes=config.max_size_bytes or settings.max_upload_bytes,
            )
    except Exception:
        _discard_uploads(storage, uploaded)
        raise
    return uploaded


def _discard_uploads(storage: StorageBackend, uploaded: Mapping[str, list[StoredFile]]) -> None:
    for stored in uploaded.values():
        for f in stored:
            try:
                storage.delete_file(f.key)
            except Exception:
                logger.warning("storage_cleanup_failed", extra={"key": f.key})


def _add_file_rows(
    db: Session,
    document: models.ContractDocument,
    stored: Sequence[StoredFile],
    *,
    uploaded_by: str,
) -> None:
    for f in stored:
        db.add(
            models.ContractDocumentFile(
                contract_document_id=document.id,
                file_url=f.url,
                file_name=f.file_name,
                file_size=f.file_size,
                mime_type=f.mime_type,
                uploaded_by=uploaded_by,
            )
        )


def _report_orphans(contract_id: str, uploaded: Mapping[str, list[StoredFile]]) -> None:
    keys = [f.key for stored in uploaded.values() for f in stored]
    if keys:
        logger.error("submit_orphaned_uploads", extra={"contract_id": contract_id, "keys": keys})


def add_document_files(
    db: Session,
    *,
    contract_id: str,
    document_id: str,
    actor_id: str,
    files: Sequence[IncomingFile],
    storage: StorageBackend | None = None,
) -> models.ContractDocument:
    if not files:
        raise ValidationFailed("No files provided")

    contract = get_contract(db, contract_id)
    _ensure_owner_or_creator(contract, actor_id)

    document = next((d for d in contract.documents if d.id == str(document_id)), None)
    if document is None:
        raise NotFound("Document not found", document_id=str(document_id))
    if document.status != models.DocumentStatus.PENDING:
        raise ValidationFailed("Cannot upload to a reviewed document", document_id=document.id)

    config = catalog.document_config_for(document.document_requirement)
    check = validate_document_files(config, files, existing_count=len(document.files))
    if not check.valid:
        raise ValidationFailed(check.errors[0], errors=check.errors)

    storage = storage or get_storage()
    requirement_id = document.document_requirement_id
    uploaded = _upload_all(storage, contract.id, {requirement_id: (config, files)})
    try:
        _add_file_rows(db, document, uploaded[requirement_id], uploaded_by=actor_id)
        db.commit()
    except Exception:
        db.rollback()
        _report_orphans(contract.id, uploaded)
        raise

    db.refresh(document)
    return document


def review_document(
    db: Session,
    *,
    contract_id: str,
    document_id: str,
    reviewer_id: str,
    status: models.DocumentStatus | str,
    note: str | None = None,
    now: datetime | None = None,
) -> models.ContractDocument:
    new_status = models.DocumentStatus(status) if isinstance(status, str) else status
    if new_status == models.DocumentStatus.PENDING:
        raise ValidationFailed("Review status must be APPROVED or REJECTED")

    document = (
        db.query(models.ContractDocument)
        .filter(
            models.ContractDocument.id == str(document_id),
            models.ContractDocument.contract_id == str(contract_id),
        )
        .first()
    )
    if document is None:
        raise NotFound("Document not found", document_id=str(document_id))
    if document.status != models.DocumentStatus.PENDING:
        raise Conflict("Document has already been reviewed", document_id=document.id)

    document.status = new_status
    document.reviewer_id = str(reviewer_id)
    document.review_note = note
    document.reviewed_at = now or utc_now()
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    audit_event(
        "DOCUMENT_REVIEWED",
        reviewer_id,
        {"contract_id": str(contract_id), "status": new_status.value, "note": note},
        db=db,
        target_type="contract_document",
        target_id=document.id,
    )
    db.refresh(document)
    return document


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


def submit_contract(
    db: Session,
    *,
    contract_id: str,
    actor_id: str,
    answers: Sequence[AnswerInput] | None = None,
    files: Mapping[str, Sequence[IncomingFile]] | None = None,
    storage: StorageBackend | None = None,
) -> models.Contract:
    """Move a DRAFT contract one stage forward with its answers and files.

    ``files`` is keyed by document requirement id. Every check runs before any
    upload; uploads run before the DB transaction so a failed upload never
    leaves a metadata row behind.
    """

    answers = list(answers or [])
    files = {str(k): list(v) for k, v in (files or {}).items()}

    contract = get_contract(db, contract_id)
    _ensure_owner_or_creator(contract, actor_id)

    from_stage = contract.current_stage
    if from_stage.code != workflow_engine.DRAFT_STAGE_CODE:
        raise Conflict("Contract has already been submitted", code="ALREADY_SUBMITTED")

    service = contract.service
    _check_answers_belong(service, answers)

    links = {link.document_requirement_id: link for link in service.document_requirements}
    unknown = [rid for rid in files if rid not in links]
    if unknown:
        raise ValidationFailed(
            "Document requirement does not belong to this service",
            document_requirement_ids=unknown,
        )

    documents = {d.document_requirement_id: d for d in contract.documents}
    batches: dict[str, tuple[DocumentConfig, list[IncomingFile]]] = {}

    for requirement_id, link in links.items():
        requirement = link.document_requirement
        existing = len(documents[requirement_id].files) if requirement_id in documents else 0
        incoming = files.get(requirement_id, [])
        if link.is_required and existing + len(incoming) == 0:
            raise ValidationFailed(
                f"Missing required document: {requirement.name}",
                code="MISSING_REQUIRED_DOCUMENT",
                document_requirement_id=requirement_id,
            )

        config = catalog.document_config_for(requirement)
        check = validate_document_files(
            config, incoming, existing_count=existing, required=link.is_required
        )
        if not check.valid:
            raise ValidationFailed(
                f"{requirement.name}: {check.errors[0]}",
                document_requirement_id=requirement_id,
                errors=check.errors,
            )
        batches[requirement_id] = (config, incoming)

    to_stage = workflow_engine.get_next_stage(db, from_stage)
    if to_stage is None:
        raise ValidationFailed(
            "Workflow has no stage after DRAFT", workflow_id=from_stage.workflow_id
        )

    storage = storage or get_storage()
    uploaded = _upload_all(storage, contract.id, batches)

    try:
        _upsert_answers(db, contract.id, answers)
        for requirement_id, stored in uploaded.items():
            document = documents.get(requirement_id)
            if document is None:
                document = models.ContractDocument(
                    contract_id=contract.id, document_requirement_id=requirement_id
                )
                db.add(document)
                db.flush()
            _add_file_rows(db, document, stored, uploaded_by=actor_id)

        result = atomic_transition_contract_stage(
            db=db,
            contract_id=contract.id,
            from_stage_id=from_stage.id,
            to_stage_id=to_stage.id,
        )
        if not result.updated:
            raise Conflict("Contract stage changed concurrently, please retry", code="STALE_STAGE")

        db.add(
            models.ContractStageHistory(
                contract_id=contract.id,
                from_stage_id=from_stage.id,
                to_stage_id=to_stage.id,
                changed_by=str(actor_id),
                meta=_history_meta(
                    "contract_submitted",
                    from_stage_code=from_stage.code,
                    to_stage_code=to_stage.code,
                ),
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        _report_orphans(contract.id, uploaded)
        raise

    file_count = sum(len(v) for v in uploaded.values())
    logger.info(
        "contract_submitted",
        extra={"contract_id": contract.id, "to_stage": to_stage.code, "files": file_count},
    )
    audit_event(
        "CONTRACT_SUBMITTED",
        actor_id,
        {"from_stage": from_stage.code, "to_stage": to_stage.code, "files": file_count},
        db=db,
        target_type="contract",
        target_id=contract.id,
    )
    return get_contract(db, contract.id)


# ---------------------------------------------------------------------------
# Stage transitions
# ---------------------------------------------------------------------------


def _disbursement_inputs(
    disbursement_amount, revenue_percentage
) -> tuple[Decimal, Decimal, Decimal]:
    if disbursement_amount is None:
        raise ValidationFailed(
            "Disbursement amount is required for this stage", code="DISBURSEMENT_REQUIRED"
        )
    if revenue_percentage is None:
        raise ValidationFailed(
            "Revenue percentage is required for this stage", code="REVENUE_PERCENTAGE_REQUIRED"
        )

    amount = to_money(disbursement_amount)
    if amount <= 0:
        raise ValidationFailed("Disbursement amount must be greater than zero")

    percentage = Decimal(str(revenue_percentage))
    if not percentage.is_finite() or percentage <= 0 or percentage > HUNDRED:
        raise ValidationFailed("Revenue percentage must be greater than 0 and at most 100")
    percentage = percentage.quantize(Decimal("0.01"))

    total_revenue = to_money(amount * percentage / HUNDRED)
    return amount, percentage, total_revenue


def transition_stage(
    db: Session,
    *,
    contract_id: str,
    to_stage_id: str,
    actor_id: str,
    note: str | None = None,
    disbursement_amount=None,
    revenue_percentage=None,
    now: datetime | None = None,
) -> StageTransitionResult:
    """Move a contract along a workflow edge.

    Drafts are refused here; they leave DRAFT only through ``submit_contract``.
    The stage move and its history row commit together. Entering a commission
    stage queues commission processing to run after that commit; its failure
    is logged by the post-commit runner and never undoes the move.
    """

    now = now or utc_now()
    rbac.ensure_active_user(db, actor_id)

    contract = get_contract(db, contract_id)
    from_stage = contract.current_stage
    to_stage = db.get(models.WorkflowStage, str(to_stage_id))
    if to_stage is None:
        raise NotFound("Stage not found", stage_id=str(to_stage_id))

    workflow_engine.validate_transition(
        db, from_stage.workflow_id, from_stage.id, to_stage.id, actor_id
    )
    if from_stage.code == workflow_engine.DRAFT_STAGE_CODE:
        raise ValidationFailed(
            SUBMIT_REQUIRED_REASON, code="SUBMIT_REQUIRED", contract_id=contract.id
        )

    service = contract.service
    commission_stage = bool(to_stage.triggers_commission and service.commission_enabled)
    updates: dict = {}
    amount = percentage = total_revenue = None
    if commission_stage:
        amount, percentage, total_revenue = _disbursement_inputs(
            disbursement_amount, revenue_percentage
        )
        updates = {
            "disbursed_amount": amount,
            "revenue_percentage": percentage,
            "total_revenue": total_revenue,
            "disbursed_at": now,
        }

    # Plain values: the guarded UPDATE bypasses the identity map.
    contract_ref = contract.id
    owner_id = contract.user_id
    from_code, to_code = from_stage.code, to_stage.code

    try:
        result = atomic_transition_contract_stage(
            db=db,
            contract_id=contract_ref,
            from_stage_id=from_stage.id,
            to_stage_id=to_stage.id,
            updates=updates,
            now=now,
        )
        if not result.updated:
            raise Conflict("Contract stage changed concurrently, please retry", code="STALE_STAGE")

        db.add(
            models.ContractStageHistory(
                contract_id=contract_ref,
                from_stage_id=from_stage.id,
                to_stage_id=to_stage.id,
                changed_by=str(actor_id),
                meta=_history_meta(
                    "stage_transition",
                    from_stage_code=from_code,
                    to_stage_code=to_code,
                    note=note,
                    disbursement_amount=str(amount) if amount is not None else None,
                    revenue_percentage=str(percentage) if percentage is not None else None,
                    total_revenue=str(total_revenue) if total_revenue is not None else None,
                ),
            )
        )
        if commission_stage:
            defer_after_commit(
                db,
                COMMISSION_ACTION,
                commission_engine.process_contract_completion,
                contract_id=contract_ref,
                user_id=owner_id,
                disbursement_amount=amount,
                revenue_percentage=percentage,
                total_revenue=total_revenue,
                now=now,
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    outcomes = run_after_commit(db)

    logger.info(
        "contract_stage_changed",
        extra={"contract_id": contract_ref, "from_stage": from_code, "to_stage": to_code},
    )
    audit_event(
        "CONTRACT_STAGE_CHANGED",
        actor_id,
        {"from_stage": from_code, "to_stage": to_code, "note": note},
        db=db,
        target_type="contract",
        target_id=contract_ref,
    )

    return StageTransitionResult(
        contract=get_contract(db, contract_ref),
        from_stage=from_stage,
        to_stage=to_stage,
        post_commit=outcomes,
    )


def update_disbursed_amount(
    db: Session,
    *,
    contract_id: str,
    amount,
    actor_id: str,
) -> models.Contract:
    """Admin correction between submission and the commission stage."""

    value = to_money(amount)
    if value <= 0:
        raise ValidationFailed("Disbursed amount must be greater than zero")

    contract = get_contract(db, contract_id)
    stage = contract.current_stage
    if stage.code == workflow_engine.DRAFT_STAGE_CODE:
        raise ValidationFailed("Cannot update disbursed amount of a draft contract")
    if stage.triggers_commission:
        raise ValidationFailed(
            "Cannot update disbursed amount after the contract reached a commission stage"
        )

    previous = contract.disbursed_amount
    contract.disbursed_amount = value
    if contract.revenue_percentage is not None:
        contract.total_revenue = to_money(value * Decimal(contract.revenue_percentage) / HUNDRED)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    audit_event(
        "CONTRACT_DISBURSED_AMOUNT_UPDATED",
        actor_id,
        {"previous": str(previous) if previous is not None else None, "amount": str(value)},
        db=db,
        target_type="contract",
        target_id=contract.id,
    )
    return get_contract(db, contract.id)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def list_user_contracts(
    db: Session, user_id: str, *, page: int = 1, limit: int = 20
) -> Page[models.Contract]:
    q = (
        db.query(models.Contract)
        .filter(models.Contract.user_id == str(user_id))
        .order_by(models.Contract.created_at.desc(), models.Contract.id.desc())
    )
    return paginate(q, page=page, limit=limit)


def list_created_for_others(
    db: Session, creator_id: str, *, page: int = 1, limit: int = 20
) -> Page[models.Contract]:
    q = (
        db.query(models.Contract)
        .filter(
            models.Contract.creator_id == str(creator_id),
            models.Contract.user_id != str(creator_id),
        )
        .order_by(models.Contract.created_at.desc(), models.Contract.id.desc())
    )
    return paginate(q, page=page, limit=limit)


def search_contracts(
    db: Session,
    *,
    search: str | None = None,
    service_id: str | None = None,
    stage_id: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> Page[models.Contract]:
    """Admin search across contract number and owner email/phone/name."""

    q = db.query(models.Contract).join(models.User, models.User.id == models.Contract.user_id)
    term = (search or "").strip()
    if term:
        like = f"%{term}%"
        q = q.filter(
            or_(
                models.Contract.contract_number.ilike(like),
                models.User.email.ilike(like),
                models.User.phone.ilike(like),
                models.User.full_name.ilike(like),
            )
        )
    if service_id:
        q = q.filter(models.Contract.service_id == str(service_id))
    if stage_id:
        q = q.filter(models.Contract.current_stage_id == str(stage_id))

    q = q.order_by(models.Contract.created_at.desc(), models.Contract.id.desc())
    return paginate(q, page=page, limit=limit)


def get_available_transitions_for_contract(
    db: Session, contract_id: str, *, actor_id: str
) -> list[AvailableTransition]:
    contract = get_contract(db, contract_id, actor_id=actor_id)
    stage = contract.current_stage
    out: list[AvailableTransition] = []
    for t in workflow_engine.get_available_transitions(db, stage.workflow_id, stage.id):
        if stage.code == workflow_engine.DRAFT_STAGE_CODE:
            out.append(
                AvailableTransition(
                    transition=t, to_stage=t.to_stage, allowed=False, reason=SUBMIT_REQUIRED_REASON
                )
            )
            continue
        check = workflow_engine.can_transition(
            db, stage.workflow_id, stage.id, t.to_stage_id, actor_id
        )
        out.append(
            AvailableTransition(
                transition=t, to_stage=t.to_stage, allowed=check.allowed, reason=check.reason
            )
        )
    return out


def get_stage_history(
    db: Session, contract_id: str, *, actor_id: str | None = None
) -> list[models.ContractStageHistory]:
    contract = get_contract(db, contract_id, actor_id=actor_id)
    return (
        db.query(models.ContractStageHistory)
        .filter(models.ContractStageHistory.contract_id == contract.id)
        .order_by(
            models.ContractStageHistory.created_at.asc(), models.ContractStageHistory.id.asc()
        )
        .all()
    )
