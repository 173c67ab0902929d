from __future__ import annotations

import logging

from sqlalchemy.orm import Session, selectinload

from loanflow import models
from loanflow.core.errors import Conflict, NotFound, ValidationFailed
from loanflow.schemas.catalog import (
    DocumentConfig,
    DocumentRequirementCreate,
    QuestionCreate,
    ServiceCreate,
    ServiceDocumentLink,
    ServiceQuestionLink,
    parse_document_config,
)

logger = logging.getLogger("loanflow.catalog")


def document_config_for(requirement: models.DocumentRequirement) -> DocumentConfig:
    return parse_document_config(requirement.config)


def create_document_requirement(
    db: Session, payload: DocumentRequirementCreate
) -> models.DocumentRequirement:
    config = payload.config.model_dump(by_alias=True, exclude_none=True) if payload.config else None
    requirement = models.DocumentRequirement(
        name=payload.name,
        description=payload.description,
        config=config,
    )
    db.add(requirement)
    db.commit()
    db.refresh(requirement)
    return requirement


def create_question(db: Session, payload: QuestionCreate) -> models.Question:
    question = models.Question(
        content=payload.content,
        question_type=payload.question_type.upper(),
        options=payload.options,
        config=payload.config,
    )
    db.add(question)
    db.commit()
    db.refresh(question)
    return question


def _link_document(db: Session, service_id: str, link: ServiceDocumentLink) -> None:
    if db.get(models.DocumentRequirement, link.document_requirement_id) is None:
        raise NotFound(
            "Document requirement not found",
            document_requirement_id=link.document_requirement_id,
        )
    db.add(
        models.ServiceDocumentRequirement(
            service_id=service_id,
            document_requirement_id=link.document_requirement_id,
            is_required=link.is_required,
            sort_order=link.sort_order,
        )
    )


def _link_question(db: Session, service_id: str, link: ServiceQuestionLink) -> None:
    if db.get(models.Question, link.question_id) is None:
        raise NotFound("Question not found", question_id=link.question_id)
    db.add(
        models.ServiceQuestion(
            service_id=service_id,
            question_id=link.question_id,
            is_required=link.is_required,
            sort_order=link.sort_order,
        )
    )


def create_service(db: Session, payload: ServiceCreate) -> models.Service:
    workflow = db.get(models.Workflow, payload.workflow_id)
    if workflow is None:
        raise NotFound("Workflow not found", workflow_id=payload.workflow_id)
    if not workflow.is_active:
        raise ValidationFailed("Workflow is not active", workflow_id=workflow.id)
    if payload.min_loan_amount > payload.max_loan_amount:
        raise ValidationFailed("Minimum loan amount must not exceed maximum loan amount")

    doc_ids = [d.document_requirement_id for d in payload.document_requirements]
    if len(doc_ids) != len(set(doc_ids)):
        raise Conflict("Duplicate document requirement in service definition")
    question_ids = [q.question_id for q in payload.questions]
    if len(question_ids) != len(set(question_ids)):
        raise Conflict("Duplicate question in service definition")

    try:
        service = models.Service(
            name=payload.name,
            description=payload.description,
            workflow_id=workflow.id,
            commission_enabled=payload.commission_enabled,
            min_loan_amount=payload.min_loan_amount,
            max_loan_amount=payload.max_loan_amount,
        )
        db.add(service)
        db.flush()
        for link in payload.document_requirements:
            _link_document(db, service.id, link)
        for link in payload.questions:
            _link_question(db, service.id, link)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("service_created", extra={"service_id": service.id, "workflow_id": workflow.id})
    return get_service(db, service.id)


def attach_document_requirement(
    db: Session, service_id: str, link: ServiceDocumentLink
) -> models.Service:
    service = get_service(db, service_id)
    if any(
        d.document_requirement_id == link.document_requirement_id
        for d in service.document_requirements
    ):
        raise Conflict("Document requirement already attached to this service")
    try:
        _link_document(db, service.id, link)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.expire(service)
    return get_service(db, service.id)


def attach_question(db: Session, service_id: str, link: ServiceQuestionLink) -> models.Service:
    service = get_service(db, service_id)
    if any(q.question_id == link.question_id for q in service.questions):
        raise Conflict("Question already attached to this service")
    try:
        _link_question(db, service.id, link)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.expire(service)
    return get_service(db, service.id)


def get_service(db: Session, service_id: str) -> models.Service:
    service = (
        db.query(models.Service)
        .options(
            selectinload(models.Service.document_requirements),
            selectinload(models.Service.questions),
        )
        .filter(models.Service.id == str(service_id))
        .first()
    )
    if service is None:
        raise NotFound("Service not found", service_id=str(service_id))
    return service


def list_services(db: Session, *, active_only: bool = True) -> list[models.Service]:
    q = db.query(models.Service).options(
        selectinload(models.Service.document_requirements),
        selectinload(models.Service.questions),
    )
    if active_only:
        q = q.filter(models.Service.is_active.is_(True))
    return q.order_by(models.Service.name.asc()).all()


def set_service_active(db: Session, service_id: str, is_active: bool) -> models.Service:
    service = get_service(db, service_id)
    service.is_active = bool(is_active)
    db.commit()
    db.refresh(service)
    return service
