# ruff: noqa: B008
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from loanflow import models
from loanflow.api.deps import get_current_user, require_roles
from loanflow.database import get_db
from loanflow.schemas.catalog import (
    DocumentRequirementCreate,
    DocumentRequirementRead,
    QuestionCreate,
    QuestionRead,
    ServiceCreate,
    ServiceDocumentLink,
    ServiceQuestionLink,
    ServiceRead,
    ServiceStatusUpdate,
)
from loanflow.services import catalog

router = APIRouter(prefix="/services", tags=["services"])

_admin_dep = require_roles(models.RoleCode.ADMIN)


@router.get("", response_model=list[ServiceRead])
def list_services(
    active_only: bool = Query(True),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return catalog.list_services(db, active_only=active_only)


@router.post("", response_model=ServiceRead, status_code=status.HTTP_201_CREATED)
def create_service(
    payload: ServiceCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return catalog.create_service(db, payload)


@router.post(
    "/document-requirements",
    response_model=DocumentRequirementRead,
    status_code=status.HTTP_201_CREATED,
)
def create_document_requirement(
    payload: DocumentRequirementCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return catalog.create_document_requirement(db, payload)


@router.post("/questions", response_model=QuestionRead, status_code=status.HTTP_201_CREATED)
def create_question(
    payload: QuestionCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return catalog.create_question(db, payload)


@router.get("/{service_id}", response_model=ServiceRead)
def get_service(
    service_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return catalog.get_service(db, service_id)


@router.patch("/{service_id}/status", response_model=ServiceRead)
def set_service_status(
    service_id: str,
    payload: ServiceStatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    catalog.set_service_active(db, service_id, payload.is_active)
    return catalog.get_service(db, service_id)


@router.post("/{service_id}/documents", response_model=ServiceRead)
def attach_document_requirement(
    service_id: str,
    payload: ServiceDocumentLink,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return catalog.attach_document_requirement(db, service_id, payload)


@router.post("/{service_id}/questions", response_model=ServiceRead)
def attach_question(
    service_id: str,
    payload: ServiceQuestionLink,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_admin_dep),
):
    return catalog.attach_question(db, service_id, payload)
