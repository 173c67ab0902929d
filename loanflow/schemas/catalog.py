from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from loanflow.core.errors import ValidationFailed


class DocumentConfig(BaseModel):
    """Upload rules attached to a document requirement."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    max_files: Optional[int] = Field(None, ge=1, alias="maxFiles")
    min_files: int = Field(0, ge=0, alias="minFiles")
    allowed_types: list[str] = Field(default_factory=list, alias="allowedTypes")
    max_size_bytes: Optional[int] = Field(None, ge=1, alias="maxSizeBytes")
    expiration_days: Optional[int] = Field(None, ge=1, alias="expirationDays")

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.max_files is not None and self.min_files > self.max_files:
            raise ValueError("minFiles must not exceed maxFiles")
        return self


def parse_document_config(raw: Any) -> DocumentConfig:
    if raw is None or raw == {}:
        return DocumentConfig()
    if isinstance(raw, DocumentConfig):
        return raw
    try:
        return DocumentConfig.model_validate(raw)
    except ValidationError as exc:
        raise ValidationFailed(f"Invalid document config: {exc.errors()[0]['msg']}") from exc


class DocumentRequirementCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    config: Optional[DocumentConfig] = None


class DocumentRequirementRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    config: Optional[dict[str, Any]] = None
    is_active: bool


class QuestionCreate(BaseModel):
    content: str = Field(..., min_length=1)
    question_type: str = Field("TEXT", max_length=32)
    options: Optional[list[Any]] = None
    config: Optional[dict[str, Any]] = None


class QuestionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    content: str
    question_type: str
    options: Optional[list[Any]] = None


class ServiceDocumentLink(BaseModel):
    document_requirement_id: str
    is_required: bool = True
    sort_order: int = 0


class ServiceQuestionLink(BaseModel):
    question_id: str
    is_required: bool = False
    sort_order: int = 0


class ServiceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    workflow_id: str
    commission_enabled: bool = True
    min_loan_amount: Decimal = Field(Decimal("1000000"), ge=0)
    max_loan_amount: Decimal = Field(Decimal("100000000"), gt=0)
    document_requirements: list[ServiceDocumentLink] = Field(default_factory=list)
    questions: list[ServiceQuestionLink] = Field(default_factory=list)


class ServiceDocumentRequirementRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    document_requirement_id: str
    is_required: bool
    sort_order: int
    document_requirement: DocumentRequirementRead


class ServiceQuestionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    question_id: str
    is_required: bool
    sort_order: int
    question: QuestionRead


class ServiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    workflow_id: str
    is_active: bool
    commission_enabled: bool
    min_loan_amount: Decimal
    max_loan_amount: Decimal
    created_at: datetime
    document_requirements: list[ServiceDocumentRequirementRead] = []
    questions: list[ServiceQuestionRead] = []


class ServiceStatusUpdate(BaseModel):
    is_active: bool
