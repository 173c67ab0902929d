from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from loanflow.models.contracts import DocumentStatus
from loanflow.schemas.workflows import StageRead


class AnswerInput(BaseModel):
    question_id: str
    answer: Optional[str] = None


class ContractCreate(BaseModel):
    service_id: str
    requested_amount: Decimal = Field(..., gt=0)
    # Beneficiary when an agent creates the contract for someone else.
    user_id: Optional[str] = None
    answers: list[AnswerInput] = Field(default_factory=list)


class AnswersUpdate(BaseModel):
    answers: list[AnswerInput] = Field(..., min_length=1)


class StageTransitionRequest(BaseModel):
    to_stage_id: str
    note: Optional[str] = Field(None, max_length=2000)
    disbursement_amount: Optional[Decimal] = None
    revenue_percentage: Optional[Decimal] = None


class DisbursedAmountUpdate(BaseModel):
    amount: Decimal = Field(..., gt=0)


class DocumentReviewRequest(BaseModel):
    status: Literal["APPROVED", "REJECTED"]
    note: Optional[str] = Field(None, max_length=2000)


class ContractDocumentFileRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    file_url: str
    file_name: str
    file_size: int
    mime_type: str
    uploaded_by: Optional[str] = None
    uploaded_at: datetime


class ContractDocumentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    document_requirement_id: str
    status: DocumentStatus
    reviewer_id: Optional[str] = None
    review_note: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    files: list[ContractDocumentFileRead] = []


class ContractAnswerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    question_id: str
    answer: Optional[str] = None
    updated_at: datetime


class ContractRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    contract_number: str
    user_id: str
    creator_id: Optional[str] = None
    service_id: str
    current_stage_id: str
    requested_amount: Decimal
    disbursed_amount: Optional[Decimal] = None
    revenue_percentage: Optional[Decimal] = None
    total_revenue: Optional[Decimal] = None
    disbursed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    current_stage: Optional[StageRead] = None


class ContractDetailRead(ContractRead):
    documents: list[ContractDocumentRead] = []
    answers: list[ContractAnswerRead] = []


class ContractPageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    items: list[ContractRead]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_previous: bool


class StageHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    from_stage_id: Optional[str] = None
    to_stage_id: str
    changed_by: str
    meta: Optional[dict] = None
    created_at: datetime


class AvailableTransitionRead(BaseModel):
    transition_id: str
    name: Optional[str] = None
    to_stage: StageRead
    required_permission: Optional[str] = None
    allowed: bool
    reason: Optional[str] = None


class StageTransitionRead(BaseModel):
    contract: ContractRead
    from_stage_code: str
    to_stage_code: str
    commission_processed: Optional[bool] = None


class FileValidationRead(BaseModel):
    valid: bool
    errors: list[str] = []
