from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from loanflow.core.periods import utc_now
from loanflow.database import Base
from loanflow.models.identity import new_id


class DocumentStatus(PyEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Contract(Base):
    """One loan application; ``current_stage_id`` is the state-machine cursor."""

    __tablename__ = "contracts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    contract_number: Mapped[str] = mapped_column(
        String(32), unique=True, nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    # Set when an agent creates the contract on behalf of another user.
    creator_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True, index=True
    )
    service_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("services.id"), nullable=False, index=True
    )
    current_stage_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("workflow_stages.id"), nullable=False, index=True
    )
    requested_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    disbursed_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    revenue_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    total_revenue: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    disbursed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    user = relationship("User", foreign_keys=[user_id])
    creator = relationship("User", foreign_keys=[creator_id])
    service = relationship("Service")
    current_stage = relationship("WorkflowStage")
    documents = relationship(
        "ContractDocument", back_populates="contract", cascade="all, delete-orphan"
    )
    answers = relationship("ContractAnswer", back_populates="contract", cascade="all, delete-orphan")
    history = relationship(
        "ContractStageHistory",
        back_populates="contract",
        order_by="ContractStageHistory.created_at",
    )

    def is_accessible_by(self, user_id: str) -> bool:
        return user_id in {self.user_id, self.creator_id}


class ContractDocument(Base):
    __tablename__ = "contract_documents"
    __table_args__ = (
        UniqueConstraint("contract_id", "document_requirement_id", name="uq_contract_document"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    contract_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    document_requirement_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("document_requirements.id"), nullable=False
    )
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus, native_enum=False), nullable=False, default=DocumentStatus.PENDING
    )
    reviewer_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    review_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    contract = relationship("Contract", back_populates="documents")
    document_requirement = relationship("DocumentRequirement", lazy="joined")
    files = relationship(
        "ContractDocumentFile",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="ContractDocumentFile.uploaded_at",
    )


class ContractDocumentFile(Base):
    __tablename__ = "contract_document_files"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    contract_document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("contract_documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    file_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    uploaded_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    document = relationship("ContractDocument", back_populates="files")


class ContractAnswer(Base):
    __tablename__ = "contract_answers"
    __table_args__ = (UniqueConstraint("contract_id", "question_id", name="uq_contract_answer"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    contract_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_id: Mapped[str] = mapped_column(String(36), ForeignKey("questions.id"), nullable=False)
    answer: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    contract = relationship("Contract", back_populates="answers")


class ContractStageHistory(Base):
    """Append-only log of every stage a contract entered."""

    __tablename__ = "contract_stage_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    contract_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Plain ids: a stage no contract sits in may be deleted while its history
    # stays. Stage codes are copied into meta.
    from_stage_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    to_stage_id: Mapped[str] = mapped_column(String(36), nullable=False)
    changed_by: Mapped[str] = mapped_column(String(36), nullable=False)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)

    contract = relationship("Contract", back_populates="history")


def _reject_history_mutation(_mapper, _connection, _target) -> None:
    raise ValueError("Stage history is append-only")


event.listen(ContractStageHistory, "before_update", _reject_history_mutation)
event.listen(ContractStageHistory, "before_delete", _reject_history_mutation)
