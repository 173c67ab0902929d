from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
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

DEFAULT_MIN_LOAN_AMOUNT = Decimal("1000000")
DEFAULT_MAX_LOAN_AMOUNT = Decimal("100000000")


class Service(Base):
    """A loan product offered to users, bound to one workflow."""

    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    workflow_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("workflows.id"), nullable=False, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    commission_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    min_loan_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=DEFAULT_MIN_LOAN_AMOUNT
    )
    max_loan_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=DEFAULT_MAX_LOAN_AMOUNT
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False
    )

    workflow = relationship("Workflow")
    document_requirements = relationship(
        "ServiceDocumentRequirement",
        back_populates="service",
        cascade="all, delete-orphan",
        order_by="ServiceDocumentRequirement.sort_order",
    )
    questions = relationship(
        "ServiceQuestion",
        back_populates="service",
        cascade="all, delete-orphan",
        order_by="ServiceQuestion.sort_order",
    )


def _validate_service_invariants(_mapper, _connection, target: Service) -> None:
    lo = target.min_loan_amount
    hi = target.max_loan_amount
    if lo is not None and hi is not None and Decimal(lo) > Decimal(hi):
        raise ValueError("min_loan_amount must not exceed max_loan_amount")
    if lo is not None and Decimal(lo) < 0:
        raise ValueError("min_loan_amount must not be negative")


event.listen(Service, "before_insert", _validate_service_invariants)
event.listen(Service, "before_update", _validate_service_invariants)


class DocumentRequirement(Base):
    __tablename__ = "document_requirements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Parsed through loanflow.schemas.catalog.DocumentConfig; never read raw.
    config: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)


class ServiceDocumentRequirement(Base):
    __tablename__ = "service_document_requirements"
    __table_args__ = (
        UniqueConstraint("service_id", "document_requirement_id", name="uq_service_doc_req"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    service_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True
    )
    document_requirement_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("document_requirements.id"), nullable=False
    )
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    service = relationship("Service", back_populates="document_requirements")
    document_requirement = relationship("DocumentRequirement", lazy="joined")


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    question_type: Mapped[str] = mapped_column(String(32), nullable=False, default="TEXT")
    options: Mapped[list | None] = mapped_column(JSON, nullable=True)
    config: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)


class ServiceQuestion(Base):
    __tablename__ = "service_questions"
    __table_args__ = (UniqueConstraint("service_id", "question_id", name="uq_service_question"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    service_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("services.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_id: Mapped[str] = mapped_column(String(36), ForeignKey("questions.id"), nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    service = relationship("Service", back_populates="questions")
    question = relationship("Question", lazy="joined")
