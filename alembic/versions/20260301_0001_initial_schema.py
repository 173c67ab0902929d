"""initial lending schema

Revision ID: 20260301_0001_initial_schema
Revises: None
Create Date: 2026-03-01
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20260301_0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _enum(*values: str, name: str) -> sa.Enum:
    # Stored as VARCHAR on every dialect so new members never need ALTER TYPE.
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=False)


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    cols = [sa.Column("created_at", sa.DateTime(), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(), nullable=False))
    return cols


def upgrade() -> None:
    # Identity and RBAC
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=True, unique=True),
        sa.Column("phone", sa.String(32), nullable=True, unique=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column(
            "status", _enum("ACTIVE", "PENDING_VERIFY", "SUSPENDED", name="userstatus"), nullable=False
        ),
        sa.Column("referral_code", sa.String(32), nullable=True, unique=True),
        sa.Column(
            "referred_by",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_phone", "users", ["phone"])
    op.create_index("ix_users_referred_by", "users", ["referred_by"])

    op.create_table(
        "roles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(updated=False),
    )
    op.create_index("ix_roles_code", "roles", ["code"])

    op.create_table(
        "permissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("code", sa.String(128), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
    )
    op.create_index("ix_permissions_code", "permissions", ["code"])

    op.create_table(
        "user_roles",
        sa.Column(
            "user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column(
            "role_id", sa.String(36), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column("assigned_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "role_permissions",
        sa.Column(
            "role_id", sa.String(36), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column(
            "permission_id",
            sa.String(36),
            sa.ForeignKey("permissions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )

    # Workflows
    op.create_table(
        "workflows",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(36), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("name", "version", name="uq_workflows_name_version"),
    )
    op.create_index("ix_workflows_name", "workflows", ["name"])
    op.create_index("ix_workflows_is_active", "workflows", ["is_active"])

    op.create_table(
        "workflow_stages",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "workflow_id",
            sa.String(36),
            sa.ForeignKey("workflows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("stage_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("color", sa.String(16), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("triggers_commission", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(updated=False),
        sa.UniqueConstraint("workflow_id", "code", name="uq_workflow_stages_code"),
    )
    op.create_index("ix_workflow_stages_workflow_id", "workflow_stages", ["workflow_id"])

    op.create_table(
        "workflow_transitions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "workflow_id",
            sa.String(36),
            sa.ForeignKey("workflows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "from_stage_id",
            sa.String(36),
            sa.ForeignKey("workflow_stages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "to_stage_id",
            sa.String(36),
            sa.ForeignKey("workflow_stages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("required_permission", sa.String(128), nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint(
            "workflow_id", "from_stage_id", "to_stage_id", name="uq_workflow_transitions_edge"
        ),
    )
    op.create_index("ix_workflow_transitions_workflow_id", "workflow_transitions", ["workflow_id"])
    op.create_index(
        "ix_workflow_transitions_from_stage_id", "workflow_transitions", ["from_stage_id"]
    )

    # Service catalogue
    op.create_table(
        "services",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("workflow_id", sa.String(36), sa.ForeignKey("workflows.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("commission_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("min_loan_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("max_loan_amount", sa.Numeric(15, 2), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_services_workflow_id", "services", ["workflow_id"])

    op.create_table(
        "document_requirements",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("config", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
    )

    op.create_table(
        "service_document_requirements",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "service_id",
            sa.String(36),
            sa.ForeignKey("services.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "document_requirement_id",
            sa.String(36),
            sa.ForeignKey("document_requirements.id"),
            nullable=False,
        ),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("service_id", "document_requirement_id", name="uq_service_doc_req"),
    )
    op.create_index(
        "ix_service_document_requirements_service_id",
        "service_document_requirements",
        ["service_id"],
    )

    op.create_table(
        "questions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("question_type", sa.String(32), nullable=False, server_default="TEXT"),
        sa.Column("options", sa.JSON(), nullable=True),
        sa.Column("config", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
    )

    op.create_table(
        "service_questions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "service_id",
            sa.String(36),
            sa.ForeignKey("services.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("question_id", sa.String(36), sa.ForeignKey("questions.id"), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("service_id", "question_id", name="uq_service_question"),
    )
    op.create_index("ix_service_questions_service_id", "service_questions", ["service_id"])

    # Contracts
    op.create_table(
        "contracts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("contract_number", sa.String(32), nullable=False, unique=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("creator_id", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("service_id", sa.String(36), sa.ForeignKey("services.id"), nullable=False),
        sa.Column(
            "current_stage_id", sa.String(36), sa.ForeignKey("workflow_stages.id"), nullable=False
        ),
        sa.Column("requested_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("disbursed_amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("revenue_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("total_revenue", sa.Numeric(15, 2), nullable=True),
        sa.Column("disbursed_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_contracts_contract_number", "contracts", ["contract_number"])
    op.create_index("ix_contracts_user_id", "contracts", ["user_id"])
    op.create_index("ix_contracts_creator_id", "contracts", ["creator_id"])
    op.create_index("ix_contracts_service_id", "contracts", ["service_id"])
    op.create_index("ix_contracts_current_stage_id", "contracts", ["current_stage_id"])
    op.create_index("ix_contracts_disbursed_at", "contracts", ["disbursed_at"])

    op.create_table(
        "contract_documents",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "contract_id",
            sa.String(36),
            sa.ForeignKey("contracts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "document_requirement_id",
            sa.String(36),
            sa.ForeignKey("document_requirements.id"),
            nullable=False,
        ),
        sa.Column(
            "status", _enum("PENDING", "APPROVED", "REJECTED", name="documentstatus"), nullable=False
        ),
        sa.Column("reviewer_id", sa.String(36), nullable=True),
        sa.Column("review_note", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint("contract_id", "document_requirement_id", name="uq_contract_document"),
    )
    op.create_index("ix_contract_documents_contract_id", "contract_documents", ["contract_id"])

    op.create_table(
        "contract_document_files",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "contract_document_id",
            sa.String(36),
            sa.ForeignKey("contract_documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("file_url", sa.String(1024), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("mime_type", sa.String(128), nullable=False),
        sa.Column("uploaded_by", sa.String(36), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_contract_document_files_contract_document_id",
        "contract_document_files",
        ["contract_document_id"],
    )

    op.create_table(
        "contract_answers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "contract_id",
            sa.String(36),
            sa.ForeignKey("contracts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("question_id", sa.String(36), sa.ForeignKey("questions.id"), nullable=False),
        sa.Column("answer", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("contract_id", "question_id", name="uq_contract_answer"),
    )
    op.create_index("ix_contract_answers_contract_id", "contract_answers", ["contract_id"])

    op.create_table(
        "contract_stage_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "contract_id",
            sa.String(36),
            sa.ForeignKey("contracts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("from_stage_id", sa.String(36), nullable=True),
        sa.Column("to_stage_id", sa.String(36), nullable=False),
        sa.Column("changed_by", sa.String(36), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index(
        "ix_contract_stage_history_contract_id", "contract_stage_history", ["contract_id"]
    )

    # Ledger
    op.create_table(
        "wallets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False, unique=True),
        sa.Column("balance", sa.Numeric(15, 2), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_wallets_user_id", "wallets", ["user_id"])

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("wallet_id", sa.String(36), sa.ForeignKey("wallets.id"), nullable=False),
        sa.Column("type", _enum("CREDIT", "DEBIT", name="transactiontype"), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("balance_after", sa.Numeric(15, 2), nullable=False),
        sa.Column("reference_id", sa.String(36), nullable=True),
        sa.Column("reference_type", sa.String(32), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_wallet_transactions_wallet_id", "wallet_transactions", ["wallet_id"])
    op.create_index("ix_wallet_transactions_reference_id", "wallet_transactions", ["reference_id"])
    op.create_index(
        "ix_wallet_transactions_reference_type", "wallet_transactions", ["reference_type"]
    )

    op.create_table(
        "withdrawal_requests",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("wallet_id", sa.String(36), sa.ForeignKey("wallets.id"), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("bank_name", sa.String(255), nullable=False),
        sa.Column("bank_account", sa.String(64), nullable=False),
        sa.Column("account_holder", sa.String(255), nullable=False),
        sa.Column(
            "status",
            _enum("PENDING", "APPROVED", "REJECTED", "PAID", "CANCELLED", name="withdrawalstatus"),
            nullable=False,
        ),
        sa.Column("admin_note", sa.Text(), nullable=True),
        sa.Column("processed_by", sa.String(36), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_withdrawal_requests_user_id", "withdrawal_requests", ["user_id"])
    op.create_index("ix_withdrawal_requests_status", "withdrawal_requests", ["status"])

    # Commission
    op.create_table(
        "commission_configs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("role_code", sa.String(64), nullable=False),
        sa.Column("rate", sa.Numeric(5, 4), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_commission_configs_role_code", "commission_configs", ["role_code"])

    op.create_table(
        "kpi_commission_tiers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("role_code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("tier_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_contracts", sa.Integer(), nullable=True),
        sa.Column("min_disbursement", sa.Numeric(15, 2), nullable=True),
        sa.Column("reward_type", _enum("RATE", "FIXED_AMOUNT", name="kpirewardtype"), nullable=False),
        sa.Column("bonus_rate", sa.Numeric(5, 4), nullable=True),
        sa.Column("bonus_amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_kpi_commission_tiers_role_code", "kpi_commission_tiers", ["role_code"])

    op.create_table(
        "commission_snapshots",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("period_year", sa.Integer(), nullable=False),
        sa.Column("period_month", sa.Integer(), nullable=False),
        sa.Column("role_code", sa.String(64), nullable=False),
        sa.Column("total_contracts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_disbursement", sa.Numeric(15, 2), nullable=False, server_default="0"),
        sa.Column("base_commission", sa.Numeric(15, 2), nullable=False, server_default="0"),
        sa.Column(
            "kpi_tier_id", sa.String(36), sa.ForeignKey("kpi_commission_tiers.id"), nullable=True
        ),
        sa.Column("bonus_commission", sa.Numeric(15, 2), nullable=False, server_default="0"),
        sa.Column("total_commission", sa.Numeric(15, 2), nullable=False, server_default="0"),
        sa.Column(
            "status", _enum("PENDING", "PROCESSED", "PAID", name="snapshotstatus"), nullable=False
        ),
        sa.Column("processed_by", sa.String(36), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint(
            "user_id", "period_year", "period_month", name="uq_commission_snapshots_period"
        ),
    )
    op.create_index("ix_commission_snapshots_user_id", "commission_snapshots", ["user_id"])
    op.create_index("ix_commission_snapshots_status", "commission_snapshots", ["status"])

    op.create_table(
        "commission_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("contract_id", sa.String(36), sa.ForeignKey("contracts.id"), nullable=False),
        sa.Column("referred_user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("rate", sa.Numeric(5, 4), nullable=False),
        sa.Column("role_code", sa.String(64), nullable=False),
        sa.Column("disbursement_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("revenue_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("total_revenue", sa.Numeric(15, 2), nullable=False),
        sa.Column(
            "status", _enum("PENDING", "CREDITED", name="commissionstatus"), nullable=False
        ),
        sa.Column(
            "snapshot_id", sa.String(36), sa.ForeignKey("commission_snapshots.id"), nullable=True
        ),
        sa.Column("wallet_transaction_id", sa.String(36), nullable=True),
        sa.Column("credited_at", sa.DateTime(), nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint("contract_id", name="uq_commission_records_contract"),
    )
    op.create_index("ix_commission_records_user_id", "commission_records", ["user_id"])
    op.create_index("ix_commission_records_status", "commission_records", ["status"])
    op.create_index("ix_commission_records_created_at", "commission_records", ["created_at"])

    # System
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("target_type", sa.String(64), nullable=True),
        sa.Column("target_id", sa.String(64), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("ip", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("idempotency_key", sa.String(128), nullable=True, unique=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_target_id", "audit_logs", ["target_id"])

    op.create_table(
        "system_configs",
        sa.Column("key", sa.String(128), primary_key=True),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_by", sa.String(64), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    for table in (
        "system_configs",
        "audit_logs",
        "commission_records",
        "commission_snapshots",
        "kpi_commission_tiers",
        "commission_configs",
        "withdrawal_requests",
        "wallet_transactions",
        "wallets",
        "contract_stage_history",
        "contract_answers",
        "contract_document_files",
        "contract_documents",
        "contracts",
        "service_questions",
        "questions",
        "service_document_requirements",
        "document_requirements",
        "services",
        "workflow_transitions",
        "workflow_stages",
        "workflows",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
