from loanflow.models.catalog import (
    DocumentRequirement,
    Question,
    Service,
    ServiceDocumentRequirement,
    ServiceQuestion,
)
from loanflow.models.commission import (
    CommissionConfig,
    CommissionRecord,
    CommissionSnapshot,
    CommissionStatus,
    KpiCommissionTier,
    KpiRewardType,
    SnapshotStatus,
)
from loanflow.models.contracts import (
    Contract,
    ContractAnswer,
    ContractDocument,
    ContractDocumentFile,
    ContractStageHistory,
    DocumentStatus,
)
from loanflow.models.identity import (
    Permission,
    Role,
    RoleCode,
    RolePermission,
    User,
    UserRole,
    UserStatus,
)
from loanflow.models.ledger import (
    ReferenceType,
    TransactionType,
    Wallet,
    WalletTransaction,
    WithdrawalRequest,
    WithdrawalStatus,
)
from loanflow.models.system import AuditLog, SystemConfig
from loanflow.models.workflow import Workflow, WorkflowStage, WorkflowTransition

__all__ = [
    "AuditLog",
    "CommissionConfig",
    "CommissionRecord",
    "CommissionSnapshot",
    "CommissionStatus",
    "Contract",
    "ContractAnswer",
    "ContractDocument",
    "ContractDocumentFile",
    "ContractStageHistory",
    "DocumentRequirement",
    "DocumentStatus",
    "KpiCommissionTier",
    "KpiRewardType",
    "Permission",
    "Question",
    "ReferenceType",
    "Role",
    "RoleCode",
    "RolePermission",
    "Service",
    "ServiceDocumentRequirement",
    "ServiceQuestion",
    "SnapshotStatus",
    "SystemConfig",
    "TransactionType",
    "User",
    "UserRole",
    "UserStatus",
    "Wallet",
    "WalletTransaction",
    "WithdrawalRequest",
    "WithdrawalStatus",
    "Workflow",
    "WorkflowStage",
    "WorkflowTransition",
]
