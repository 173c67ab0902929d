from loanflow.schemas.catalog import (
    DocumentConfig,
    DocumentRequirementCreate,
    DocumentRequirementRead,
    QuestionCreate,
    QuestionRead,
    ServiceCreate,
    ServiceDocumentLink,
    ServiceQuestionLink,
    ServiceRead,
)
from loanflow.schemas.commission import (
    CommissionConfigCreate,
    CommissionConfigRead,
    CommissionConfigUpdate,
    CommissionRecordPageRead,
    CommissionRecordRead,
    CommissionSnapshotPageRead,
    CommissionSnapshotRead,
    CommissionSummaryRead,
    CreatorRevenueRead,
    KpiTierCreate,
    KpiTierRead,
    KpiTierUpdate,
    RevenueSummaryRead,
    SnapshotBatchRead,
    SnapshotRunRequest,
)
from loanflow.schemas.contracts import (
    AnswerInput,
    AnswersUpdate,
    AvailableTransitionRead,
    ContractCreate,
    ContractDetailRead,
    ContractDocumentRead,
    ContractPageRead,
    ContractRead,
    DisbursedAmountUpdate,
    DocumentReviewRequest,
    StageHistoryRead,
    StageTransitionRead,
    StageTransitionRequest,
)
from loanflow.schemas.ledger import (
    WalletIntegrityRead,
    WalletRead,
    WalletTransactionPageRead,
    WithdrawalCreate,
    WithdrawalPageRead,
    WithdrawalProcess,
    WithdrawalRead,
)
from loanflow.schemas.system import SystemConfigRead, SystemConfigUpdate
from loanflow.schemas.workflows import (
    StageCreate,
    StageRead,
    StageUpdate,
    TransitionCheckRead,
    TransitionCreate,
    TransitionRead,
    TransitionUpdate,
    WorkflowCreate,
    WorkflowRead,
    WorkflowUpdate,
)

__all__ = [
    "AnswerInput",
    "AnswersUpdate",
    "AvailableTransitionRead",
    "CommissionConfigCreate",
    "CommissionConfigRead",
    "CommissionConfigUpdate",
    "CommissionRecordPageRead",
    "CommissionRecordRead",
    "CommissionSnapshotPageRead",
    "CommissionSnapshotRead",
    "CommissionSummaryRead",
    "ContractCreate",
    "ContractDetailRead",
    "ContractDocumentRead",
    "ContractPageRead",
    "ContractRead",
    "CreatorRevenueRead",
    "DisbursedAmountUpdate",
    "DocumentConfig",
    "DocumentRequirementCreate",
    "DocumentRequirementRead",
    "DocumentReviewRequest",
    "KpiTierCreate",
    "KpiTierRead",
    "KpiTierUpdate",
    "QuestionCreate",
    "QuestionRead",
    "RevenueSummaryRead",
    "ServiceCreate",
    "ServiceDocumentLink",
    "ServiceQuestionLink",
    "ServiceRead",
    "SnapshotBatchRead",
    "SnapshotRunRequest",
    "StageCreate",
    "StageHistoryRead",
    "StageRead",
    "StageTransitionRead",
    "StageTransitionRequest",
    "StageUpdate",
    "SystemConfigRead",
    "SystemConfigUpdate",
    "TransitionCheckRead",
    "TransitionCreate",
    "TransitionRead",
    "TransitionUpdate",
    "WalletIntegrityRead",
    "WalletRead",
    "WalletTransactionPageRead",
    "WithdrawalCreate",
    "WithdrawalPageRead",
    "WithdrawalProcess",
    "WithdrawalRead",
    "WorkflowCreate",
    "WorkflowRead",
    "WorkflowUpdate",
]
