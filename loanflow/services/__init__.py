from loanflow.services import (
    commission_engine,
    commission_settings,
    contracts,
    revenue_stats,
    scheduler,
    wallet_ledger,
    withdrawals,
    workflow_engine,
)
from loanflow.services.audit import SYSTEM_ACTOR_ID, audit_event

__all__ = [
    "SYSTEM_ACTOR_ID",
    "audit_event",
    "commission_engine",
    "commission_settings",
    "contracts",
    "revenue_stats",
    "scheduler",
    "wallet_ledger",
    "withdrawals",
    "workflow_engine",
]
