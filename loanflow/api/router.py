from fastapi import APIRouter

from loanflow.api.routes import (
    commissions,
    contracts,
    health,
    scheduler,
    services,
    system_config,
    wallets,
    withdrawals,
    workflows,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(workflows.router)
api_router.include_router(services.router)
api_router.include_router(contracts.router)
api_router.include_router(wallets.router)
api_router.include_router(withdrawals.router)
api_router.include_router(commissions.router)
api_router.include_router(system_config.router)
api_router.include_router(scheduler.router)
