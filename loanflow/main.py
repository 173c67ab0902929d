import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from loanflow.api.router import api_router
from loanflow.config import settings
from loanflow.core.observability import (
    global_exception_handler,
    request_logging_middleware,
    uptime_seconds,
    utc_now_iso,
)
from loanflow.database import POOL_CONFIG, engine
from loanflow.services.scheduler import runner as daily_runner

api_prefix = (
    settings.api_prefix
    if settings.api_prefix.startswith("/")
    else f"/{settings.api_prefix}"
    if settings.api_prefix
    else ""
)

logger = logging.getLogger("loanflow")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

app = FastAPI(
    title=settings.app_name,
    docs_url="/docs" if settings.enable_docs else None,
    redoc_url="/redoc" if settings.enable_docs else None,
    openapi_url=(f"{api_prefix}/openapi.json" if api_prefix else "/openapi.json")
    if settings.enable_docs
    else None,
)

# Expose logger for middleware without creating circular imports.
app.state.logger = logger

app.add_exception_handler(Exception, global_exception_handler)

# Request-level logging + request correlation id.
app.middleware("http")(request_logging_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=api_prefix)


def _scheduler_disabled() -> bool:
    # No background threads under test.
    if (settings.environment or "").lower() == "test":
        return True
    return not settings.scheduler_enabled


@app.on_event("startup")
def _startup_scheduler():
    pool_status = None
    try:
        pool_status = engine.pool.status()
    except (AttributeError, SQLAlchemyError):
        pool_status = None

    logger.info(
        "runtime_config",
        extra={
            "pid": os.getpid(),
            "environment": settings.environment,
            "web_concurrency": os.getenv("WEB_CONCURRENCY"),
            "db_pool": POOL_CONFIG,
            "db_pool_status": pool_status,
        },
    )
    if _scheduler_disabled():
        return
    daily_runner.start()
    logger.info("scheduler_started", extra={"daily_utc_hour": daily_runner.hour_utc})


@app.on_event("shutdown")
def _shutdown_scheduler():
    if not daily_runner.is_running:
        return
    daily_runner.stop()
    logger.info("scheduler_stopped")


@app.get("/", tags=["meta"])
def root():
    docs_path = (
        (f"{api_prefix}/openapi.json" if api_prefix else "/openapi.json")
        if settings.enable_docs
        else None
    )
    return {"message": "Loanflow API", "docs": docs_path}


@app.get("/healthz", tags=["meta"])
def healthcheck():
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
        "time": utc_now_iso(),
        "uptime_seconds": round(uptime_seconds(), 2),
        "version": getattr(settings, "build_version", None),
    }
