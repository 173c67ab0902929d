from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from loanflow import models
from loanflow.config import settings
from loanflow.core.errors import ValidationFailed
from loanflow.core.periods import month_window, previous_month, utc_now
from loanflow.database import SessionLocal
from loanflow.services import commission_engine, system_config
from loanflow.services.audit import SYSTEM_ACTOR_ID, audit_event

logger = logging.getLogger("loanflow.scheduler")

# Stable advisory-lock key for the monthly snapshot job.
SNAPSHOT_LOCK_KEY = 734101


@dataclass(frozen=True)
class SnapshotUserResult:
    user_id: str
    ok: bool
    snapshot_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class SnapshotBatchResult:
    year: int
    month: int
    processed: int
    failed: int
    results: list[SnapshotUserResult] = field(default_factory=list)


def _is_postgres(db: Session) -> bool:
    return db.get_bind().dialect.name == "postgresql"


def _try_pg_advisory_lock(db: Session, key: int) -> bool:
    """Best-effort cross-worker lock on Postgres; other dialects always get it."""

    if not _is_postgres(db):
        return True
    try:
        return bool(db.execute(text("SELECT pg_try_advisory_lock(:k)"), {"k": int(key)}).scalar())
    except SQLAlchemyError as exc:
        # Do not block the job forever on a lock failure.
        logger.warning("advisory_lock_failed", extra={"key": key, "error": str(exc)})
        db.rollback()
        return True


def _unlock_pg_advisory_lock(db: Session, key: int) -> None:
    if not _is_postgres(db):
        return
    try:
        db.execute(text("SELECT pg_advisory_unlock(:k)"), {"k": int(key)})
    except SQLAlchemyError as exc:
        logger.warning("advisory_unlock_failed", extra={"key": key, "error": str(exc)})


def users_with_commissions(db: Session, *, year: int, month: int) -> list[str]:
    window = month_window(year, month)
    rows = (
        db.query(models.CommissionRecord.user_id)
        .filter(
            models.CommissionRecord.created_at >= window.start,
            models.CommissionRecord.created_at < window.until,
        )
        .distinct()
        .order_by(models.CommissionRecord.user_id.asc())
        .all()
    )
    return [user_id for (user_id,) in rows]


def run_monthly_snapshot(
    db: Session,
    *,
    year: int,
    month: int,
    actor_id: str = SYSTEM_ACTOR_ID,
    trigger: str = "scheduled",
) -> SnapshotBatchResult:
    """Snapshot every user with commissions in the period.

    A failure for one user is logged and counted; the batch carries on.
    """

    if not 1 <= int(month) <= 12:
        raise ValidationFailed(f"Invalid month: {month}")

    evaluate_kpi = system_config.is_kpi_evaluation_enabled(db)
    user_ids = users_with_commissions(db, year=year, month=month)
    logger.info(
        "commission_snapshot_batch_started",
        extra={"year": int(year), "month": int(month), "users": len(user_ids), "trigger": trigger},
    )

    results: list[SnapshotUserResult] = []
    for user_id in user_ids:
        try:
            snapshot = commission_engine.create_monthly_snapshot(
                db,
                user_id=user_id,
                year=int(year),
                month=int(month),
                evaluate_kpi=evaluate_kpi,
                actor_id=actor_id,
            )
        except Exception as exc:
            db.rollback()
            logger.exception(
                "commission_snapshot_failed",
                extra={"user_id": user_id, "year": int(year), "month": int(month)},
            )
            results.append(SnapshotUserResult(user_id=user_id, ok=False, error=str(exc)))
            continue
        results.append(SnapshotUserResult(user_id=user_id, ok=True, snapshot_id=snapshot.id))

    processed = sum(1 for r in results if r.ok)
    failed = len(results) - processed
    batch = SnapshotBatchResult(
        year=int(year), month=int(month), processed=processed, failed=failed, results=results
    )

    logger.info(
        "commission_snapshot_batch_finished",
        extra={"year": batch.year, "month": batch.month, "processed": processed, "failed": failed},
    )
    audit_event(
        "COMMISSION_SNAPSHOT_BATCH",
        actor_id,
        {
            "year": batch.year,
            "month": batch.month,
            "processed": processed,
            "failed": failed,
            "trigger": trigger,
            "failed_users": [r.user_id for r in results if not r.ok],
        },
        db=db,
        target_type="commission_snapshot",
    )
    return batch


def run_daily_snapshot_check(
    db: Session, *, today: date | datetime | None = None
) -> SnapshotBatchResult | None:
    """Run last month's batch when ``today`` is the configured snapshot day."""

    today = today or utc_now().date()
    if isinstance(today, datetime):
        today = today.date()

    snapshot_day = system_config.get_snapshot_day(db)
    if today.day != snapshot_day:
        logger.info(
            "commission_snapshot_not_due",
            extra={"today": today.isoformat(), "snapshot_day": snapshot_day},
        )
        return None

    year, month = previous_month(today)
    return run_monthly_snapshot(db, year=year, month=month, actor_id=SYSTEM_ACTOR_ID)


def run_manual_snapshot(
    db: Session, *, year: int, month: int, actor_id: str
) -> SnapshotBatchResult:
    return run_monthly_snapshot(db, year=year, month=month, actor_id=actor_id, trigger="manual")


def run_scheduled_snapshot_job(today: date | None = None) -> SnapshotBatchResult | None:
    """Entry point for the background runner: own session, advisory lock."""

    db = SessionLocal()
    got_lock = _try_pg_advisory_lock(db, SNAPSHOT_LOCK_KEY)
    if not got_lock:
        logger.info("commission_snapshot_skipped_locked")
        db.close()
        return None
    try:
        return run_daily_snapshot_check(db, today=today)
    finally:
        _unlock_pg_advisory_lock(db, SNAPSHOT_LOCK_KEY)
        db.close()


class DailyJobRunner:
    """
    Minimal dependency-free daily scheduler.
    NOTE: In multi-worker setups, each worker will start this thread.
    Duplicate runs are prevented by a Postgres advisory lock and by the
    per-period uniqueness of snapshots.
    """

    def __init__(self, hour_utc: int | None = None) -> None:
        self.hour_utc = int(settings.scheduler_utc_hour if hour_utc is None else hour_utc)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="daily-job-runner", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)

    def next_run_after(self, now: datetime) -> datetime:
        next_run = now.replace(hour=self.hour_utc, minute=0, second=0, microsecond=0)
        if next_run <= now:
            next_run = next_run + timedelta(days=1)
        return next_run

    def _loop(self) -> None:
        while not self._stop.is_set():
            now = datetime.now(timezone.utc)
            next_run = self.next_run_after(now)
            wait_s = max(0.0, (next_run - now).total_seconds())
            logger.info(
                "scheduler_wait",
                extra={"next_run_utc": next_run.isoformat(), "wait_seconds": int(wait_s)},
            )
            if self._stop.wait(wait_s):
                break

            try:
                result = run_scheduled_snapshot_job()
            except Exception as exc:
                logger.exception("commission_snapshot_job_failed", extra={"error": str(exc)})
                continue
            if result is not None:
                logger.info(
                    "commission_snapshot_job_ok",
                    extra={
                        "year": result.year,
                        "month": result.month,
                        "processed": result.processed,
                        "failed": result.failed,
                    },
                )


# Singleton runner for FastAPI lifecycle
runner = DailyJobRunner()
