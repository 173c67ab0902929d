"""Read-only revenue reporting over disbursed contracts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from loanflow import models
from loanflow.config import settings
from loanflow.core.errors import ValidationFailed
from loanflow.core.periods import PeriodKind, PeriodWindow, period_bounds, shift_anchor
from loanflow.services.wallet_ledger import to_money

PERIODS: tuple[str, ...] = ("day", "week", "month", "year")
MAX_BUCKETS = 60


@dataclass(frozen=True)
class RevenueSummary:
    period: str
    start: datetime
    end: datetime
    contracts: int
    disbursed_amount: Decimal
    total_revenue: Decimal


@dataclass(frozen=True)
class CreatorRevenue:
    creator_id: str
    contracts: int
    disbursed_amount: Decimal
    total_revenue: Decimal


def _check_period(period: str) -> PeriodKind:
    if period not in PERIODS:
        raise ValidationFailed(f"Unsupported period: {period}", allowed=list(PERIODS))
    return period  # type: ignore[return-value]


def _originator():
    # Self-created contracts have no creator; the owner originated them.
    return func.coalesce(models.Contract.creator_id, models.Contract.user_id)


def _aggregate(db: Session, window: PeriodWindow, *, creator_id: str | None = None):
    q = db.query(
        func.count(models.Contract.id),
        func.coalesce(func.sum(models.Contract.disbursed_amount), 0),
        func.coalesce(func.sum(models.Contract.total_revenue), 0),
    ).filter(
        models.Contract.disbursed_at.isnot(None),
        models.Contract.disbursed_at >= window.start,
        models.Contract.disbursed_at < window.until,
    )
    if creator_id:
        q = q.filter(_originator() == str(creator_id))
    return q.one()


def revenue_summary(
    db: Session,
    *,
    period: str,
    anchor: date | datetime,
    creator_id: str | None = None,
    first_weekday: int | None = None,
) -> RevenueSummary:
    kind = _check_period(period)
    weekday = settings.week_start_day if first_weekday is None else first_weekday
    window = period_bounds(kind, anchor, first_weekday=weekday)
    count, disbursed, revenue = _aggregate(db, window, creator_id=creator_id)
    return RevenueSummary(
        period=kind,
        start=window.start,
        end=window.end,
        contracts=int(count or 0),
        disbursed_amount=to_money(disbursed or 0),
        total_revenue=to_money(revenue or 0),
    )


def revenue_series(
    db: Session,
    *,
    period: str,
    anchor: date | datetime,
    buckets: int = 6,
    creator_id: str | None = None,
    first_weekday: int | None = None,
) -> list[RevenueSummary]:
    """``buckets`` consecutive periods ending with the one containing ``anchor``, oldest first."""

    kind = _check_period(period)
    if not 1 <= int(buckets) <= MAX_BUCKETS:
        raise ValidationFailed(f"buckets must be between 1 and {MAX_BUCKETS}")

    base = anchor.date() if isinstance(anchor, datetime) else anchor
    return [
        revenue_summary(
            db,
            period=kind,
            anchor=shift_anchor(kind, base, -step),
            creator_id=creator_id,
            first_weekday=first_weekday,
        )
        for step in range(int(buckets) - 1, -1, -1)
    ]


def revenue_by_creator(
    db: Session,
    *,
    start: datetime,
    end: datetime,
) -> list[CreatorRevenue]:
    if start > end:
        raise ValidationFailed("start must not be after end")

    originator = _originator().label("creator_id")
    rows = (
        db.query(
            originator,
            func.count(models.Contract.id),
            func.coalesce(func.sum(models.Contract.disbursed_amount), 0),
            func.coalesce(func.sum(models.Contract.total_revenue), 0).label("revenue"),
        )
        .filter(
            models.Contract.disbursed_at.isnot(None),
            models.Contract.disbursed_at >= start,
            models.Contract.disbursed_at <= end,
        )
        .group_by(originator)
        .order_by(func.coalesce(func.sum(models.Contract.total_revenue), 0).desc())
        .all()
    )
    return [
        CreatorRevenue(
            creator_id=creator,
            contracts=int(count or 0),
            disbursed_amount=to_money(disbursed or 0),
            total_revenue=to_money(revenue or 0),
        )
        for creator, count, disbursed, revenue in rows
    ]
