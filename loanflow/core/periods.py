from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Literal

PeriodKind = Literal["day", "week", "month", "year"]

# Displayed end-of-day bound (23:59:59.999).
END_OF_DAY = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class PeriodWindow:
    """``[start, until)``; ``end`` is the inclusive label shown to clients.

    Stored timestamps keep microseconds, so queries filter on ``until``.
    """

    start: datetime
    end: datetime
    until: datetime

    def contains(self, value: datetime) -> bool:
        return self.start <= value < self.until


def utc_now() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_date(anchor: date | datetime) -> date:
    return anchor.date() if isinstance(anchor, datetime) else anchor


def _window(first: date, last: date) -> PeriodWindow:
    return PeriodWindow(
        start=datetime.combine(first, time.min),
        end=datetime.combine(last, END_OF_DAY),
        until=datetime.combine(last + timedelta(days=1), time.min),
    )


def month_window(year: int, month: int) -> PeriodWindow:
    if not 1 <= int(month) <= 12:
        raise ValueError(f"Invalid month: {month}")
    last_day = calendar.monthrange(int(year), int(month))[1]
    return _window(date(int(year), int(month), 1), date(int(year), int(month), last_day))


def previous_month(today: date | datetime) -> tuple[int, int]:
    d = _as_date(today)
    if d.month == 1:
        return d.year - 1, 12
    return d.year, d.month - 1


def period_bounds(
    period: PeriodKind,
    anchor: date | datetime,
    *,
    first_weekday: int = 0,
) -> PeriodWindow:
    """Bucket containing ``anchor``.

    ``first_weekday`` follows ``date.weekday()`` numbering (0 = Monday).
    """

    d = _as_date(anchor)
    if period == "day":
        return _window(d, d)
    if period == "week":
        offset = (d.weekday() - int(first_weekday)) % 7
        first = d - timedelta(days=offset)
        return _window(first, first + timedelta(days=6))
    if period == "month":
        return month_window(d.year, d.month)
    if period == "year":
        return _window(date(d.year, 1, 1), date(d.year, 12, 31))
    raise ValueError(f"Unsupported period: {period}")


def shift_anchor(period: PeriodKind, anchor: date, steps: int) -> date:
    """Move ``anchor`` by whole buckets (negative steps go back in time)."""

    if period == "day":
        return anchor + timedelta(days=steps)
    if period == "week":
        return anchor + timedelta(weeks=steps)
    if period == "month":
        index = anchor.year * 12 + (anchor.month - 1) + steps
        return date(index // 12, index % 12 + 1, 1)
    if period == "year":
        return date(anchor.year + steps, 1, 1)
    raise ValueError(f"Unsupported period: {period}")
