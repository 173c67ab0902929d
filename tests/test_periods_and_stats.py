from datetime import date, datetime
from decimal import Decimal

import pytest

from loanflow.core.errors import ValidationFailed
from loanflow.core.periods import month_window, period_bounds, previous_month, shift_anchor
from loanflow.services import revenue_stats


def test_period_bounds_are_inclusive():
    window = period_bounds("day", date(2026, 2, 28))
    assert window.start == datetime(2026, 2, 28, 0, 0)
    assert window.end == datetime(2026, 2, 28, 23, 59, 59, 999000)
    assert window.until == datetime(2026, 3, 1, 0, 0)
    assert window.contains(datetime(2026, 2, 28, 23, 59, 59, 999500))
    assert not window.contains(datetime(2026, 3, 1, 0, 0))

    february = month_window(2028, 2)
    assert february.end.date() == date(2028, 2, 29)
    assert february.contains(datetime(2028, 2, 29, 23, 59, 59))

    year = period_bounds("year", datetime(2026, 7, 4, 12, 0))
    assert (year.start.date(), year.end.date()) == (date(2026, 1, 1), date(2026, 12, 31))


@pytest.mark.parametrize(
    "first_weekday, expected_start",
    [(0, date(2026, 3, 9)), (6, date(2026, 3, 8))],
)
def test_week_respects_first_weekday(first_weekday, expected_start):
    # 2026-03-11 is a Wednesday.
    window = period_bounds("week", date(2026, 3, 11), first_weekday=first_weekday)

    assert window.start.date() == expected_start
    assert (window.end.date() - window.start.date()).days == 6


def test_previous_month_and_shift():
    assert previous_month(date(2026, 1, 15)) == (2025, 12)
    assert previous_month(datetime(2026, 7, 1, 8, 0)) == (2026, 6)
    assert shift_anchor("month", date(2026, 1, 31), -1) == date(2025, 12, 1)
    assert shift_anchor("week", date(2026, 3, 11), -2) == date(2026, 2, 25)
    with pytest.raises(ValueError):
        period_bounds("fortnight", date(2026, 1, 1))


@pytest.fixture
def disbursed(make_user, complete_contract):
    agent = make_user("Agent", role_codes=("CTV",))
    self_serve = make_user("Walk-in")
    complete_contract(make_user("Customer"), datetime(2026, 3, 2, 10, 0), created_by=agent)
    complete_contract(
        make_user("Customer"), datetime(2026, 3, 20, 16, 0), created_by=agent, percentage="4"
    )
    complete_contract(self_serve, datetime(2026, 2, 27, 9, 0))
    return agent, self_serve


def test_revenue_summary_for_month(db_session, disbursed):
    agent, _ = disbursed

    march = revenue_stats.revenue_summary(db_session, period="month", anchor=date(2026, 3, 15))

    assert march.contracts == 2
    assert march.disbursed_amount == Decimal("4000000.00")
    assert march.total_revenue == Decimal("180000.00")

    mine = revenue_stats.revenue_summary(
        db_session, period="month", anchor=date(2026, 2, 1), creator_id=agent.id
    )
    assert mine.contracts == 0


def test_revenue_series_is_oldest_first(db_session, disbursed):
    series = revenue_stats.revenue_series(
        db_session, period="month", anchor=date(2026, 3, 31), buckets=3
    )

    assert [s.start.date() for s in series] == [date(2026, 1, 1), date(2026, 2, 1), date(2026, 3, 1)]
    assert [s.contracts for s in series] == [0, 1, 2]

    with pytest.raises(ValidationFailed):
        revenue_stats.revenue_series(db_session, period="month", anchor=date(2026, 3, 1), buckets=0)


def test_revenue_by_creator_falls_back_to_owner(db_session, disbursed):
    agent, self_serve = disbursed

    rows = revenue_stats.revenue_by_creator(
        db_session, start=datetime(2026, 2, 1), end=datetime(2026, 3, 31, 23, 59, 59)
    )

    by_creator = {r.creator_id: r for r in rows}
    assert by_creator[agent.id].contracts == 2
    assert by_creator[agent.id].total_revenue == Decimal("180000.00")
    assert by_creator[self_serve.id].contracts == 1
    assert rows[0].creator_id == agent.id


def test_unsupported_period_is_rejected(db_session):
    with pytest.raises(ValidationFailed, match="Unsupported period"):
        revenue_stats.revenue_summary(db_session, period="quarter", anchor=date(2026, 1, 1))
