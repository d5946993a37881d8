from datetime import datetime, timedelta, timezone

import pytest

from voxforge.models.enums import BillingInterval
from voxforge.services.billing.periods import add_months, add_years, days_remaining, period_end_for


@pytest.mark.parametrize(
    "start,expected",
    [
        (datetime(2025, 1, 15, 9, 30), datetime(2025, 2, 15, 9, 30)),
        (datetime(2025, 1, 31), datetime(2025, 2, 28)),
        (datetime(2024, 1, 31), datetime(2024, 2, 29)),
        (datetime(2025, 12, 31), datetime(2026, 1, 31)),
        (datetime(2025, 3, 31), datetime(2025, 4, 30)),
    ],
)
def test_add_months_clamps_to_month_end(start, expected):
    assert add_months(start) == expected


def test_add_years_from_leap_day():
    assert add_years(datetime(2024, 2, 29)) == datetime(2025, 2, 28)


def test_period_end_for_interval():
    start = datetime(2025, 5, 10)
    assert period_end_for(BillingInterval.month, start) == datetime(2025, 6, 10)
    assert period_end_for(BillingInterval.year, start) == datetime(2026, 5, 10)


def test_days_remaining_rounds_up_partial_days():
    now = datetime(2025, 5, 10, 12, 0)
    assert days_remaining(now + timedelta(days=3), now) == 3
    assert days_remaining(now + timedelta(days=2, hours=1), now) == 3
    assert days_remaining(now + timedelta(minutes=1), now) == 1


def test_days_remaining_is_negative_after_expiry():
    now = datetime(2025, 5, 10, 12, 0)
    assert days_remaining(now - timedelta(days=2), now) == -2
    assert days_remaining(now - timedelta(days=2, hours=12), now) == -2


def test_period_math_keeps_utc_and_accepts_naive_rows():
    start = datetime(2025, 1, 31, 8, 0, tzinfo=timezone.utc)
    assert add_months(start) == datetime(2025, 2, 28, 8, 0, tzinfo=timezone.utc)
    assert add_months(start).tzinfo is timezone.utc
    # naive values are read as UTC
    assert days_remaining(datetime(2025, 2, 3, 8, 0), start) == 3
