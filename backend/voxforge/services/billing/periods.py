"""Billing period arithmetic."""
from __future__ import annotations

import calendar
import math
from datetime import datetime

from ...models.enums import BillingInterval
from ...models.types import as_utc

MS_PER_DAY = 86_400_000


def add_months(start: datetime, months: int = 1) -> datetime:
    """Calendar month addition; the day clamps to the target month's last day (Jan 31 -> Feb 28/29)."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def add_years(start: datetime, years: int = 1) -> datetime:
    return add_months(start, 12 * years)


def period_end_for(interval: BillingInterval, start: datetime) -> datetime:
    if BillingInterval(interval) == BillingInterval.year:
        return add_years(start)
    return add_months(start)


def days_remaining(expires_at: datetime, now: datetime) -> int:
    """Ceiling of the remaining days; negative once the period has passed."""
    delta_ms = (as_utc(expires_at) - as_utc(now)).total_seconds() * 1000
    return int(math.ceil(delta_ms / MS_PER_DAY))


__all__ = ["add_months", "add_years", "period_end_for", "days_remaining", "MS_PER_DAY"]
