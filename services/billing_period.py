"""
Billing period ranges and subscription end dates.

Ranges are whole calendar days, both ends inclusive.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
import calendar


class BillingPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    FIFTEEN_DAYS = "15days"
    MONTHLY = "monthly"
    QUARTERLY = "3months"
    HALF_YEARLY = "6months"
    YEARLY = "yearly"


_DESCRIPTIONS = {
    BillingPeriod.DAILY: "Daily",
    BillingPeriod.WEEKLY: "Weekly",
    BillingPeriod.FIFTEEN_DAYS: "Bi-monthly (15 days)",
    BillingPeriod.MONTHLY: "Monthly",
    BillingPeriod.QUARTERLY: "Quarterly (3 months)",
    BillingPeriod.HALF_YEARLY: "Half-yearly (6 months)",
    BillingPeriod.YEARLY: "Yearly",
}


@dataclass(frozen=True)
class BillingPeriodRange:
    start: date
    end: date
    period: BillingPeriod

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, on_date: date) -> bool:
        return self.start <= on_date <= self.end


def _last_day_of_month(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def calculate_billing_period_range(on_date: date, period: BillingPeriod) -> BillingPeriodRange:
    """
    Calendar-aligned billing period containing on_date.

    Weeks run Sunday to Saturday. 15-day periods split the month into
    1-15 and 16-end. Quarters and half-years start in January.
    """
    period = BillingPeriod(period)

    if period == BillingPeriod.DAILY:
        start, end = on_date, on_date
    elif period == BillingPeriod.WEEKLY:
        # date.weekday(): Monday=0 ... Sunday=6
        start = on_date - timedelta(days=(on_date.weekday() + 1) % 7)
        end = start + timedelta(days=6)
    elif period == BillingPeriod.FIFTEEN_DAYS:
        if on_date.day <= 15:
            start = on_date.replace(day=1)
            end = on_date.replace(day=15)
        else:
            start = on_date.replace(day=16)
            end = _last_day_of_month(on_date.year, on_date.month)
    elif period == BillingPeriod.MONTHLY:
        start = on_date.replace(day=1)
        end = _last_day_of_month(on_date.year, on_date.month)
    elif period == BillingPeriod.QUARTERLY:
        first_month = (on_date.month - 1) // 3 * 3 + 1
        start = date(on_date.year, first_month, 1)
        end = _last_day_of_month(on_date.year, first_month + 2)
    elif period == BillingPeriod.HALF_YEARLY:
        first_month = 1 if on_date.month <= 6 else 7
        start = date(on_date.year, first_month, 1)
        end = _last_day_of_month(on_date.year, first_month + 5)
    else:
        start = date(on_date.year, 1, 1)
        end = date(on_date.year, 12, 31)

    return BillingPeriodRange(start=start, end=end, period=period)


def billing_period_days(period: BillingPeriod, reference_date: date) -> int:
    """Number of days in the period containing reference_date."""
    return calculate_billing_period_range(reference_date, period).days


def calculate_subscription_end_date(start_date: date, period: BillingPeriod) -> date:
    """
    Last day of a subscription that starts on start_date.

    Unlike calculate_billing_period_range this is anchored on the start
    date, not on the calendar.
    """
    period = BillingPeriod(period)
    if period == BillingPeriod.DAILY:
        return start_date
    if period == BillingPeriod.WEEKLY:
        return start_date + timedelta(days=6)
    if period == BillingPeriod.FIFTEEN_DAYS:
        return start_date + timedelta(days=14)

    months = {
        BillingPeriod.MONTHLY: 1,
        BillingPeriod.QUARTERLY: 3,
        BillingPeriod.HALF_YEARLY: 6,
        BillingPeriod.YEARLY: 12,
    }[period]
    return add_months(start_date, months) - timedelta(days=1)


def billing_period_description(period: BillingPeriod) -> str:
    return _DESCRIPTIONS[BillingPeriod(period)]
