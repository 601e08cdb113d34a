"""
Unit Tests for Billing Period Ranges and Subscription End Dates
"""

from datetime import date
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.billing_period import (
    BillingPeriod,
    add_months,
    billing_period_days,
    billing_period_description,
    calculate_billing_period_range,
    calculate_subscription_end_date,
)


class TestBillingPeriodRange:

    @pytest.mark.parametrize("period,on,start,end", [
        (BillingPeriod.DAILY, date(2024, 3, 13), date(2024, 3, 13), date(2024, 3, 13)),
        # 2024-03-13 is a Wednesday; weeks run Sunday..Saturday
        (BillingPeriod.WEEKLY, date(2024, 3, 13), date(2024, 3, 10), date(2024, 3, 16)),
        (BillingPeriod.WEEKLY, date(2024, 3, 10), date(2024, 3, 10), date(2024, 3, 16)),
        (BillingPeriod.FIFTEEN_DAYS, date(2024, 2, 15), date(2024, 2, 1), date(2024, 2, 15)),
        (BillingPeriod.FIFTEEN_DAYS, date(2024, 2, 16), date(2024, 2, 16), date(2024, 2, 29)),
        (BillingPeriod.MONTHLY, date(2023, 2, 10), date(2023, 2, 1), date(2023, 2, 28)),
        (BillingPeriod.QUARTERLY, date(2024, 5, 20), date(2024, 4, 1), date(2024, 6, 30)),
        (BillingPeriod.HALF_YEARLY, date(2024, 9, 1), date(2024, 7, 1), date(2024, 12, 31)),
        (BillingPeriod.YEARLY, date(2024, 9, 1), date(2024, 1, 1), date(2024, 12, 31)),
    ])
    def test_calendar_aligned_ranges(self, period, on, start, end) -> None:
        period_range = calculate_billing_period_range(on, period)

        assert (period_range.start, period_range.end) == (start, end)
        assert period_range.contains(on)

    def test_string_period_is_accepted(self) -> None:
        assert calculate_billing_period_range(date(2024, 1, 5), "monthly").days == 31

    def test_unknown_period_raises(self) -> None:
        with pytest.raises(ValueError):
            calculate_billing_period_range(date(2024, 1, 5), "fortnightly")

    def test_days_are_inclusive(self) -> None:
        assert billing_period_days(BillingPeriod.MONTHLY, date(2024, 2, 1)) == 29
        assert billing_period_days(BillingPeriod.WEEKLY, date(2024, 2, 1)) == 7
        assert billing_period_days(BillingPeriod.YEARLY, date(2024, 2, 1)) == 366


class TestSubscriptionEndDate:

    @pytest.mark.parametrize("period,start,end", [
        (BillingPeriod.DAILY, date(2024, 3, 5), date(2024, 3, 5)),
        (BillingPeriod.WEEKLY, date(2024, 3, 5), date(2024, 3, 11)),
        (BillingPeriod.FIFTEEN_DAYS, date(2024, 3, 5), date(2024, 3, 19)),
        (BillingPeriod.MONTHLY, date(2024, 3, 5), date(2024, 4, 4)),
        (BillingPeriod.QUARTERLY, date(2024, 11, 15), date(2025, 2, 14)),
        (BillingPeriod.YEARLY, date(2024, 1, 1), date(2024, 12, 31)),
    ])
    def test_end_dates(self, period, start, end) -> None:
        assert calculate_subscription_end_date(start, period) == end

    def test_month_end_start_clamps(self) -> None:
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert calculate_subscription_end_date(date(2023, 1, 31), BillingPeriod.MONTHLY) == date(2023, 2, 27)

    def test_descriptions(self) -> None:
        assert billing_period_description(BillingPeriod.FIFTEEN_DAYS) == "Bi-monthly (15 days)"
        assert billing_period_description("3months") == "Quarterly (3 months)"
