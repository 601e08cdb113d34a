"""
Unit Tests for the Meal Time Window Evaluator

Covers HH:MM parsing, the single-meal notice check and per-date validation
of requested meals.
"""

from datetime import date, datetime
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.errors import InvalidTimeStringError
from services.meal_time import (
    DEFERRED_HOURS_REMAINING,
    MealTimeWindow,
    MealType,
    check_notice_requirement,
    minutes_to_time_string,
    parse_time_to_minutes,
    validate_meals_for_date,
)


TODAY = date(2024, 3, 10)

WINDOWS = [
    MealTimeWindow(MealType.BREAKFAST, "07:00", "09:00"),
    MealTimeWindow(MealType.LUNCH, "12:00", "13:00"),
    MealTimeWindow(MealType.DINNER, "19:00", "21:00", enabled=False),
]


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(TODAY.year, TODAY.month, TODAY.day, hour, minute)


class TestTimeParsing:

    @pytest.mark.parametrize("value,expected", [
        ("00:00", 0),
        ("07:30", 450),
        ("7:05", 425),
        ("23:59", 1439),
    ])
    def test_parse_valid_times(self, value: str, expected: int) -> None:
        assert parse_time_to_minutes(value) == expected

    @pytest.mark.parametrize("value", ["", "noon", "24:00", "12:60", "12-30", "1230", None])
    def test_malformed_times_raise(self, value) -> None:
        with pytest.raises(InvalidTimeStringError) as exc_info:
            parse_time_to_minutes(value)
        assert exc_info.value.error_code == "VAL-004"

    def test_negative_minutes_wrap_around_midnight(self) -> None:
        assert minutes_to_time_string(-60) == "23:00"
        assert minutes_to_time_string(665) == "11:05"

    def test_window_must_end_after_it_starts(self) -> None:
        with pytest.raises(InvalidTimeStringError):
            MealTimeWindow(MealType.LUNCH, "13:00", "12:00")


class TestNoticeRequirement:

    def test_well_before_deadline_meets_notice(self) -> None:
        result = check_notice_requirement("13:00", 2, at(10, 30))

        assert result.meets_notice is True
        assert result.hours_until_meal_end == pytest.approx(2.5)
        assert result.meal_end_time == at(13, 0)

    def test_after_deadline_fails_with_deadline_in_reason(self) -> None:
        result = check_notice_requirement("13:00", 2, at(11, 30))

        assert result.meets_notice is False
        assert "11:00" in result.reason

    def test_exactly_at_deadline_meets_notice(self) -> None:
        assert check_notice_requirement("13:00", 2, at(11, 0)).meets_notice is True

    def test_hours_remaining_never_negative(self) -> None:
        result = check_notice_requirement("09:00", 1, at(10, 0))

        assert result.meets_notice is False
        assert result.hours_until_meal_end == 0.0


class TestValidateMealsForDate:

    def test_results_follow_request_order(self) -> None:
        results = validate_meals_for_date(
            TODAY, WINDOWS, 2, [MealType.LUNCH, MealType.BREAKFAST], at(6, 0)
        )

        assert [r.meal_type for r in results] == [MealType.LUNCH, MealType.BREAKFAST]
        assert all(r.meets_notice for r in results)

    def test_disabled_meal_is_not_available(self) -> None:
        result = validate_meals_for_date(TODAY, WINDOWS, 2, [MealType.DINNER], at(6, 0))[0]

        assert result.meets_notice is False
        assert result.meal_end_time is None
        assert "not available" in result.reason

    def test_future_date_is_deferred(self) -> None:
        result = validate_meals_for_date(
            date(2024, 3, 11), WINDOWS, 2, [MealType.BREAKFAST], at(23, 0)
        )[0]

        assert result.meets_notice is True
        assert result.hours_remaining == DEFERRED_HOURS_REMAINING

    def test_past_date_cannot_be_skipped(self) -> None:
        result = validate_meals_for_date(
            date(2024, 3, 9), WINDOWS, 2, [MealType.LUNCH], at(6, 0)
        )[0]

        assert result.meets_notice is False
        assert "already passed" in result.reason

    def test_meal_already_over_today(self) -> None:
        result = validate_meals_for_date(TODAY, WINDOWS, 2, [MealType.BREAKFAST], at(9, 30))[0]

        assert result.meets_notice is False
        assert "already ended" in result.reason

    def test_today_inside_notice_window(self) -> None:
        result = validate_meals_for_date(TODAY, WINDOWS, 2, [MealType.LUNCH], at(11, 30))[0]

        assert result.meets_notice is False
        assert "no billing deduction" in result.reason
        assert result.hours_remaining == pytest.approx(1.5)
