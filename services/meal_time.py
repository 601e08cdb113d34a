"""
============================================================================
Mess Ledger v1.0.0
Meal Time Window Evaluator - Notice Period Arithmetic
============================================================================

Reliability Level: STANDARD (pure functions, no I/O)
Input Constraints: HH:MM time strings, non-negative notice hours
Side Effects: None

A user who skips a meal earns a billing deduction only when the absence is
announced at least `notice_hours` before the meal window closes. This module
answers that question for a single meal (check_notice_requirement) and for
every requested meal on a date (validate_meals_for_date).

All comparisons are made in minutes since midnight on the mess's wall
clock; callers pass `now` in the mess's local time.

============================================================================
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import List, Optional, Sequence
import logging
import re

from services.errors import InvalidTimeStringError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 24 * MINUTES_PER_HOUR

# Hours reported for future dates where the check is deferred
DEFERRED_HOURS_REMAINING = 24.0

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


# =============================================================================
# Enums
# =============================================================================

class MealType(str, Enum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class MealTimeWindow:
    """
    Serving window for one meal type, as configured by the mess.

    Times are validated on construction so a malformed configuration is
    rejected where it is entered instead of silently meaning midnight.
    """
    meal_type: MealType
    start_time: str
    end_time: str
    enabled: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "meal_type", MealType(self.meal_type))
        start = parse_time_to_minutes(self.start_time)
        end = parse_time_to_minutes(self.end_time)
        if end <= start:
            raise InvalidTimeStringError(
                f"{self.meal_type.value} window ends ({self.end_time}) "
                f"before it starts ({self.start_time})"
            )

    @property
    def end_minutes(self) -> int:
        return parse_time_to_minutes(self.end_time)


@dataclass(frozen=True)
class NoticeCheckResult:
    """Outcome of a single notice check. Never persisted."""
    meets_notice: bool
    hours_until_meal_end: float
    required_hours: float
    meal_end_time: datetime
    reason: str


@dataclass(frozen=True)
class MealNoticeValidation:
    """Notice outcome for one requested meal on one date."""
    meal_type: MealType
    date: date
    meets_notice: bool
    hours_remaining: float
    meal_end_time: Optional[datetime]
    reason: str


# =============================================================================
# Time Parsing
# =============================================================================

def parse_time_to_minutes(time_str: str) -> int:
    """
    Parse an HH:MM string into minutes since midnight.

    Raises:
        InvalidTimeStringError: If the string is not a valid 24h HH:MM time
    """
    if not isinstance(time_str, str):
        raise InvalidTimeStringError(f"Time must be an HH:MM string, got: {time_str!r}")

    match = _TIME_PATTERN.match(time_str.strip())
    if not match:
        raise InvalidTimeStringError(f"Malformed time string: {time_str!r} (expected HH:MM)")

    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise InvalidTimeStringError(f"Time out of range: {time_str!r}")

    return hours * MINUTES_PER_HOUR + minutes


def minutes_to_time_string(minutes: int) -> str:
    """
    Format minutes since midnight as HH:MM.

    Negative values (a notice deadline that falls on the previous day) wrap
    around midnight.
    """
    minutes = minutes % MINUTES_PER_DAY
    return f"{minutes // MINUTES_PER_HOUR:02d}:{minutes % MINUTES_PER_HOUR:02d}"


def _minutes_of(moment: datetime) -> int:
    return moment.hour * MINUTES_PER_HOUR + moment.minute


def _end_of_meal(on_day: date, end_minutes: int, tzinfo=None) -> datetime:
    return datetime.combine(
        on_day,
        time(end_minutes // MINUTES_PER_HOUR, end_minutes % MINUTES_PER_HOUR),
        tzinfo=tzinfo,
    )


# =============================================================================
# Notice Checks
# =============================================================================

def check_notice_requirement(
    meal_end_time: str,
    notice_hours: float,
    now: datetime
) -> NoticeCheckResult:
    """
    Check whether `now` is early enough to skip a meal ending at meal_end_time.

    The notice deadline is meal end minus notice_hours. Notice is met when
    the current minute is at or before that deadline. The result is
    monotonic in `now`: a later time can only turn a pass into a fail.

    Args:
        meal_end_time: Meal window end in HH:MM
        notice_hours: Required notice in hours
        now: Current local time of the mess

    Returns:
        NoticeCheckResult
    """
    meal_end_minutes = parse_time_to_minutes(meal_end_time)
    now_minutes = _minutes_of(now)

    notice_deadline_minutes = meal_end_minutes - int(round(notice_hours * MINUTES_PER_HOUR))
    meets_notice = now_minutes <= notice_deadline_minutes
    hours_until_end = max(0.0, (meal_end_minutes - now_minutes) / MINUTES_PER_HOUR)

    if meets_notice:
        reason = f"Meets {notice_hours:g}-hour notice period"
    else:
        reason = (
            f"Too late for {notice_hours:g}-hour notice "
            f"(deadline was at {minutes_to_time_string(notice_deadline_minutes)})"
        )

    return NoticeCheckResult(
        meets_notice=meets_notice,
        hours_until_meal_end=hours_until_end,
        required_hours=notice_hours,
        meal_end_time=_end_of_meal(now.date(), meal_end_minutes, now.tzinfo),
        reason=reason,
    )


def validate_meals_for_date(
    on_date: date,
    windows: Sequence[MealTimeWindow],
    notice_hours: float,
    requested_types: Sequence[MealType],
    now: datetime
) -> List[MealNoticeValidation]:
    """
    Validate every requested meal on a date against the notice period.

    Results are returned in the same order as requested_types.

    - no enabled window for the meal: not available
    - date after today: notice deferred and treated as met
    - date before today: the meal cannot be skipped any more
    - today, meal already over: fails as already ended
    - today otherwise: check_notice_requirement against today's end time
    """
    today = now.date()
    results: List[MealNoticeValidation] = []

    for requested in requested_types:
        meal_type = MealType(requested)
        window = next(
            (w for w in windows if w.meal_type == meal_type and w.enabled),
            None,
        )

        if window is None:
            results.append(MealNoticeValidation(
                meal_type=meal_type,
                date=on_date,
                meets_notice=False,
                hours_remaining=0.0,
                meal_end_time=None,
                reason=f"{meal_type.value} is not available",
            ))
            continue

        meal_end = _end_of_meal(on_date, window.end_minutes, now.tzinfo)

        if on_date > today:
            results.append(MealNoticeValidation(
                meal_type=meal_type,
                date=on_date,
                meets_notice=True,
                hours_remaining=DEFERRED_HOURS_REMAINING,
                meal_end_time=meal_end,
                reason="Future date - notice period will be checked at leave time",
            ))
            continue

        if on_date < today:
            results.append(MealNoticeValidation(
                meal_type=meal_type,
                date=on_date,
                meets_notice=False,
                hours_remaining=0.0,
                meal_end_time=meal_end,
                reason=f"{meal_type.value} on {on_date.isoformat()} has already passed",
            ))
            continue

        if _minutes_of(now) > window.end_minutes:
            results.append(MealNoticeValidation(
                meal_type=meal_type,
                date=on_date,
                meets_notice=False,
                hours_remaining=0.0,
                meal_end_time=meal_end,
                reason=f"{meal_type.value} has already ended at {window.end_time}",
            ))
            continue

        check = check_notice_requirement(window.end_time, notice_hours, now)
        if check.meets_notice:
            reason = f"Meets {notice_hours:g}-hour notice period (ends at {window.end_time})"
        else:
            reason = (
                f"Within {notice_hours:g}-hour notice window - "
                f"no billing deduction for this meal"
            )

        results.append(MealNoticeValidation(
            meal_type=meal_type,
            date=on_date,
            meets_notice=check.meets_notice,
            hours_remaining=check.hours_until_meal_end,
            meal_end_time=check.meal_end_time,
            reason=reason,
        ))

    logger.debug(
        f"[MEAL-TIME] Validated meals | date={on_date.isoformat()} | "
        f"requested={[MealType(t).value for t in requested_types]} | "
        f"met={sum(1 for r in results if r.meets_notice)}"
    )

    return results
