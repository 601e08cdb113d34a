"""
============================================================================
Mess Ledger v1.0.0
Leave Deduction Calculator - Meal Credit Accounting for Leave Requests
============================================================================

Reliability Level: CRITICAL (feeds billing adjustments)
Input Constraints: start_date <= end_date, meal types from MealType
Side Effects: None (pure calculation, LeaveRequest is an in-memory record)

DEDUCTION RULES:
    - Start/end date meals are deduction-eligible unless that date is today
      and the meal's notice validation failed; those are exempt and recorded
      in notice_periods_not_met.
    - Meals on days strictly between start and end are always eligible;
      their notice is re-checked by the leave workflow on the day.
    - A single-day leave only runs the start-date branch.

Plans that extend the subscription instead of deducting convert eligible
meals into extra days (ceil(meals / meals_per_day)).

============================================================================
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_EVEN
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple
import logging
import math
import uuid

from app.gateway.decimal_gateway import DecimalGateway
from services.errors import InvalidTransitionError, ValidationError
from services.meal_time import MealNoticeValidation, MealType

# Configure module logger
logger = logging.getLogger(__name__)

_gateway = DecimalGateway()


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class NoticeShortfall:
    meal_type: MealType
    date: date
    reason: str


@dataclass(frozen=True)
class DeductionSummary:
    """Aggregate of a leave span's deduction-eligible and exempt meals."""
    deduction_eligible_meals: int
    non_deduction_meals: int
    notice_periods_not_met: List[NoticeShortfall] = field(default_factory=list)

    @property
    def total_meals(self) -> int:
        return self.deduction_eligible_meals + self.non_deduction_meals


@dataclass(frozen=True)
class SubscriptionExtension:
    meal_plan_id: str
    extension_meals: int
    extension_days: int
    original_end_date: date
    new_end_date: date


@dataclass(frozen=True)
class LeavePlan:
    """
    A meal plan covered by a leave.

    meal_types lists the meals the plan serves; None means all of them.
    rate is the per-meal price from per_meal_rate().
    """
    plan_id: str
    plan_name: Optional[str] = None
    rate: Decimal = Decimal("0")
    meal_types: Optional[Tuple[MealType, ...]] = None

    def serves(self, meal_type: MealType) -> bool:
        return self.meal_types is None or meal_type in self.meal_types


@dataclass
class PlanBreakdown:
    plan_id: str
    plan_name: Optional[str] = None
    breakfast: int = 0
    lunch: int = 0
    dinner: int = 0
    total_meals_missed: int = 0
    estimated_savings: Decimal = Decimal("0.00")

    def to_dict(self) -> Dict[str, object]:
        return {
            "plan_id": self.plan_id,
            "plan_name": self.plan_name,
            "breakfast": self.breakfast,
            "lunch": self.lunch,
            "dinner": self.dinner,
            "total_meals_missed": self.total_meals_missed,
            "estimated_savings": str(self.estimated_savings),
        }


# =============================================================================
# Deduction Calculation
# =============================================================================

def _count_edge_day(
    day: date,
    meal_types: Sequence[MealType],
    is_today: bool,
    validations: Sequence[MealNoticeValidation],
    shortfalls: List[NoticeShortfall],
) -> Tuple[int, int]:
    eligible = 0
    exempt = 0
    for requested in meal_types:
        meal_type = MealType(requested)
        if is_today:
            validation = next(
                (v for v in validations if v.meal_type == meal_type and v.date == day),
                None,
            )
            if validation is not None and not validation.meets_notice:
                exempt += 1
                shortfalls.append(NoticeShortfall(meal_type, day, validation.reason))
                continue
        eligible += 1
    return eligible, exempt


def calculate_deduction_eligible_meals(
    start_date: date,
    end_date: date,
    start_meal_types: Sequence[MealType],
    end_meal_types: Sequence[MealType],
    middle_days_meal_types: Sequence[MealType],
    validations: Sequence[MealNoticeValidation],
    today: Optional[date] = None
) -> DeductionSummary:
    """
    Split a leave span's meals into deduction-eligible and exempt counts.

    Args:
        start_date: First day of leave
        end_date: Last day of leave (inclusive)
        start_meal_types: Meals skipped on the start date
        end_meal_types: Meals skipped on the end date
        middle_days_meal_types: Meals skipped on every day in between
        validations: Notice validations from validate_meals_for_date
        today: Reference date (default: today in UTC)

    Returns:
        DeductionSummary

    Raises:
        ValidationError: If end_date is before start_date
    """
    if end_date < start_date:
        raise ValidationError(
            f"Leave end date {end_date.isoformat()} is before start date {start_date.isoformat()}"
        )

    if today is None:
        today = datetime.now(timezone.utc).date()

    shortfalls: List[NoticeShortfall] = []

    eligible, exempt = _count_edge_day(
        start_date, start_meal_types, start_date == today, validations, shortfalls
    )

    if end_date != start_date:
        end_eligible, end_exempt = _count_edge_day(
            end_date, end_meal_types, end_date == today, validations, shortfalls
        )
        eligible += end_eligible
        exempt += end_exempt

    total_days = (end_date - start_date).days + 1
    middle_day_count = max(0, total_days - 2)
    eligible += middle_day_count * len(middle_days_meal_types)

    return DeductionSummary(
        deduction_eligible_meals=eligible,
        non_deduction_meals=exempt,
        notice_periods_not_met=shortfalls,
    )


def meal_breakdown(
    start_date: date,
    end_date: date,
    start_meal_types: Sequence[MealType],
    end_meal_types: Sequence[MealType],
    middle_days_meal_types: Sequence[MealType],
) -> Dict[MealType, int]:
    """Count skipped meals per meal type over the whole span."""
    counts = {meal_type: 0 for meal_type in MealType}
    for meal_type in start_meal_types:
        counts[MealType(meal_type)] += 1
    if end_date != start_date:
        for meal_type in end_meal_types:
            counts[MealType(meal_type)] += 1
    middle_days = max(0, (end_date - start_date).days - 1)
    for meal_type in middle_days_meal_types:
        counts[MealType(meal_type)] += middle_days
    return counts


# =============================================================================
# Rates, Savings and Extensions
# =============================================================================

def per_meal_rate(
    base_amount: Decimal,
    subscription_days: int,
    meals_per_day: int
) -> Decimal:
    """
    Price of one meal under a subscription.

    base_amount / subscription_days / meals_per_day, with both divisors
    floored at 1.
    """
    base = _gateway.to_rupees(base_amount)
    days = max(1, int(subscription_days))
    meals = max(1, int(meals_per_day))
    return (base / days / meals).quantize(DecimalGateway.RATE_PRECISION, rounding=ROUND_HALF_EVEN)


def estimate_savings(eligible_meals: int, rate: Decimal) -> Decimal:
    """Credit owed for eligible meals, rounded to paise and never negative."""
    savings = _gateway.to_rupees(Decimal(max(0, eligible_meals)) * rate)
    return max(Decimal("0.00"), savings)


def compute_subscription_extension(
    meal_plan_id: str,
    eligible_meals: int,
    meals_per_day: int,
    original_end_date: date
) -> SubscriptionExtension:
    """Extend a subscription by the days the eligible meals cover."""
    meals_per_day = max(1, int(meals_per_day))
    meals = max(0, int(eligible_meals))
    extension_days = math.ceil(meals / meals_per_day)
    return SubscriptionExtension(
        meal_plan_id=meal_plan_id,
        extension_meals=meals,
        extension_days=extension_days,
        original_end_date=original_end_date,
        new_end_date=original_end_date + timedelta(days=extension_days),
    )


# =============================================================================
# Leave Request Lifecycle
# =============================================================================

class LeaveStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXTENDED = "extended"
    CANCELLED = "cancelled"


LEAVE_TRANSITIONS: Dict[LeaveStatus, List[LeaveStatus]] = {
    LeaveStatus.PENDING: [LeaveStatus.APPROVED, LeaveStatus.REJECTED, LeaveStatus.CANCELLED],
    LeaveStatus.APPROVED: [LeaveStatus.EXTENDED, LeaveStatus.CANCELLED],
    LeaveStatus.EXTENDED: [LeaveStatus.CANCELLED],
    LeaveStatus.REJECTED: [],
    LeaveStatus.CANCELLED: [],
}


@dataclass
class LeaveRequest:
    """
    A user's request to skip meals between start_date and end_date.

    Deduction counts are fixed when the request is built; they only change
    through amend_deductions().
    """
    user_id: str
    mess_id: str
    meal_plan_ids: List[str]
    start_date: date
    end_date: date
    meal_types: List[MealType]
    total_meals_missed: int
    deduction_eligible_meals: int
    non_deduction_meals: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: LeaveStatus = LeaveStatus.PENDING
    reason: Optional[str] = None
    plan_wise_breakdown: List[PlanBreakdown] = field(default_factory=list)
    subscription_extensions: List[SubscriptionExtension] = field(default_factory=list)
    notice_periods_not_met: List[NoticeShortfall] = field(default_factory=list)
    amendments: List[Dict[str, object]] = field(default_factory=list)

    def transition(self, target: LeaveStatus, actor: str = "SYSTEM") -> None:
        target = LeaveStatus(target)
        allowed = LEAVE_TRANSITIONS[self.status]
        if target not in allowed:
            raise InvalidTransitionError(
                f"Leave {self.id}: {self.status.value} -> {target.value} not allowed"
            )
        logger.info(
            f"[LEAVE] Status transition | leave_id={self.id} | "
            f"{self.status.value} -> {target.value} | actor={actor}"
        )
        self.status = target

    def record_extension(self, extension: SubscriptionExtension) -> None:
        """Track a per-plan subscription extension and mark the leave extended."""
        self.transition(LeaveStatus.EXTENDED)
        self.subscription_extensions.append(extension)

    def amend_deductions(
        self,
        deduction_eligible_meals: int,
        non_deduction_meals: int,
        amended_by: str,
        reason: str
    ) -> None:
        """Explicit amendment of the deduction counts, kept in an audit trail."""
        if deduction_eligible_meals < 0 or non_deduction_meals < 0:
            raise ValidationError("Meal counts cannot be negative")
        self.amendments.append({
            "previous": (self.deduction_eligible_meals, self.non_deduction_meals),
            "new": (deduction_eligible_meals, non_deduction_meals),
            "amended_by": amended_by,
            "reason": reason,
            "amended_at": datetime.now(timezone.utc).isoformat(),
        })
        self.deduction_eligible_meals = deduction_eligible_meals
        self.non_deduction_meals = non_deduction_meals
        self.total_meals_missed = deduction_eligible_meals + non_deduction_meals


def build_leave_request(
    user_id: str,
    mess_id: str,
    meal_plan_ids: Sequence[str],
    start_date: date,
    end_date: date,
    start_meal_types: Sequence[MealType],
    end_meal_types: Sequence[MealType],
    middle_days_meal_types: Sequence[MealType],
    validations: Sequence[MealNoticeValidation],
    today: Optional[date] = None,
    reason: Optional[str] = None,
    plans: Sequence[LeavePlan] = ()
) -> LeaveRequest:
    """
    Create a pending LeaveRequest with its deduction counts computed once.

    Every plan id gets a plan_wise_breakdown row. Names and rates come from
    the matching LeavePlan in plans; ids without one get no name and a
    zero rate.
    """
    summary = calculate_deduction_eligible_meals(
        start_date,
        end_date,
        start_meal_types,
        end_meal_types,
        middle_days_meal_types,
        validations,
        today=today,
    )

    meal_types = sorted(
        {MealType(t) for t in (*start_meal_types, *end_meal_types, *middle_days_meal_types)},
        key=lambda t: list(MealType).index(t),
    )

    counts = meal_breakdown(
        start_date, end_date, start_meal_types, end_meal_types, middle_days_meal_types
    )
    known = {plan.plan_id: plan for plan in plans}
    plan_ids = list(meal_plan_ids)
    plan_ids.extend(plan.plan_id for plan in plans if plan.plan_id not in plan_ids)

    breakdown = []
    for plan_id in plan_ids:
        plan = known.get(plan_id, LeavePlan(plan_id))
        served = {t: n if plan.serves(t) else 0 for t, n in counts.items()}
        exempt = sum(1 for s in summary.notice_periods_not_met if plan.serves(s.meal_type))
        breakdown.append(plan_breakdown(
            plan_id,
            plan.plan_name,
            served,
            max(0, sum(served.values()) - exempt),
            plan.rate,
        ))

    leave = LeaveRequest(
        user_id=user_id,
        mess_id=mess_id,
        meal_plan_ids=plan_ids,
        start_date=start_date,
        end_date=end_date,
        meal_types=meal_types,
        total_meals_missed=summary.total_meals,
        deduction_eligible_meals=summary.deduction_eligible_meals,
        non_deduction_meals=summary.non_deduction_meals,
        notice_periods_not_met=list(summary.notice_periods_not_met),
        plan_wise_breakdown=breakdown,
        reason=reason,
    )

    logger.info(
        f"[LEAVE] Leave request built | leave_id={leave.id} | user_id={user_id} | "
        f"span={start_date.isoformat()}..{end_date.isoformat()} | "
        f"eligible={summary.deduction_eligible_meals} | "
        f"non_deduction={summary.non_deduction_meals}"
    )

    return leave


def plan_breakdown(
    plan_id: str,
    plan_name: Optional[str],
    counts: Dict[MealType, int],
    eligible_meals: int,
    rate: Decimal
) -> PlanBreakdown:
    """Per-plan breakdown row with the savings the eligible meals earn."""
    return PlanBreakdown(
        plan_id=plan_id,
        plan_name=plan_name,
        breakfast=counts.get(MealType.BREAKFAST, 0),
        lunch=counts.get(MealType.LUNCH, 0),
        dinner=counts.get(MealType.DINNER, 0),
        total_meals_missed=sum(counts.values()),
        estimated_savings=estimate_savings(eligible_meals, rate),
    )
