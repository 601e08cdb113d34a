"""
Unit Tests for BillingRecordManager

Runs against an in-memory SQLite database: records survive a reload with
their adjustments, leave credits and payment status intact.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from services.billing_manager import DEFAULT_DUE_DAYS, BillingRecordManager
from services.billing_period import BillingPeriod
from services.billing_record import (
    AdjustmentType,
    BillingPaymentStatus,
    PaymentMethod,
)
from services.errors import (
    BillingRecordNotFoundError,
    BillingStateError,
    InvalidAdjustmentError,
    ValidationError,
)
from services.leave_deduction import (
    LeaveStatus,
    build_leave_request,
    compute_subscription_extension,
)
from services.meal_time import MealType


NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def manager(session) -> BillingRecordManager:
    return BillingRecordManager(session)


def create(manager: BillingRecordManager, **overrides):
    params = dict(
        user_id="user-1",
        mess_id="mess-1",
        membership_id="membership-1",
        period=BillingPeriod.MONTHLY,
        reference_date=date(2024, 3, 5),
        plan_id="plan-1",
        plan_name="Veg Monthly",
        base_amount=Decimal("3000"),
        tax_amount=Decimal("150"),
        discount_amount=Decimal("100"),
        now=NOW,
    )
    params.update(overrides)
    return manager.create_record(**params)


def approved_leave(eligible_days: int = 3):
    leave = build_leave_request(
        user_id="user-1",
        mess_id="mess-1",
        meal_plan_ids=["plan-1"],
        start_date=date(2024, 3, 20),
        end_date=date(2024, 3, 20) + timedelta(days=eligible_days - 1),
        start_meal_types=[MealType.LUNCH],
        end_meal_types=[MealType.LUNCH],
        middle_days_meal_types=[MealType.LUNCH],
        validations=[],
        today=date(2024, 3, 1),
    )
    leave.transition(LeaveStatus.APPROVED)
    return leave


class TestCreateRecord:

    def test_totals_period_and_due_date(self, manager) -> None:
        record = create(manager)

        assert record.subscription.total_amount == Decimal("3050.00")
        assert record.period_start == date(2024, 3, 1)
        assert record.period_end == date(2024, 3, 31)
        assert record.due_date == NOW + timedelta(days=DEFAULT_DUE_DAYS)
        assert record.status == BillingPaymentStatus.PENDING

    def test_reload_round_trip(self, manager) -> None:
        record = create(manager)

        loaded = manager.get(record.id, now=NOW)

        assert loaded.subscription.total_amount == Decimal("3050.00")
        assert loaded.due_date == record.due_date
        assert loaded.final_amount == record.final_amount

    def test_discount_larger_than_base_rejected(self, manager) -> None:
        with pytest.raises(ValidationError):
            create(manager, discount_amount=Decimal("5000"))

    def test_unknown_record(self, manager) -> None:
        with pytest.raises(BillingRecordNotFoundError):
            manager.get("missing")


class TestAdjustments:

    def test_adjustment_persists(self, manager) -> None:
        record = create(manager)

        manager.apply_adjustment(
            record.id, AdjustmentType.LATE_FEE, Decimal("50"), "Paid after the 7th", "system", now=NOW
        )
        loaded = manager.get(record.id, now=NOW)

        assert len(loaded.adjustments) == 1
        assert loaded.adjustments[0].type == AdjustmentType.LATE_FEE
        assert loaded.final_amount == Decimal("3100.00")

    def test_invalid_adjustment_leaves_record_untouched(self, manager) -> None:
        record = create(manager)

        with pytest.raises(InvalidAdjustmentError):
            manager.apply_adjustment(record.id, "discount", Decimal("-10"), "oops", "admin-1", now=NOW)

        assert manager.get(record.id, now=NOW).adjustments == []

    def test_leave_credit_applied_once(self, manager) -> None:
        record = create(manager)
        leave = approved_leave(eligible_days=3)

        updated = manager.apply_leave_credit(record.id, leave, Decimal("50"), "system", now=NOW)

        assert updated.final_amount == Decimal("2900.00")
        with pytest.raises(InvalidAdjustmentError):
            manager.apply_leave_credit(record.id, leave, Decimal("50"), "system", now=NOW)
        assert len(manager.get(record.id, now=NOW).leave_credits) == 1

    def test_pending_leave_earns_no_credit(self, manager) -> None:
        record = create(manager)
        leave = approved_leave()
        leave.status = LeaveStatus.PENDING

        with pytest.raises(ValidationError):
            manager.apply_leave_credit(record.id, leave, Decimal("50"), "system", now=NOW)

    def test_subscription_extension_persists(self, manager) -> None:
        record = create(manager)
        extension = compute_subscription_extension("plan-1", 6, 3, date(2024, 3, 31))

        manager.record_subscription_extension(record.id, extension, "system", now=NOW)
        loaded = manager.get(record.id, now=NOW)

        assert loaded.subscription_extension == extension
        assert loaded.final_amount == Decimal("3050.00")


class TestPaymentStatus:

    def test_mark_as_paid_twice_is_noop(self, manager) -> None:
        record = create(manager)

        first = manager.mark_as_paid(record.id, "pay_1", PaymentMethod.UPI, {"id": "pay_1"}, now=NOW)
        second = manager.mark_as_paid(record.id, "pay_1", PaymentMethod.UPI, now=NOW)

        assert first.status == BillingPaymentStatus.PAID
        assert second.paid_date == first.paid_date
        assert second.gateway_response == {"id": "pay_1"}

    def test_mark_as_paid_by_other_transaction_conflicts(self, manager) -> None:
        record = create(manager)
        manager.mark_as_paid(record.id, "pay_1", PaymentMethod.UPI, now=NOW)

        with pytest.raises(BillingStateError):
            manager.mark_as_paid(record.id, "pay_2", PaymentMethod.CASH, now=NOW)

    def test_cancel_and_refund(self, manager) -> None:
        cancelled = create(manager)
        refunded = create(manager, membership_id="membership-2")
        manager.mark_as_paid(refunded.id, "pay_9", PaymentMethod.CASH, now=NOW)

        assert manager.cancel(cancelled.id, actor="owner-1", now=NOW).status == BillingPaymentStatus.CANCELLED
        assert manager.refund(refunded.id, actor="owner-1", now=NOW).status == BillingPaymentStatus.REFUNDED

    def test_mark_failed(self, manager) -> None:
        record = create(manager)

        failed = manager.mark_failed(record.id, {"error_code": "BAD_REQUEST_ERROR"}, now=NOW)

        assert failed.status == BillingPaymentStatus.FAILED


class TestOverdue:

    def test_get_applies_overdue_correction(self, manager) -> None:
        record = create(manager)
        later = NOW + timedelta(days=DEFAULT_DUE_DAYS + 2)

        loaded = manager.get(record.id, now=later)

        assert loaded.status == BillingPaymentStatus.OVERDUE
        assert loaded.days_overdue(later) == 2

    def test_sweep_flips_only_past_due_pending(self, manager) -> None:
        late = create(manager)
        paid = create(manager, membership_id="membership-2")
        current = create(manager, membership_id="membership-3", due_date=NOW + timedelta(days=30))
        manager.mark_as_paid(paid.id, "pay_1", PaymentMethod.UPI, now=NOW)
        later = NOW + timedelta(days=DEFAULT_DUE_DAYS + 1)

        assert manager.sweep_overdue(later) == 1
        assert manager.sweep_overdue(later) == 0
        assert [r.id for r in manager.find_overdue(later)] == [late.id]
        assert manager.get(current.id, now=later).status == BillingPaymentStatus.PENDING

    def test_find_overdue_returns_corrected_status(self, manager) -> None:
        record = create(manager)
        later = NOW + timedelta(days=DEFAULT_DUE_DAYS + 2)

        found = manager.find_overdue(later)

        assert [r.status for r in found] == [BillingPaymentStatus.OVERDUE]
        assert found[0].days_overdue(later) == 2
        assert manager.sweep_overdue(later) == 0
        assert manager.get(record.id, now=later).status == BillingPaymentStatus.OVERDUE

    def test_find_for_user(self, manager) -> None:
        create(manager)
        create(manager, mess_id="mess-2")

        assert len(manager.find_for_user("user-1", now=NOW)) == 2
        assert len(manager.find_for_user("user-1", mess_id="mess-2", now=NOW)) == 1

    def test_find_for_user_applies_overdue_correction(self, manager) -> None:
        late = create(manager)
        current = create(manager, membership_id="membership-2", due_date=NOW + timedelta(days=30))
        later = NOW + timedelta(days=DEFAULT_DUE_DAYS + 2)

        statuses = {r.id: r.status for r in manager.find_for_user("user-1", now=later)}

        assert statuses == {
            late.id: BillingPaymentStatus.OVERDUE,
            current.id: BillingPaymentStatus.PENDING,
        }
        assert manager.sweep_overdue(later) == 0
