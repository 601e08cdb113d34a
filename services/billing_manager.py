"""
============================================================================
Mess Ledger v1.0.0
Billing Record Manager - Persistence for BillingRecord
============================================================================

Reliability Level: CRITICAL
Input Constraints: Session supplied by the caller (request or job scope)
Side Effects: Reads and writes billing_records

Business rules live on services.billing_record.BillingRecord. This module
loads and stores records, applies the lazy overdue correction on every
load and save, and logs each mutation.

============================================================================
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.database.models import BillingRecordRow
from app.gateway.decimal_gateway import DecimalGateway
from app.observability.metrics import record_billing_adjustment
from services.billing_period import BillingPeriod, calculate_billing_period_range
from services.billing_record import (
    Adjustment,
    AdjustmentType,
    BillingPaymentStatus,
    BillingRecord,
    GeneratedBy,
    LeaveCredit,
    PaymentMethod,
    SubscriptionAmounts,
    as_utc,
    utc_now,
)
from services.errors import BillingRecordNotFoundError, ValidationError
from services.leave_deduction import LeaveRequest, LeaveStatus, SubscriptionExtension, estimate_savings

# Configure module logger
logger = logging.getLogger(__name__)

_gateway = DecimalGateway()

DEFAULT_DUE_DAYS = 7


# =============================================================================
# Row <-> domain mapping
# =============================================================================

def _extension_to_dict(extension: Optional[SubscriptionExtension]) -> Optional[Dict[str, Any]]:
    if extension is None:
        return None
    return {
        "meal_plan_id": extension.meal_plan_id,
        "extension_meals": extension.extension_meals,
        "extension_days": extension.extension_days,
        "original_end_date": extension.original_end_date.isoformat(),
        "new_end_date": extension.new_end_date.isoformat(),
    }


def _extension_from_dict(data: Optional[Dict[str, Any]]) -> Optional[SubscriptionExtension]:
    if not data:
        return None
    return SubscriptionExtension(
        meal_plan_id=data["meal_plan_id"],
        extension_meals=int(data["extension_meals"]),
        extension_days=int(data["extension_days"]),
        original_end_date=date.fromisoformat(data["original_end_date"]),
        new_end_date=date.fromisoformat(data["new_end_date"]),
    )


def row_to_record(row: BillingRecordRow) -> BillingRecord:
    return BillingRecord(
        id=row.id,
        user_id=row.user_id,
        mess_id=row.mess_id,
        membership_id=row.membership_id,
        period_start=row.period_start,
        period_end=row.period_end,
        period=BillingPeriod(row.period),
        subscription=SubscriptionAmounts(
            plan_id=row.plan_id,
            plan_name=row.plan_name,
            base_amount=row.base_amount,
            discount_amount=row.discount_amount,
            tax_amount=row.tax_amount,
            total_amount=row.total_amount,
        ),
        due_date=as_utc(row.payment_due_date),
        status=BillingPaymentStatus(row.payment_status),
        method=PaymentMethod(row.payment_method) if row.payment_method else None,
        paid_date=as_utc(row.paid_date),
        transaction_id=row.transaction_id,
        gateway_response=row.gateway_response,
        adjustments=[Adjustment.from_dict(a) for a in (row.adjustments or [])],
        leave_credits=[LeaveCredit.from_dict(lc) for lc in (row.leave_credits or [])],
        subscription_extension=_extension_from_dict(row.subscription_extension),
        generated_by=GeneratedBy(row.generated_by),
        notes=row.notes,
    )


def _copy_to_row(record: BillingRecord, row: BillingRecordRow) -> None:
    row.user_id = record.user_id
    row.mess_id = record.mess_id
    row.membership_id = record.membership_id
    row.period_start = record.period_start
    row.period_end = record.period_end
    row.period = record.period.value
    row.plan_id = record.subscription.plan_id
    row.plan_name = record.subscription.plan_name
    row.base_amount = record.subscription.base_amount
    row.discount_amount = record.subscription.discount_amount
    row.tax_amount = record.subscription.tax_amount
    row.total_amount = record.subscription.total_amount
    row.payment_status = record.status.value
    row.payment_method = record.method.value if record.method else None
    row.payment_due_date = record.due_date
    row.paid_date = record.paid_date
    row.transaction_id = record.transaction_id
    row.gateway_response = record.gateway_response
    # New list objects so SQLAlchemy sees the JSON columns as changed
    row.adjustments = [a.to_dict() for a in record.adjustments]
    row.leave_credits = [lc.to_dict() for lc in record.leave_credits]
    row.subscription_extension = _extension_to_dict(record.subscription_extension)
    row.generated_by = record.generated_by.value
    row.notes = record.notes


# =============================================================================
# BillingRecordManager
# =============================================================================

class BillingRecordManager:
    """
    Load, mutate and store billing records within a caller-owned session.

    Every mutating method commits before returning.

    Example Usage:
        manager = BillingRecordManager(session)
        record = manager.create_record(...)
        manager.apply_adjustment(record.id, "discount", Decimal("50"), "Festival", "admin-1")
    """

    def __init__(self, session: Session):
        self.session = session

    # -------------------------------------------------------------------------
    # Load / save
    # -------------------------------------------------------------------------

    def _row(self, record_id: str) -> BillingRecordRow:
        row = self.session.get(BillingRecordRow, record_id)
        if row is None:
            raise BillingRecordNotFoundError(f"Billing record not found: {record_id}")
        return row

    def get(self, record_id: str, now: Optional[datetime] = None) -> BillingRecord:
        """Load a record, applying the overdue correction before returning it."""
        row = self._row(record_id)
        record = row_to_record(row)
        if record.refresh_overdue(now):
            _copy_to_row(record, row)
            self.session.commit()
        return record

    def save(self, record: BillingRecord, now: Optional[datetime] = None) -> BillingRecord:
        """Persist a record (insert or update), applying the overdue correction first."""
        record.refresh_overdue(now)
        row = self.session.get(BillingRecordRow, record.id)
        if row is None:
            row = BillingRecordRow(id=record.id)
            self.session.add(row)
        _copy_to_row(record, row)
        self.session.commit()
        return record

    def create_record(
        self,
        user_id: str,
        mess_id: str,
        membership_id: str,
        period: BillingPeriod,
        reference_date: date,
        plan_id: str,
        plan_name: str,
        base_amount: Decimal,
        tax_amount: Decimal,
        discount_amount: Decimal = Decimal("0"),
        due_date: Optional[datetime] = None,
        generated_by: GeneratedBy = GeneratedBy.SYSTEM,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> BillingRecord:
        """
        Start a billing cycle.

        total_amount = base - discount + tax. The due date defaults to
        DEFAULT_DUE_DAYS after the record is created.
        """
        period_range = calculate_billing_period_range(reference_date, period)
        base = _gateway.to_rupees(base_amount)
        discount = _gateway.to_rupees(discount_amount)
        tax = _gateway.to_rupees(tax_amount)
        if discount > base:
            raise ValidationError(f"Discount {discount} exceeds base amount {base}")

        created_at = as_utc(now) if now else utc_now()
        record = BillingRecord(
            user_id=user_id,
            mess_id=mess_id,
            membership_id=membership_id,
            period_start=period_range.start,
            period_end=period_range.end,
            period=period_range.period,
            subscription=SubscriptionAmounts(
                plan_id=plan_id,
                plan_name=plan_name,
                base_amount=base,
                discount_amount=discount,
                tax_amount=tax,
                total_amount=base - discount + tax,
            ),
            due_date=due_date or created_at + timedelta(days=DEFAULT_DUE_DAYS),
            generated_by=generated_by,
            notes=notes,
        )
        self.save(record, now)

        logger.info(
            f"[BILL-CREATE] Billing record created | record_id={record.id} | "
            f"user_id={user_id} | mess_id={mess_id} | period={record.period.value} | "
            f"span={record.period_start.isoformat()}..{record.period_end.isoformat()} | "
            f"total={record.subscription.total_amount}"
        )
        return record

    # -------------------------------------------------------------------------
    # Adjustments
    # -------------------------------------------------------------------------

    def apply_adjustment(
        self,
        record_id: str,
        adjustment_type: AdjustmentType,
        amount: Decimal,
        reason: str,
        applied_by: str,
        now: Optional[datetime] = None
    ) -> BillingRecord:
        record = self.get(record_id, now)
        adjustment = record.apply_adjustment(adjustment_type, amount, reason, applied_by)
        self.save(record, now)
        record_billing_adjustment(adjustment.type.value)

        logger.info(
            f"[BILL-ADJUST] Adjustment applied | record_id={record_id} | "
            f"type={adjustment.type.value} | amount={adjustment.amount} | "
            f"applied_by={applied_by} | final_amount={record.final_amount}"
        )
        return record

    def apply_leave_credit(
        self,
        record_id: str,
        leave: LeaveRequest,
        per_meal_rate: Decimal,
        applied_by: str,
        now: Optional[datetime] = None
    ) -> BillingRecord:
        """
        Credit an approved leave's deduction-eligible meals to a bill.

        Raises:
            ValidationError: Leave is not approved/extended
            InvalidAdjustmentError: Leave already credited on this record
        """
        if leave.status not in (LeaveStatus.APPROVED, LeaveStatus.EXTENDED):
            raise ValidationError(
                f"Leave {leave.id} is {leave.status.value}; only approved leaves earn credit"
            )

        record = self.get(record_id, now)
        credit = estimate_savings(leave.deduction_eligible_meals, per_meal_rate)
        record.link_leave_credit(
            leave.id,
            credit,
            applied_by,
            reason=(
                f"Leave credit: {leave.deduction_eligible_meals} meal(s) "
                f"{leave.start_date.isoformat()}..{leave.end_date.isoformat()}"
            ),
        )
        self.save(record, now)
        record_billing_adjustment(AdjustmentType.LEAVE_CREDIT.value)

        logger.info(
            f"[BILL-LEAVE] Leave credit applied | record_id={record_id} | "
            f"leave_id={leave.id} | meals={leave.deduction_eligible_meals} | "
            f"credit={credit} | final_amount={record.final_amount}"
        )
        return record

    def record_subscription_extension(
        self,
        record_id: str,
        extension: SubscriptionExtension,
        applied_by: str,
        now: Optional[datetime] = None
    ) -> BillingRecord:
        record = self.get(record_id, now)
        record.record_subscription_extension(extension, applied_by)
        self.save(record, now)
        record_billing_adjustment(AdjustmentType.SUBSCRIPTION_EXTENSION.value)
        return record

    # -------------------------------------------------------------------------
    # Payment status
    # -------------------------------------------------------------------------

    def mark_as_paid(
        self,
        record_id: str,
        transaction_id: str,
        method: PaymentMethod,
        gateway_response: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> BillingRecord:
        """Mark paid. A repeat call with the same transaction id changes nothing."""
        record = self.get(record_id, now)
        changed = record.mark_as_paid(transaction_id, method, gateway_response, paid_at=now)
        if not changed:
            logger.info(
                f"[BILL-PAID] Already paid, no-op | record_id={record_id} | "
                f"transaction_id={transaction_id}"
            )
            return record

        self.save(record, now)
        logger.info(
            f"[BILL-PAID] Billing record paid | record_id={record_id} | "
            f"transaction_id={transaction_id} | method={record.method.value} | "
            f"amount={record.final_amount}"
        )
        return record

    def mark_failed(
        self,
        record_id: str,
        gateway_response: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> BillingRecord:
        record = self.get(record_id, now)
        record.mark_failed(gateway_response)
        self.save(record, now)
        logger.warning(f"[BILL-FAILED] Billing payment failed | record_id={record_id}")
        return record

    def cancel(self, record_id: str, actor: str, now: Optional[datetime] = None) -> BillingRecord:
        record = self.get(record_id, now)
        previous = record.status
        record.cancel()
        self.save(record, now)
        logger.info(
            f"[BILL-CANCEL] Billing record cancelled | record_id={record_id} | "
            f"previous_status={previous.value} | actor={actor}"
        )
        return record

    def refund(self, record_id: str, actor: str, now: Optional[datetime] = None) -> BillingRecord:
        record = self.get(record_id, now)
        previous = record.status
        record.refund()
        self.save(record, now)
        logger.info(
            f"[BILL-REFUND] Billing record refunded | record_id={record_id} | "
            f"previous_status={previous.value} | actor={actor}"
        )
        return record

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _load(
        self,
        rows: List[BillingRecordRow],
        now: Optional[datetime]
    ) -> Tuple[List[BillingRecord], int]:
        """Build records from rows, persisting any pending → overdue flip."""
        records = []
        flipped = 0
        for row in rows:
            record = row_to_record(row)
            if record.refresh_overdue(now):
                _copy_to_row(record, row)
                flipped += 1
            records.append(record)
        if flipped:
            self.session.commit()
        return records, flipped

    def _past_due_rows(self, now: Optional[datetime]) -> List[BillingRecordRow]:
        now = as_utc(now) if now else utc_now()
        rows = self.session.scalars(
            select(BillingRecordRow)
            .where(BillingRecordRow.payment_status.in_([
                BillingPaymentStatus.PENDING.value,
                BillingPaymentStatus.OVERDUE.value,
            ]))
            .order_by(BillingRecordRow.payment_due_date)
        ).all()
        # Due dates are compared in Python so naive SQLite values read as UTC
        return [row for row in rows if as_utc(row.payment_due_date) < now]

    def find_overdue(self, now: Optional[datetime] = None) -> List[BillingRecord]:
        """Records with status pending or overdue whose due date has passed."""
        records, _ = self._load(self._past_due_rows(now), now)
        return records

    def find_for_user(
        self,
        user_id: str,
        mess_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> List[BillingRecord]:
        query = select(BillingRecordRow).where(BillingRecordRow.user_id == user_id)
        if mess_id is not None:
            query = query.where(BillingRecordRow.mess_id == mess_id)
        rows = self.session.scalars(query.order_by(BillingRecordRow.period_start.desc())).all()
        records, _ = self._load(rows, now)
        return records

    def sweep_overdue(self, now: Optional[datetime] = None) -> int:
        """Persist the pending → overdue flip for every past-due record. Returns the count."""
        _, flipped = self._load(self._past_due_rows(now), now)
        logger.info(f"[BILL-OVERDUE] Overdue sweep complete | flipped={flipped}")
        return flipped
