"""
============================================================================
Mess Ledger v1.0.0
Billing Record - Domain Type and Business Rules
============================================================================

Reliability Level: CRITICAL
Decimal Integrity: All amounts are decimal.Decimal rounded to paise
Side Effects: None (persistence lives in services.billing_manager)

INVARIANTS:
    - final_amount = max(0, subscription.total_amount + Σ signed adjustments)
      where discount, leave_credit and refund subtract and all others add.
      It is derived on every read and never stored.
    - Adjustments are append-only. Corrections are new offsetting entries.
    - A pending record whose due date has passed reads as overdue.
    - pending/overdue/failed → paid only through mark_as_paid.
    - Any state may be refunded or cancelled administratively.

============================================================================
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
import logging
import uuid

from app.gateway.decimal_gateway import DecimalGateway
from services.billing_period import BillingPeriod
from services.errors import BillingStateError, InvalidAdjustmentError
from services.leave_deduction import SubscriptionExtension

# Configure module logger
logger = logging.getLogger(__name__)

_gateway = DecimalGateway()

SECONDS_PER_DAY = 24 * 60 * 60


# =============================================================================
# Enums
# =============================================================================

class AdjustmentType(str, Enum):
    DISCOUNT = "discount"
    PENALTY = "penalty"
    LEAVE_CREDIT = "leave_credit"
    LATE_FEE = "late_fee"
    REFUND = "refund"
    BONUS = "bonus"
    SUBSCRIPTION_EXTENSION = "subscription_extension"


# Adjustment types that reduce the amount owed
SUBTRACTIVE_ADJUSTMENTS = frozenset({
    AdjustmentType.DISCOUNT,
    AdjustmentType.LEAVE_CREDIT,
    AdjustmentType.REFUND,
})


class BillingPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    OVERDUE = "overdue"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    UPI = "upi"
    ONLINE = "online"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"


class GeneratedBy(str, Enum):
    SYSTEM = "system"
    ADMIN = "admin"
    MESS_OWNER = "mess_owner"


PAYABLE_STATUSES = frozenset({
    BillingPaymentStatus.PENDING,
    BillingPaymentStatus.OVERDUE,
    BillingPaymentStatus.FAILED,
})

CLOSED_STATUSES = frozenset({
    BillingPaymentStatus.REFUNDED,
    BillingPaymentStatus.CANCELLED,
})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


# =============================================================================
# Value Types
# =============================================================================

@dataclass(frozen=True)
class Adjustment:
    type: AdjustmentType
    amount: Decimal
    reason: str
    applied_by: str
    applied_at: datetime

    @property
    def signed_amount(self) -> Decimal:
        if self.type in SUBTRACTIVE_ADJUSTMENTS:
            return -self.amount
        return self.amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "amount": str(self.amount),
            "reason": self.reason,
            "applied_by": self.applied_by,
            "applied_at": self.applied_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Adjustment":
        return cls(
            type=AdjustmentType(data["type"]),
            amount=_gateway.to_rupees(data["amount"]),
            reason=data["reason"],
            applied_by=data["applied_by"],
            applied_at=as_utc(datetime.fromisoformat(data["applied_at"])),
        )


@dataclass(frozen=True)
class LeaveCredit:
    leave_id: str
    credit_amount: Decimal
    applied_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leave_id": self.leave_id,
            "credit_amount": str(self.credit_amount),
            "applied_at": self.applied_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeaveCredit":
        return cls(
            leave_id=data["leave_id"],
            credit_amount=_gateway.to_rupees(data["credit_amount"]),
            applied_at=as_utc(datetime.fromisoformat(data["applied_at"])),
        )


@dataclass
class SubscriptionAmounts:
    plan_id: str
    plan_name: str
    base_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    discount_amount: Decimal = Decimal("0.00")

    def __post_init__(self) -> None:
        for name in ("base_amount", "tax_amount", "total_amount", "discount_amount"):
            value = _gateway.to_rupees(getattr(self, name))
            if value < 0:
                raise InvalidAdjustmentError(f"Subscription {name} cannot be negative: {value}")
            setattr(self, name, value)


# =============================================================================
# BillingRecord
# =============================================================================

@dataclass
class BillingRecord:
    """
    One bill per (user, mess, membership, billing period).

    Plain domain object: every rule here is testable without a database.
    """
    user_id: str
    mess_id: str
    membership_id: str
    period_start: date
    period_end: date
    period: BillingPeriod
    subscription: SubscriptionAmounts
    due_date: datetime
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: BillingPaymentStatus = BillingPaymentStatus.PENDING
    method: Optional[PaymentMethod] = None
    paid_date: Optional[datetime] = None
    transaction_id: Optional[str] = None
    gateway_response: Optional[Dict[str, Any]] = None
    adjustments: List[Adjustment] = field(default_factory=list)
    leave_credits: List[LeaveCredit] = field(default_factory=list)
    subscription_extension: Optional[SubscriptionExtension] = None
    generated_by: GeneratedBy = GeneratedBy.SYSTEM
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        self.period = BillingPeriod(self.period)
        self.status = BillingPaymentStatus(self.status)
        self.generated_by = GeneratedBy(self.generated_by)
        if self.method is not None:
            self.method = PaymentMethod(self.method)
        self.due_date = as_utc(self.due_date)
        self.paid_date = as_utc(self.paid_date)
        if self.period_end < self.period_start:
            raise InvalidAdjustmentError(
                f"Billing period ends ({self.period_end}) before it starts ({self.period_start})"
            )

    # -------------------------------------------------------------------------
    # Derived values
    # -------------------------------------------------------------------------

    @property
    def adjustment_total(self) -> Decimal:
        return sum((a.signed_amount for a in self.adjustments), Decimal("0.00"))

    @property
    def final_amount(self) -> Decimal:
        return max(Decimal("0.00"), self.subscription.total_amount + self.adjustment_total)

    def days_overdue(self, now: Optional[datetime] = None) -> int:
        """Whole days past the due date while the record is overdue, else 0."""
        if self.status != BillingPaymentStatus.OVERDUE:
            return 0
        now = as_utc(now) if now is not None else utc_now()
        elapsed = (now - self.due_date).total_seconds()
        return max(0, int(elapsed // SECONDS_PER_DAY))

    def is_past_due(self, now: Optional[datetime] = None) -> bool:
        now = as_utc(now) if now is not None else utc_now()
        return self.due_date < now

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def refresh_overdue(self, now: Optional[datetime] = None) -> bool:
        """Flip pending to overdue once the due date has passed. Returns True if flipped."""
        if self.status == BillingPaymentStatus.PENDING and self.is_past_due(now):
            self.status = BillingPaymentStatus.OVERDUE
            logger.info(
                f"[BILL-OVERDUE] Billing record overdue | record_id={self.id} | "
                f"user_id={self.user_id} | due_date={self.due_date.isoformat()}"
            )
            return True
        return False

    def apply_adjustment(
        self,
        adjustment_type: AdjustmentType,
        amount: Decimal,
        reason: str,
        applied_by: str,
        applied_at: Optional[datetime] = None
    ) -> Adjustment:
        """
        Append an adjustment.

        Raises:
            InvalidAdjustmentError: Negative amount, empty reason or actor
        """
        adjustment_type = AdjustmentType(adjustment_type)
        value = _gateway.to_rupees(amount)
        if value < 0:
            raise InvalidAdjustmentError(
                f"Adjustment amount cannot be negative ({value}); "
                f"record an offsetting adjustment instead"
            )
        if not reason or not reason.strip():
            raise InvalidAdjustmentError("Adjustment reason is required")
        if not applied_by:
            raise InvalidAdjustmentError("Adjustment actor is required")

        adjustment = Adjustment(
            type=adjustment_type,
            amount=value,
            reason=reason.strip(),
            applied_by=applied_by,
            applied_at=as_utc(applied_at) if applied_at else utc_now(),
        )
        self.adjustments.append(adjustment)
        return adjustment

    def link_leave_credit(
        self,
        leave_id: str,
        credit_amount: Decimal,
        applied_by: str,
        reason: Optional[str] = None
    ) -> Adjustment:
        """Credit a leave once: records the link and a leave_credit adjustment."""
        if any(lc.leave_id == leave_id for lc in self.leave_credits):
            raise InvalidAdjustmentError(
                f"Leave {leave_id} is already credited on billing record {self.id}"
            )
        value = _gateway.to_rupees(credit_amount)
        adjustment = self.apply_adjustment(
            AdjustmentType.LEAVE_CREDIT,
            value,
            reason or f"Leave credit for leave {leave_id}",
            applied_by,
        )
        self.leave_credits.append(LeaveCredit(leave_id, value, adjustment.applied_at))
        return adjustment

    def record_subscription_extension(
        self,
        extension: SubscriptionExtension,
        applied_by: str
    ) -> Adjustment:
        """Attach a subscription extension; the bill amount is unchanged."""
        self.subscription_extension = extension
        return self.apply_adjustment(
            AdjustmentType.SUBSCRIPTION_EXTENSION,
            Decimal("0"),
            f"Subscription extended by {extension.extension_days} day(s) "
            f"({extension.extension_meals} meals)",
            applied_by,
        )

    def mark_as_paid(
        self,
        transaction_id: str,
        method: PaymentMethod,
        gateway_response: Optional[Dict[str, Any]] = None,
        paid_at: Optional[datetime] = None
    ) -> bool:
        """
        Mark the record paid.

        Returns False when the record is already paid by the same
        transaction (no-op), True when the record changed.

        Raises:
            BillingStateError: Refunded/cancelled record, or already paid by
                a different transaction
        """
        if self.status == BillingPaymentStatus.PAID:
            if self.transaction_id == transaction_id:
                return False
            raise BillingStateError(
                f"Billing record {self.id} is already paid by transaction {self.transaction_id}"
            )
        if self.status in CLOSED_STATUSES:
            raise BillingStateError(
                f"Billing record {self.id} is {self.status.value} and cannot be paid"
            )

        self.status = BillingPaymentStatus.PAID
        self.paid_date = as_utc(paid_at) if paid_at else utc_now()
        self.transaction_id = transaction_id
        self.method = PaymentMethod(method)
        if gateway_response:
            self.gateway_response = dict(gateway_response)
        return True

    def mark_failed(self, gateway_response: Optional[Dict[str, Any]] = None) -> None:
        if self.status not in (BillingPaymentStatus.PENDING, BillingPaymentStatus.OVERDUE):
            raise BillingStateError(
                f"Billing record {self.id} is {self.status.value}; only pending or overdue bills can fail"
            )
        self.status = BillingPaymentStatus.FAILED
        if gateway_response:
            self.gateway_response = dict(gateway_response)

    def cancel(self) -> None:
        self.status = BillingPaymentStatus.CANCELLED

    def refund(self) -> None:
        self.status = BillingPaymentStatus.REFUNDED

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "mess_id": self.mess_id,
            "membership_id": self.membership_id,
            "billing_period": {
                "start_date": self.period_start.isoformat(),
                "end_date": self.period_end.isoformat(),
                "period": self.period.value,
            },
            "subscription": {
                "plan_id": self.subscription.plan_id,
                "plan_name": self.subscription.plan_name,
                "base_amount": str(self.subscription.base_amount),
                "discount_amount": str(self.subscription.discount_amount),
                "tax_amount": str(self.subscription.tax_amount),
                "total_amount": str(self.subscription.total_amount),
            },
            "payment": {
                "status": self.status.value,
                "method": self.method.value if self.method else None,
                "due_date": self.due_date.isoformat(),
                "paid_date": self.paid_date.isoformat() if self.paid_date else None,
                "transaction_id": self.transaction_id,
            },
            "adjustments": [a.to_dict() for a in self.adjustments],
            "leave_credits": [lc.to_dict() for lc in self.leave_credits],
            "final_amount": str(self.final_amount),
            "days_overdue": self.days_overdue(now),
            "generated_by": self.generated_by.value,
            "notes": self.notes,
        }
