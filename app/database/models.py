"""
============================================================================
Mess Ledger v1.0.0
Database Models - SQLAlchemy ORM Tables
============================================================================

Reliability Level: CRITICAL
Input Constraints: Money columns are Numeric(12, 2) rupees; credits are integers
Side Effects: None (declarations only)

INDEXES:
    - billing_records (user_id, mess_id)
    - billing_records (payment_status, payment_due_date)
    - payment_transactions.order_id UNIQUE (idempotency key)
    - mess_credits.mess_id UNIQUE (one ledger per mess)

============================================================================
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _uuid_str() -> str:
    return uuid.uuid4().hex


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now, nullable=False
    )


# =============================================================================
# Collaborator tables (mess profiles, plans, ledger, audit)
# =============================================================================

class MessProfile(TimestampMixin, Base):
    __tablename__ = "mess_profiles"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class CreditPurchasePlan(TimestampMixin, Base):
    __tablename__ = "credit_purchase_plans"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid_str)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    base_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    bonus_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def total_credits(self) -> int:
        return self.base_credits + self.bonus_credits


class MessCredits(TimestampMixin, Base):
    """Per-mess credit balance. Only ever incremented by purchase credits here."""

    __tablename__ = "mess_credits"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid_str)
    mess_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("mess_profiles.id"), nullable=False, unique=True
    )
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_purchased: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CreditTransaction(Base):
    """Append-only audit row for ledger movements."""

    __tablename__ = "credit_transactions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid_str)
    mess_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reference_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    plan_id: Mapped[Optional[str]] = mapped_column(String(32))
    # "metadata" is reserved on declarative classes
    details: Mapped[Dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="completed")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, nullable=False
    )


# =============================================================================
# Payment transactions
# =============================================================================

class PaymentTransaction(TimestampMixin, Base):
    __tablename__ = "payment_transactions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid_str)
    mess_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    plan_id: Mapped[str] = mapped_column(String(32), nullable=False)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    payment_id: Mapped[Optional[str]] = mapped_column(String(64))
    signature: Mapped[Optional[str]] = mapped_column(String(128))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="INR")
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
    bonus_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_credits: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="created")
    error_code: Mapped[Optional[str]] = mapped_column(String(64))
    error_description: Mapped[Optional[str]] = mapped_column(Text)
    receipt: Mapped[Optional[str]] = mapped_column(String(64))
    credit_status: Mapped[str] = mapped_column(String(16), nullable=False, default="none")
    credited_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    refund_reason: Mapped[Optional[str]] = mapped_column(Text)
    gateway_metadata: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)

    __table_args__ = (
        Index("idx_payment_tx_status_credit", "status", "credit_status"),
        Index("idx_payment_tx_mess_created", "mess_id", "created_at"),
    )


# =============================================================================
# Billing records
# =============================================================================

class BillingRecordRow(TimestampMixin, Base):
    """
    Persisted shape of services.billing_record.BillingRecord.

    Adjustments and leave credits are stored as JSON lists with money as
    decimal strings.
    """

    __tablename__ = "billing_records"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    mess_id: Mapped[str] = mapped_column(String(32), nullable=False)
    membership_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    period: Mapped[str] = mapped_column(String(16), nullable=False)

    plan_id: Mapped[str] = mapped_column(String(64), nullable=False)
    plan_name: Mapped[str] = mapped_column(String(255), nullable=False)
    base_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    payment_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    payment_method: Mapped[Optional[str]] = mapped_column(String(16))
    payment_due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    paid_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    transaction_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    gateway_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)

    adjustments: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    leave_credits: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    subscription_extension: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)

    generated_by: Mapped[str] = mapped_column(String(16), nullable=False, default="system")
    notes: Mapped[Optional[str]] = mapped_column(String(1000))

    __table_args__ = (
        Index("idx_billing_user_mess", "user_id", "mess_id"),
        Index("idx_billing_status_due", "payment_status", "payment_due_date"),
        Index("idx_billing_period", "period_start", "period_end"),
    )
