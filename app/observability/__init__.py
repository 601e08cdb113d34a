"""
============================================================================
Mess Ledger v1.0.0
Observability Module - Prometheus Metrics
============================================================================
"""

from app.observability.metrics import (
    ORDERS_CREATED,
    PAYMENT_OUTCOMES,
    CREDITS_ADDED,
    WEBHOOK_EVENTS,
    SIGNATURE_FAILURES,
    RECONCILIATION_GAPS,
    BILLING_ADJUSTMENTS,
    record_order_created,
    record_payment_outcome,
    record_credits_added,
    record_webhook_event,
    record_signature_failure,
    record_reconciliation_gap,
    record_billing_adjustment,
)

__all__ = [
    "ORDERS_CREATED",
    "PAYMENT_OUTCOMES",
    "CREDITS_ADDED",
    "WEBHOOK_EVENTS",
    "SIGNATURE_FAILURES",
    "RECONCILIATION_GAPS",
    "BILLING_ADJUSTMENTS",
    "record_order_created",
    "record_payment_outcome",
    "record_credits_added",
    "record_webhook_event",
    "record_signature_failure",
    "record_reconciliation_gap",
    "record_billing_adjustment",
]
