"""
============================================================================
Mess Ledger v1.0.0
Prometheus Metrics - Payment and Billing Observability
============================================================================

Reliability Level: STANDARD
Input Constraints: Label values are short enum strings
Side Effects: Updates Prometheus metrics registry

METRICS EXPOSED
---------------
- payment_orders_created_total: Gateway orders created
- payment_outcomes_total: Success/failure applications by source
- mess_credits_added_total: Credits added to mess ledgers
- payment_webhook_events_total: Webhook events by event name and result
- payment_signature_failures_total: Client/webhook signature mismatches
- payment_reconciliation_gaps_total: Success marked but credit not applied
- billing_adjustments_total: Billing adjustments by type

Metric failures never propagate into the payment path; they are logged
under [OBS-xxx] codes.

============================================================================
"""

import logging
from typing import Optional

from prometheus_client import Counter

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# PROMETHEUS METRICS DEFINITIONS
# ============================================================================

ORDERS_CREATED = Counter(
    "payment_orders_created_total",
    "Total number of gateway orders created",
    ["currency", "mode"]
)

PAYMENT_OUTCOMES = Counter(
    "payment_outcomes_total",
    "Payment outcomes applied to transactions",
    ["status", "source"]
)

CREDITS_ADDED = Counter(
    "mess_credits_added_total",
    "Total credits added to mess ledgers by purchases"
)

WEBHOOK_EVENTS = Counter(
    "payment_webhook_events_total",
    "Webhook events received",
    ["event", "result"]
)

SIGNATURE_FAILURES = Counter(
    "payment_signature_failures_total",
    "Signature verification failures (potential tampering)",
    ["kind"]
)

RECONCILIATION_GAPS = Counter(
    "payment_reconciliation_gaps_total",
    "Payments marked successful whose ledger credit did not land"
)

BILLING_ADJUSTMENTS = Counter(
    "billing_adjustments_total",
    "Adjustments applied to billing records",
    ["type"]
)


# ============================================================================
# METRIC UPDATE FUNCTIONS
# ============================================================================

def record_order_created(
    currency: str,
    mode: str,
    correlation_id: Optional[str] = None
) -> None:
    try:
        ORDERS_CREATED.labels(currency=currency, mode=mode).inc()
        logger.debug(
            "Metric: order_created | currency=%s | mode=%s | correlation_id=%s",
            currency, mode, correlation_id
        )
    except Exception as e:
        logger.error("[OBS-001] Failed to record order_created metric | error=%s", str(e))


def record_payment_outcome(
    status: str,
    source: str,
    correlation_id: Optional[str] = None
) -> None:
    """
    Record a payment outcome.

    Args:
        status: "success" or "failed"
        source: "client", "webhook" or "sweep"
        correlation_id: Optional tracking ID
    """
    try:
        PAYMENT_OUTCOMES.labels(status=status, source=source).inc()
        logger.debug(
            "Metric: payment_outcome | status=%s | source=%s | correlation_id=%s",
            status, source, correlation_id
        )
    except Exception as e:
        logger.error("[OBS-002] Failed to record payment_outcome metric | error=%s", str(e))


def record_credits_added(credits: int) -> None:
    try:
        CREDITS_ADDED.inc(max(0, int(credits)))
    except Exception as e:
        logger.error("[OBS-003] Failed to record credits_added metric | error=%s", str(e))


def record_webhook_event(event: str, result: str) -> None:
    try:
        WEBHOOK_EVENTS.labels(event=event or "unknown", result=result).inc()
    except Exception as e:
        logger.error("[OBS-004] Failed to record webhook_event metric | error=%s", str(e))


def record_signature_failure(kind: str) -> None:
    """kind: "client" or "webhook"."""
    try:
        SIGNATURE_FAILURES.labels(kind=kind).inc()
    except Exception as e:
        logger.error("[OBS-005] Failed to record signature_failure metric | error=%s", str(e))


def record_reconciliation_gap() -> None:
    try:
        RECONCILIATION_GAPS.inc()
    except Exception as e:
        logger.error("[OBS-006] Failed to record reconciliation_gap metric | error=%s", str(e))


def record_billing_adjustment(adjustment_type: str) -> None:
    try:
        BILLING_ADJUSTMENTS.labels(type=adjustment_type).inc()
    except Exception as e:
        logger.error("[OBS-007] Failed to record billing_adjustment metric | error=%s", str(e))
