"""
============================================================================
Mess Ledger v1.0.0
Webhook Reconciler - Gateway Event Ingestion
============================================================================

Reliability Level: CRITICAL
Input Constraints: Raw request body bytes + signature header
Side Effects: Applies payment outcomes through the PaymentOrchestrator

FLOW:
1. Verify HMAC-SHA256(webhook_secret, raw body) (no parsing before auth)
2. Parse JSON
3. Dispatch:
   - payment.captured → handle_payment_success(source="webhook")
   - payment.failed   → handle_payment_failure
   - anything else    → logged and acknowledged

Gateways retry on non-2xx, so only a bad signature, a malformed body or a
reconciliation gap (which a retry can close) produce an error response.
Everything else is acknowledged.

============================================================================
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import json
import logging
import uuid

from app.auth.security import verify_hmac_signature
from app.observability.metrics import (
    record_reconciliation_gap,
    record_signature_failure,
    record_webhook_event,
)
from services.errors import (
    InvalidSignatureError,
    InvalidTransitionError,
    TransactionNotFoundError,
    ValidationError,
)
from services.payment_orchestrator import PaymentOrchestrator
from services.payment_state_machine import PaymentStatus

logger = logging.getLogger(__name__)

EVENT_PAYMENT_CAPTURED = "payment.captured"
EVENT_PAYMENT_FAILED = "payment.failed"


class WebhookAction:
    CREDITED = "credited"
    ALREADY_PROCESSED = "already_processed"
    FAILED = "failed"
    IGNORED = "ignored"
    UNKNOWN_ORDER = "unknown_order"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class WebhookOutcome:
    event: str
    action: str
    order_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"event": self.event, "action": self.action, "order_id": self.order_id}


def _payment_entity(payload: Dict[str, Any]) -> Dict[str, Any]:
    """payload.payment.entity, or {} when any level is missing or not an object."""
    node: Any = payload
    for key in ("payload", "payment", "entity"):
        node = node.get(key) if isinstance(node, dict) else None
    return node if isinstance(node, dict) else {}


def _text(entity: Dict[str, Any], key: str) -> Optional[str]:
    value = entity.get(key)
    return value if isinstance(value, str) and value else None


class WebhookReconciler:
    """Single entry point for gateway webhooks."""

    def __init__(self, orchestrator: PaymentOrchestrator, webhook_secret: str):
        self.orchestrator = orchestrator
        self.webhook_secret = webhook_secret

    def handle_webhook(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        correlation_id: Optional[str] = None
    ) -> WebhookOutcome:
        """
        Verify, parse and dispatch one webhook delivery.

        Raises:
            InvalidSignatureError: Signature missing or mismatched (nothing touched)
            ValidationError: Signed body is not a JSON object
            ReconciliationGapError: Credit failed; the gateway's retry completes it
        """
        correlation_id = correlation_id or uuid.uuid4().hex

        try:
            verify_hmac_signature(raw_body, signature_header, self.webhook_secret)
        except InvalidSignatureError as e:
            record_signature_failure("webhook")
            record_webhook_event("unverified", "rejected")
            logger.warning(
                f"[PAY-004] Webhook signature rejected | reason={e.message} | "
                f"body_bytes={len(raw_body)} | correlation_id={correlation_id} | "
                f"potential tampering"
            )
            raise

        try:
            payload = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            record_webhook_event("malformed", "rejected")
            logger.error(
                f"[PAY-WEBHOOK] Malformed webhook body | error={e} | correlation_id={correlation_id}"
            )
            raise ValidationError("Malformed webhook payload") from e

        if not isinstance(payload, dict):
            record_webhook_event("malformed", "rejected")
            raise ValidationError("Webhook payload must be a JSON object")

        event = str(payload.get("event") or "")
        entity = _payment_entity(payload)
        order_id = _text(entity, "order_id")

        logger.info(
            f"[PAY-WEBHOOK] Event received | event={event} | order_id={order_id} | "
            f"correlation_id={correlation_id}"
        )

        if event == EVENT_PAYMENT_CAPTURED:
            outcome = self._on_captured(event, entity, correlation_id)
        elif event == EVENT_PAYMENT_FAILED:
            outcome = self._on_failed(event, entity, correlation_id)
        else:
            logger.info(
                f"[PAY-WEBHOOK] Unhandled event acknowledged | event={event} | "
                f"correlation_id={correlation_id}"
            )
            outcome = WebhookOutcome(event=event, action=WebhookAction.IGNORED, order_id=order_id)

        record_webhook_event(event, outcome.action)
        return outcome

    def _on_captured(
        self,
        event: str,
        entity: Dict[str, Any],
        correlation_id: str
    ) -> WebhookOutcome:
        order_id = _text(entity, "order_id")
        payment_id = _text(entity, "id")
        if not order_id or not payment_id:
            logger.warning(
                f"[PAY-WEBHOOK] Captured event without order/payment id | "
                f"correlation_id={correlation_id}"
            )
            return WebhookOutcome(event=event, action=WebhookAction.IGNORED, order_id=order_id)

        try:
            result = self.orchestrator.handle_payment_success(
                order_id, payment_id, "", source="webhook", correlation_id=correlation_id
            )
        except TransactionNotFoundError:
            logger.warning(
                f"[PAY-WEBHOOK] Captured event for unknown order | order_id={order_id} | "
                f"payment_id={payment_id} | correlation_id={correlation_id}"
            )
            return WebhookOutcome(event=event, action=WebhookAction.UNKNOWN_ORDER, order_id=order_id)
        except InvalidTransitionError:
            # Money captured for an order we already closed as failed or refunded
            record_reconciliation_gap()
            logger.critical(
                f"[REC-001] Captured payment for closed order | order_id={order_id} | "
                f"payment_id={payment_id} | amount={entity.get('amount')} | "
                f"correlation_id={correlation_id} | manual reconciliation required"
            )
            return WebhookOutcome(event=event, action=WebhookAction.CONFLICT, order_id=order_id)

        action = WebhookAction.ALREADY_PROCESSED if result.already_processed else WebhookAction.CREDITED
        return WebhookOutcome(event=event, action=action, order_id=order_id)

    def _on_failed(
        self,
        event: str,
        entity: Dict[str, Any],
        correlation_id: str
    ) -> WebhookOutcome:
        order_id = _text(entity, "order_id")
        if not order_id:
            return WebhookOutcome(event=event, action=WebhookAction.IGNORED)

        transaction = self.orchestrator.handle_payment_failure(
            order_id,
            _text(entity, "error_code"),
            _text(entity, "error_description"),
            source="webhook",
            correlation_id=correlation_id,
        )
        if transaction is None:
            return WebhookOutcome(event=event, action=WebhookAction.UNKNOWN_ORDER, order_id=order_id)
        if transaction.status != PaymentStatus.FAILED.value:
            return WebhookOutcome(event=event, action=WebhookAction.IGNORED, order_id=order_id)
        return WebhookOutcome(event=event, action=WebhookAction.FAILED, order_id=order_id)
