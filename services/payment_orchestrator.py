"""
============================================================================
Mess Ledger v1.0.0
Payment Orchestrator - Order / Transaction Lifecycle and Ledger Credit
============================================================================

Reliability Level: CRITICAL
Decimal Integrity: Prices are Decimal rupees, gateway amounts are int paise
Traceability: All operations include correlation_id for audit

LIFECYCLE:
    create_order            → PaymentTransaction(status=created)
    handle_payment_success  → status=success, credit_status=pending
                            → ledger credit + audit row, credit_status=applied
    handle_payment_failure  → status=failed
    refund_transaction      → status=refunded (administrative)

OUTBOX:
    The status claim writes credit_status=pending as an intent record. If
    the ledger credit then fails the transaction stays success/pending, the
    gap is logged under REC-001, and a repeated success call or the
    reconciliation sweep completes the credit exactly once.

ERROR CODES:
    - PAY-004: Client signature mismatch (potential tampering)
    - REC-001: Reconciliation gap (success marked, ledger not credited)

============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import logging
import math
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.auth.security import compute_payment_signature, signatures_match
from app.database.models import PaymentTransaction
from app.gateway.decimal_gateway import DecimalGateway
from app.gateway.razorpay_client import RazorpayClient
from app.observability.metrics import (
    record_credits_added,
    record_order_created,
    record_payment_outcome,
    record_reconciliation_gap,
    record_signature_failure,
)
from services.errors import (
    AmountMismatchError,
    GatewayNotConfiguredError,
    InvalidSignatureError,
    InvalidTransitionError,
    PlanInactiveError,
    ReconciliationGapError,
    ValidationError,
)
from services.payment_config import PaymentConfig
from services.payment_state_machine import (
    CreditStatus,
    OPEN_STATES,
    PaymentStatus,
    require_transition,
)
from services.payment_store import PaymentStore, transaction_to_dict

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Result Data Classes
# =============================================================================

@dataclass
class OrderResult:
    order_id: str
    amount: int
    currency: str
    receipt: str
    key_id: str
    transaction_id: str
    plan: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "amount": self.amount,
            "currency": self.currency,
            "receipt": self.receipt,
            "key_id": self.key_id,
            "transaction_id": self.transaction_id,
            "plan": self.plan,
        }


@dataclass
class PaymentSuccessResult:
    order_id: str
    payment_id: Optional[str]
    credits_added: int
    already_processed: bool = False
    transaction: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "payment_id": self.payment_id,
            "credits_added": self.credits_added,
            "already_processed": self.already_processed,
            "transaction": self.transaction,
        }


# =============================================================================
# PaymentOrchestrator
# =============================================================================

class PaymentOrchestrator:
    """
    Credit purchase flow against the gateway and the mess credits ledger.

    Example Usage:
        orchestrator = PaymentOrchestrator(session, get_payment_config())
        order = orchestrator.create_order(mess_id, user_id, plan_id, amount=50000)
        ...
        result = orchestrator.handle_payment_success(order.order_id, payment_id, signature)
    """

    def __init__(
        self,
        session: Session,
        config: PaymentConfig,
        gateway: Optional[RazorpayClient] = None,
        clock: Callable[[], datetime] = _utc_now
    ):
        self.config = config
        self.store = PaymentStore(session)
        self.gateway = gateway or RazorpayClient(config)
        self.clock = clock
        self.decimal_gateway = DecimalGateway()

    # =========================================================================
    # Orders
    # =========================================================================

    def create_order(
        self,
        mess_id: str,
        user_id: str,
        plan_id: str,
        amount: Optional[int] = None,
        currency: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> OrderResult:
        """
        Create a gateway order and persist its created-state transaction.

        Args:
            mess_id: Purchasing mess
            user_id: Acting user
            plan_id: CreditPurchasePlan id
            amount: Client-side amount in paise; must equal round(price * 100)
            currency: ISO currency (default: configured currency)
            correlation_id: Audit trail identifier

        Raises:
            GatewayNotConfiguredError: LIVE mode without gateway keys
            PlanNotFoundError: Unknown plan
            PlanInactiveError: Plan switched off
            AmountMismatchError: Client amount differs from the plan price
            GatewayError: Gateway call failed (nothing persisted)
        """
        correlation_id = correlation_id or uuid.uuid4().hex

        if self.config.is_live and not self.config.gateway_configured:
            raise GatewayNotConfiguredError("Payment gateway is not configured")

        plan = self.store.get_plan(plan_id)
        if not plan.is_active:
            raise PlanInactiveError(
                "This credit plan is not currently available",
                details={"plan_id": plan_id},
            )

        price = self.decimal_gateway.to_rupees(plan.price, correlation_id)
        expected_amount = self.decimal_gateway.to_minor_units(price, correlation_id)
        if amount is not None and (isinstance(amount, bool) or amount != expected_amount):
            logger.warning(
                f"[{AmountMismatchError.error_code}] Amount mismatch | plan_id={plan_id} | "
                f"expected={expected_amount} | received={amount} | "
                f"user_id={user_id} | correlation_id={correlation_id}"
            )
            raise AmountMismatchError(
                "Amount does not match plan price",
                details={"expected": expected_amount, "received": amount},
            )

        currency = (currency or self.config.currency).upper()
        receipt = f"{self.config.receipt_prefix}{int(self.clock().timestamp() * 1000)}"
        total_credits = plan.total_credits
        notes = {
            "messId": mess_id,
            "userId": user_id,
            "planId": plan_id,
            "planName": plan.name,
            "credits": str(plan.base_credits),
            "bonusCredits": str(plan.bonus_credits),
        }

        order = self.gateway.create_order(
            expected_amount, currency, receipt, notes, correlation_id=correlation_id
        )

        transaction = self.store.add_transaction(PaymentTransaction(
            mess_id=mess_id,
            user_id=user_id,
            plan_id=plan_id,
            order_id=order.id,
            amount=price,
            currency=currency,
            credits=plan.base_credits,
            bonus_credits=plan.bonus_credits,
            total_credits=total_credits,
            status=PaymentStatus.CREATED.value,
            credit_status=CreditStatus.NONE.value,
            receipt=order.receipt,
            gateway_metadata={
                "receipt": order.receipt,
                "simulated": order.simulated,
                "correlation_id": correlation_id,
            },
        ))

        record_order_created(currency, self.config.execution_mode, correlation_id)
        logger.info(
            f"[PAY-ORDER] Order created | order_id={order.id} | mess_id={mess_id} | "
            f"plan_id={plan_id} | amount={expected_amount} | currency={currency} | "
            f"credits={total_credits} | correlation_id={correlation_id}"
        )

        return OrderResult(
            order_id=order.id,
            amount=expected_amount,
            currency=currency,
            receipt=order.receipt,
            key_id=self.config.key_id,
            transaction_id=transaction.id,
            plan={
                "id": plan.id,
                "name": plan.name,
                "price": str(price),
                "base_credits": plan.base_credits,
                "bonus_credits": plan.bonus_credits,
                "total_credits": total_credits,
            },
        )

    # =========================================================================
    # Signatures
    # =========================================================================

    def verify_payment_signature(
        self,
        order_id: str,
        payment_id: str,
        signature: Optional[str]
    ) -> bool:
        """HMAC-SHA256(key_secret, "order_id|payment_id") == signature. Never raises."""
        try:
            if not self.config.key_secret or not order_id or not payment_id:
                return False
            expected = compute_payment_signature(order_id, payment_id, self.config.key_secret)
            return signatures_match(expected, signature)
        except (TypeError, AttributeError, UnicodeError) as e:
            logger.warning(f"[PAY-004] Signature verification error | order_id={order_id} | error={e}")
            return False

    # =========================================================================
    # Outcomes
    # =========================================================================

    def handle_payment_success(
        self,
        order_id: str,
        payment_id: str,
        signature: Optional[str],
        source: str = "client",
        correlation_id: Optional[str] = None
    ) -> PaymentSuccessResult:
        """
        Apply a successful payment and credit the mess ledger exactly once.

        source="webhook" skips the client signature check; webhook
        authenticity is established on the raw body by the reconciler.

        Raises:
            InvalidSignatureError: Client signature mismatch
            TransactionNotFoundError: Unknown order
            InvalidTransitionError: Transaction already failed or refunded
            ReconciliationGapError: Success recorded but ledger credit failed
        """
        correlation_id = correlation_id or uuid.uuid4().hex

        if source != "webhook" and not self.verify_payment_signature(order_id, payment_id, signature):
            record_signature_failure("client")
            logger.warning(
                f"[PAY-004] Signature mismatch | order_id={order_id} | "
                f"payment_id={payment_id} | source={source} | "
                f"correlation_id={correlation_id} | potential tampering"
            )
            raise InvalidSignatureError(
                "Invalid payment signature", details={"order_id": order_id}
            )

        transaction = self.store.get_transaction(order_id)

        if transaction.status == PaymentStatus.SUCCESS.value:
            return self._already_succeeded(transaction, correlation_id)

        require_transition(transaction.status, PaymentStatus.SUCCESS, correlation_id)

        if not self.store.claim_success(order_id, payment_id, signature):
            # Lost a race with the other confirmation path
            transaction = self.store.refresh(transaction)
            if transaction.status == PaymentStatus.SUCCESS.value:
                return self._already_succeeded(transaction, correlation_id)
            raise InvalidTransitionError(
                f"Payment transaction cannot move from {transaction.status} to success",
                details={"order_id": order_id},
            )

        transaction = self.store.refresh(transaction)
        record_payment_outcome(PaymentStatus.SUCCESS.value, source, correlation_id)
        logger.info(
            f"[PAY-SUCCESS] Payment marked successful | order_id={order_id} | "
            f"payment_id={payment_id} | mess_id={transaction.mess_id} | "
            f"source={source} | correlation_id={correlation_id}"
        )

        self._apply_credit(transaction, correlation_id)

        return PaymentSuccessResult(
            order_id=order_id,
            payment_id=transaction.payment_id,
            credits_added=transaction.total_credits,
            already_processed=False,
            transaction=transaction_to_dict(self.store.refresh(transaction)),
        )

    def _already_succeeded(
        self,
        transaction: PaymentTransaction,
        correlation_id: str
    ) -> PaymentSuccessResult:
        logger.info(
            f"[PAY-SUCCESS] Payment already processed | order_id={transaction.order_id} | "
            f"credit_status={transaction.credit_status} | correlation_id={correlation_id}"
        )
        if transaction.credit_status == CreditStatus.PENDING.value:
            self._apply_credit(transaction, correlation_id)
            transaction = self.store.refresh(transaction)

        return PaymentSuccessResult(
            order_id=transaction.order_id,
            payment_id=transaction.payment_id,
            credits_added=transaction.total_credits,
            already_processed=True,
            transaction=transaction_to_dict(transaction),
        )

    def complete_pending_credit(
        self,
        transaction: PaymentTransaction,
        correlation_id: Optional[str] = None
    ) -> bool:
        """Finish a success/pending credit. Used by the reconciliation sweep."""
        return self._apply_credit(transaction, correlation_id or uuid.uuid4().hex)

    def _apply_credit(self, transaction: PaymentTransaction, correlation_id: str) -> bool:
        try:
            applied = self.store.apply_credit(transaction)
        except Exception as e:
            record_reconciliation_gap()
            logger.critical(
                f"[REC-001] Reconciliation gap | order_id={transaction.order_id} | "
                f"mess_id={transaction.mess_id} | credits={transaction.total_credits} | "
                f"amount={transaction.amount} | error={e} | correlation_id={correlation_id}"
            )
            raise ReconciliationGapError(
                "Payment recorded but credits could not be added; queued for reconciliation",
                details={
                    "order_id": transaction.order_id,
                    "mess_id": transaction.mess_id,
                    "credits": transaction.total_credits,
                },
            ) from e

        if applied:
            record_credits_added(transaction.total_credits)
            logger.info(
                f"[PAY-CREDIT] Credits added | order_id={transaction.order_id} | "
                f"mess_id={transaction.mess_id} | credits={transaction.total_credits} | "
                f"correlation_id={correlation_id}"
            )
        return applied

    def handle_payment_failure(
        self,
        order_id: str,
        error_code: Optional[str] = None,
        error_description: Optional[str] = None,
        source: str = "client",
        correlation_id: Optional[str] = None
    ) -> Optional[PaymentTransaction]:
        """
        Mark an open transaction failed.

        Missing orders and storage errors are logged and swallowed: this path
        runs from best-effort cleanup and must not fail a webhook response.
        Transactions that already left created/pending are returned unchanged.
        """
        correlation_id = correlation_id or uuid.uuid4().hex
        try:
            transaction = self.store.find_transaction(order_id)
            if transaction is None:
                logger.warning(
                    f"[PAY-FAIL] Failure reported for unknown order | order_id={order_id} | "
                    f"source={source} | correlation_id={correlation_id}"
                )
                return None

            if transaction.status not in OPEN_STATES:
                logger.info(
                    f"[PAY-FAIL] Failure ignored, transaction is {transaction.status} | "
                    f"order_id={order_id} | source={source} | correlation_id={correlation_id}"
                )
                return transaction

            if self.store.mark_failed(order_id, error_code, error_description):
                record_payment_outcome(PaymentStatus.FAILED.value, source, correlation_id)
                logger.warning(
                    f"[PAY-FAIL] Payment failed | order_id={order_id} | "
                    f"error_code={error_code} | error_description={error_description} | "
                    f"source={source} | correlation_id={correlation_id}"
                )
            return self.store.refresh(transaction)

        except SQLAlchemyError as e:
            logger.error(
                f"[PAY-FAIL] Could not record payment failure | order_id={order_id} | "
                f"error={e} | correlation_id={correlation_id}"
            )
            return None

    def refund_transaction(
        self,
        order_id: str,
        reason: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> PaymentTransaction:
        """
        Administrative success → refunded. Credits already added stay on the
        ledger; consumption and clawback are handled by the credits service.
        """
        transaction = self.store.get_transaction(order_id)
        require_transition(transaction.status, PaymentStatus.REFUNDED, correlation_id)
        if not self.store.mark_refunded(order_id, reason):
            transaction = self.store.refresh(transaction)
            raise InvalidTransitionError(
                f"Payment transaction cannot move from {transaction.status} to refunded",
                details={"order_id": order_id},
            )
        logger.info(
            f"[PAY-REFUND] Payment refunded | order_id={order_id} | reason={reason} | "
            f"correlation_id={correlation_id}"
        )
        return self.store.refresh(transaction)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_payment_transaction(self, order_id: str) -> PaymentTransaction:
        return self.store.get_transaction(order_id)

    def get_payment_history(
        self,
        mess_id: str,
        page: int = DEFAULT_PAGE,
        limit: int = DEFAULT_LIMIT
    ) -> Dict[str, Any]:
        """Paginated transactions, newest first."""
        if page < 1:
            raise ValidationError(f"page must be >= 1, got: {page}")
        if limit < 1 or limit > MAX_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}, got: {limit}")

        total = self.store.count_transactions(mess_id)
        transactions: List[PaymentTransaction] = self.store.list_transactions(
            mess_id, (page - 1) * limit, limit
        )
        return {
            "transactions": [transaction_to_dict(t) for t in transactions],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit),
            },
        }
