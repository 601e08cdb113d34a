"""
Unit Tests for the Payment Orchestrator

Order creation, client signature verification, exactly-once ledger credit,
failure handling, refunds and history pagination against in-memory SQLite
with a DRY_RUN gateway.
"""

from datetime import datetime, timezone
from decimal import Decimal
import os
import sys

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import select

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app.auth.security import compute_payment_signature
from app.database.models import MessCredits, MessProfile, PaymentTransaction
from services.errors import (
    AmountMismatchError,
    GatewayNotConfiguredError,
    InvalidSignatureError,
    InvalidTransitionError,
    PlanInactiveError,
    PlanNotFoundError,
    ReconciliationGapError,
    TransactionNotFoundError,
    ValidationError,
)
from services.payment_config import PaymentConfig
from services.payment_orchestrator import PaymentOrchestrator
from services.payment_state_machine import CreditStatus, PaymentStatus

KEY_SECRET = "test_key_secret"
OWNER_USER_ID = "user-owner-1"


FIXED_NOW = datetime(2024, 3, 10, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def orchestrator(session, payment_config) -> PaymentOrchestrator:
    return PaymentOrchestrator(session, payment_config, clock=lambda: FIXED_NOW)


def balance(session, mess_id: str) -> int:
    return session.scalar(select(MessCredits.balance).where(MessCredits.mess_id == mess_id))


def sign(order_id: str, payment_id: str) -> str:
    return compute_payment_signature(order_id, payment_id, KEY_SECRET)


def gaps() -> float:
    return REGISTRY.get_sample_value("payment_reconciliation_gaps_total") or 0.0


# =============================================================================
# Order creation
# =============================================================================

class TestCreateOrder:

    def test_creates_order_and_transaction(self, orchestrator, seeded, session) -> None:
        mess, plan = seeded["mess"], seeded["plan"]

        order = orchestrator.create_order(mess.id, OWNER_USER_ID, plan.id, amount=50000)

        assert order.amount == 50000
        assert order.currency == "INR"
        assert order.key_id == "rzp_test_key"
        assert order.order_id.startswith("order_DRY")
        assert order.receipt == f"rcpt_{int(FIXED_NOW.timestamp() * 1000)}"
        assert order.plan["total_credits"] == 110

        transaction = orchestrator.store.get_transaction(order.order_id)
        assert transaction.status == PaymentStatus.CREATED.value
        assert transaction.credit_status == CreditStatus.NONE.value
        assert transaction.amount == Decimal("500.00")
        assert transaction.total_credits == 110

    def test_amount_is_optional(self, orchestrator, seeded) -> None:
        order = orchestrator.create_order(seeded["mess"].id, OWNER_USER_ID, seeded["plan"].id)

        assert order.amount == 50000

    def test_amount_mismatch_rejected_before_anything_is_stored(self, orchestrator, seeded, session) -> None:
        with pytest.raises(AmountMismatchError) as exc_info:
            orchestrator.create_order(seeded["mess"].id, OWNER_USER_ID, seeded["plan"].id, amount=49999)

        assert exc_info.value.details == {"expected": 50000, "received": 49999}
        assert session.scalar(select(PaymentTransaction)) is None

    def test_boolean_amount_rejected(self, orchestrator, seeded) -> None:
        with pytest.raises(AmountMismatchError):
            orchestrator.create_order(seeded["mess"].id, OWNER_USER_ID, seeded["plan"].id, amount=True)

    def test_unknown_plan(self, orchestrator, seeded) -> None:
        with pytest.raises(PlanNotFoundError) as exc_info:
            orchestrator.create_order(seeded["mess"].id, OWNER_USER_ID, "no-such-plan")

        assert exc_info.value.message == "Credit purchase plan not found"

    def test_inactive_plan(self, orchestrator, seeded) -> None:
        with pytest.raises(PlanInactiveError):
            orchestrator.create_order(seeded["mess"].id, OWNER_USER_ID, seeded["retired_plan"].id)

    def test_live_mode_without_keys(self, session, seeded) -> None:
        orchestrator = PaymentOrchestrator(session, PaymentConfig(execution_mode="LIVE"))

        with pytest.raises(GatewayNotConfiguredError):
            orchestrator.create_order(seeded["mess"].id, OWNER_USER_ID, seeded["plan"].id)


# =============================================================================
# Signatures
# =============================================================================

class TestSignatureVerification:

    def test_valid_signature(self, orchestrator) -> None:
        assert orchestrator.verify_payment_signature("order_1", "pay_1", sign("order_1", "pay_1"))

    def test_signature_is_case_sensitive(self, orchestrator) -> None:
        assert not orchestrator.verify_payment_signature(
            "order_1", "pay_1", sign("order_1", "pay_1").upper()
        )

    def test_missing_inputs_never_raise(self, orchestrator) -> None:
        assert orchestrator.verify_payment_signature("order_1", "pay_1", None) is False
        assert orchestrator.verify_payment_signature("", "pay_1", "abc") is False

    def test_missing_secret(self, session) -> None:
        orchestrator = PaymentOrchestrator(session, PaymentConfig())

        assert orchestrator.verify_payment_signature("order_1", "pay_1", "abc") is False


# =============================================================================
# Success path
# =============================================================================

class TestPaymentSuccess:

    def test_success_credits_ledger(self, orchestrator, seeded, session) -> None:
        mess = seeded["mess"]
        order = orchestrator.create_order(mess.id, OWNER_USER_ID, seeded["plan"].id)

        result = orchestrator.handle_payment_success(
            order.order_id, "pay_1", sign(order.order_id, "pay_1")
        )

        assert result.credits_added == 110
        assert result.already_processed is False
        assert result.transaction["status"] == "success"
        assert result.transaction["credit_status"] == "applied"
        assert balance(session, mess.id) == 110

        audit = orchestrator.store.credit_audit_rows(order.order_id)
        assert len(audit) == 1
        assert audit[0].type == "purchase"
        assert audit[0].amount == 110
        assert audit[0].description == "Credit purchase: 100 credits + 10 bonus credits"
        assert audit[0].details["payment_id"] == "pay_1"

    def test_repeated_success_credits_once(self, orchestrator, seeded, session) -> None:
        mess = seeded["mess"]
        order = orchestrator.create_order(mess.id, OWNER_USER_ID, seeded["plan"].id)
        signature = sign(order.order_id, "pay_1")

        orchestrator.handle_payment_success(order.order_id, "pay_1", signature)
        again = orchestrator.handle_payment_success(order.order_id, "pay_1", signature)
        webhook = orchestrator.handle_payment_success(order.order_id, "pay_1", "", source="webhook")

        assert again.already_processed is True
        assert webhook.already_processed is True
        assert balance(session, mess.id) == 110
        assert len(orchestrator.store.credit_audit_rows(order.order_id)) == 1

    def test_bad_signature_changes_nothing(self, orchestrator, seeded, session) -> None:
        order = orchestrator.create_order(seeded["mess"].id, OWNER_USER_ID, seeded["plan"].id)

        with pytest.raises(InvalidSignatureError):
            orchestrator.handle_payment_success(order.order_id, "pay_1", "0" * 64)

        transaction = orchestrator.store.refresh(orchestrator.store.get_transaction(order.order_id))
        assert transaction.status == PaymentStatus.CREATED.value
        assert balance(session, seeded["mess"].id) == 0

    def test_unknown_order(self, orchestrator, seeded) -> None:
        with pytest.raises(TransactionNotFoundError):
            orchestrator.handle_payment_success("order_missing", "pay_1", sign("order_missing", "pay_1"))

    def test_failed_order_cannot_succeed(self, orchestrator, seeded) -> None:
        order = orchestrator.create_order(seeded["mess"].id, OWNER_USER_ID, seeded["plan"].id)
        orchestrator.handle_payment_failure(order.order_id, "BAD_REQUEST_ERROR", "Card declined")

        with pytest.raises(InvalidTransitionError):
            orchestrator.handle_payment_success(order.order_id, "pay_1", sign(order.order_id, "pay_1"))


# =============================================================================
# Reconciliation gap
# =============================================================================

class TestReconciliationGap:

    def test_missing_ledger_leaves_credit_pending_until_retry(self, orchestrator, seeded, session) -> None:
        orphan = MessProfile(user_id="user-no-ledger", name="New Mess")
        session.add(orphan)
        session.commit()
        order = orchestrator.create_order(orphan.id, "user-no-ledger", seeded["plan"].id)
        signature = sign(order.order_id, "pay_9")
        gaps_before = gaps()

        with pytest.raises(ReconciliationGapError) as exc_info:
            orchestrator.handle_payment_success(order.order_id, "pay_9", signature)

        assert exc_info.value.error_code == "REC-001"
        assert gaps() == gaps_before + 1
        transaction = orchestrator.store.refresh(orchestrator.store.get_transaction(order.order_id))
        assert transaction.status == PaymentStatus.SUCCESS.value
        assert transaction.credit_status == CreditStatus.PENDING.value
        assert orchestrator.store.credit_audit_rows(order.order_id) == []

        orchestrator.store.create_ledger(orphan.id)
        retry = orchestrator.handle_payment_success(order.order_id, "pay_9", signature)

        assert retry.already_processed is True
        assert retry.transaction["credit_status"] == "applied"
        assert balance(session, orphan.id) == 110
        assert len(orchestrator.store.credit_audit_rows(order.order_id)) == 1


# =============================================================================
# Failure and refund
# =============================================================================

class TestFailureAndRefund:

    def test_failure_marks_open_transaction(self, orchestrator, seeded) -> None:
        order = orchestrator.create_order(seeded["mess"].id, OWNER_USER_ID, seeded["plan"].id)

        transaction = orchestrator.handle_payment_failure(
            order.order_id, "BAD_REQUEST_ERROR", "Payment was cancelled"
        )

        assert transaction.status == PaymentStatus.FAILED.value
        assert transaction.error_code == "BAD_REQUEST_ERROR"
        assert transaction.error_description == "Payment was cancelled"

    def test_failure_for_unknown_order_returns_none(self, orchestrator, seeded) -> None:
        assert orchestrator.handle_payment_failure("order_missing", "X", "Y") is None

    def test_failure_after_success_is_ignored(self, orchestrator, seeded, session) -> None:
        order = orchestrator.create_order(seeded["mess"].id, OWNER_USER_ID, seeded["plan"].id)
        orchestrator.handle_payment_success(order.order_id, "pay_1", sign(order.order_id, "pay_1"))

        transaction = orchestrator.handle_payment_failure(order.order_id, "LATE", "late failure")

        assert transaction.status == PaymentStatus.SUCCESS.value
        assert balance(session, seeded["mess"].id) == 110

    def test_refund_success_only(self, orchestrator, seeded, session) -> None:
        paid = orchestrator.create_order(seeded["mess"].id, OWNER_USER_ID, seeded["plan"].id)
        open_order = orchestrator.create_order(seeded["mess"].id, OWNER_USER_ID, seeded["plan"].id)
        orchestrator.handle_payment_success(paid.order_id, "pay_1", sign(paid.order_id, "pay_1"))

        refunded = orchestrator.refund_transaction(paid.order_id, reason="Duplicate purchase")

        assert refunded.status == PaymentStatus.REFUNDED.value
        assert refunded.refund_reason == "Duplicate purchase"
        # Credits stay on the ledger
        assert balance(session, seeded["mess"].id) == 110
        with pytest.raises(InvalidTransitionError):
            orchestrator.refund_transaction(open_order.order_id)


# =============================================================================
# History
# =============================================================================

class TestHistory:

    def test_pagination(self, orchestrator, seeded) -> None:
        mess_id = seeded["mess"].id
        order_ids = {
            orchestrator.create_order(mess_id, OWNER_USER_ID, seeded["plan"].id).order_id
            for _ in range(3)
        }

        first = orchestrator.get_payment_history(mess_id, page=1, limit=2)
        second = orchestrator.get_payment_history(mess_id, page=2, limit=2)

        assert first["pagination"] == {"page": 1, "limit": 2, "total": 3, "total_pages": 2}
        assert len(first["transactions"]) == 2
        assert len(second["transactions"]) == 1
        seen = {t["order_id"] for t in first["transactions"] + second["transactions"]}
        assert seen == order_ids

    def test_empty_history(self, orchestrator, seeded) -> None:
        history = orchestrator.get_payment_history(seeded["mess"].id)

        assert history["transactions"] == []
        assert history["pagination"]["total_pages"] == 0

    @pytest.mark.parametrize("page,limit", [(0, 20), (1, 0), (1, 101)])
    def test_invalid_paging(self, orchestrator, seeded, page, limit) -> None:
        with pytest.raises(ValidationError):
            orchestrator.get_payment_history(seeded["mess"].id, page=page, limit=limit)
