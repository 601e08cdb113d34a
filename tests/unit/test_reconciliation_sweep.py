"""
Unit Tests for the Reconciliation Sweep

A success whose ledger credit failed stays success/pending; the sweep
finishes it exactly once and leaves still-failing credits for the next run.
"""

from datetime import datetime, timedelta, timezone
import os
import sys

import pytest
from sqlalchemy import select

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app.auth.security import compute_payment_signature
from app.database.models import MessCredits, MessProfile
from services.errors import ReconciliationGapError
from services.payment_orchestrator import PaymentOrchestrator
from services.payment_state_machine import CreditStatus
from services.reconciliation_sweep import DEFAULT_GRACE_PERIOD, ReconciliationSweep

KEY_SECRET = "test_key_secret"
FAR_FUTURE = datetime(2100, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def orchestrator(session, payment_config) -> PaymentOrchestrator:
    return PaymentOrchestrator(session, payment_config)


@pytest.fixture
def orphan(session) -> MessProfile:
    """A mess whose credits ledger has not been opened yet."""
    mess = MessProfile(user_id="user-no-ledger", name="New Mess")
    session.add(mess)
    session.commit()
    return mess


def stranded_payment(orchestrator, mess_id: str, plan_id: str, payment_id: str = "pay_1") -> str:
    order = orchestrator.create_order(mess_id, "user-no-ledger", plan_id)
    signature = compute_payment_signature(order.order_id, payment_id, KEY_SECRET)
    with pytest.raises(ReconciliationGapError):
        orchestrator.handle_payment_success(order.order_id, payment_id, signature)
    return order.order_id


def balance(session, mess_id: str) -> int:
    return session.scalar(select(MessCredits.balance).where(MessCredits.mess_id == mess_id))


class TestReconciliationSweep:

    def test_nothing_pending(self, orchestrator, seeded) -> None:
        result = ReconciliationSweep(orchestrator).run(older_than=FAR_FUTURE)

        assert (result.examined, result.applied, result.failed) == (0, 0, 0)
        assert result.correlation_id

    def test_still_failing_credit_is_reported(self, orchestrator, seeded, orphan) -> None:
        order_id = stranded_payment(orchestrator, orphan.id, seeded["plan"].id)

        result = ReconciliationSweep(orchestrator).run(older_than=FAR_FUTURE)

        assert result.examined == 1
        assert result.failed == 1
        assert result.failed_order_ids == [order_id]
        transaction = orchestrator.store.refresh(orchestrator.store.get_transaction(order_id))
        assert transaction.credit_status == CreditStatus.PENDING.value

    def test_sweep_applies_credit_once(self, orchestrator, seeded, orphan, session) -> None:
        order_id = stranded_payment(orchestrator, orphan.id, seeded["plan"].id)
        orchestrator.store.create_ledger(orphan.id)
        sweep = ReconciliationSweep(orchestrator)

        first = sweep.run(older_than=FAR_FUTURE)
        second = sweep.run(older_than=FAR_FUTURE)

        assert first.applied == 1
        assert second.examined == 0
        assert balance(session, orphan.id) == 110
        assert len(orchestrator.store.credit_audit_rows(order_id)) == 1

    def test_grace_period_skips_recent_intents(self, orchestrator, seeded, orphan) -> None:
        stranded_payment(orchestrator, orphan.id, seeded["plan"].id)
        orchestrator.store.create_ledger(orphan.id)

        result = ReconciliationSweep(orchestrator, grace_period=timedelta(hours=1)).run()

        assert result.examined == 0

    def test_default_grace_period(self) -> None:
        assert DEFAULT_GRACE_PERIOD == timedelta(minutes=5)
