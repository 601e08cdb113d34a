"""
============================================================================
Mess Ledger v1.0.0
Payment Store - Transactions, Plans, Mess Profiles and Credits Ledger
============================================================================

Reliability Level: CRITICAL
Input Constraints: Session supplied by the caller
Side Effects: Reads and writes payment and ledger tables

IDEMPOTENCY:
    Double processing of one order is prevented with conditional UPDATEs
    whose rowcount tells the caller whether it won:

    claim_success:  status IN (created, pending)      → success,
                    credit_status                     → pending
    apply_credit:   status = success AND credit_status = pending
                                                      → credit_status applied
                    + ledger balance = balance + n
                    + CreditTransaction audit row
                    (one DB transaction)

============================================================================
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.database.models import (
    CreditPurchasePlan,
    CreditTransaction,
    MessCredits,
    MessProfile,
    PaymentTransaction,
)
from services.errors import (
    LedgerNotFoundError,
    MessProfileNotFoundError,
    PlanNotFoundError,
    TransactionNotFoundError,
)
from services.payment_state_machine import CreditStatus, OPEN_STATES, PaymentStatus

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PaymentStore:
    """Data access for the payment orchestrator."""

    def __init__(self, session: Session):
        self.session = session

    # =========================================================================
    # Collaborator lookups
    # =========================================================================

    def get_plan(self, plan_id: str) -> CreditPurchasePlan:
        plan = self.session.get(CreditPurchasePlan, plan_id)
        if plan is None:
            raise PlanNotFoundError("Credit purchase plan not found", details={"plan_id": plan_id})
        return plan

    def get_mess_profile_for_user(self, user_id: str) -> MessProfile:
        profile = self.session.scalar(select(MessProfile).where(MessProfile.user_id == user_id))
        if profile is None:
            raise MessProfileNotFoundError("Mess profile not found", details={"user_id": user_id})
        return profile

    def get_ledger(self, mess_id: str) -> Optional[MessCredits]:
        return self.session.scalar(select(MessCredits).where(MessCredits.mess_id == mess_id))

    def create_ledger(self, mess_id: str) -> MessCredits:
        """Open a zero-balance credits ledger for a mess (idempotent)."""
        ledger = self.get_ledger(mess_id)
        if ledger is None:
            ledger = MessCredits(mess_id=mess_id, balance=0, total_purchased=0)
            self.session.add(ledger)
            self.session.commit()
        return ledger

    # =========================================================================
    # Transactions
    # =========================================================================

    def add_transaction(self, transaction: PaymentTransaction) -> PaymentTransaction:
        self.session.add(transaction)
        self.session.commit()
        return transaction

    def find_transaction(self, order_id: str) -> Optional[PaymentTransaction]:
        return self.session.scalar(
            select(PaymentTransaction).where(PaymentTransaction.order_id == order_id)
        )

    def get_transaction(self, order_id: str) -> PaymentTransaction:
        transaction = self.find_transaction(order_id)
        if transaction is None:
            raise TransactionNotFoundError(
                "Payment transaction not found", details={"order_id": order_id}
            )
        return transaction

    def refresh(self, transaction: PaymentTransaction) -> PaymentTransaction:
        self.session.refresh(transaction)
        return transaction

    def claim_success(self, order_id: str, payment_id: str, signature: Optional[str]) -> bool:
        """
        Move an open transaction to success and record the credit intent.

        Returns True only for the caller whose UPDATE matched.
        """
        result = self.session.execute(
            update(PaymentTransaction)
            .where(
                PaymentTransaction.order_id == order_id,
                PaymentTransaction.status.in_(OPEN_STATES),
            )
            .values(
                status=PaymentStatus.SUCCESS.value,
                payment_id=payment_id,
                signature=signature or None,
                credit_status=CreditStatus.PENDING.value,
                updated_at=_utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount == 1

    def apply_credit(self, transaction: PaymentTransaction) -> bool:
        """
        Credit the ledger for a successful transaction, exactly once.

        Returns False when another caller already applied the credit.

        Raises:
            LedgerNotFoundError: The mess has no credits ledger (nothing written)
        """
        now = _utc_now()
        try:
            claimed = self.session.execute(
                update(PaymentTransaction)
                .where(
                    PaymentTransaction.order_id == transaction.order_id,
                    PaymentTransaction.status == PaymentStatus.SUCCESS.value,
                    PaymentTransaction.credit_status == CreditStatus.PENDING.value,
                )
                .values(
                    credit_status=CreditStatus.APPLIED.value,
                    credited_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                self.session.rollback()
                return False

            credited = self.session.execute(
                update(MessCredits)
                .where(MessCredits.mess_id == transaction.mess_id)
                .values(
                    balance=MessCredits.balance + transaction.total_credits,
                    total_purchased=MessCredits.total_purchased + transaction.total_credits,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if credited.rowcount != 1:
                raise LedgerNotFoundError(
                    "Mess credits account not found",
                    details={"mess_id": transaction.mess_id},
                )

            self.session.add(CreditTransaction(
                mess_id=transaction.mess_id,
                type="purchase",
                amount=transaction.total_credits,
                description=(
                    f"Credit purchase: {transaction.credits} credits + "
                    f"{transaction.bonus_credits} bonus credits"
                ),
                reference_id=transaction.order_id,
                plan_id=transaction.plan_id,
                details={
                    "payment_id": transaction.payment_id,
                    "order_id": transaction.order_id,
                    "plan_id": transaction.plan_id,
                    "amount_paid": str(transaction.amount),
                    "currency": transaction.currency,
                    "base_credits": transaction.credits,
                    "bonus_credits": transaction.bonus_credits,
                },
                status="completed",
                created_at=now,
            ))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        return True

    def mark_failed(
        self,
        order_id: str,
        error_code: Optional[str],
        error_description: Optional[str]
    ) -> bool:
        result = self.session.execute(
            update(PaymentTransaction)
            .where(
                PaymentTransaction.order_id == order_id,
                PaymentTransaction.status.in_(OPEN_STATES),
            )
            .values(
                status=PaymentStatus.FAILED.value,
                error_code=error_code,
                error_description=error_description,
                updated_at=_utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount == 1

    def mark_refunded(self, order_id: str, reason: Optional[str]) -> bool:
        result = self.session.execute(
            update(PaymentTransaction)
            .where(
                PaymentTransaction.order_id == order_id,
                PaymentTransaction.status == PaymentStatus.SUCCESS.value,
            )
            .values(
                status=PaymentStatus.REFUNDED.value,
                refund_reason=reason,
                updated_at=_utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount == 1

    # =========================================================================
    # Queries
    # =========================================================================

    def list_transactions(self, mess_id: str, offset: int, limit: int) -> List[PaymentTransaction]:
        return list(self.session.scalars(
            select(PaymentTransaction)
            .where(PaymentTransaction.mess_id == mess_id)
            .order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id)
            .offset(offset)
            .limit(limit)
        ).all())

    def count_transactions(self, mess_id: str) -> int:
        return self.session.scalar(
            select(func.count()).select_from(PaymentTransaction)
            .where(PaymentTransaction.mess_id == mess_id)
        ) or 0

    def pending_credits(self, updated_before: Optional[datetime] = None) -> List[PaymentTransaction]:
        """Transactions marked success whose ledger credit has not landed."""
        query = select(PaymentTransaction).where(
            PaymentTransaction.status == PaymentStatus.SUCCESS.value,
            PaymentTransaction.credit_status == CreditStatus.PENDING.value,
        )
        if updated_before is not None:
            query = query.where(PaymentTransaction.updated_at <= updated_before)
        return list(self.session.scalars(query.order_by(PaymentTransaction.updated_at)).all())

    def credit_audit_rows(self, order_id: str) -> List[CreditTransaction]:
        return list(self.session.scalars(
            select(CreditTransaction).where(CreditTransaction.reference_id == order_id)
        ).all())


def transaction_to_dict(transaction: PaymentTransaction) -> Dict[str, Any]:
    """Public view of a payment transaction."""
    return {
        "id": transaction.id,
        "mess_id": transaction.mess_id,
        "user_id": transaction.user_id,
        "plan_id": transaction.plan_id,
        "order_id": transaction.order_id,
        "payment_id": transaction.payment_id,
        "amount": str(transaction.amount),
        "currency": transaction.currency,
        "credits": transaction.credits,
        "bonus_credits": transaction.bonus_credits,
        "total_credits": transaction.total_credits,
        "status": transaction.status,
        "credit_status": transaction.credit_status,
        "error_code": transaction.error_code,
        "error_description": transaction.error_description,
        "receipt": transaction.receipt,
        "created_at": transaction.created_at.isoformat() if transaction.created_at else None,
        "updated_at": transaction.updated_at.isoformat() if transaction.updated_at else None,
    }
