# ============================================================================
# Mess Ledger v1.0.0
# Reconciliation Sweep - Pending Ledger Credits
# ============================================================================
#
# Reliability Level: CRITICAL
# Purpose: Close "payment success but ledger not credited" gaps
#
# Finds transactions with status=success and credit_status=pending (the
# outbox intent written when success was claimed) and applies their credit
# through the orchestrator. The credit step's conditional UPDATE makes a
# concurrent webhook retry and the sweep safe to run together.
#
# Error Codes:
#   - REC-001: Credit still failing (left pending for the next run)
#
# ============================================================================

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional
import logging
import uuid

from services.errors import ReconciliationGapError
from services.payment_orchestrator import PaymentOrchestrator

logger = logging.getLogger(__name__)

# Leave very recent intents to the request that wrote them
DEFAULT_GRACE_PERIOD = timedelta(minutes=5)


@dataclass
class SweepResult:
    examined: int = 0
    applied: int = 0
    failed: int = 0
    failed_order_ids: List[str] = field(default_factory=list)
    correlation_id: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ReconciliationSweep:
    """
    Example Usage:
        sweep = ReconciliationSweep(orchestrator)
        result = sweep.run()
        if result.failed:
            # still pending, next run retries
            ...
    """

    def __init__(self, orchestrator: PaymentOrchestrator, grace_period: timedelta = DEFAULT_GRACE_PERIOD):
        self.orchestrator = orchestrator
        self.grace_period = grace_period

    def run(self, older_than: Optional[datetime] = None) -> SweepResult:
        """
        Apply every pending credit last touched before older_than
        (default: now minus the grace period).
        """
        correlation_id = uuid.uuid4().hex
        if older_than is None:
            older_than = self.orchestrator.clock() - self.grace_period

        pending = self.orchestrator.store.pending_credits(older_than)
        result = SweepResult(examined=len(pending), correlation_id=correlation_id)

        for transaction in pending:
            order_id = transaction.order_id
            try:
                if self.orchestrator.complete_pending_credit(transaction, correlation_id):
                    result.applied += 1
            except ReconciliationGapError:
                # Already logged under REC-001 by the orchestrator
                result.failed += 1
                result.failed_order_ids.append(order_id)

        logger.info(
            f"[REC-SWEEP] Sweep complete | examined={result.examined} | "
            f"applied={result.applied} | failed={result.failed} | "
            f"correlation_id={correlation_id}"
        )
        return result
