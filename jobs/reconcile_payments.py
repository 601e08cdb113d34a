"""
Mess Ledger - Reconciliation Job

Offline job that closes payment/ledger gaps and persists overdue bills:
1. Apply ledger credits for transactions left at success/credit_status=pending
2. Flip past-due pending billing records to overdue

Safe to run from cron at any frequency; every step is idempotent.

Reliability Level: Offline Job

Usage:
    python -m jobs.reconcile_payments --payments --overdue --db-url sqlite:///./mess_ledger.db
"""

import argparse
import logging
import sys
from datetime import timedelta
from typing import Any, Dict, List, Optional

from app.database.session import Database
from services.billing_manager import BillingRecordManager
from services.payment_config import PaymentConfig, PaymentConfigurationError
from services.payment_orchestrator import PaymentOrchestrator
from services.reconciliation_sweep import DEFAULT_GRACE_PERIOD, ReconciliationSweep

logger = logging.getLogger(__name__)


def run_reconciliation(
    database: Database,
    config: PaymentConfig,
    payments: bool = True,
    overdue: bool = True,
    grace_minutes: Optional[int] = None
) -> Dict[str, Any]:
    """
    Run the selected reconciliation steps.

    Returns:
        Summary dict with "payments" and/or "overdue" entries
    """
    summary: Dict[str, Any] = {}

    if payments:
        grace = DEFAULT_GRACE_PERIOD if grace_minutes is None else timedelta(minutes=grace_minutes)
        with database.session_scope() as session:
            sweep = ReconciliationSweep(PaymentOrchestrator(session, config), grace_period=grace)
            result = sweep.run()
        summary["payments"] = {
            "examined": result.examined,
            "applied": result.applied,
            "failed": result.failed,
            "failed_order_ids": result.failed_order_ids,
        }

    if overdue:
        with database.session_scope() as session:
            flipped = BillingRecordManager(session).sweep_overdue()
        summary["overdue"] = {"flipped": flipped}

    return summary


# =============================================================================
# CLI Entry Point
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the reconciliation job."""
    parser = argparse.ArgumentParser(
        description="Apply pending ledger credits and mark overdue bills"
    )
    parser.add_argument(
        "--payments",
        action="store_true",
        help="Apply pending ledger credits for successful payments"
    )
    parser.add_argument(
        "--overdue",
        action="store_true",
        help="Persist pending -> overdue for past-due billing records"
    )
    parser.add_argument(
        "--db-url",
        type=str,
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL)"
    )
    parser.add_argument(
        "--grace-minutes",
        type=int,
        default=None,
        help="Skip credit intents younger than this (default: 5)"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Neither flag means both steps
    run_payments = args.payments or not (args.payments or args.overdue)
    run_overdue = args.overdue or not (args.payments or args.overdue)

    try:
        config = PaymentConfig.from_environment(validate=True)
    except PaymentConfigurationError as e:
        logger.error(f"[{e.error_code}] Reconciliation aborted | error={e.message}")
        return 2

    database = Database(args.db_url)
    try:
        summary = run_reconciliation(
            database,
            config,
            payments=run_payments,
            overdue=run_overdue,
            grace_minutes=args.grace_minutes,
        )
    finally:
        database.dispose()

    logger.info(f"[REC-JOB] Reconciliation finished | summary={summary}")

    failed = summary.get("payments", {}).get("failed", 0)
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
