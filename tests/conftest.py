"""
Shared fixtures: in-memory database, seeded mess/plan/ledger rows and a
DRY_RUN payment configuration.
"""

from decimal import Decimal
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.database.models import CreditPurchasePlan, MessCredits, MessProfile
from app.database.session import Database
from services.payment_config import PaymentConfig

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"
OWNER_USER_ID = "user-owner-1"


@pytest.fixture
def payment_config() -> PaymentConfig:
    return PaymentConfig(
        key_id="rzp_test_key",
        key_secret=KEY_SECRET,
        webhook_secret=WEBHOOK_SECRET,
        execution_mode="DRY_RUN",
    )


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def session(database):
    s = database.session()
    yield s
    s.close()


@pytest.fixture
def seeded(session):
    """One mess with a zero-balance ledger, one active and one inactive plan."""
    mess = MessProfile(user_id=OWNER_USER_ID, name="Annapurna Mess")
    session.add(mess)
    session.flush()

    plan = CreditPurchasePlan(
        name="Starter 500",
        price=Decimal("500.00"),
        base_credits=100,
        bonus_credits=10,
        is_active=True,
    )
    retired = CreditPurchasePlan(
        name="Retired 200",
        price=Decimal("200.00"),
        base_credits=40,
        bonus_credits=0,
        is_active=False,
    )
    ledger = MessCredits(mess_id=mess.id, balance=0, total_purchased=0)
    session.add_all([plan, retired, ledger])
    session.commit()

    return {"mess": mess, "plan": plan, "retired_plan": retired, "ledger": ledger}
