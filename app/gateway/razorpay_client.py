# ============================================================================
# Mess Ledger v1.0.0
# Razorpay Orders Client - Gateway Integration
# ============================================================================
#
# Reliability Level: CRITICAL
# Purpose: Create gateway orders for credit purchases
#
# EXECUTION MODES:
#   - DRY_RUN: Simulated orders with synthetic ids (no network calls)
#   - LIVE: POST {base_url}/v1/orders with HTTP basic auth (key id/secret)
#
# Order creation is never retried: a retried POST can create two orders
# for one checkout.
#
# Error Codes:
#   - GW-001: Gateway request failed
#   - GW-002: Gateway not configured
#
# ============================================================================

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import logging
import uuid

import requests
from requests.exceptions import Timeout, ConnectionError as RequestsConnectionError

from services.errors import GatewayError, GatewayNotConfiguredError
from services.payment_config import PaymentConfig

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class GatewayOrder:
    """Order as returned by the gateway."""
    id: str
    receipt: str
    amount: int
    currency: str
    status: str = "created"
    simulated: bool = False
    raw: Dict[str, Any] = field(default_factory=dict)


# ============================================================================
# Client
# ============================================================================

class RazorpayClient:
    """
    Thin orders.create client.

    Example Usage:
        client = RazorpayClient(get_payment_config())
        order = client.create_order(50000, "INR", "rcpt_1700000000000", {"messId": "m1"})
        print(order.id)
    """

    ORDERS_PATH = "/v1/orders"

    def __init__(self, config: PaymentConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.timeout = config.gateway_timeout_seconds
        self._session = session or requests.Session()

        logger.info(
            f"[GW-CLI] Client initialized | mode={config.execution_mode} | "
            f"configured={config.gateway_configured}"
        )

    @property
    def is_configured(self) -> bool:
        return self.config.gateway_configured

    def create_order(
        self,
        amount_minor_units: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None
    ) -> GatewayOrder:
        """
        Create an order for amount_minor_units (paise).

        Raises:
            GatewayNotConfiguredError: LIVE mode without key id/secret
            GatewayError: Network failure, non-2xx or malformed response
        """
        if not self.config.is_live:
            return self._simulate_order(amount_minor_units, currency, receipt, notes, correlation_id)

        if not self.is_configured:
            logger.error(
                f"[GW-002] Gateway not configured | correlation_id={correlation_id}"
            )
            raise GatewayNotConfiguredError("Payment gateway is not configured")

        url = f"{self.config.base_url.rstrip('/')}{self.ORDERS_PATH}"
        body = {
            "amount": int(amount_minor_units),
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }

        try:
            response = self._session.post(
                url,
                json=body,
                auth=(self.config.key_id, self.config.key_secret),
                timeout=self.timeout,
            )
        except (Timeout, RequestsConnectionError) as e:
            logger.error(
                f"[GW-001] Gateway unreachable | url={url} | error={e} | "
                f"correlation_id={correlation_id}"
            )
            raise GatewayError(f"Payment gateway unreachable: {e}") from e

        if response.status_code >= 400:
            logger.error(
                f"[GW-001] Gateway rejected order | status={response.status_code} | "
                f"receipt={receipt} | correlation_id={correlation_id}"
            )
            raise GatewayError(
                f"Payment gateway returned HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            payload = response.json()
            order = GatewayOrder(
                id=str(payload["id"]),
                receipt=str(payload.get("receipt", receipt)),
                amount=int(payload.get("amount", amount_minor_units)),
                currency=str(payload.get("currency", currency)),
                status=str(payload.get("status", "created")),
                raw=payload,
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.error(
                f"[GW-001] Malformed gateway response | error={e} | "
                f"correlation_id={correlation_id}"
            )
            raise GatewayError("Payment gateway returned a malformed order") from e

        logger.info(
            f"[GW-CLI] Order created | order_id={order.id} | amount={order.amount} | "
            f"currency={order.currency} | receipt={order.receipt} | "
            f"correlation_id={correlation_id}"
        )
        return order

    def _simulate_order(
        self,
        amount_minor_units: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, Any]],
        correlation_id: Optional[str]
    ) -> GatewayOrder:
        order_id = f"order_DRY{uuid.uuid4().hex[:14]}"
        logger.info(
            f"[GW-CLI] DRY_RUN order simulated | order_id={order_id} | "
            f"amount={amount_minor_units} | currency={currency} | "
            f"correlation_id={correlation_id}"
        )
        return GatewayOrder(
            id=order_id,
            receipt=receipt,
            amount=int(amount_minor_units),
            currency=currency,
            simulated=True,
            raw={"notes": notes or {}},
        )

    def close(self) -> None:
        self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
