"""
Unit Tests for the Gateway Client

LIVE calls go through a mocked requests.Session; DRY_RUN never touches
the network.
"""

from unittest.mock import MagicMock
import os
import sys

import pytest
from requests.exceptions import Timeout

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app.gateway.razorpay_client import RazorpayClient
from services.errors import GatewayError, GatewayNotConfiguredError
from services.payment_config import PaymentConfig


LIVE_CONFIG = PaymentConfig(
    key_id="rzp_live_key",
    key_secret="live_secret",
    webhook_secret="whsec",
    execution_mode="LIVE",
    gateway_timeout_seconds=5,
)


def response(status_code: int, payload=None) -> MagicMock:
    mock_response = MagicMock()
    mock_response.status_code = status_code
    if isinstance(payload, Exception):
        mock_response.json.side_effect = payload
    else:
        mock_response.json.return_value = payload
    return mock_response


class TestDryRun:

    def test_simulated_order_without_network(self) -> None:
        http = MagicMock()
        client = RazorpayClient(PaymentConfig(), session=http)

        order = client.create_order(50000, "INR", "rcpt_1", {"messId": "m1"})

        assert order.simulated is True
        assert order.id.startswith("order_DRY")
        assert order.amount == 50000
        assert order.receipt == "rcpt_1"
        http.post.assert_not_called()

    def test_simulated_order_ids_are_unique(self) -> None:
        client = RazorpayClient(PaymentConfig(), session=MagicMock())

        ids = {client.create_order(100, "INR", "r").id for _ in range(20)}

        assert len(ids) == 20


class TestLive:

    def test_posts_order_with_basic_auth(self) -> None:
        http = MagicMock()
        http.post.return_value = response(200, {
            "id": "order_ABC123", "receipt": "rcpt_1", "amount": 50000,
            "currency": "INR", "status": "created",
        })
        client = RazorpayClient(LIVE_CONFIG, session=http)

        order = client.create_order(50000, "INR", "rcpt_1", {"planId": "p1"})

        assert order.id == "order_ABC123"
        assert order.simulated is False
        args, kwargs = http.post.call_args
        assert args[0] == "https://api.razorpay.com/v1/orders"
        assert kwargs["json"] == {
            "amount": 50000, "currency": "INR", "receipt": "rcpt_1", "notes": {"planId": "p1"},
        }
        assert kwargs["auth"] == ("rzp_live_key", "live_secret")
        assert kwargs["timeout"] == 5

    def test_missing_keys(self) -> None:
        client = RazorpayClient(PaymentConfig(execution_mode="LIVE"), session=MagicMock())

        with pytest.raises(GatewayNotConfiguredError):
            client.create_order(50000, "INR", "rcpt_1")

    def test_timeout_is_gateway_error(self) -> None:
        http = MagicMock()
        http.post.side_effect = Timeout("read timed out")

        with pytest.raises(GatewayError) as exc_info:
            RazorpayClient(LIVE_CONFIG, session=http).create_order(50000, "INR", "rcpt_1")

        assert exc_info.value.error_code == "GW-001"
        assert http.post.call_count == 1

    def test_http_error_is_gateway_error(self) -> None:
        http = MagicMock()
        http.post.return_value = response(400, {"error": {"code": "BAD_REQUEST_ERROR"}})

        with pytest.raises(GatewayError) as exc_info:
            RazorpayClient(LIVE_CONFIG, session=http).create_order(50000, "INR", "rcpt_1")

        assert exc_info.value.details == {"status_code": 400}

    def test_malformed_response(self) -> None:
        http = MagicMock()
        http.post.return_value = response(200, {"receipt": "rcpt_1"})

        with pytest.raises(GatewayError):
            RazorpayClient(LIVE_CONFIG, session=http).create_order(50000, "INR", "rcpt_1")

    def test_non_json_response(self) -> None:
        http = MagicMock()
        http.post.return_value = response(200, ValueError("No JSON object could be decoded"))

        with pytest.raises(GatewayError):
            RazorpayClient(LIVE_CONFIG, session=http).create_order(50000, "INR", "rcpt_1")

    def test_context_manager_closes_session(self) -> None:
        http = MagicMock()

        with RazorpayClient(LIVE_CONFIG, session=http):
            pass

        http.close.assert_called_once()
