"""
============================================================================
Mess Ledger v1.0.0
Payment Configuration - Environment Driven Settings
============================================================================

This module provides configuration management for the payment core:
- Environment variable parsing with type safety
- Default values for optional configuration
- Fail-closed behavior when LIVE mode lacks gateway credentials (CFG-001)

ENVIRONMENT VARIABLES:
    - RAZORPAY_KEY_ID: Public key id handed to the frontend
    - RAZORPAY_KEY_SECRET: Secret for order creation and payment signatures
    - RAZORPAY_WEBHOOK_SECRET: Secret for webhook body signatures
    - RAZORPAY_BASE_URL: Gateway API base (default: https://api.razorpay.com)
    - PAYMENT_CURRENCY: ISO currency (default: INR)
    - PAYMENT_RECEIPT_PREFIX: Receipt prefix (default: rcpt_)
    - PAYMENT_EXECUTION_MODE: DRY_RUN or LIVE (default: DRY_RUN)
    - MEAL_NOTICE_HOURS: Default leave notice period (default: 2)
    - GATEWAY_TIMEOUT_SECONDS: HTTP timeout for gateway calls (default: 30)

ERROR CODES:
    - CFG-001: Required configuration missing

============================================================================
"""

from dataclasses import dataclass
from typing import Optional
import logging
import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Default Values
# =============================================================================

DEFAULT_BASE_URL = "https://api.razorpay.com"
DEFAULT_CURRENCY = "INR"
DEFAULT_RECEIPT_PREFIX = "rcpt_"
DEFAULT_EXECUTION_MODE = "DRY_RUN"
DEFAULT_NOTICE_HOURS = 2
DEFAULT_GATEWAY_TIMEOUT_SECONDS = 30.0

VALID_EXECUTION_MODES = ("DRY_RUN", "LIVE")


class PaymentConfigErrorCode:
    """Payment configuration error codes for audit logging."""
    CONFIG_MISSING = "CFG-001"


class PaymentConfigurationError(Exception):
    """
    Raised when payment configuration is invalid or missing.

    Raised during startup so a LIVE deployment never runs without the
    secrets it needs to verify signatures.
    """

    def __init__(self, message: str, error_code: str = PaymentConfigErrorCode.CONFIG_MISSING):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


# =============================================================================
# PaymentConfig Class
# =============================================================================

@dataclass
class PaymentConfig:
    """
    Payment core configuration.

    Secrets are stored but never included in to_dict() or logs.
    """

    key_id: str = ""
    key_secret: str = ""
    webhook_secret: str = ""
    base_url: str = DEFAULT_BASE_URL
    currency: str = DEFAULT_CURRENCY
    receipt_prefix: str = DEFAULT_RECEIPT_PREFIX
    execution_mode: str = DEFAULT_EXECUTION_MODE
    notice_hours: int = DEFAULT_NOTICE_HOURS
    gateway_timeout_seconds: float = DEFAULT_GATEWAY_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        self.currency = self.currency.upper()
        self.execution_mode = self.execution_mode.upper()

    @property
    def is_live(self) -> bool:
        return self.execution_mode == "LIVE"

    @property
    def gateway_configured(self) -> bool:
        """Mirror of the gateway 'is configured' check: both keys present."""
        return bool(self.key_id and self.key_secret)

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            PaymentConfigurationError: If any value is invalid (CFG-001)
        """
        errors = []

        if self.execution_mode not in VALID_EXECUTION_MODES:
            errors.append(
                f"PAYMENT_EXECUTION_MODE must be one of {VALID_EXECUTION_MODES}, "
                f"got: {self.execution_mode}"
            )

        if self.is_live:
            if not self.key_id:
                errors.append("RAZORPAY_KEY_ID must be set in LIVE mode")
            if not self.key_secret:
                errors.append("RAZORPAY_KEY_SECRET must be set in LIVE mode")
            if not self.webhook_secret:
                errors.append("RAZORPAY_WEBHOOK_SECRET must be set in LIVE mode")

        if self.notice_hours < 0:
            errors.append(f"MEAL_NOTICE_HOURS must be non-negative, got: {self.notice_hours}")

        if self.gateway_timeout_seconds <= 0:
            errors.append(
                f"GATEWAY_TIMEOUT_SECONDS must be positive, got: {self.gateway_timeout_seconds}"
            )

        if errors:
            error_msg = "Payment configuration validation failed: " + "; ".join(errors)
            logger.error(f"[{PaymentConfigErrorCode.CONFIG_MISSING}] {error_msg}")
            raise PaymentConfigurationError(error_msg)

        logger.info(
            f"[PAY-CONFIG] Configuration validated | "
            f"mode={self.execution_mode} | currency={self.currency} | "
            f"gateway_configured={self.gateway_configured} | "
            f"key_secret=[REDACTED]"
        )

    @classmethod
    def from_environment(cls, validate: bool = True) -> "PaymentConfig":
        """
        Load configuration from environment variables.

        Args:
            validate: Whether to validate configuration after loading

        Returns:
            PaymentConfig instance with values from environment

        Raises:
            PaymentConfigurationError: If required configuration is missing
        """
        notice_str = os.environ.get("MEAL_NOTICE_HOURS", str(DEFAULT_NOTICE_HOURS))
        try:
            notice_hours = int(notice_str.strip())
        except ValueError:
            logger.warning(
                f"[PAY-CONFIG] Invalid MEAL_NOTICE_HOURS value: {notice_str}, "
                f"using default: {DEFAULT_NOTICE_HOURS}"
            )
            notice_hours = DEFAULT_NOTICE_HOURS

        timeout_str = os.environ.get(
            "GATEWAY_TIMEOUT_SECONDS", str(DEFAULT_GATEWAY_TIMEOUT_SECONDS)
        )
        try:
            timeout_seconds = float(timeout_str.strip())
        except ValueError:
            logger.warning(
                f"[PAY-CONFIG] Invalid GATEWAY_TIMEOUT_SECONDS value: {timeout_str}, "
                f"using default: {DEFAULT_GATEWAY_TIMEOUT_SECONDS}"
            )
            timeout_seconds = DEFAULT_GATEWAY_TIMEOUT_SECONDS

        config = cls(
            key_id=os.environ.get("RAZORPAY_KEY_ID", "").strip(),
            key_secret=os.environ.get("RAZORPAY_KEY_SECRET", "").strip(),
            webhook_secret=os.environ.get("RAZORPAY_WEBHOOK_SECRET", "").strip(),
            base_url=os.environ.get("RAZORPAY_BASE_URL", DEFAULT_BASE_URL).strip(),
            currency=os.environ.get("PAYMENT_CURRENCY", DEFAULT_CURRENCY).strip(),
            receipt_prefix=os.environ.get("PAYMENT_RECEIPT_PREFIX", DEFAULT_RECEIPT_PREFIX),
            execution_mode=os.environ.get("PAYMENT_EXECUTION_MODE", DEFAULT_EXECUTION_MODE).strip(),
            notice_hours=notice_hours,
            gateway_timeout_seconds=timeout_seconds,
        )

        logger.info(
            f"[PAY-CONFIG] Loading configuration from environment | "
            f"PAYMENT_EXECUTION_MODE={config.execution_mode} | "
            f"PAYMENT_CURRENCY={config.currency} | "
            f"MEAL_NOTICE_HOURS={config.notice_hours}"
        )

        if validate:
            config.validate()

        return config

    def to_dict(self) -> dict:
        """Public view of the configuration (no secrets)."""
        return {
            "key_id": self.key_id,
            "base_url": self.base_url,
            "currency": self.currency,
            "receipt_prefix": self.receipt_prefix,
            "execution_mode": self.execution_mode,
            "notice_hours": self.notice_hours,
            "gateway_timeout_seconds": self.gateway_timeout_seconds,
            "gateway_configured": self.gateway_configured,
        }


# =============================================================================
# Global Instance
# =============================================================================

_payment_config: Optional[PaymentConfig] = None


def get_payment_config(validate: bool = True) -> PaymentConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _payment_config
    if _payment_config is None:
        _payment_config = PaymentConfig.from_environment(validate=validate)
    return _payment_config


def reset_payment_config() -> None:
    """Drop the cached configuration (used by tests)."""
    global _payment_config
    _payment_config = None
