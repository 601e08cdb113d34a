"""
============================================================================
Mess Ledger v1.0.0
Error Taxonomy - Billing, Leave and Payment Errors
============================================================================

Every domain failure carries a stable error code, a human-readable message
and the HTTP status the API layer should surface.

ERROR CODES:
    VAL-001: Generic validation failure
    VAL-002: Plan inactive
    VAL-003: Amount mismatch with plan price
    VAL-004: Malformed HH:MM time string
    VAL-005: Invalid billing adjustment
    VAL-006: Invalid state transition
    VAL-007: Billing record state conflict
    NF-001:  Generic not-found
    NF-002:  Credit purchase plan not found
    NF-003:  Payment transaction not found
    NF-004:  Mess profile not found
    NF-005:  Billing record not found
    NF-006:  Mess credits ledger not found
    PAY-004: Signature mismatch
    REC-001: Reconciliation gap (payment success, ledger not credited)
    GW-001:  Gateway request failed
    GW-002:  Gateway not configured

============================================================================
"""

from typing import Optional, Dict, Any


class MessBillingError(Exception):
    """
    Base exception for all mess billing and payment errors.

    Attributes:
        error_code: Stable code used in logs and API responses
        message: Human-readable explanation
        status_code: HTTP-equivalent status for the API layer
        details: Optional structured context
    """

    error_code = "ERR-000"
    status_code = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        if error_code is not None:
            self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{self.error_code}] {message}")


# =============================================================================
# Validation (4xx, not retried)
# =============================================================================

class ValidationError(MessBillingError):
    error_code = "VAL-001"
    status_code = 400


class PlanInactiveError(ValidationError):
    error_code = "VAL-002"


class AmountMismatchError(ValidationError):
    error_code = "VAL-003"


class InvalidTimeStringError(ValidationError):
    error_code = "VAL-004"


class InvalidAdjustmentError(ValidationError):
    error_code = "VAL-005"


class InvalidTransitionError(ValidationError):
    error_code = "VAL-006"
    status_code = 409


class BillingStateError(ValidationError):
    error_code = "VAL-007"
    status_code = 409


# =============================================================================
# Not found (404)
# =============================================================================

class NotFoundError(MessBillingError):
    error_code = "NF-001"
    status_code = 404


class PlanNotFoundError(NotFoundError):
    error_code = "NF-002"


class TransactionNotFoundError(NotFoundError):
    error_code = "NF-003"


class MessProfileNotFoundError(NotFoundError):
    error_code = "NF-004"


class BillingRecordNotFoundError(NotFoundError):
    error_code = "NF-005"


class LedgerNotFoundError(NotFoundError):
    error_code = "NF-006"


# =============================================================================
# Signatures (400, logged as potential tampering)
# =============================================================================

class SignatureError(MessBillingError):
    error_code = "PAY-004"
    status_code = 400


class InvalidSignatureError(SignatureError):
    pass


# =============================================================================
# Reconciliation and gateway
# =============================================================================

class ReconciliationGapError(MessBillingError):
    """
    Payment was marked successful but the ledger credit did not land.

    The transaction keeps credit_status=pending so a retry or the
    reconciliation sweep can finish the credit exactly once.
    """

    error_code = "REC-001"
    status_code = 500


class GatewayError(MessBillingError):
    error_code = "GW-001"
    status_code = 502


class GatewayNotConfiguredError(GatewayError):
    error_code = "GW-002"
    status_code = 503
