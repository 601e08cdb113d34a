"""
============================================================================
Mess Ledger v1.0.0
Payment Transaction State Machine
============================================================================

Reliability Level: CRITICAL
Traceability: All operations include correlation_id for audit

PAYMENT TRANSACTION LIFECYCLE:
    CREATED → SUCCESS (client verify or payment.captured webhook)
    CREATED → FAILED (client failure report or payment.failed webhook)
    PENDING → SUCCESS / FAILED (same as CREATED)
    SUCCESS → REFUNDED (administrative only)

    Terminal States: FAILED, REFUNDED (no further transitions)

ERROR CODES:
    - VAL-006: Invalid state transition attempted

============================================================================
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple
import logging

from services.errors import InvalidTransitionError

# Configure module logger
logger = logging.getLogger(__name__)


class PaymentStateErrorCode:
    """Payment state machine error codes for audit logging."""
    INVALID_TRANSITION = InvalidTransitionError.error_code


class PaymentStatus(str, Enum):
    CREATED = "created"
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


class CreditStatus(str, Enum):
    """Outbox marker for the ledger credit that follows a successful payment."""
    NONE = "none"
    PENDING = "pending"
    APPLIED = "applied"


# Valid state transitions
VALID_TRANSITIONS: Dict[str, List[str]] = {
    "created": ["success", "failed"],
    "pending": ["success", "failed"],
    "success": ["refunded"],
    "failed": [],  # Terminal state
    "refunded": [],  # Terminal state
}

# States from which a payment outcome (success or failure) may still be applied
OPEN_STATES: List[str] = ["created", "pending"]

VALID_STATES: List[str] = list(VALID_TRANSITIONS.keys())


def validate_transition(
    current_state: str,
    target_state: str,
    correlation_id: Optional[str] = None
) -> Tuple[bool, Optional[str]]:
    """
    Validate if a payment transaction may move from current_state to target_state.

    Returns:
        (True, None) if the transition is valid
        (False, "VAL-006") otherwise
    """
    current_state = _value(current_state)
    target_state = _value(target_state)

    if current_state not in VALID_STATES or target_state not in VALID_STATES:
        logger.error(
            f"[{PaymentStateErrorCode.INVALID_TRANSITION}] Unknown payment state | "
            f"current={current_state} | target={target_state} | "
            f"correlation_id={correlation_id}"
        )
        return (False, PaymentStateErrorCode.INVALID_TRANSITION)

    valid_targets = VALID_TRANSITIONS[current_state]
    if target_state not in valid_targets:
        valid_str = "/".join(valid_targets) if valid_targets else "NONE (terminal state)"
        logger.error(
            f"[{PaymentStateErrorCode.INVALID_TRANSITION}] "
            f"Invalid payment transition: {current_state} → {target_state} | "
            f"valid={valid_str} | correlation_id={correlation_id}"
        )
        return (False, PaymentStateErrorCode.INVALID_TRANSITION)

    logger.debug(
        f"[PAY-STATE] Transition validated: {current_state} → {target_state} | "
        f"correlation_id={correlation_id}"
    )
    return (True, None)


def require_transition(
    current_state: str,
    target_state: str,
    correlation_id: Optional[str] = None
) -> None:
    """Raise InvalidTransitionError if the transition is not allowed."""
    is_valid, _ = validate_transition(current_state, target_state, correlation_id)
    if not is_valid:
        raise InvalidTransitionError(
            f"Payment transaction cannot move from {_value(current_state)} "
            f"to {_value(target_state)}",
            details={"correlation_id": correlation_id},
        )


def _value(state) -> str:
    return state.value if isinstance(state, Enum) else str(state)
