"""
============================================================================
Mess Ledger v1.0.0
Payment Schemas - Pydantic Models for the Payment API
============================================================================

Reliability Level: CRITICAL
Input Constraints: Gateway amounts are integer paise, never floats
Side Effects: None (pure validation)

Field names follow the checkout frontend: camelCase aliases are accepted
alongside snake_case names.

============================================================================
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# REQUESTS
# ============================================================================

class CreateOrderRequest(BaseModel):
    """
    Body of POST /payment/create-order.

    amount is optional; when present it must equal the plan price in paise.
    """

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        json_schema_extra={
            "example": {"planId": "9f1c2e", "amount": 50000, "currency": "INR"}
        }
    )

    plan_id: str = Field(..., alias="planId", min_length=1, max_length=64)
    amount: Optional[int] = Field(
        default=None,
        description="Amount in paise (minor units). Must match the plan price."
    )
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)

    @field_validator("amount", mode="before")
    @classmethod
    def reject_float_amount(cls, value: Any) -> Any:
        if isinstance(value, float) or isinstance(value, bool):
            raise ValueError(
                f"[VAL-003] amount must be an integer number of paise, "
                f"received {type(value).__name__}"
            )
        return value

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value


class VerifyPaymentRequest(BaseModel):
    """Body of POST /payment/verify, as returned by the checkout widget."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    order_id: str = Field(..., alias="razorpay_order_id", min_length=1, max_length=64)
    payment_id: str = Field(..., alias="razorpay_payment_id", min_length=1, max_length=64)
    signature: str = Field(..., alias="razorpay_signature", min_length=1, max_length=128)


# ============================================================================
# RESPONSES
# ============================================================================

class GatewayConfigOut(BaseModel):
    key_id: str = Field(..., serialization_alias="keyId")
    currency: str


class ErrorResponse(BaseModel):
    success: bool = False
    error_code: str
    message: str
    timestamp: str
    details: Optional[Dict[str, Any]] = None
