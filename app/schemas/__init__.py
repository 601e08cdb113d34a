# ============================================================================
# Mess Ledger v1.0.0
# Pydantic Schemas - Data Validation Layer
# ============================================================================

from app.schemas.payment import (
    CreateOrderRequest,
    ErrorResponse,
    GatewayConfigOut,
    VerifyPaymentRequest,
)

__all__ = [
    "CreateOrderRequest",
    "ErrorResponse",
    "GatewayConfigOut",
    "VerifyPaymentRequest",
]
