# ============================================================================
# Mess Ledger v1.0.0
# Gateway Module - Money Conversion and Payment Gateway Client
# ============================================================================

from app.gateway.decimal_gateway import DecimalGateway, to_minor_units, to_rupees
from app.gateway.razorpay_client import GatewayOrder, RazorpayClient

__all__ = ["DecimalGateway", "to_minor_units", "to_rupees", "GatewayOrder", "RazorpayClient"]
