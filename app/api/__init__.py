# ============================================================================
# Mess Ledger v1.0.0
# API Routes Module
# ============================================================================

from app.api.payment import router as payment_router

__all__ = ["payment_router"]
