# ============================================================================
# Mess Ledger v1.0.0
# Authentication & Security Module
# ============================================================================

from app.auth.security import (
    compute_payment_signature,
    get_current_user,
    verify_hmac_signature,
)

__all__ = ["compute_payment_signature", "get_current_user", "verify_hmac_signature"]
