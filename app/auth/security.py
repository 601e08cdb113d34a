"""
============================================================================
Mess Ledger v1.0.0
Security Module - HMAC-SHA256 Signatures and User Context
============================================================================

Reliability Level: CRITICAL
Input Constraints: Raw request body bytes, signature header values
Side Effects: None (pure verification)

MANDATE:
- Client payment signatures: HMAC-SHA256(key_secret, "order_id|payment_id")
- Webhook signatures: HMAC-SHA256(webhook_secret, raw body bytes)
- Exact, case-sensitive hex comparison via hmac.compare_digest
- Webhook bodies are verified before any JSON parsing

Error Codes:
    PAY-004: Signature missing or mismatched

============================================================================
"""

from typing import Optional
import hashlib
import hmac
import logging

from fastapi import Header, HTTPException, status

from services.errors import InvalidSignatureError

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

WEBHOOK_SIGNATURE_HEADER = "X-Webhook-Signature"
LEGACY_WEBHOOK_SIGNATURE_HEADER = "X-Razorpay-Signature"


# ============================================================================
# HMAC SIGNATURES
# ============================================================================

def compute_hmac_signature(payload: bytes, secret_key: str) -> str:
    """
    Compute HMAC-SHA256 signature for a payload.

    Returns:
        str: Lowercase hexadecimal HMAC-SHA256 signature
    """
    signature = hmac.new(
        key=secret_key.encode("utf-8"),
        msg=payload,
        digestmod=hashlib.sha256
    )
    return signature.hexdigest()


def payment_signature_payload(order_id: str, payment_id: str) -> bytes:
    return f"{order_id}|{payment_id}".encode("utf-8")


def compute_payment_signature(order_id: str, payment_id: str, secret_key: str) -> str:
    """Signature the gateway hands the client after checkout."""
    return compute_hmac_signature(payment_signature_payload(order_id, payment_id), secret_key)


def signatures_match(expected: str, provided: Optional[str]) -> bool:
    """Exact match. Case differences count as a mismatch."""
    if not provided or not isinstance(provided, str):
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def verify_hmac_signature(
    payload: bytes,
    provided_signature: Optional[str],
    secret_key: str
) -> bool:
    """
    Verify an HMAC-SHA256 signature over raw payload bytes.

    Args:
        payload: Raw request body as bytes (must be exact bytes received)
        provided_signature: Value from the signature header
        secret_key: Shared secret

    Returns:
        bool: True if signature is valid

    Raises:
        InvalidSignatureError: Header missing, secret missing or mismatch
    """
    if not provided_signature:
        raise InvalidSignatureError(
            f"Missing {WEBHOOK_SIGNATURE_HEADER} header. "
            f"All webhooks must include an HMAC-SHA256 signature."
        )

    if not secret_key:
        raise InvalidSignatureError(
            "Webhook secret is not configured; signature cannot be verified"
        )

    expected_signature = compute_hmac_signature(payload, secret_key)

    if not signatures_match(expected_signature, provided_signature.strip()):
        raise InvalidSignatureError(
            "Signature mismatch. Webhook payload may have been tampered with."
        )

    return True


# ============================================================================
# USER CONTEXT
# ============================================================================

def get_current_user(authorization: Optional[str] = Header(None)) -> str:
    """
    Extract the authenticated user id from the Authorization header.

    Session management belongs to the platform's auth service. It forwards
    requests here with "Authorization: Bearer <user_id>".

    Raises:
        HTTPException: 401 if the header is missing or malformed
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "AUTH-001",
                "message": "Missing Authorization header",
            },
        )

    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "AUTH-002",
                "message": "Invalid Authorization header format. Expected: Bearer <token>",
            },
        )

    return parts[1].strip()
