"""
============================================================================
Mess Ledger v1.0.0
Payment API - Credit Purchase Checkout and Gateway Webhooks
============================================================================

Reliability Level: CRITICAL
Input Constraints:
    - Authenticated routes: Authorization: Bearer <user_id>
    - Webhook: HMAC-SHA256 signed raw body
Side Effects:
    - Creates gateway orders and payment transactions
    - Credits mess ledgers on successful payment

ROUTES (prefix /payment):
    GET  /config                 public, {keyId, currency}
    POST /webhook                public, signature verified before parsing
    POST /create-order           create a gateway order for a credit plan
    POST /verify                 client confirmation after checkout
    GET  /transaction/{order_id} own transactions only (403 otherwise)
    GET  /history                paginated history of the user's mess

Domain errors propagate to the MessBillingError handler registered in
app.main, which renders {success: false, error_code, message, timestamp}.

============================================================================
"""

from datetime import datetime, timezone
from typing import Optional
import logging
import uuid

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.auth.security import get_current_user
from app.database.session import get_db
from app.schemas.payment import (
    CreateOrderRequest,
    ErrorResponse,
    GatewayConfigOut,
    VerifyPaymentRequest,
)
from services.payment_config import PaymentConfig
from services.payment_orchestrator import DEFAULT_LIMIT, DEFAULT_PAGE, MAX_LIMIT, PaymentOrchestrator
from services.payment_store import transaction_to_dict
from services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# HELPERS & DEPENDENCIES
# ============================================================================

def create_error_response(
    error_code: str,
    message: str,
    status_code: int = 400,
    details: Optional[dict] = None
) -> JSONResponse:
    """Standardized error body."""
    body = ErrorResponse(
        error_code=error_code,
        message=message,
        timestamp=datetime.now(timezone.utc).isoformat(),
        details=details or None,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def get_config(request: Request) -> PaymentConfig:
    return request.app.state.payment_config


def get_orchestrator(
    request: Request,
    db: Session = Depends(get_db),
    config: PaymentConfig = Depends(get_config)
) -> PaymentOrchestrator:
    return PaymentOrchestrator(db, config, gateway=request.app.state.gateway_client)


# ============================================================================
# PUBLIC ROUTES
# ============================================================================

@router.get("/config", summary="Public gateway configuration for checkout")
def get_gateway_config(config: PaymentConfig = Depends(get_config)) -> dict:
    return {
        "success": True,
        "data": GatewayConfigOut(
            key_id=config.key_id, currency=config.currency
        ).model_dump(by_alias=True),
    }


@router.post(
    "/webhook",
    summary="Gateway webhook",
    responses={
        200: {"description": "Event processed or acknowledged"},
        400: {"description": "Signature mismatch (PAY-004) or malformed body"},
        500: {"description": "Reconciliation gap (REC-001); gateway retry completes the credit"},
    }
)
async def receive_gateway_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(None),
    x_razorpay_signature: Optional[str] = Header(None),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    config: PaymentConfig = Depends(get_config)
) -> dict:
    # Raw bytes: the signature covers the exact body received
    raw_body = await request.body()
    correlation_id = str(uuid.uuid4())

    reconciler = WebhookReconciler(orchestrator, config.webhook_secret)
    outcome = reconciler.handle_webhook(
        raw_body,
        x_webhook_signature or x_razorpay_signature,
        correlation_id=correlation_id,
    )
    return {"success": True, "data": outcome.to_dict()}


# ============================================================================
# AUTHENTICATED ROUTES
# ============================================================================

@router.post("/create-order", summary="Create a gateway order for a credit plan")
def create_order(
    body: CreateOrderRequest,
    user_id: str = Depends(get_current_user),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator)
) -> dict:
    mess = orchestrator.store.get_mess_profile_for_user(user_id)
    order = orchestrator.create_order(
        mess_id=mess.id,
        user_id=user_id,
        plan_id=body.plan_id,
        amount=body.amount,
        currency=body.currency,
    )
    return {"success": True, "data": order.to_dict()}


@router.post("/verify", summary="Verify a completed checkout and add credits")
def verify_payment(
    body: VerifyPaymentRequest,
    user_id: str = Depends(get_current_user),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator)
):
    transaction = orchestrator.get_payment_transaction(body.order_id)
    if transaction.user_id != user_id:
        logger.warning(
            f"[PAY-403] Verify denied for foreign order | order_id={body.order_id} | "
            f"user_id={user_id}"
        )
        return create_error_response("AUTH-003", "Access denied", status_code=403)

    # A bad signature leaves the order open; the gateway webhook stays authoritative
    result = orchestrator.handle_payment_success(
        body.order_id, body.payment_id, body.signature, source="client"
    )

    logger.info(
        f"[PAY-VERIFY] Payment verified | order_id={body.order_id} | user_id={user_id} | "
        f"credits_added={result.credits_added} | already_processed={result.already_processed}"
    )
    return {
        "success": True,
        "message": "Payment verified successfully",
        "data": {
            "credits_added": result.credits_added,
            "already_processed": result.already_processed,
            "transaction": result.transaction,
        },
    }


@router.get("/transaction/{order_id}", summary="Payment transaction detail")
def get_transaction(
    order_id: str,
    user_id: str = Depends(get_current_user),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator)
):
    transaction = orchestrator.get_payment_transaction(order_id)
    if transaction.user_id != user_id:
        logger.warning(
            f"[PAY-403] Transaction access denied | order_id={order_id} | user_id={user_id}"
        )
        return create_error_response("AUTH-003", "Access denied", status_code=403)
    return {"success": True, "data": transaction_to_dict(transaction)}


@router.get("/history", summary="Payment history of the user's mess")
def get_history(
    page: int = Query(DEFAULT_PAGE, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    user_id: str = Depends(get_current_user),
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator)
) -> dict:
    mess = orchestrator.store.get_mess_profile_for_user(user_id)
    return {"success": True, "data": orchestrator.get_payment_history(mess.id, page, limit)}
