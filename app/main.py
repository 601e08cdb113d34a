"""
============================================================================
Mess Ledger v1.0.0
FastAPI Application Entry Point - Payment Core Ingress
============================================================================

Reliability Level: CRITICAL
Input Constraints: Checkout calls from the frontend, gateway webhooks
Side Effects: Database writes to payment transactions and credits ledgers

WIRING:
- Database, PaymentConfig and the gateway client are built once and kept
  on app.state; request dependencies read them from there.
- create_app() accepts prebuilt instances (tests pass an in-memory
  database and a DRY_RUN config).
- CORS origins come from CORS_ORIGINS (comma separated).

============================================================================
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import logging
import os

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from app.api.payment import create_error_response, router as payment_router
from app.database.session import Database
from app.gateway.razorpay_client import RazorpayClient
from services.errors import MessBillingError, ReconciliationGapError, SignatureError
from services.payment_config import PaymentConfig, get_payment_config

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

async def billing_error_handler(request: Request, exc: MessBillingError) -> JSONResponse:
    """Render domain errors with their stable error code and HTTP status."""
    if isinstance(exc, ReconciliationGapError):
        logger.error(f"[{exc.error_code}] {exc.message} | path={request.url.path} | details={exc.details}")
        message = "Payment received; credits will be added shortly"
    elif isinstance(exc, SignatureError):
        # Already logged as potential tampering where it was detected
        message = exc.message
    else:
        logger.info(f"[{exc.error_code}] {exc.message} | path={request.url.path}")
        message = exc.message

    return create_error_response(exc.error_code, message, status_code=exc.status_code)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler for unhandled errors."""
    error_code = "SYS-500"
    logger.exception(f"[{error_code}] Unhandled exception | path={request.url.path} | error={exc}")
    return create_error_response(
        error_code,
        "Internal server error. This incident has been logged.",
        status_code=500,
    )


# ============================================================================
# APPLICATION FACTORY
# ============================================================================

def create_app(
    database: Optional[Database] = None,
    config: Optional[PaymentConfig] = None,
    gateway_client: Optional[RazorpayClient] = None
) -> FastAPI:
    """
    Build the application.

    Instances not supplied here are created from the environment at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state = app.state
        owned = []
        if getattr(state, "payment_config", None) is None:
            state.payment_config = get_payment_config()
        if getattr(state, "database", None) is None:
            state.database = Database()
            state.database.create_all()
            owned.append(state.database.dispose)
        if getattr(state, "gateway_client", None) is None:
            state.gateway_client = RazorpayClient(state.payment_config)
            owned.append(state.gateway_client.close)

        state.database.check_connection()
        logger.info(
            f"[APP] Mess Ledger v{VERSION} started | "
            f"mode={state.payment_config.execution_mode} | "
            f"currency={state.payment_config.currency} | "
            f"startup={datetime.now(timezone.utc).isoformat()}"
        )

        yield

        # Only release what this lifespan created
        for release in owned:
            release()
        logger.info("[APP] Mess Ledger shut down")

    app = FastAPI(
        title="Mess Ledger",
        description=(
            "Billing, leave deduction and payment reconciliation core for "
            "mess subscriptions."
        ),
        version=VERSION,
        lifespan=lifespan,
    )

    app.state.database = database
    app.state.payment_config = config
    app.state.gateway_client = gateway_client

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.add_exception_handler(MessBillingError, billing_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(payment_router, prefix="/payment", tags=["Payment"])

    @app.get("/health", summary="Health Check", tags=["System"])
    async def health_check():
        try:
            app.state.database.check_connection()
            return {"status": "healthy", "database": "connected"}
        except RuntimeError as e:
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "database": "disconnected", "error": str(e)}
            )

    @app.get("/metrics", summary="Prometheus Metrics", tags=["Observability"])
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
