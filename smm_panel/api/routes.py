"""
API routes for mobile money top-ups.
"""
import time
from typing import Any, Dict

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from smm_panel.core.ledger import BalanceLedger, UserNotFound
from smm_panel.core.reconciliation import PaymentReconciler, PaymentValidationError
from smm_panel.core.staging import DuplicateOrder
from smm_panel.integrations.zenopay_client import (
    GatewayRejected,
    GatewayTimeout,
    GatewayUnavailable,
)
from smm_panel.monitoring.health import HealthCheck

from .dependencies import get_health_check, get_ledger, get_reconciler
from .schemas import (
    HealthCheckResponse,
    PayRequest,
    PayResponse,
    PaymentStatusResponse,
    TransactionEntry,
    TransactionHistoryResponse,
    WebhookAck,
)

logger = structlog.get_logger(__name__)

TIMEOUT_MESSAGE = (
    "The payment request is taking longer than expected. "
    "If you received a prompt on your phone, complete it; otherwise try again in a few minutes."
)
UNAVAILABLE_MESSAGE = "The payment service is unreachable right now. Please try again shortly."

# Create routers
payment_router = APIRouter(prefix="/zeno", tags=["payments"])
webhook_router = APIRouter(prefix="/zeno", tags=["webhooks"])
user_router = APIRouter(prefix="/users", tags=["users"])
monitoring_router = APIRouter(tags=["monitoring"])


@payment_router.post(
    "/pay",
    response_model=PayResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a top-up",
    description="Send a mobile money payment prompt to the payer's phone",
)
async def pay(
    request: PayRequest,
    reconciler: PaymentReconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    """
    Start a mobile money top-up.

    The balance is credited later, when the gateway reports the payment
    as completed.
    """
    start_time = time.time()
    logger.info("api_pay_request", email=request.email, amount=request.amount)

    try:
        result = await reconciler.initiate_payment(
            email=request.email,
            amount=request.amount,
            phone9=request.phone9,
            buyer_name=request.name,
        )

    except PaymentValidationError as e:
        logger.warning("api_pay_validation_error", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    except GatewayTimeout:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=TIMEOUT_MESSAGE)

    except GatewayUnavailable:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=UNAVAILABLE_MESSAGE)

    except GatewayRejected as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"The payment was not accepted: {e}",
        )

    except DuplicateOrder:
        logger.error("api_pay_order_id_exhausted")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not start the payment. Please try again.",
        )

    logger.info(
        "api_pay_success",
        order_id=result.order_id,
        duration_seconds=time.time() - start_time,
    )
    return {
        "order_id": result.order_id,
        "phone": result.phone,
        "amount": result.amount,
        "status": result.status,
        "message": result.message,
    }


@payment_router.get(
    "/payments/{order_id}",
    response_model=PaymentStatusResponse,
    summary="Get payment status",
    description="Retrieve a staged payment by order id",
)
async def get_payment(
    order_id: str,
    reconciler: PaymentReconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    record = await reconciler.get_payment(order_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return record.to_dict()


async def process_webhook(reconciler: PaymentReconciler, payload: Any) -> None:
    """Run webhook reconciliation after the acknowledgment went out."""
    outcome = await reconciler.ingest_webhook(payload)
    order_id = payload.get("order_id") if isinstance(payload, dict) else None
    logger.info("webhook_processed", order_id=order_id, outcome=outcome.value)


@webhook_router.post(
    "/zenopay-webhook",
    response_model=WebhookAck,
    summary="ZenoPay webhook endpoint",
    description="Receive payment notifications; always acknowledged",
)
async def zenopay_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    reconciler: PaymentReconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    """
    Handle ZenoPay payment notifications.

    The gateway's retry behavior on errors is unknown, so every delivery is
    acknowledged with 200 and processed in the background.
    """
    try:
        payload = await request.json()
    except ValueError as e:
        logger.warning("api_webhook_body_unreadable", error=str(e))
        payload = None

    logger.info(
        "api_webhook_received",
        order_id=payload.get("order_id") if isinstance(payload, dict) else None,
        payment_status=payload.get("payment_status") if isinstance(payload, dict) else None,
    )
    background_tasks.add_task(process_webhook, reconciler, payload)
    return {"status": "ok"}


@user_router.get(
    "/{user_id}/transactions",
    response_model=TransactionHistoryResponse,
    summary="Balance and recent transactions",
    description="Current balance with the latest ledger entries, newest first",
)
async def list_transactions(
    user_id: int,
    limit: int = Query(default=10, ge=1, le=100),
    ledger: BalanceLedger = Depends(get_ledger),
) -> Dict[str, Any]:
    try:
        balance = await ledger.get_balance(user_id)
    except UserNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    entries = await ledger.recent_transactions(user_id, limit=limit)
    return {
        "user_id": user_id,
        "balance": balance,
        "transactions": [TransactionEntry.model_validate(entry) for entry in entries],
    }


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
