"""
Payments API routes.

The webhook endpoint hands the raw gateway body to the coordinator; the
signature is verified there before any database work.
"""
from __future__ import annotations

from json import JSONDecodeError

from fastapi import APIRouter, Depends, HTTPException, Request, status

from api.dependencies import get_payment_coordinator
from application.dtos.payments import CreateChargeRequest, PaymentNotification, PaymentView, WebhookResult
from application.services.payment_coordinator import PaymentCoordinator
from core.logging_config import get_logger
from core.response import Response as ApiResponse, success_response

router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


@router.post("/webhook", response_model=ApiResponse[WebhookResult])
async def payments_webhook(request: Request, service: PaymentCoordinator = Depends(get_payment_coordinator)):
    ct = (request.headers.get("content-type") or "").lower()
    if "application/json" not in ct:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body must be JSON")
    try:
        body = await request.json()
    except (JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body is not valid JSON")
    if not isinstance(body, dict) or not body.get("order_id"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body has no order_id")

    notification = PaymentNotification.from_gateway_payload(body)
    result = await service.handle_webhook(notification)
    logger.info(
        "webhook_handled",
        external_id=notification.external_id,
        transaction_status=notification.transaction_status,
        changed=result.changed,
    )
    return success_response(data=result, message="OK")


@router.post("/charge", response_model=ApiResponse[PaymentView])
async def create_charge(req: CreateChargeRequest, service: PaymentCoordinator = Depends(get_payment_coordinator)):
    """Create (or return the still-valid) charge for a PENDING order."""
    payment = await service.create_charge(req.order_id, req.payment_method)
    return success_response(data=payment, message="Charge created")


@router.post("/{payment_id}/check", response_model=ApiResponse[PaymentView])
async def check_status(payment_id: int, service: PaymentCoordinator = Depends(get_payment_coordinator)):
    return success_response(data=await service.check_status(payment_id))
