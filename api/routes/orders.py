"""
订单API路由 - 客户侧
"""
from typing import Optional

from fastapi import APIRouter, Body, Depends

from api.dependencies import get_fulfillment, get_order_engine, get_refund_engine
from application.dtos.orders import CheckoutRequest, CheckoutResult, OrderView
from application.dtos.refunds import CreateRefundRequest, RefundView
from application.dtos.shipping import DisputeView, OpenDisputeRequest
from application.services.fulfillment import FulfillmentEngine
from application.services.order_engine import OrderEngine
from application.services.refund_engine import RefundEngine
from core.response import Response as ApiResponse, success_response

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("/checkout", summary="下单", response_model=ApiResponse[CheckoutResult])
async def checkout(req: CheckoutRequest, service: OrderEngine = Depends(get_order_engine)):
    """
    Turn a cart into a PENDING order.

    Stock is reserved in the same transaction; the cart is cleared on success.
    """
    result = await service.checkout(req)
    return success_response(data=result, message="Order created")


@router.get("/{order_code}", summary="查询订单", response_model=ApiResponse[OrderView])
async def get_order(order_code: str, service: OrderEngine = Depends(get_order_engine)):
    return success_response(data=await service.get_order(order_code))


@router.post("/{order_code}/cancel", summary="取消订单", response_model=ApiResponse[OrderView])
async def cancel_order(
    order_code: str,
    customer_email: Optional[str] = Body(default=None, embed=True),
    service: OrderEngine = Depends(get_order_engine),
):
    """Customer cancellation; only PENDING orders qualify."""
    order = await service.cancel_by_customer(order_code, customer_email)
    return success_response(data=order, message="Order cancelled")


@router.post("/refunds", summary="申请退款", response_model=ApiResponse[RefundView])
async def request_refund(req: CreateRefundRequest, service: RefundEngine = Depends(get_refund_engine)):
    refund = await service.create_refund(req)
    return success_response(data=refund, message="Refund requested")


@router.post("/disputes", summary="发起争议", response_model=ApiResponse[DisputeView])
async def open_dispute(req: OpenDisputeRequest, service: FulfillmentEngine = Depends(get_fulfillment)):
    dispute = await service.open_dispute(req)
    return success_response(data=dispute, message="Dispute opened")
