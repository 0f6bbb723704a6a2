"""
API依赖项 - 从容器获取服务
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from application.dtos.admin import AdminContext
from application.services.admin_actions import AdminActions
from application.services.fulfillment import FulfillmentEngine
from application.services.order_engine import OrderEngine
from application.services.outbox import OutboxPublisher
from application.services.payment_coordinator import PaymentCoordinator
from application.services.reconciliation import ReconciliationService
from application.services.refund_engine import RefundEngine
from infrastructure.container import Container


def get_container(request: Request) -> Container:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting up")
    return container


def get_order_engine(container: Container = Depends(get_container)) -> OrderEngine:
    return container.orders


def get_payment_coordinator(container: Container = Depends(get_container)) -> PaymentCoordinator:
    return container.payments


def get_fulfillment(container: Container = Depends(get_container)) -> FulfillmentEngine:
    return container.fulfillment


def get_refund_engine(container: Container = Depends(get_container)) -> RefundEngine:
    return container.refunds


def get_admin_actions(container: Container = Depends(get_container)) -> AdminActions:
    return container.admin


def get_reconciliation(container: Container = Depends(get_container)) -> ReconciliationService:
    return container.reconciliation


def get_outbox(container: Container = Depends(get_container)) -> OutboxPublisher:
    return container.outbox


async def get_admin_context(
    request: Request,
    x_admin_email: Optional[str] = Header(default=None),
    x_admin_id: Optional[int] = Header(default=None),
) -> AdminContext:
    """
    管理员上下文

    Authentication happens upstream; the gateway in front of the API is
    expected to set `X-Admin-Email` for authenticated admins only.
    """
    if not x_admin_email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-Admin-Email header is required")
    return AdminContext(
        admin_email=x_admin_email,
        admin_id=x_admin_id,
        ip_address=getattr(request.state, "client_ip", None) or (request.client.host if request.client else None),
        user_agent=request.headers.get("User-Agent"),
    )
