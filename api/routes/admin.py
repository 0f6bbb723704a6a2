"""
管理后台API路由

Force actions are audited and accept an optional idempotency key; a replayed
key returns the first result.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from api.dependencies import (
    get_admin_actions,
    get_admin_context,
    get_container,
    get_fulfillment,
    get_order_engine,
    get_outbox,
    get_reconciliation,
    get_refund_engine,
)
from application.dtos.admin import (
    AdminActionResult,
    AdminContext,
    CompleteRefundRequest,
    ForceCancelRequest,
    ForceRefundRequest,
    ForceReshipRequest,
    MismatchView,
    NotificationView,
    ReconcilePaymentRequest,
    ReconciliationReport,
    ResolveMismatchRequest,
    SchedulePickupRequest,
    TransitionShipmentRequest,
)
from application.dtos.orders import OrderView, ShipOrderRequest
from application.dtos.refunds import CreateRefundRequest, RefundView
from application.dtos.shipping import DisputeView, ShipmentView
from application.services.admin_actions import AdminActions
from application.services.fulfillment import FulfillmentEngine
from application.services.order_engine import OrderEngine
from application.services.outbox import OutboxPublisher
from application.services.reconciliation import ReconciliationService
from application.services.refund_engine import RefundEngine
from core.response import Response as ApiResponse, success_response
from infrastructure.container import Container

router = APIRouter(prefix="/admin", tags=["Admin"])


# ---- order lifecycle ----


@router.post("/orders/{order_id}/pack", response_model=ApiResponse[OrderView])
async def pack_order(
    order_id: int,
    admin: AdminContext = Depends(get_admin_context),
    service: OrderEngine = Depends(get_order_engine),
):
    return success_response(data=await service.pack(order_id, actor=admin.actor))


@router.post("/orders/{order_id}/ship", response_model=ApiResponse[OrderView])
async def ship_order(
    order_id: int,
    req: ShipOrderRequest,
    admin: AdminContext = Depends(get_admin_context),
    service: OrderEngine = Depends(get_order_engine),
):
    """Ship with a manual resi, or book the courier when none is given."""
    return success_response(data=await service.ship(order_id, actor=admin.actor, resi=req.resi))


@router.post("/orders/{order_id}/deliver", response_model=ApiResponse[OrderView])
async def deliver_order(
    order_id: int,
    admin: AdminContext = Depends(get_admin_context),
    service: OrderEngine = Depends(get_order_engine),
):
    return success_response(data=await service.mark_delivered(order_id, actor=admin.actor))


@router.post("/orders/{order_id}/complete", response_model=ApiResponse[OrderView])
async def complete_order(
    order_id: int,
    admin: AdminContext = Depends(get_admin_context),
    service: OrderEngine = Depends(get_order_engine),
):
    return success_response(data=await service.complete(order_id, actor=admin.actor))


# ---- force actions ----


@router.post("/actions/force-cancel", response_model=ApiResponse[AdminActionResult])
async def force_cancel(
    req: ForceCancelRequest,
    admin: AdminContext = Depends(get_admin_context),
    service: AdminActions = Depends(get_admin_actions),
):
    return success_response(data=await service.force_cancel(admin, req))


@router.post("/actions/force-refund", response_model=ApiResponse[AdminActionResult])
async def force_refund(
    req: ForceRefundRequest,
    admin: AdminContext = Depends(get_admin_context),
    service: AdminActions = Depends(get_admin_actions),
):
    return success_response(data=await service.force_refund(admin, req))


@router.post("/actions/force-reship", response_model=ApiResponse[AdminActionResult])
async def force_reship(
    req: ForceReshipRequest,
    admin: AdminContext = Depends(get_admin_context),
    service: AdminActions = Depends(get_admin_actions),
):
    return success_response(data=await service.force_reship(admin, req))


@router.post("/actions/reconcile-payment", response_model=ApiResponse[AdminActionResult])
async def reconcile_payment(
    req: ReconcilePaymentRequest,
    admin: AdminContext = Depends(get_admin_context),
    service: AdminActions = Depends(get_admin_actions),
):
    return success_response(data=await service.reconcile_payment(admin, req))


@router.get("/audit/{target_type}/{target_id}", response_model=ApiResponse[list[AdminActionResult]])
async def list_audit(
    target_type: str,
    target_id: int,
    _: AdminContext = Depends(get_admin_context),
    service: AdminActions = Depends(get_admin_actions),
):
    return success_response(data=await service.list_audit(target_type, target_id))


# ---- shipments ----


@router.get("/shipments/{shipment_id}", response_model=ApiResponse[ShipmentView])
async def get_shipment(
    shipment_id: int,
    _: AdminContext = Depends(get_admin_context),
    service: FulfillmentEngine = Depends(get_fulfillment),
):
    return success_response(data=await service.get_shipment(shipment_id))


@router.post("/shipments/{shipment_id}/transition", response_model=ApiResponse[ShipmentView])
async def transition_shipment(
    shipment_id: int,
    req: TransitionShipmentRequest,
    admin: AdminContext = Depends(get_admin_context),
    service: FulfillmentEngine = Depends(get_fulfillment),
):
    shipment = await service.transition_shipment(shipment_id, req.target, actor=admin.actor, reason=req.reason)
    return success_response(data=shipment)


@router.post("/shipments/{shipment_id}/pickup", response_model=ApiResponse[ShipmentView])
async def schedule_pickup(
    shipment_id: int,
    req: SchedulePickupRequest,
    admin: AdminContext = Depends(get_admin_context),
    service: FulfillmentEngine = Depends(get_fulfillment),
):
    shipment = await service.schedule_pickup(shipment_id, actor=admin.actor, deadline=req.deadline)
    return success_response(data=shipment)


@router.get("/orders/{order_id}/disputes", response_model=ApiResponse[list[DisputeView]])
async def list_disputes(
    order_id: int,
    _: AdminContext = Depends(get_admin_context),
    service: FulfillmentEngine = Depends(get_fulfillment),
):
    return success_response(data=await service.list_disputes(order_id))


# ---- refunds ----


@router.post("/refunds", response_model=ApiResponse[RefundView])
async def create_refund(
    req: CreateRefundRequest,
    admin: AdminContext = Depends(get_admin_context),
    service: RefundEngine = Depends(get_refund_engine),
):
    req = req.model_copy(update={"requested_by": req.requested_by or admin.actor})
    return success_response(data=await service.create_refund(req))


@router.post("/refunds/{refund_id}/process", response_model=ApiResponse[RefundView])
async def process_refund(
    refund_id: int,
    admin: AdminContext = Depends(get_admin_context),
    service: RefundEngine = Depends(get_refund_engine),
):
    return success_response(data=await service.process_refund(refund_id, actor=admin.actor))


@router.post("/refunds/{refund_id}/complete-manual", response_model=ApiResponse[RefundView])
async def complete_refund_manually(
    refund_id: int,
    req: CompleteRefundRequest,
    admin: AdminContext = Depends(get_admin_context),
    service: RefundEngine = Depends(get_refund_engine),
):
    """Record a refund paid out of band (bank transfer)."""
    return success_response(data=await service.complete_manually(refund_id, actor=admin.actor, note=req.note))


@router.get("/refunds/{refund_id}", response_model=ApiResponse[RefundView])
async def get_refund(
    refund_id: int,
    _: AdminContext = Depends(get_admin_context),
    service: RefundEngine = Depends(get_refund_engine),
):
    return success_response(data=await service.get_refund(refund_id))


@router.get("/orders/{order_id}/refunds", response_model=ApiResponse[list[RefundView]])
async def list_refunds(
    order_id: int,
    _: AdminContext = Depends(get_admin_context),
    service: RefundEngine = Depends(get_refund_engine),
):
    return success_response(data=await service.list_for_order(order_id))


# ---- notifications ----


@router.get("/orders/{order_id}/notifications", response_model=ApiResponse[list[NotificationView]])
async def list_notifications(
    order_id: int,
    _: AdminContext = Depends(get_admin_context),
    outbox: OutboxPublisher = Depends(get_outbox),
):
    rows = await outbox.list_for_order(order_id)
    return success_response(data=[NotificationView.from_entity(r) for r in rows])


@router.post("/notifications/{notification_id}/redrive", response_model=ApiResponse[NotificationView])
async def redrive_notification(
    notification_id: int,
    admin: AdminContext = Depends(get_admin_context),
    outbox: OutboxPublisher = Depends(get_outbox),
):
    row = await outbox.redrive(notification_id)
    return success_response(data=NotificationView.from_entity(row), message="Notification re-queued")


# ---- reconciliation ----


@router.post("/reconciliation/run", response_model=ApiResponse[ReconciliationReport])
async def run_reconciliation(
    day: Optional[date] = Query(default=None, description="UTC day, defaults to yesterday"),
    _: AdminContext = Depends(get_admin_context),
    service: ReconciliationService = Depends(get_reconciliation),
):
    return success_response(data=await service.run_daily(day))


@router.get("/reconciliation/mismatches", response_model=ApiResponse[list[MismatchView]])
async def list_mismatches(
    limit: int = Query(default=100, ge=1, le=500),
    _: AdminContext = Depends(get_admin_context),
    service: ReconciliationService = Depends(get_reconciliation),
):
    return success_response(data=await service.list_unresolved_mismatches(limit))


@router.post("/reconciliation/mismatches/{mismatch_id}/resolve", response_model=ApiResponse[MismatchView])
async def resolve_mismatch(
    mismatch_id: int,
    req: ResolveMismatchRequest,
    admin: AdminContext = Depends(get_admin_context),
    service: ReconciliationService = Depends(get_reconciliation),
):
    mismatch = await service.resolve_mismatch(mismatch_id, resolved_by=admin.actor, note=req.note)
    return success_response(data=mismatch)


# ---- sweepers ----


@router.post("/jobs/{name}/run")
async def run_job(
    name: str,
    _: AdminContext = Depends(get_admin_context),
    container: Container = Depends(get_container),
):
    """Run one sweeper pass inline."""
    if name not in container.jobs.by_name():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown job: {name}")
    result = await container.jobs.run(name)
    if hasattr(result, "model_dump"):
        result = result.model_dump(mode="json")
    elif hasattr(result, "__dataclass_fields__"):
        result = vars(result)
    return success_response(data={"job": name, "result": result})
