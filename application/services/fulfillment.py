"""
Fulfillment engine: shipment lifecycle, courier tracking and the shipment
monitor (stuck, lost and pickup-failure detectors), reships and disputes.

Locks are always taken order first, then shipment. Detectors process one
shipment per transaction so a single bad row never blocks the batch.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from application.dtos.shipping import DisputeView, OpenDisputeRequest, ShipmentView, TrackingResult
from application.ports.shipping_gateway import ShippingGateway
from application.services.order_transitions import OrderTransitioner
from core.config import JobSettings
from core.logging_config import get_logger
from domain.common.exceptions import (
    GatewayPermanentException,
    GatewayTransientException,
    InvalidTransitionException,
    OrderNotFoundException,
    ReshipLimitReachedException,
    ShipmentNotFoundException,
)
from domain.common.time import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order
from domain.order.status import OrderStatus
from domain.shipment.entity import (
    AlertLevel,
    CourierFailure,
    Dispute,
    DisputeType,
    Shipment,
    ShipmentAlert,
    generate_dispute_code,
)
from domain.shipment.status import TRACKABLE_STATUSES, ShipmentStatus, TransitionActor, is_allowed_for

logger = get_logger(__name__)

MONITOR_ACTOR = "system:monitor"
TRACKING_ACTOR = "system:tracking"
PICKUP_WINDOW = timedelta(hours=48)

_S = ShipmentStatus
_IN_MOTION = frozenset({_S.SHIPPED, _S.IN_TRANSIT})

# courier status fragments, checked in order
COURIER_STATUS_MAP: tuple[tuple[tuple[str, ...], ShipmentStatus], ...] = (
    (("delivered",), _S.DELIVERED),
    (("dropping_off", "out_for_delivery"), _S.OUT_FOR_DELIVERY),
    (("in_transit", "on_process"), _S.IN_TRANSIT),
    (("picked", "allocated"), _S.SHIPPED),
    (("picking_up",), _S.PICKUP_SCHEDULED),
    (("confirmed",), _S.PROCESSING),
    (("returned",), _S.RETURNED_TO_SENDER),
    (("on_hold",), _S.HELD_AT_WAREHOUSE),
    (("rejected", "courier_not_found"), _S.PICKUP_FAILED),
    (("cancelled",), _S.CANCELLED),
)

_GATEWAY_ERRORS = (GatewayTransientException, GatewayPermanentException)


def map_courier_status(courier_status: str) -> ShipmentStatus:
    status = (courier_status or "").lower()
    for fragments, target in COURIER_STATUS_MAP:
        if any(fragment in status for fragment in fragments):
            return target
    return _S.IN_TRANSIT


@dataclass
class MonitorReport:
    tracked: int = 0
    investigated: int = 0
    lost: int = 0
    pickup_failed: int = 0
    investigation_timeouts: int = 0


class FulfillmentEngine:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        transitioner: OrderTransitioner,
        shipping_gateway: ShippingGateway,
        *,
        jobs: JobSettings,
        tracking_enabled: bool = False,
    ) -> None:
        self._uow_factory = uow_factory
        self._transitioner = transitioner
        self._shipping = shipping_gateway
        self._jobs = jobs
        self._tracking_enabled = tracking_enabled

    # ------------------------------------------------------------------
    # Manual moves
    # ------------------------------------------------------------------

    async def get_shipment(self, shipment_id: int) -> ShipmentView:
        async with self._uow_factory(readonly=True) as uow:
            shipment = await uow.shipment_repository.get_by_id(shipment_id)
            if shipment is None:
                raise ShipmentNotFoundException(shipment_id)
            return ShipmentView.from_entity(shipment)

    async def transition_shipment(
        self,
        shipment_id: int,
        target: ShipmentStatus,
        *,
        actor: str,
        actor_kind: TransitionActor = TransitionActor.ADMIN,
        reason: Optional[str] = None,
    ) -> ShipmentView:
        async with self._uow_factory() as uow:
            order, shipment = await self._lock(uow, shipment_id)
            await self._move(uow, order, shipment, target, actor_kind=actor_kind, actor=actor, reason=reason)
            return ShipmentView.from_entity(shipment)

    async def schedule_pickup(
        self,
        shipment_id: int,
        *,
        actor: str,
        deadline: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> ShipmentView:
        now = now or utcnow()
        async with self._uow_factory() as uow:
            order, shipment = await self._lock(uow, shipment_id)
            shipment.pickup_deadline = deadline or now + PICKUP_WINDOW
            await self._transitioner.apply_shipment(
                uow, shipment, _S.PICKUP_SCHEDULED,
                actor=TransitionActor.ADMIN, actor_label=actor, reason="pickup scheduled", now=now,
            )
            # deadline may change on an already scheduled pickup
            await uow.shipment_repository.update(shipment)
            return ShipmentView.from_entity(shipment)

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    async def apply_tracking(self, shipment_id: int, result: TrackingResult, *, now: Optional[datetime] = None) -> ShipmentView:
        """Fold a courier tracking result into the shipment.

        Tracking never makes privileged moves; a status the table does not
        allow from here is logged and ignored.
        """
        now = now or utcnow()
        async with self._uow_factory() as uow:
            order, shipment = await self._lock(uow, shipment_id)
            target = map_courier_status(result.status)
            changed = False
            if target is not shipment.status and is_allowed_for(shipment.status, target, TransitionActor.TRACKING):
                if target is _S.DELIVERY_FAILED:
                    shipment.delivery_attempts += 1
                changed = await self._move(
                    uow, order, shipment, target,
                    actor_kind=TransitionActor.TRACKING, actor=TRACKING_ACTOR,
                    reason=f"courier status {result.status}", now=now,
                )
            elif target is not shipment.status:
                logger.info(
                    "tracking_status_ignored",
                    shipment_id=shipment.id,
                    shipment_status=shipment.status.value,
                    courier_status=result.status,
                )

            last_update = result.last_update
            if last_update is not None:
                if shipment.last_tracking_update is None or last_update > shipment.last_tracking_update:
                    shipment.last_tracking_update = last_update
            elif changed:
                shipment.last_tracking_update = now
            shipment.refresh_staleness(now, stale_after_days=self._jobs.stale_after_days)
            await uow.shipment_repository.update(shipment)
            return ShipmentView.from_entity(shipment)

    async def refresh_tracking(self, now: Optional[datetime] = None) -> int:
        """Poll the courier for the least recently polled trackable shipments.
        Returns how many were polled."""
        now = now or utcnow()
        async with self._uow_factory(readonly=True) as uow:
            shipments = await uow.shipment_repository.list_due_for_tracking(TRACKABLE_STATUSES, self._jobs.batch_size)
        if not shipments:
            return 0
        async with self._uow_factory() as uow:
            await uow.shipment_repository.mark_tracking_checked([s.id for s in shipments], now)
        polled = 0
        for shipment in shipments:
            try:
                result = await self._shipping.track(shipment.tracking_number)
            except _GATEWAY_ERRORS as exc:
                logger.warning("tracking_fetch_failed", shipment_id=shipment.id, resi=shipment.tracking_number, error=exc.message)
                continue
            try:
                await self.apply_tracking(shipment.id, result, now=now)
                polled += 1
            except Exception:
                logger.exception("tracking_apply_failed", shipment_id=shipment.id)
        return polled

    async def run_monitor(self, now: Optional[datetime] = None) -> MonitorReport:
        """One tracking-sweeper tick: courier polling (when enabled) then every detector."""
        now = now or utcnow()
        report = MonitorReport()
        if self._tracking_enabled:
            report.tracked = await self.refresh_tracking(now)
        report.investigated, report.lost = await self.detect_stuck_shipments(now)
        report.investigation_timeouts = await self.detect_investigation_timeouts(now)
        report.pickup_failed = await self.detect_pickup_failures(now)
        logger.info(
            "shipment_monitor_completed",
            tracked=report.tracked,
            investigated=report.investigated,
            lost=report.lost,
            investigation_timeouts=report.investigation_timeouts,
            pickup_failed=report.pickup_failed,
        )
        return report

    # ------------------------------------------------------------------
    # Detectors
    # ------------------------------------------------------------------

    async def detect_stuck_shipments(self, now: Optional[datetime] = None) -> tuple[int, int]:
        """Promote stuck shipments to INVESTIGATION, long-stuck investigations
        to LOST, and flag shipments whose tracking went stale.
        Returns (investigated, lost).

        Every step only selects rows already past its threshold, oldest
        activity first, so a batch is never filled by healthy shipments.
        """
        now = now or utcnow()
        jobs = self._jobs
        async with self._uow_factory(readonly=True) as uow:
            repo = uow.shipment_repository
            overdue = await repo.list_by_status(
                {_S.INVESTIGATION}, jobs.batch_size, inactive_since=now - timedelta(days=jobs.lost_after_days)
            )
            stuck = await repo.list_by_status(
                _IN_MOTION, jobs.batch_size, inactive_since=now - timedelta(days=jobs.stuck_after_days)
            )
            stale = await repo.list_by_status(
                TRACKABLE_STATUSES, jobs.batch_size,
                inactive_since=now - timedelta(days=jobs.stale_after_days), tracking_stale=False,
            )

        async def mark_lost(uow, order, shipment) -> bool:
            if shipment.status is not _S.INVESTIGATION:
                return False
            days = shipment.refresh_staleness(now, stale_after_days=jobs.stale_after_days)
            if days < jobs.lost_after_days:
                return False
            await self._mark_lost(uow, order, shipment, days=days, now=now)
            return True

        async def investigate(uow, order, shipment) -> bool:
            if shipment.status not in _IN_MOTION:
                return False
            days = shipment.refresh_staleness(now, stale_after_days=jobs.stale_after_days)
            if days < jobs.stuck_after_days:
                return False
            await self._open_investigation(uow, order, shipment, days=days, now=now)
            return True

        async def flag_stale(uow, order, shipment) -> bool:
            if shipment.status not in TRACKABLE_STATUSES:
                return False
            shipment.refresh_staleness(now, stale_after_days=jobs.stale_after_days)
            await uow.shipment_repository.update(shipment)
            return shipment.tracking_stale

        lost = await self._sweep(overdue, mark_lost, "lost_detection_failed")
        investigated = await self._sweep(stuck, investigate, "stuck_detection_failed")
        await self._sweep(stale, flag_stale, "staleness_refresh_failed")
        return investigated, lost

    async def _sweep(self, candidates: list[Shipment], handle, failure_event: str) -> int:
        """Run `handle` for each candidate in its own locked transaction."""
        count = 0
        for candidate in candidates:
            try:
                async with self._uow_factory() as uow:
                    order, shipment = await self._lock(uow, candidate.id)
                    if await handle(uow, order, shipment):
                        count += 1
            except Exception:
                logger.exception(failure_event, shipment_id=candidate.id)
        return count

    async def detect_investigation_timeouts(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        cutoff = now - timedelta(days=self._jobs.investigation_timeout_days)
        async with self._uow_factory(readonly=True) as uow:
            candidates = await uow.shipment_repository.list_investigations_opened_before(cutoff, self._jobs.batch_size)
        count = 0
        for candidate in candidates:
            try:
                async with self._uow_factory() as uow:
                    order, shipment = await self._lock(uow, candidate.id)
                    if shipment.status is not _S.INVESTIGATION:
                        continue
                    await self._move(
                        uow, order, shipment, _S.LOST,
                        actor_kind=TransitionActor.SYSTEM, actor=MONITOR_ACTOR, reason="Investigation timeout", now=now,
                    )
                    shipment.flag_for_admin("Investigation timed out - package presumed lost")
                    await uow.shipment_repository.update(shipment)
                    await self._alert(
                        uow, shipment, "investigation_timeout", AlertLevel.URGENT,
                        "Investigation Timeout",
                        f"Investigation open for {self._jobs.investigation_timeout_days}+ days without resolution. Marked as LOST.",
                        auto_action="status_change_lost",
                    )
                    count += 1
            except Exception:
                logger.exception("investigation_timeout_failed", shipment_id=candidate.id)
        return count

    async def detect_pickup_failures(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        async with self._uow_factory(readonly=True) as uow:
            candidates = await uow.shipment_repository.list_pickup_overdue(now, self._jobs.batch_size)
        count = 0
        for candidate in candidates:
            try:
                async with self._uow_factory() as uow:
                    order, shipment = await self._lock(uow, candidate.id)
                    if shipment.status is not _S.PICKUP_SCHEDULED:
                        continue
                    shipment.pickup_attempts += 1
                    await self._move(
                        uow, order, shipment, _S.PICKUP_FAILED,
                        actor_kind=TransitionActor.SYSTEM, actor=MONITOR_ACTOR, reason="Pickup deadline missed", now=now,
                    )
                    if shipment.pickup_attempts >= self._jobs.max_pickup_attempts:
                        shipment.flag_for_admin("Pickup failed 3+ times - manual intervention required")
                        await self._alert(
                            uow, shipment, "pickup_failed_critical", AlertLevel.URGENT,
                            "Pickup Failed Multiple Times",
                            "Pickup has failed 3+ times. Manual intervention required.",
                            auto_action="flag_admin_required",
                        )
                    else:
                        await self._alert(
                            uow, shipment, "pickup_deadline_missed", AlertLevel.WARNING,
                            "Pickup Deadline Missed",
                            "Courier did not pick up the package before the deadline.",
                            auto_action="status_change_pickup_failed",
                        )
                    await uow.shipment_repository.update(shipment)
                    await uow.shipment_repository.add_courier_failure(
                        CourierFailure(
                            id=None,
                            shipment_id=shipment.id,
                            failure_type="pickup_failed",
                            failure_reason="Pickup deadline missed",
                            courier_code=shipment.provider_code,
                        )
                    )
                    count += 1
                    logger.info("pickup_failed", shipment_id=shipment.id, attempts=shipment.pickup_attempts)
            except Exception:
                logger.exception("pickup_detection_failed", shipment_id=candidate.id)
        return count

    async def _open_investigation(self, uow: AbstractUnitOfWork, order: Order, shipment: Shipment, *, days: int, now: datetime) -> None:
        await self._move(
            uow, order, shipment, _S.INVESTIGATION,
            actor_kind=TransitionActor.SYSTEM, actor=MONITOR_ACTOR, reason="Auto-detected stuck shipment", now=now,
        )
        shipment.investigation_reason = f"Auto-detected: No tracking update for {self._jobs.stuck_after_days}+ days"
        shipment.flag_for_admin("Stuck shipment - requires investigation")
        await uow.shipment_repository.update(shipment)
        await self._alert(
            uow, shipment, "stuck_shipment", AlertLevel.CRITICAL,
            "Shipment Stuck - No Updates",
            f"No tracking update for {days} days. Auto-moved to investigation.",
            auto_action="status_change_investigation",
        )
        logger.warning("shipment_investigation_opened", shipment_id=shipment.id, order_id=order.id, days=days)

    async def _mark_lost(self, uow: AbstractUnitOfWork, order: Order, shipment: Shipment, *, days: int, now: datetime) -> None:
        await self._move(
            uow, order, shipment, _S.LOST,
            actor_kind=TransitionActor.SYSTEM, actor=MONITOR_ACTOR, reason="Auto-detected lost package", now=now,
        )
        shipment.flag_for_admin("Package presumed lost - requires resolution")
        await uow.shipment_repository.update(shipment)
        await self._alert(
            uow, shipment, "lost_package", AlertLevel.URGENT,
            "Package Presumed Lost",
            f"No tracking update for {days} days. Auto-marked as LOST.",
            auto_action="status_change_lost",
        )
        await uow.shipment_repository.add_courier_failure(
            CourierFailure(
                id=None,
                shipment_id=shipment.id,
                failure_type="lost",
                failure_reason=f"Auto-detected: No tracking update for {self._jobs.lost_after_days}+ days",
                courier_code=shipment.provider_code,
            )
        )
        await uow.shipment_repository.add_dispute(
            Dispute(
                id=None,
                dispute_code=generate_dispute_code(now),
                order_id=order.id,
                shipment_id=shipment.id,
                dispute_type=DisputeType.LOST_PACKAGE,
                title="Auto-detected Lost Package",
                description="Package has had no tracking updates for too long and is presumed lost.",
                customer_email=order.customer_email,
                customer_phone=order.customer_phone,
                opened_by=MONITOR_ACTOR,
            )
        )
        logger.warning("shipment_marked_lost", shipment_id=shipment.id, order_id=order.id, days=days)

    # ------------------------------------------------------------------
    # Reship / disputes
    # ------------------------------------------------------------------

    async def reship(
        self,
        shipment_id: int,
        *,
        actor: str,
        reason: str,
        new_tracking_number: Optional[str] = None,
    ) -> ShipmentView:
        async with self._uow_factory() as uow:
            order, shipment = await self._lock(uow, shipment_id)
            replacement = await self.reship_in(uow, order, shipment, actor=actor, reason=reason, new_tracking_number=new_tracking_number)
            return ShipmentView.from_entity(replacement)

    async def reship_in(
        self,
        uow: AbstractUnitOfWork,
        order: Order,
        shipment: Shipment,
        *,
        actor: str,
        reason: str,
        new_tracking_number: Optional[str] = None,
    ) -> Shipment:
        """Replace a lost or returned shipment. Caller holds the order and shipment locks."""
        if not shipment.status.can_reship:
            raise InvalidTransitionException("shipment", shipment.status.value, _S.REPLACED.value)
        if shipment.reship_count >= self._jobs.max_reship_count:
            raise ReshipLimitReachedException(shipment.id, shipment.reship_count)

        shipment.reship_count += 1
        await self._transitioner.apply_shipment(
            uow, shipment, _S.REPLACED, actor=TransitionActor.ADMIN, actor_label=actor, reason=reason,
        )
        replacement = await uow.shipment_repository.create(
            Shipment(
                id=None,
                order_id=order.id,
                provider_code=shipment.provider_code,
                provider_name=shipment.provider_name,
                service_code=shipment.service_code,
                service_name=shipment.service_name,
                status=_S.PROCESSING,
                weight_grams=shipment.weight_grams,
                origin=dict(shipment.origin),
                destination=dict(shipment.destination),
                tracking_number=new_tracking_number,
                is_replacement=True,
                original_shipment_id=shipment.id,
                # carried over so a chain of replacements shares one loop guard
                reship_count=shipment.reship_count,
            )
        )
        shipment.replaced_by_shipment_id = replacement.id
        await uow.shipment_repository.update(shipment)
        logger.info(
            "shipment_reshipped",
            order_id=order.id,
            original_shipment_id=shipment.id,
            replacement_shipment_id=replacement.id,
            reship_count=shipment.reship_count,
            actor=actor,
        )
        return replacement

    async def open_dispute(self, req: OpenDisputeRequest) -> DisputeView:
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_for_update(req.order_id)
            if order is None:
                raise OrderNotFoundException(req.order_id)
            shipment = await uow.shipment_repository.get_current_for_order(order.id, for_update=True)
            dispute = await uow.shipment_repository.add_dispute(
                Dispute(
                    id=None,
                    dispute_code=generate_dispute_code(),
                    order_id=order.id,
                    shipment_id=shipment.id if shipment else None,
                    dispute_type=req.dispute_type,
                    title=req.title,
                    description=req.description,
                    customer_email=order.customer_email,
                    customer_phone=order.customer_phone,
                    opened_by=req.opened_by,
                )
            )
            if shipment is not None:
                shipment.flag_for_admin(f"Customer dispute opened: {dispute.dispute_code}")
                await uow.shipment_repository.update(shipment)
            logger.info("dispute_opened", dispute_code=dispute.dispute_code, order_id=order.id, dispute_type=req.dispute_type.value)
            return DisputeView.from_entity(dispute)

    async def list_disputes(self, order_id: int) -> list[DisputeView]:
        async with self._uow_factory(readonly=True) as uow:
            return [DisputeView.from_entity(d) for d in await uow.shipment_repository.list_disputes(order_id)]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _lock(uow: AbstractUnitOfWork, shipment_id: int) -> tuple[Order, Shipment]:
        shipment = await uow.shipment_repository.get_by_id(shipment_id)
        if shipment is None:
            raise ShipmentNotFoundException(shipment_id)
        order = await uow.order_repository.get_for_update(shipment.order_id)
        if order is None:
            raise OrderNotFoundException(shipment.order_id)
        shipment = await uow.shipment_repository.get_for_update(shipment_id)
        return order, shipment

    async def _move(
        self,
        uow: AbstractUnitOfWork,
        order: Order,
        shipment: Shipment,
        target: ShipmentStatus,
        *,
        actor_kind: TransitionActor,
        actor: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        changed = await self._transitioner.apply_shipment(
            uow, shipment, target, actor=actor_kind, actor_label=actor, reason=reason, now=now,
        )
        if changed and target is _S.DELIVERED and order.status is OrderStatus.SHIPPED:
            await self._transitioner.apply(uow, order, OrderStatus.DELIVERED, actor=actor, reason="courier delivered", now=now)
        return changed

    @staticmethod
    async def _alert(
        uow: AbstractUnitOfWork,
        shipment: Shipment,
        alert_type: str,
        level: AlertLevel,
        title: str,
        description: str,
        *,
        auto_action: Optional[str] = None,
    ) -> None:
        await uow.shipment_repository.add_alert(
            ShipmentAlert(
                id=None,
                shipment_id=shipment.id,
                alert_type=alert_type,
                alert_level=level,
                title=title,
                description=description,
                auto_action_taken=auto_action is not None,
                auto_action_type=auto_action,
            )
        )
