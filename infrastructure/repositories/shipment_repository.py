"""
发货仓储实现
"""
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.shipment.entity import (
    AlertLevel, CourierFailure, Dispute, DisputeStatus, DisputeType, Shipment, ShipmentAlert,
)
from domain.shipment.repository import ShipmentRepository
from domain.shipment.status import ShipmentStatus
from infrastructure.models.shipment import (
    CourierFailureLogModel, DisputeModel, ShipmentAlertModel, ShipmentModel,
)

logger = get_logger(__name__)

# 实体与模型之间直接拷贝的字段
_COPY_FIELDS = (
    "order_id",
    "provider_code",
    "provider_name",
    "service_code",
    "service_name",
    "cost",
    "etd",
    "weight_grams",
    "tracking_number",
    "origin",
    "destination",
    "rate_snapshot",
    "pickup_attempts",
    "delivery_attempts",
    "reship_count",
    "days_without_update",
    "requires_admin_action",
    "admin_action_reason",
    "is_replacement",
    "original_shipment_id",
    "replaced_by_shipment_id",
    "tracking_stale",
    "investigation_reason",
    "pickup_deadline",
    "shipped_at",
    "delivered_at",
    "investigation_opened_at",
    "marked_lost_at",
    "last_tracking_update",
    "last_tracking_check",
)


class SQLAlchemyShipmentRepository(ShipmentRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: ShipmentModel) -> Shipment:
        values = {name: getattr(model, name) for name in _COPY_FIELDS}
        values["cost"] = Decimal(str(model.cost or 0))
        for name in ("origin", "destination", "rate_snapshot"):
            values[name] = values[name] or {}
        return Shipment(
            id=model.id,
            status=ShipmentStatus(model.status),
            created_at=model.created_at,
            updated_at=model.updated_at,
            **values,
        )

    def _apply(self, model: ShipmentModel, entity: Shipment) -> None:
        for name in _COPY_FIELDS:
            setattr(model, name, getattr(entity, name))
        model.status = entity.status.value
        if entity.updated_at:
            model.updated_at = entity.updated_at

    async def _one(self, stmt, for_update: bool = False) -> Optional[Shipment]:
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt.limit(1))
        model = result.scalars().first()
        return self._to_entity(model) if model else None

    async def create(self, shipment: Shipment) -> Shipment:
        model = ShipmentModel()
        self._apply(model, shipment)
        self.session.add(model)
        await self.session.flush()
        await self.session.refresh(model)
        logger.info(
            "shipment_created",
            shipment_id=model.id,
            order_id=model.order_id,
            is_replacement=model.is_replacement,
        )
        return self._to_entity(model)

    async def get_by_id(self, shipment_id: int) -> Optional[Shipment]:
        return await self._one(select(ShipmentModel).where(ShipmentModel.id == shipment_id))

    async def get_for_update(self, shipment_id: int) -> Optional[Shipment]:
        return await self._one(select(ShipmentModel).where(ShipmentModel.id == shipment_id), for_update=True)

    async def get_current_for_order(self, order_id: int, *, for_update: bool = False) -> Optional[Shipment]:
        stmt = (
            select(ShipmentModel)
            .where(
                ShipmentModel.order_id == order_id,
                ShipmentModel.status != ShipmentStatus.REPLACED.value,
            )
            .order_by(ShipmentModel.id.desc())
        )
        return await self._one(stmt, for_update)

    async def update(self, shipment: Shipment) -> Shipment:
        model = await self.session.get(ShipmentModel, shipment.id)
        if model is None:
            raise ValueError(f"Shipment {shipment.id} does not exist")
        self._apply(model, shipment)
        await self.session.flush()
        return shipment

    @staticmethod
    def _last_activity():
        return func.coalesce(ShipmentModel.last_tracking_update, ShipmentModel.shipped_at, ShipmentModel.created_at)

    async def list_by_status(
        self,
        statuses: Iterable[ShipmentStatus],
        limit: int,
        *,
        inactive_since: Optional[datetime] = None,
        tracking_stale: Optional[bool] = None,
    ) -> List[Shipment]:
        values = [s.value for s in statuses]
        last_activity = self._last_activity()
        stmt = select(ShipmentModel).where(ShipmentModel.status.in_(values))
        if inactive_since is not None:
            stmt = stmt.where(last_activity <= inactive_since)
        if tracking_stale is not None:
            stmt = stmt.where(ShipmentModel.tracking_stale.is_(tracking_stale))
        result = await self.session.execute(stmt.order_by(last_activity, ShipmentModel.id).limit(limit))
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_due_for_tracking(self, statuses: Iterable[ShipmentStatus], limit: int) -> List[Shipment]:
        """Shipments with a waybill, least recently polled first."""
        values = [s.value for s in statuses]
        last_check = func.coalesce(ShipmentModel.last_tracking_check, ShipmentModel.created_at)
        result = await self.session.execute(
            select(ShipmentModel)
            .where(ShipmentModel.status.in_(values), ShipmentModel.tracking_number.is_not(None))
            .order_by(last_check, ShipmentModel.id)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def mark_tracking_checked(self, shipment_ids: Iterable[int], checked_at: datetime) -> None:
        ids = list(shipment_ids)
        if not ids:
            return
        await self.session.execute(
            update(ShipmentModel).where(ShipmentModel.id.in_(ids)).values(last_tracking_check=checked_at)
        )

    async def list_pickup_overdue(self, now: datetime, limit: int) -> List[Shipment]:
        result = await self.session.execute(
            select(ShipmentModel)
            .where(
                ShipmentModel.status == ShipmentStatus.PICKUP_SCHEDULED.value,
                ShipmentModel.pickup_deadline.is_not(None),
                ShipmentModel.pickup_deadline < now,
            )
            .order_by(ShipmentModel.pickup_deadline)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_investigations_opened_before(self, cutoff: datetime, limit: int) -> List[Shipment]:
        result = await self.session.execute(
            select(ShipmentModel)
            .where(
                ShipmentModel.status == ShipmentStatus.INVESTIGATION.value,
                ShipmentModel.investigation_opened_at < cutoff,
            )
            .order_by(ShipmentModel.investigation_opened_at)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    # -- monitoring records --------------------------------------------------

    async def add_alert(self, alert: ShipmentAlert) -> ShipmentAlert:
        model = ShipmentAlertModel(
            shipment_id=alert.shipment_id,
            alert_type=alert.alert_type,
            alert_level=alert.alert_level.value,
            title=alert.title,
            description=alert.description,
            auto_action_taken=alert.auto_action_taken,
            auto_action_type=alert.auto_action_type,
            resolved=alert.resolved,
        )
        self.session.add(model)
        await self.session.flush()
        alert.id = model.id
        alert.created_at = model.created_at
        return alert

    async def list_alerts(self, shipment_id: int) -> List[ShipmentAlert]:
        result = await self.session.execute(
            select(ShipmentAlertModel)
            .where(ShipmentAlertModel.shipment_id == shipment_id)
            .order_by(ShipmentAlertModel.id)
        )
        return [
            ShipmentAlert(
                id=m.id,
                shipment_id=m.shipment_id,
                alert_type=m.alert_type,
                alert_level=AlertLevel(m.alert_level),
                title=m.title,
                description=m.description or "",
                auto_action_taken=bool(m.auto_action_taken),
                auto_action_type=m.auto_action_type,
                resolved=bool(m.resolved),
                created_at=m.created_at,
            )
            for m in result.scalars().all()
        ]

    async def add_courier_failure(self, failure: CourierFailure) -> CourierFailure:
        model = CourierFailureLogModel(
            shipment_id=failure.shipment_id,
            courier_code=failure.courier_code,
            failure_type=failure.failure_type,
            failure_reason=failure.failure_reason,
        )
        self.session.add(model)
        await self.session.flush()
        failure.id = model.id
        failure.created_at = model.created_at
        return failure

    async def add_dispute(self, dispute: Dispute) -> Dispute:
        model = DisputeModel(
            dispute_code=dispute.dispute_code,
            order_id=dispute.order_id,
            shipment_id=dispute.shipment_id,
            dispute_type=dispute.dispute_type.value,
            status=dispute.status.value,
            title=dispute.title,
            description=dispute.description,
            customer_email=dispute.customer_email,
            customer_phone=dispute.customer_phone,
            opened_by=dispute.opened_by,
        )
        self.session.add(model)
        await self.session.flush()
        dispute.id = model.id
        dispute.created_at = model.created_at
        logger.info("dispute_opened", dispute_code=dispute.dispute_code, order_id=dispute.order_id)
        return dispute

    async def list_disputes(self, order_id: int) -> List[Dispute]:
        result = await self.session.execute(
            select(DisputeModel).where(DisputeModel.order_id == order_id).order_by(DisputeModel.id)
        )
        return [
            Dispute(
                id=m.id,
                dispute_code=m.dispute_code,
                order_id=m.order_id,
                shipment_id=m.shipment_id,
                dispute_type=DisputeType(m.dispute_type),
                status=DisputeStatus(m.status),
                title=m.title,
                description=m.description or "",
                customer_email=m.customer_email,
                customer_phone=m.customer_phone,
                opened_by=m.opened_by,
                created_at=m.created_at,
            )
            for m in result.scalars().all()
        ]
