"""
发货仓储接口（含告警、承运商失败记录与纠纷）
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from .entity import CourierFailure, Dispute, Shipment, ShipmentAlert
from .status import ShipmentStatus


class ShipmentRepository(ABC):
    @abstractmethod
    async def create(self, shipment: Shipment) -> Shipment:
        pass

    @abstractmethod
    async def get_by_id(self, shipment_id: int) -> Optional[Shipment]:
        pass

    @abstractmethod
    async def get_for_update(self, shipment_id: int) -> Optional[Shipment]:
        pass

    @abstractmethod
    async def get_current_for_order(self, order_id: int, *, for_update: bool = False) -> Optional[Shipment]:
        """订单当前有效的发货记录（未被替换的最新一条）"""

    @abstractmethod
    async def update(self, shipment: Shipment) -> Shipment:
        pass

    @abstractmethod
    async def list_by_status(
        self,
        statuses: Iterable[ShipmentStatus],
        limit: int,
        *,
        inactive_since: Optional[datetime] = None,
        tracking_stale: Optional[bool] = None,
    ) -> List[Shipment]:
        """按状态列出，最久没有动静的排在前面"""

    @abstractmethod
    async def list_due_for_tracking(self, statuses: Iterable[ShipmentStatus], limit: int) -> List[Shipment]:
        pass

    @abstractmethod
    async def mark_tracking_checked(self, shipment_ids: Iterable[int], checked_at: datetime) -> None:
        pass

    @abstractmethod
    async def list_pickup_overdue(self, now: datetime, limit: int) -> List[Shipment]:
        pass

    @abstractmethod
    async def list_investigations_opened_before(self, cutoff: datetime, limit: int) -> List[Shipment]:
        pass

    @abstractmethod
    async def add_alert(self, alert: ShipmentAlert) -> ShipmentAlert:
        pass

    @abstractmethod
    async def list_alerts(self, shipment_id: int) -> List[ShipmentAlert]:
        pass

    @abstractmethod
    async def add_courier_failure(self, failure: CourierFailure) -> CourierFailure:
        pass

    @abstractmethod
    async def add_dispute(self, dispute: Dispute) -> Dispute:
        pass

    @abstractmethod
    async def list_disputes(self, order_id: int) -> List[Dispute]:
        pass
