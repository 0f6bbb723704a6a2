"""
通知发件箱仓储实现
"""
from typing import List, Optional

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.time import ensure_utc
from domain.notification.entity import EventKind, NotificationLog, NotificationStatus
from domain.notification.repository import NotificationRepository
from infrastructure.models.notification import NotificationLogModel

_ACTIVE = (
    NotificationStatus.PENDING.value,
    NotificationStatus.SENDING.value,
    NotificationStatus.SENT.value,
)


class SQLAlchemyNotificationRepository(NotificationRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: NotificationLogModel) -> NotificationLog:
        return NotificationLog(
            id=model.id,
            order_id=model.order_id,
            event_kind=EventKind(model.event_kind),
            recipient=model.recipient,
            payload=model.payload or {},
            status=NotificationStatus(model.status),
            attempts=model.attempts or 0,
            error=model.error,
            sent_at=ensure_utc(model.sent_at),
            created_at=ensure_utc(model.created_at),
            updated_at=ensure_utc(model.updated_at),
        )

    async def add(self, notification: NotificationLog) -> NotificationLog:
        model = NotificationLogModel(
            order_id=notification.order_id,
            event_kind=notification.event_kind.value,
            recipient=notification.recipient,
            payload=notification.payload,
            status=notification.status.value,
            attempts=notification.attempts,
            error=notification.error,
        )
        self.session.add(model)
        await self.session.flush()
        return self._to_entity(model)

    async def exists_active(self, order_id: int, event_kind: EventKind) -> bool:
        result = await self.session.execute(
            select(
                exists().where(
                    NotificationLogModel.order_id == order_id,
                    NotificationLogModel.event_kind == event_kind.value,
                    NotificationLogModel.status.in_(_ACTIVE),
                )
            )
        )
        return bool(result.scalar())

    async def list_pending_for_update(self, limit: int) -> List[NotificationLog]:
        result = await self.session.execute(
            select(NotificationLogModel)
            .where(NotificationLogModel.status == NotificationStatus.PENDING.value)
            .order_by(NotificationLogModel.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def get_for_update(self, notification_id: int) -> Optional[NotificationLog]:
        result = await self.session.execute(
            select(NotificationLogModel).where(NotificationLogModel.id == notification_id).with_for_update()
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def update(self, notification: NotificationLog) -> NotificationLog:
        model = await self.session.get(NotificationLogModel, notification.id)
        if model is None:
            raise ValueError(f"Notification {notification.id} does not exist")
        model.status = notification.status.value
        model.attempts = notification.attempts
        model.error = notification.error
        model.sent_at = notification.sent_at
        await self.session.flush()
        return notification

    async def list_for_order(self, order_id: int) -> List[NotificationLog]:
        result = await self.session.execute(
            select(NotificationLogModel)
            .where(NotificationLogModel.order_id == order_id)
            .order_by(NotificationLogModel.id)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
