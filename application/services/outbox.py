"""
Transactional notification outbox.

`OutboxNotifier.enqueue` runs inside the producing transaction. The
`OutboxPublisher` drains committed rows: each row is claimed
(PENDING -> SENDING) and committed before the transport is called, so a row
is handed to the transport at most once.
"""
from __future__ import annotations

from typing import Any, Callable

from application.ports.notifier import NotificationTransport
from core.logging_config import get_logger
from domain.common.exceptions import ConflictException, NotificationNotFoundException
from domain.common.time import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.notification.entity import EventKind, NotificationLog, NotificationStatus
from shared.codes.order_codes import OrderCode

logger = get_logger(__name__)


class OutboxNotifier:
    async def enqueue(
        self,
        uow: AbstractUnitOfWork,
        *,
        order_id: int,
        event_kind: EventKind,
        recipient: str,
        payload: dict[str, Any],
    ) -> bool:
        """Queue one notification per (order, event). Returns False when skipped."""
        repo = uow.notification_repository
        if await repo.exists_active(order_id, event_kind):
            logger.info("notification_enqueue_skipped", order_id=order_id, event_kind=event_kind.value)
            return False
        await repo.add(
            NotificationLog(
                id=None,
                order_id=order_id,
                event_kind=event_kind,
                recipient=recipient,
                payload=payload,
            )
        )
        logger.info("notification_enqueued", order_id=order_id, event_kind=event_kind.value)
        return True


class OutboxPublisher:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        transport: NotificationTransport,
        *,
        batch_size: int = 50,
    ) -> None:
        self._uow_factory = uow_factory
        self._transport = transport
        self._batch_size = batch_size

    async def publish_pending(self) -> int:
        """Claim and deliver one batch. Returns the number of rows delivered."""
        async with self._uow_factory() as uow:
            claimed = await uow.notification_repository.list_pending_for_update(self._batch_size)
            for row in claimed:
                row.status = NotificationStatus.SENDING
                row.attempts += 1
                row.updated_at = utcnow()
                await uow.notification_repository.update(row)

        sent = 0
        for row in claimed:
            if await self._deliver(row):
                sent += 1
        return sent

    async def _deliver(self, row: NotificationLog) -> bool:
        error: str | None = None
        try:
            await self._transport.send(row)
        except Exception as exc:  # transport failures never reach the caller
            error = f"{type(exc).__name__}: {exc}"
            logger.warning(
                "notification_send_failed",
                notification_id=row.id,
                order_id=row.order_id,
                event_kind=row.event_kind.value,
                error=error,
            )

        async with self._uow_factory() as uow:
            current = await uow.notification_repository.get_for_update(row.id)
            if current is None:
                return False
            if error is None:
                current.status = NotificationStatus.SENT
                current.sent_at = utcnow()
                current.error = None
            else:
                current.status = NotificationStatus.FAILED
                current.error = error[:1000]
            current.updated_at = utcnow()
            await uow.notification_repository.update(current)

        if error is None:
            logger.info(
                "notification_sent",
                notification_id=row.id,
                order_id=row.order_id,
                event_kind=row.event_kind.value,
                transport=self._transport.name,
            )
        return error is None

    async def redrive(self, notification_id: int) -> NotificationLog:
        """Put a FAILED row back into the queue (admin action)."""
        async with self._uow_factory() as uow:
            row = await uow.notification_repository.get_for_update(notification_id)
            if row is None:
                raise NotificationNotFoundException(notification_id)
            if row.status is not NotificationStatus.FAILED:
                raise ConflictException(
                    code=OrderCode.NOTIFICATION_NOT_FAILED,
                    message=f"Notification {notification_id} is {row.status.value}, only FAILED rows can be re-driven",
                    error_type="NotificationNotFailed",
                    details={"notification_id": notification_id, "status": row.status.value},
                )
            row.status = NotificationStatus.PENDING
            row.error = None
            row.updated_at = utcnow()
            row = await uow.notification_repository.update(row)
        logger.info("notification_redriven", notification_id=notification_id, order_id=row.order_id)
        return row

    async def list_for_order(self, order_id: int) -> list[NotificationLog]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.notification_repository.list_for_order(order_id)
