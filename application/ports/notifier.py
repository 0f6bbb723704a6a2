"""
Notification ports.

`Notifier` writes outbox rows inside the caller's unit of work;
`NotificationTransport` delivers a claimed row after commit.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from domain.common.unit_of_work import AbstractUnitOfWork
from domain.notification.entity import EventKind, NotificationLog


@runtime_checkable
class Notifier(Protocol):
    async def enqueue(
        self,
        uow: AbstractUnitOfWork,
        *,
        order_id: int,
        event_kind: EventKind,
        recipient: str,
        payload: dict[str, Any],
    ) -> bool: ...


@runtime_checkable
class NotificationTransport(Protocol):
    name: str

    async def send(self, notification: NotificationLog) -> None: ...
