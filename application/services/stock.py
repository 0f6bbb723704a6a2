"""
Stock ledger: every stock change goes through here and leaves a
`stock_movements` row.

RESERVE (-qty) at checkout, DEDUCT (0, once per item) when the order is
paid, RELEASE (+qty, once per order) when the order lands in a
stock-restoring state, ADJUSTMENT (+qty) when refunded items come back.
Lines whose product carries no stock are held on the variant instead.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from core.logging_config import get_logger
from domain.common.exceptions import InsufficientStockException, NotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.inventory.entity import MovementType, StockMovement
from domain.order.entity import Order, OrderItem
from shared.codes import BusinessCode

logger = get_logger(__name__)


@dataclass(frozen=True)
class StockLine:
    product_id: int
    quantity: int
    variant_id: Optional[int] = None
    order_item_id: Optional[int] = None


class StockLedger:
    async def reserve(self, uow: AbstractUnitOfWork, order: Order, lines: Optional[Iterable[StockLine]] = None) -> None:
        """Take stock for every line of `order` and mark it reserved."""
        lines = list(lines) if lines is not None else [self._line(item) for item in order.items]
        for line in sorted(lines, key=lambda l: (l.product_id, l.variant_id or 0)):
            await self._move(uow, order, line, MovementType.RESERVE, -line.quantity, "checkout reservation")
        order.stock_reserved = True

    async def deduct(self, uow: AbstractUnitOfWork, order: Order) -> int:
        """Turn the reservation into a sale. Idempotent per order."""
        existing = await uow.inventory_repository.list_movements(order_id=order.id, movement_type=MovementType.DEDUCT)
        done = {m.order_item_id for m in existing}
        count = 0
        for item in order.items:
            if item.id in done:
                continue
            product = await uow.inventory_repository.get_product(item.product_id)
            balance = product.stock if product else 0
            await uow.inventory_repository.add_movement(
                StockMovement(
                    id=None,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    movement_type=MovementType.DEDUCT,
                    quantity=0,
                    balance_after=balance,
                    order_id=order.id,
                    order_item_id=item.id,
                    reason="payment confirmed",
                )
            )
            count += 1
        return count

    async def release(self, uow: AbstractUnitOfWork, order: Order) -> bool:
        """Give back whatever the order still holds. Safe to call twice."""
        if not order.stock_reserved:
            return False
        repo = uow.inventory_repository
        movements = [
            *await repo.list_movements(order_id=order.id, movement_type=MovementType.RESERVE),
            *await repo.list_movements(order_id=order.id, movement_type=MovementType.RELEASE),
        ]
        held: dict[tuple[int, Optional[int], Optional[int]], int] = {}
        for m in movements:
            key = (m.product_id, m.variant_id, m.order_item_id)
            held[key] = held.get(key, 0) + m.quantity
        # restore to wherever the stock was taken from
        for (product_id, variant_id, order_item_id), net in sorted(held.items(), key=lambda kv: (kv[0][0], kv[0][1] or 0)):
            if net >= 0:
                continue
            line = StockLine(product_id=product_id, quantity=-net, variant_id=variant_id, order_item_id=order_item_id)
            await self._apply(uow, order, line, MovementType.RELEASE, -net, f"order {order.status.value.lower()}")
        order.stock_reserved = False
        logger.info("stock_released", order_id=order.id, order_code=order.order_code)
        return True

    async def restock(self, uow: AbstractUnitOfWork, order: Order, item: OrderItem, quantity: int, reason: str) -> None:
        """ADJUSTMENT for refunded goods coming back to the shelf."""
        reserved = await uow.inventory_repository.list_movements(order_id=order.id, movement_type=MovementType.RESERVE)
        source = next((m for m in reserved if m.order_item_id == item.id), None)
        variant_id = source.variant_id if source else None
        line = StockLine(product_id=item.product_id, quantity=quantity, variant_id=variant_id, order_item_id=item.id)
        await self._apply(uow, order, line, MovementType.ADJUSTMENT, quantity, reason)

    async def _move(self, uow, order: Order, line: StockLine, movement_type: MovementType, delta: int, reason: str) -> None:
        product = await uow.inventory_repository.get_product(line.product_id, for_update=True)
        if product is None:
            raise NotFoundException(
                code=BusinessCode.NOT_FOUND,
                message=f"Product {line.product_id} not found",
                error_type="ProductNotFound",
            )
        if product.stock > 0 or line.variant_id is None:
            if product.stock + delta < 0:
                raise InsufficientStockException(product.id, line.quantity, product.stock)
            await self._apply(uow, order, line, movement_type, delta, reason, held_on_variant=False)
            return
        variant = await uow.inventory_repository.get_variant(line.variant_id, for_update=True)
        available = variant.stock if variant else 0
        if variant is None or variant.stock + delta < 0:
            raise InsufficientStockException(product.id, line.quantity, available, variant_id=line.variant_id)
        await self._apply(uow, order, line, movement_type, delta, reason, held_on_variant=True)

    async def _apply(
        self,
        uow,
        order: Order,
        line: StockLine,
        movement_type: MovementType,
        delta: int,
        reason: str,
        *,
        held_on_variant: Optional[bool] = None,
    ) -> None:
        repo = uow.inventory_repository
        on_variant = held_on_variant if held_on_variant is not None else line.variant_id is not None
        if on_variant:
            variant = await repo.get_variant(line.variant_id, for_update=True)
            balance = variant.stock + delta
            await repo.set_variant_stock(variant.id, balance)
        else:
            product = await repo.get_product(line.product_id, for_update=True)
            balance = product.stock + delta
            await repo.set_product_stock(product.id, balance)
        await repo.add_movement(
            StockMovement(
                id=None,
                product_id=line.product_id,
                variant_id=line.variant_id if on_variant else None,
                movement_type=movement_type,
                quantity=delta,
                balance_after=balance,
                order_id=order.id,
                order_item_id=line.order_item_id,
                reason=reason,
            )
        )

    @staticmethod
    def _line(item: OrderItem) -> StockLine:
        return StockLine(
            product_id=item.product_id,
            quantity=item.quantity,
            variant_id=item.variant_id,
            order_item_id=item.id,
        )
