"""
Order engine: checkout and the admin-driven order lifecycle.

Gateway calls never run inside a unit of work: each use-case reads and
decides in one short transaction, calls the gateway, and applies the
result in a second one.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from application.dtos.orders import CheckoutRequest, CheckoutResult, CourierSummary, OrderView, ShippingAddress
from application.dtos.shipping import DraftOrderRequest, RateQuery, ShippingContact, ShippingItem, ShippingRate
from application.ports.shipping_gateway import ShippingGateway
from application.services.order_transitions import OrderTransitioner
from application.services.stock import StockLedger
from core.config import JobSettings, ShippingTuning, StoreSettings
from core.logging_config import get_logger
from domain.common.exceptions import (
    CartEmptyException,
    ConflictException,
    DomainValidationException,
    GatewayPermanentException,
    GatewayTransientException,
    InsufficientStockException,
    InvalidAddressException,
    InvalidResiFormatException,
    InvalidTransitionException,
    OrderNotFoundException,
)
from domain.common.time import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.codes import RESI_MAX_ATTEMPTS, generate_order_code, generate_resi, validate_admin_resi
from domain.order.entity import Order, OrderItem
from domain.order.metadata import RESI_SOURCE, SHIPPING_SNAPSHOT
from domain.order.status import OrderStatus
from domain.shipment.entity import Shipment
from shared.codes.order_codes import OrderCode

logger = get_logger(__name__)

ZERO = Decimal("0")
ORDER_CODE_ATTEMPTS = 5
_POSTAL_CODE = re.compile(r"^\d{5}$")
_GATEWAY_ERRORS = (GatewayTransientException, GatewayPermanentException)


class OrderEngine:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        transitioner: OrderTransitioner,
        stock: StockLedger,
        shipping_gateway: ShippingGateway,
        *,
        shipping: ShippingTuning,
        jobs: JobSettings,
        store: StoreSettings,
    ) -> None:
        self._uow_factory = uow_factory
        self._transitioner = transitioner
        self._stock = stock
        self._shipping = shipping_gateway
        self._shipping_cfg = shipping
        self._jobs = jobs
        self._store = store

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def checkout(self, req: CheckoutRequest) -> CheckoutResult:
        self._validate_address(req.address)

        async with self._uow_factory(readonly=True) as uow:
            cart = await uow.cart_repository.get(req.cart_id)
            if cart is None or cart.is_empty:
                raise CartEmptyException()
            items, weight_grams = await self._price_cart(uow, cart)

        subtotal = sum((item.subtotal for item in items), ZERO)
        rate, fallback_reason = await self._select_rate(req, items, weight_grams)
        shipping_cost = Decimal(rate.price)
        # tax and discount are never taken from the customer
        tax = discount = ZERO
        total = Order.compute_total(subtotal, shipping_cost, tax, discount)

        for attempt in range(1, ORDER_CODE_ATTEMPTS + 1):
            try:
                order = await self._persist_order(
                    req, cart.id, items, weight_grams, rate, fallback_reason,
                    subtotal=subtotal, shipping_cost=shipping_cost, tax=tax, discount=discount, total=total,
                )
                break
            except ConflictException as e:
                if e.code != OrderCode.ORDER_CODE_CONFLICT or attempt == ORDER_CODE_ATTEMPTS:
                    raise
                logger.warning("order_code_collision", attempt=attempt, error=e.message)

        logger.info(
            "order_created",
            order_id=order.id,
            order_code=order.order_code,
            total_amount=str(order.total_amount),
            shipping_fallback=bool(fallback_reason),
        )

        await self._register_draft_order(order, req)

        return CheckoutResult(
            order_id=order.id,
            order_code=order.order_code,
            status=order.status.value,
            subtotal=order.subtotal,
            shipping_cost=order.shipping_cost,
            tax=order.tax,
            discount=order.discount,
            total_amount=order.total_amount,
            courier=CourierSummary(
                courier_code=req.courier_code.lower(),
                service_code=req.service_code.lower(),
                service_name=rate.service_name,
                etd=rate.duration,
                cost=shipping_cost,
                fallback=bool(fallback_reason),
            ),
        )

    async def _persist_order(
        self,
        req: CheckoutRequest,
        cart_id: int,
        items: list[OrderItem],
        weight_grams: int,
        rate: ShippingRate,
        fallback_reason: Optional[str],
        *,
        subtotal: Decimal,
        shipping_cost: Decimal,
        tax: Decimal,
        discount: Decimal,
        total: Decimal,
    ) -> Order:
        """Insert the order, reserve its stock and clear the cart in one transaction.

        A unique-code race surfaces as a ConflictException after the whole
        transaction has been rolled back, so the caller can simply try again.
        """
        async with self._uow_factory() as uow:
            order = Order(
                id=None,
                order_code=await self._unique_order_code(uow),
                customer_name=req.customer.name,
                customer_email=req.customer.email,
                customer_phone=req.customer.phone,
                subtotal=subtotal,
                shipping_cost=shipping_cost,
                tax=tax,
                discount=discount,
                total_amount=total,
                user_id=req.user_id,
                stock_reserved=True,
                items=items,
            )
            order.metadata.shipping_address = req.address.model_dump()
            order.metadata.destination = {
                "postal_code": req.address.postal_code,
                "area_id": req.address.area_id,
            }
            order.metadata.total_weight_grams = weight_grams
            order.metadata.set_courier(
                req.courier_code.lower(),
                req.service_code.lower(),
                service_name=rate.service_name,
                etd=rate.duration,
            )
            order.metadata.set(SHIPPING_SNAPSHOT, {
                "price": str(rate.price),
                "duration": rate.duration,
                "service_type": rate.service_type,
                "raw": rate.raw,
            })
            if fallback_reason:
                order.metadata.record_fallback("shipping_rate", fallback_reason, cost=str(shipping_cost))
            order.validate_totals()

            order = await uow.order_repository.create(order)
            await self._stock.reserve(uow, order)
            await uow.shipment_repository.create(
                Shipment(
                    id=None,
                    order_id=order.id,
                    provider_code=req.courier_code.lower(),
                    provider_name=rate.courier_name,
                    service_code=req.service_code.lower(),
                    service_name=rate.service_name,
                    cost=shipping_cost,
                    etd=rate.duration,
                    weight_grams=weight_grams,
                    origin={
                        "postal_code": self._shipping_cfg.origin_postal_code,
                        "area_id": self._shipping_cfg.origin_area_id,
                    },
                    destination=order.metadata.destination,
                    rate_snapshot=rate.model_dump(mode="json"),
                )
            )
            await uow.cart_repository.clear(cart_id)
        return order

    async def _price_cart(self, uow: AbstractUnitOfWork, cart) -> tuple[list[OrderItem], int]:
        items: list[OrderItem] = []
        weight = 0
        for line in cart.items:
            product = await uow.inventory_repository.get_product(line.product_id)
            if product is None or not product.is_active:
                raise DomainValidationException(f"Product {line.product_id} is not available", field="items")
            # zero product stock means the stock lives on the variants
            if product.stock > 0 and product.stock < line.quantity:
                raise InsufficientStockException(product.id, line.quantity, product.stock)
            price = product.price
            item_weight = product.weight_grams
            if line.variant_id is not None:
                variant = await uow.inventory_repository.get_variant(line.variant_id)
                if variant is None or variant.product_id != product.id:
                    raise DomainValidationException(f"Variant {line.variant_id} is not available", field="items")
                if product.stock == 0 and variant.stock < line.quantity:
                    raise InsufficientStockException(product.id, line.quantity, variant.stock, variant_id=variant.id)
                if variant.price is not None:
                    price = variant.price
                if variant.weight_grams:
                    item_weight = variant.weight_grams
            item_weight = item_weight if item_weight and item_weight > 0 else self._shipping_cfg.default_item_weight_grams
            weight += item_weight * line.quantity
            items.append(
                OrderItem(
                    id=None,
                    order_id=None,
                    product_id=product.id,
                    variant_id=line.variant_id,
                    product_name=product.name,
                    product_image=product.image_url,
                    quantity=line.quantity,
                    unit_price=price,
                    weight_grams=item_weight,
                )
            )
        return items, max(weight, self._shipping_cfg.min_total_weight_grams)

    async def _select_rate(self, req: CheckoutRequest, items: list[OrderItem], weight_grams: int) -> tuple[ShippingRate, Optional[str]]:
        courier = req.courier_code.lower()
        service = req.service_code.lower()
        query = RateQuery(
            origin_postal_code=self._shipping_cfg.origin_postal_code,
            origin_area_id=self._shipping_cfg.origin_area_id,
            destination_postal_code=req.address.postal_code,
            destination_area_id=req.address.area_id,
            couriers=[courier],
            items=[
                ShippingItem(name=item.product_name, value=item.unit_price, quantity=item.quantity, weight_grams=item.weight_grams)
                for item in items
            ],
        )
        reason: str
        try:
            rates = await self._shipping.get_rates(query)
        except _GATEWAY_ERRORS as exc:
            logger.warning("shipping_rates_unavailable", courier=courier, service=service, error=exc.message)
            reason = f"gateway_error: {exc.message}"
        else:
            for rate in rates:
                if rate.courier_code.lower() == courier and rate.service_code.lower() == service:
                    return rate, None
            logger.warning("shipping_rate_not_found", courier=courier, service=service, offered=len(rates))
            reason = "rate_not_offered"
        fallback = ShippingRate(
            courier_code=courier,
            service_code=service,
            service_name=service.upper(),
            price=Decimal(self._shipping_cfg.fallback_cost),
            duration=self._shipping_cfg.fallback_etd,
            service_type="fallback",
        )
        return fallback, reason

    async def _unique_order_code(self, uow: AbstractUnitOfWork) -> str:
        for _ in range(ORDER_CODE_ATTEMPTS):
            code = generate_order_code(prefix=self._store.order_code_prefix)
            if not await uow.order_repository.code_exists(code):
                return code
        raise ConflictException(
            code=OrderCode.ORDER_CODE_CONFLICT,
            message="Could not allocate a unique order code",
            error_type="OrderCodeExhausted",
        )

    @staticmethod
    def _validate_address(address: ShippingAddress) -> None:
        if not address.address.strip():
            raise InvalidAddressException("street address is required")
        if not address.postal_code and not address.area_id:
            raise InvalidAddressException("postal code or area id is required")
        if address.postal_code and not _POSTAL_CODE.match(address.postal_code):
            raise InvalidAddressException(f"postal code '{address.postal_code}' must be 5 digits")

    async def _register_draft_order(self, order: Order, req: CheckoutRequest) -> None:
        """Pre-register the waybill. Never fails the checkout."""
        cfg = self._shipping_cfg
        draft = DraftOrderRequest(
            reference_id=order.order_code,
            origin=ShippingContact(
                name=cfg.origin_contact_name,
                phone=cfg.origin_contact_phone,
                address=cfg.origin_address,
                postal_code=cfg.origin_postal_code,
                area_id=cfg.origin_area_id,
            ),
            destination=ShippingContact(
                name=req.address.recipient_name,
                phone=req.address.phone,
                address=req.address.address,
                postal_code=req.address.postal_code,
                area_id=req.address.area_id,
                email=req.customer.email,
            ),
            courier_code=req.courier_code.lower(),
            service_code=req.service_code.lower(),
            items=[
                ShippingItem(name=item.product_name, value=item.unit_price, quantity=item.quantity, weight_grams=item.weight_grams)
                for item in order.items
            ],
        )
        try:
            result = await self._shipping.create_draft_order(draft)
            async with self._uow_factory() as uow:
                locked = await uow.order_repository.get_for_update(order.id)
                locked.metadata.draft_order_id = result.id
                await uow.order_repository.update(locked)
        except Exception as exc:
            logger.warning("draft_order_failed", order_id=order.id, order_code=order.order_code, error=str(exc))
            return
        logger.info("draft_order_registered", order_id=order.id, draft_order_id=result.id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def get_order(self, order_code: str) -> OrderView:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_code(order_code)
            if order is None:
                raise OrderNotFoundException(order_code)
            return OrderView.from_entity(order)

    async def cancel_by_customer(self, order_code: str, customer_email: Optional[str] = None) -> OrderView:
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_by_code_for_update(order_code)
            if order is None or (customer_email and order.customer_email.lower() != customer_email.lower()):
                raise OrderNotFoundException(order_code)
            if order.status is OrderStatus.CANCELLED:
                return OrderView.from_entity(order)
            if not order.status.can_be_cancelled_by_customer:
                raise InvalidTransitionException("order", order.status.value, OrderStatus.CANCELLED.value)
            await self._transitioner.apply(uow, order, OrderStatus.CANCELLED, actor="customer", reason="cancelled by customer")
            return OrderView.from_entity(order)

    async def pack(self, order_id: int, *, actor: str) -> OrderView:
        return await self._transition(order_id, OrderStatus.PACKING, actor=actor, reason="packed")

    async def mark_delivered(self, order_id: int, *, actor: str) -> OrderView:
        return await self._transition(order_id, OrderStatus.DELIVERED, actor=actor, reason="delivered")

    async def complete(self, order_id: int, *, actor: str) -> OrderView:
        return await self._transition(order_id, OrderStatus.COMPLETED, actor=actor, reason="completed")

    async def _transition(self, order_id: int, target: OrderStatus, *, actor: str, reason: str) -> OrderView:
        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_for_update(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            await self._transitioner.apply(uow, order, target, actor=actor, reason=reason)
            return OrderView.from_entity(order)

    async def generate_resi(self, order_id: int, *, actor: str = "system") -> str:
        """Allocate a tracking number: the courier's waybill if the draft order
        confirms, a locally generated one otherwise."""
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            if order.resi:
                return order.resi
            draft_order_id = order.metadata.draft_order_id

        waybill: Optional[str] = None
        fallback_reason: Optional[str] = None
        if draft_order_id:
            try:
                confirmed = await self._shipping.confirm_draft_order(draft_order_id)
                waybill = confirmed.waybill_id
                if not waybill:
                    fallback_reason = "confirm_without_waybill"
            except _GATEWAY_ERRORS as exc:
                logger.warning("draft_order_confirm_failed", order_id=order_id, draft_order_id=draft_order_id, error=exc.message)
                fallback_reason = f"confirm_failed: {exc.message}"
        else:
            fallback_reason = "no_draft_order"

        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_for_update(order_id)
            if order.resi:
                return order.resi
            if waybill and await uow.order_repository.resi_exists(waybill, exclude_order_id=order.id):
                fallback_reason = "waybill_already_used"
                waybill = None
            resi = waybill or await self._local_resi(uow, order)
            order.assign_resi(resi)
            order.metadata.set(RESI_SOURCE, "gateway" if waybill else "local")
            if fallback_reason:
                order.metadata.record_fallback("resi", fallback_reason)
            await uow.order_repository.update(order)

        logger.info("resi_generated", order_id=order_id, resi=resi, source="gateway" if waybill else "local", actor=actor)
        return resi

    async def _local_resi(self, uow: AbstractUnitOfWork, order: Order) -> str:
        courier = order.metadata.courier_code or "ZVR"
        for _ in range(RESI_MAX_ATTEMPTS):
            candidate = generate_resi(courier, order.id)
            if not await uow.order_repository.resi_exists(candidate):
                return candidate
        raise ConflictException(
            code=OrderCode.RESI_LOCKED,
            message=f"Could not allocate a unique resi for order {order.order_code}",
            error_type="ResiExhausted",
        )

    async def ship(self, order_id: int, *, actor: str, resi: Optional[str] = None) -> OrderView:
        if resi is not None:
            resi = validate_admin_resi(resi)
        else:
            resi = await self.generate_resi(order_id, actor=actor)

        async with self._uow_factory() as uow:
            order = await uow.order_repository.get_for_update(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            if order.status is OrderStatus.SHIPPED and order.resi == resi:
                return OrderView.from_entity(order)
            if order.status is not OrderStatus.PACKING:
                raise InvalidTransitionException("order", order.status.value, OrderStatus.SHIPPED.value)
            if await uow.order_repository.resi_exists(resi, exclude_order_id=order.id):
                raise InvalidResiFormatException(resi, "already assigned to another order")
            order.assign_resi(resi)
            await self._transitioner.apply(uow, order, OrderStatus.SHIPPED, actor=actor, reason="shipped", metadata={"resi": resi})
            return OrderView.from_entity(order)

    # ------------------------------------------------------------------
    # Sweeper entry points
    # ------------------------------------------------------------------

    async def expire_stale_orders(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        cutoff = now - timedelta(hours=self._jobs.order_expiry_hours)
        async with self._uow_factory(readonly=True) as uow:
            order_ids = await uow.order_repository.list_pending_created_before(cutoff, self._jobs.batch_size)
        expired = 0
        for order_id in order_ids:
            try:
                async with self._uow_factory() as uow:
                    order = await uow.order_repository.get_for_update(order_id)
                    if order is None or order.status is not OrderStatus.PENDING:
                        continue
                    if await self._transitioner.apply(
                        uow, order, OrderStatus.EXPIRED, actor="system:order_expiry", reason="unpaid for too long", now=now
                    ):
                        expired += 1
            except Exception:
                logger.exception("order_expiry_failed", order_id=order_id)
        if expired:
            logger.info("orders_expired", count=expired)
        return expired

    async def auto_complete_delivered(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        cutoff = now - timedelta(days=self._jobs.auto_complete_days)
        async with self._uow_factory(readonly=True) as uow:
            order_ids = await uow.order_repository.list_delivered_before(cutoff, self._jobs.batch_size)
        completed = 0
        for order_id in order_ids:
            try:
                async with self._uow_factory() as uow:
                    order = await uow.order_repository.get_for_update(order_id)
                    if order is None or order.status is not OrderStatus.DELIVERED:
                        continue
                    if await self._transitioner.apply(
                        uow, order, OrderStatus.COMPLETED, actor="system:auto_complete", reason="delivery grace period elapsed", now=now
                    ):
                        completed += 1
            except Exception:
                logger.exception("order_auto_complete_failed", order_id=order_id)
        return completed
