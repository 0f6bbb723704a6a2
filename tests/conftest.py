"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory settings for validation; every test builds its own database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./.pytest-zavera.db")
os.environ.setdefault("PAYMENT_SERVER_KEY", "SB-Mid-server-test")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ENABLE_SWEEPERS", "false")
os.environ.setdefault("ENABLE_OUTBOX_PUBLISHER", "false")

from dataclasses import dataclass  # noqa: E402
from datetime import timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from application.dtos.orders import CheckoutRequest, CheckoutResult, CustomerInfo, ShippingAddress  # noqa: E402
from application.dtos.payments import (  # noqa: E402
    ChargeResult,
    GatewayRefundResult,
    GatewayStatus,
    PaymentNotification,
    WebhookResult,
)
from application.dtos.shipping import ConfirmResult, DraftOrderResult, ShippingRate, TrackingResult  # noqa: E402
from core.config import JobSettings, PaymentTuning, Settings  # noqa: E402
from domain.common.time import utcnow  # noqa: E402
from domain.payment.signature import compute_signature  # noqa: E402
from domain.payment.status import PaymentMethod  # noqa: E402
from infrastructure.container import Container  # noqa: E402
from infrastructure.database import build_engine, build_session_factory  # noqa: E402
from infrastructure.models import (  # noqa: E402
    Base,
    CartItemModel,
    CartModel,
    ProductModel,
    ProductVariantModel,
)

SERVER_KEY = "SB-Mid-server-test"
ADMIN_EMAIL = "ops@zavera.id"


class StubPaymentGateway:
    provider = "stub"

    def __init__(self):
        self.charges = []
        self.refunds = []
        # external_id -> transaction_status returned by get_status
        self.statuses: dict[str, str] = {}
        self.status_error: Optional[Exception] = None
        self.refund_error: Optional[Exception] = None

    async def charge(self, req):
        self.charges.append(req)
        return ChargeResult(
            transaction_id=f"trx-{len(self.charges)}",
            transaction_status="pending",
            bank="bca",
            va_number="80777000123456",
            expiry_time=utcnow() + timedelta(minutes=req.expiry_minutes),
            raw={"status_code": "201", "order_id": req.external_id},
        )

    async def get_status(self, external_id):
        if self.status_error is not None:
            raise self.status_error
        return GatewayStatus(
            transaction_status=self.statuses.get(external_id, "pending"),
            transaction_id=f"trx-{external_id}",
            status_code="200",
            raw={"order_id": external_id},
        )

    async def refund(self, external_id, req):
        if self.refund_error is not None:
            raise self.refund_error
        self.refunds.append((external_id, req))
        return GatewayRefundResult(chargeback_id=f"cb-{len(self.refunds)}", status="refund", raw={})


class StubShippingGateway:
    provider = "stub"

    def __init__(self):
        self.rates = [
            ShippingRate(
                courier_code="jne",
                courier_name="JNE",
                service_code="reg",
                service_name="REG",
                price=Decimal("15000"),
                duration="2-3 days",
                service_type="standard",
            )
        ]
        self.rate_error: Optional[Exception] = None
        self.drafts = []
        self.waybill: Optional[str] = "JNE0012345678"
        self.tracking: dict[str, TrackingResult] = {}

    async def get_rates(self, query):
        if self.rate_error is not None:
            raise self.rate_error
        return list(self.rates)

    async def create_draft_order(self, req):
        self.drafts.append(req)
        return DraftOrderResult(id=f"draft-{len(self.drafts)}", status="placed")

    async def confirm_draft_order(self, draft_order_id):
        return ConfirmResult(waybill_id=self.waybill)

    async def track(self, waybill_id):
        return self.tracking[waybill_id]


class RecordingTransport:
    name = "recording"

    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, notification):
        if self.fail:
            raise RuntimeError("transport down")
        self.sent.append(notification)


def signed_webhook(external_id: str, gross_amount: str, transaction_status: str = "settlement", status_code: str = "200", **extra) -> dict:
    """Gateway notification body with a valid signature."""
    return {
        "order_id": external_id,
        "status_code": status_code,
        "gross_amount": gross_amount,
        "transaction_status": transaction_status,
        "transaction_id": f"trx-{external_id}",
        "payment_type": "bank_transfer",
        "signature_key": compute_signature(external_id, status_code, gross_amount, SERVER_KEY),
        **extra,
    }


@dataclass
class SeededCart:
    cart_id: int
    product_id: int
    variant_id: Optional[int] = None


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'zavera.db'}",
        PAYMENT_SERVER_KEY=SERVER_KEY,
        ENABLE_SWEEPERS=False,
        ENABLE_OUTBOX_PUBLISHER=False,
        payment=PaymentTuning(webhook_lookup_attempts=1, webhook_lookup_delay_seconds=0, recovery_max_attempts=2, recovery_base_backoff=0),
    )


@pytest_asyncio.fixture
async def engine(settings):
    engine = build_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def payment_gateway():
    return StubPaymentGateway()


@pytest.fixture
def shipping_gateway():
    return StubShippingGateway()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest_asyncio.fixture
async def container(settings, session_factory, payment_gateway, shipping_gateway, transport):
    container = Container(
        settings,
        session_factory=session_factory,
        payment_gateway=payment_gateway,
        shipping_gateway=shipping_gateway,
        transport=transport,
    )
    yield container
    await container.aclose()


@pytest_asyncio.fixture
async def narrow_container(settings, session_factory, payment_gateway, shipping_gateway, transport):
    """Second container over the same database whose sweepers take one row per batch."""
    narrow = settings.model_copy(update={"jobs": JobSettings(batch_size=1)})
    container = Container(
        narrow,
        session_factory=session_factory,
        payment_gateway=payment_gateway,
        shipping_gateway=shipping_gateway,
        transport=transport,
    )
    yield container
    await container.aclose()


@pytest.fixture
def seed_cart(session_factory):
    async def _seed(
        *,
        price: Decimal = Decimal("100000"),
        stock: int = 10,
        quantity: int = 2,
        variant_stock: Optional[int] = None,
    ) -> SeededCart:
        async with session_factory() as session:
            product = ProductModel(name="Linen Shirt", price=price, stock=stock, weight_grams=400)
            session.add(product)
            await session.flush()
            variant_id = None
            if variant_stock is not None:
                variant = ProductVariantModel(product_id=product.id, sku=f"LS-{product.id}-M", stock=variant_stock)
                session.add(variant)
                await session.flush()
                variant_id = variant.id
            cart = CartModel(session_id=f"sess-{product.id}")
            session.add(cart)
            await session.flush()
            session.add(CartItemModel(cart_id=cart.id, product_id=product.id, variant_id=variant_id, quantity=quantity))
            await session.commit()
            return SeededCart(cart_id=cart.id, product_id=product.id, variant_id=variant_id)

    return _seed


def checkout_request(cart_id: int, **overrides) -> CheckoutRequest:
    data = dict(
        cart_id=cart_id,
        customer=CustomerInfo(name="Ayu Lestari", email="ayu@example.com", phone="081234567890"),
        address=ShippingAddress(
            recipient_name="Ayu Lestari",
            phone="081234567890",
            address="Jl. Dago No. 10",
            city="Bandung",
            province="Jawa Barat",
            postal_code="40135",
        ),
        courier_code="jne",
        service_code="reg",
    )
    data.update(overrides)
    return CheckoutRequest(**data)


class OrderFlow:
    """Drives an order through checkout, payment and delivery."""

    def __init__(self, container: Container, seed_cart):
        self.container = container
        self._seed_cart = seed_cart
        self.seeded: Optional[SeededCart] = None

    async def checkout(self, **seed) -> CheckoutResult:
        self.seeded = await self._seed_cart(**seed)
        return await self.container.orders.checkout(checkout_request(self.seeded.cart_id))

    async def charge(self, order_id: int):
        return await self.container.payments.create_charge(order_id, PaymentMethod.VA_BCA)

    async def pay(self, order_id: int) -> WebhookResult:
        charge = await self.charge(order_id)
        body = signed_webhook(charge.external_id, f"{charge.amount:.2f}")
        return await self.container.payments.handle_webhook(PaymentNotification.from_gateway_payload(body))

    async def ship(self, order_id: int):
        await self.container.orders.pack(order_id, actor=f"admin:{ADMIN_EMAIL}")
        return await self.container.orders.ship(order_id, actor=f"admin:{ADMIN_EMAIL}")

    async def deliver(self, order_id: int):
        await self.ship(order_id)
        return await self.container.orders.mark_delivered(order_id, actor=f"admin:{ADMIN_EMAIL}")

    async def paid_order(self, **seed) -> CheckoutResult:
        result = await self.checkout(**seed)
        await self.pay(result.order_id)
        return result

    async def delivered_order(self, **seed) -> CheckoutResult:
        result = await self.paid_order(**seed)
        await self.deliver(result.order_id)
        return result


@pytest.fixture
def flow(container, seed_cart):
    return OrderFlow(container, seed_cart)
