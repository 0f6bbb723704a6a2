"""
Factory for the payment gateway client.
"""
from __future__ import annotations

from application.ports.payment_gateway import PaymentGateway
from core.config import Settings


def build_payment_gateway(settings: Settings) -> PaymentGateway:
    from .midtrans_client import MidtransClient

    tuning = settings.payment
    return MidtransClient(
        settings.PAYMENT_SERVER_KEY or "",
        environment=settings.PAYMENT_ENVIRONMENT,
        timeout=tuning.timeout_seconds,
        retry={"max": tuning.retry_max, "base": tuning.retry_base_backoff},
    )
