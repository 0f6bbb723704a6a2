"""
Factory for the shipping aggregator client.
"""
from __future__ import annotations

from application.ports.shipping_gateway import ShippingGateway
from core.config import Settings


def build_shipping_gateway(settings: Settings) -> ShippingGateway:
    from .biteship_client import BiteshipClient

    tuning = settings.shipping
    return BiteshipClient(
        settings.SHIPPING_API_KEY or "",
        base_url=tuning.base_url,
        timeout=tuning.timeout_seconds,
        retry={"max": tuning.retry_max, "base": 0.2},
    )
