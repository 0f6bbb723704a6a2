"""
Stock-bearing catalog rows, the stock movement ledger and carts.

Catalog CRUD lives elsewhere; these are the fields the order engine reads
and writes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class MovementType(str, Enum):
    RESERVE = "RESERVE"
    RELEASE = "RELEASE"
    DEDUCT = "DEDUCT"
    ADJUSTMENT = "ADJUSTMENT"


@dataclass
class Product:
    id: int
    name: str
    price: Decimal
    stock: int
    weight_grams: int = 0
    image_url: Optional[str] = None
    is_active: bool = True


@dataclass
class ProductVariant:
    id: int
    product_id: int
    sku: str
    stock: int
    price: Optional[Decimal] = None
    weight_grams: Optional[int] = None


@dataclass
class StockMovement:
    id: Optional[int]
    product_id: int
    movement_type: MovementType
    quantity: int
    balance_after: int
    variant_id: Optional[int] = None
    order_id: Optional[int] = None
    order_item_id: Optional[int] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class CartItem:
    id: Optional[int]
    product_id: int
    quantity: int
    variant_id: Optional[int] = None


@dataclass
class Cart:
    id: int
    session_id: Optional[str] = None
    user_id: Optional[int] = None
    items: list[CartItem] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.items
