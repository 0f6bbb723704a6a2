"""
Schema-flexible order metadata.

The map is persisted as JSON. Known keys get typed accessors; anything else
is carried through untouched so new keys never need a migration.
"""
from __future__ import annotations

import copy
from typing import Any, Iterator, Mapping, Optional

SHIPPING_ADDRESS = "shipping_address"
COURIER = "courier"
WEIGHT_GRAMS = "total_weight_grams"
DESTINATION = "destination"
SHIPPING_SNAPSHOT = "shipping_snapshot"
FALLBACKS = "fallbacks"
DRAFT_ORDER_ID = "draft_order_id"
RESI_SOURCE = "resi_source"


class OrderMetadata(Mapping[str, Any]):
    def __init__(self, data: Optional[Mapping[str, Any]] = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(dict(data or {}))

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"OrderMetadata({self._data!r})"

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    # -- shipping address snapshot -------------------------------------------
    @property
    def shipping_address(self) -> dict[str, Any]:
        return dict(self._data.get(SHIPPING_ADDRESS) or {})

    @shipping_address.setter
    def shipping_address(self, value: Mapping[str, Any]) -> None:
        self._data[SHIPPING_ADDRESS] = dict(value)

    # -- courier selection ---------------------------------------------------
    @property
    def courier_code(self) -> Optional[str]:
        return (self._data.get(COURIER) or {}).get("courier_code")

    @property
    def service_code(self) -> Optional[str]:
        return (self._data.get(COURIER) or {}).get("service_code")

    def set_courier(self, courier_code: str, service_code: str, **extra: Any) -> None:
        self._data[COURIER] = {"courier_code": courier_code, "service_code": service_code, **extra}

    # -- weights and destination ---------------------------------------------
    @property
    def total_weight_grams(self) -> int:
        return int(self._data.get(WEIGHT_GRAMS) or 0)

    @total_weight_grams.setter
    def total_weight_grams(self, grams: int) -> None:
        self._data[WEIGHT_GRAMS] = int(grams)

    @property
    def destination(self) -> dict[str, Any]:
        return dict(self._data.get(DESTINATION) or {})

    @destination.setter
    def destination(self, value: Mapping[str, Any]) -> None:
        self._data[DESTINATION] = dict(value)

    # -- gateway breadcrumbs -------------------------------------------------
    @property
    def draft_order_id(self) -> Optional[str]:
        return self._data.get(DRAFT_ORDER_ID)

    @draft_order_id.setter
    def draft_order_id(self, value: Optional[str]) -> None:
        self._data[DRAFT_ORDER_ID] = value

    @property
    def fallbacks(self) -> list[dict[str, Any]]:
        return list(self._data.get(FALLBACKS) or [])

    def record_fallback(self, kind: str, reason: str, **extra: Any) -> None:
        """Leave a breadcrumb that a gateway fallback was used."""
        entries = list(self._data.get(FALLBACKS) or [])
        entries.append({"kind": kind, "reason": reason, **extra})
        self._data[FALLBACKS] = entries

    def used_fallback(self, kind: str) -> bool:
        return any(entry.get("kind") == kind for entry in self.fallbacks)
