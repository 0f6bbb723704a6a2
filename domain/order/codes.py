"""
Order code and resi (airway bill) generation and validation.
"""
from __future__ import annotations

import re
import secrets
from datetime import datetime, timezone
from typing import Optional

from domain.common.exceptions import InvalidResiFormatException

# Crockford-like alphabet without 0/O/1/I
ORDER_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ORDER_CODE_SUFFIX_LENGTH = 8
ORDER_CODE_PATTERN = re.compile(r"^[A-Z]{2,10}-\d{8}-[A-Z0-9]{8}$")

RESI_PATTERN = re.compile(r"^ZVR-[A-Z]{2,10}-\d{8}-\d+-[A-F0-9]{4}$")
ADMIN_RESI_PATTERN = re.compile(r"^[A-Za-z0-9-]+$")
ADMIN_RESI_MIN_LENGTH = 8
RESI_MAX_ATTEMPTS = 10


def generate_order_code(now: Optional[datetime] = None, *, prefix: str = "ZVR") -> str:
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(ORDER_CODE_ALPHABET) for _ in range(ORDER_CODE_SUFFIX_LENGTH))
    return f"{prefix}-{now:%Y%m%d}-{suffix}"


def generate_resi(courier_code: str, order_id: int, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    courier = normalize_courier(courier_code)
    return f"ZVR-{courier}-{now:%Y%m%d}-{order_id}-{secrets.token_hex(2).upper()}"


def normalize_courier(courier_code: str) -> str:
    courier = re.sub(r"[^A-Za-z]", "", courier_code or "").upper()
    if not 2 <= len(courier) <= 10:
        raise InvalidResiFormatException(courier_code or "", "courier code must be 2-10 letters")
    return courier


def validate_resi_format(resi: str) -> None:
    """Check a locally generated resi: ZVR-{COURIER}-{YYYYMMDD}-{ORDERID}-{HEX4}."""
    parts = (resi or "").split("-")
    if len(parts) != 5:
        raise InvalidResiFormatException(resi, "expected 5 dash-separated parts")
    prefix, courier, date_part, order_part, rand = parts
    if prefix != "ZVR":
        raise InvalidResiFormatException(resi, "prefix must be ZVR")
    if not re.fullmatch(r"[A-Z]{2,10}", courier):
        raise InvalidResiFormatException(resi, "courier must be 2-10 uppercase letters")
    try:
        datetime.strptime(date_part, "%Y%m%d")
    except ValueError:
        raise InvalidResiFormatException(resi, "invalid date") from None
    if not order_part.isdigit():
        raise InvalidResiFormatException(resi, "order id must be numeric")
    if not re.fullmatch(r"[A-F0-9]{4}", rand):
        raise InvalidResiFormatException(resi, "suffix must be 4 uppercase hex characters")


def validate_admin_resi(resi: str) -> str:
    """Admin-typed tracking numbers come from the courier; only sanity checks apply."""
    value = (resi or "").strip()
    if len(value) < ADMIN_RESI_MIN_LENGTH:
        raise InvalidResiFormatException(value, f"must be at least {ADMIN_RESI_MIN_LENGTH} characters")
    if not ADMIN_RESI_PATTERN.match(value):
        raise InvalidResiFormatException(value, "only letters, digits and '-' are allowed")
    return value
