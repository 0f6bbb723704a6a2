"""
Gateway attempt identifiers and webhook signature verification.
"""
from __future__ import annotations

import hashlib
import hmac
import secrets
import time
from typing import Optional


def generate_external_id(order_code: str, now: Optional[float] = None) -> str:
    """`{order_code}-{unix_ts}-{4 hex}`: unique per charge attempt."""
    ts = int(now if now is not None else time.time())
    return f"{order_code}-{ts}-{secrets.token_hex(2)}"


def order_code_from_external_id(external_id: str) -> str:
    """Strip the attempt suffix; plain order codes pass through unchanged."""
    parts = (external_id or "").split("-")
    if len(parts) > 3:
        return "-".join(parts[:3])
    return external_id


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def verify_signature(
    order_id: str,
    status_code: str,
    gross_amount: str,
    server_key: str,
    signature_key: str,
) -> bool:
    if not signature_key:
        return False
    expected = compute_signature(order_id, status_code, gross_amount, server_key)
    return hmac.compare_digest(expected, signature_key.strip().lower())
