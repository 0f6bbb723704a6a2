"""
Payment gateway status tables.

Gateway `transaction_status` values are translated into the local payment
status names here; the domain layer decides what each local status means.
"""
from __future__ import annotations


# Midtrans transaction_status -> local payment status
GATEWAY_STATUS_TO_INTERNAL = {
    "settlement": "PAID",
    "capture": "PAID",
    "pending": "PENDING",
    "expire": "EXPIRED",
    "cancel": "CANCELLED",
    "deny": "FAILED",
    "failure": "FAILED",
}

# Gateway statuses that end a transaction
FINAL_GATEWAY_STATUSES = frozenset({"settlement", "capture", "deny", "cancel", "expire", "failure"})

# Refund rejection messages keyed by gateway HTTP status
REFUND_ERROR_MESSAGES = {
    400: "Refund request rejected by gateway (bad request)",
    401: "Gateway authentication failed",
    404: "Transaction not found at gateway",
    412: "Transaction already refunded",
    413: "Refund amount exceeds the refundable amount",
    418: "Settlement window not open yet, manual processing required",
    500: "Gateway internal error, try again later",
    503: "Gateway unavailable, try again later",
}
