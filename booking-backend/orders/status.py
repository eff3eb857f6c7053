# booking-backend/orders/status.py
"""
Order / reservation status vocabulary.

One closed set of canonical values. Legacy and gateway spellings are
translated here, once, so the rest of the code only compares canonical
statuses.
"""
from django.db import models


class OrderStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    IN_PROCESS = "in_process", "In process"
    AUTHORIZED = "authorized", "Authorized"
    PAID = "paid", "Paid"
    PARTIAL_REFUNDED = "partial_refunded", "Partially refunded"
    RECUSED = "recused", "Recused"
    CANCELLED = "cancelled", "Cancelled"


# Reservations in these states no longer hold capacity
RELEASED_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.RECUSED})
TERMINAL_STATUSES = RELEASED_STATUSES
AWAITING_PAYMENT_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.IN_PROCESS})

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {
        OrderStatus.IN_PROCESS, OrderStatus.AUTHORIZED, OrderStatus.PAID,
        OrderStatus.RECUSED, OrderStatus.CANCELLED,
    },
    OrderStatus.IN_PROCESS: {
        OrderStatus.AUTHORIZED, OrderStatus.PAID, OrderStatus.RECUSED, OrderStatus.CANCELLED,
    },
    OrderStatus.AUTHORIZED: {OrderStatus.PAID, OrderStatus.RECUSED, OrderStatus.CANCELLED},
    # paid -> cancelled only through the administrative cash-cancel path
    OrderStatus.PAID: {OrderStatus.PARTIAL_REFUNDED, OrderStatus.RECUSED, OrderStatus.CANCELLED},
    OrderStatus.PARTIAL_REFUNDED: {OrderStatus.RECUSED},
    OrderStatus.RECUSED: set(),
    OrderStatus.CANCELLED: set(),
}

# Values older clients and rows used for the same states
STATUS_ALIASES = {
    "confirmed": OrderStatus.PAID,
    "approved": OrderStatus.PAID,
    "canceled": OrderStatus.CANCELLED,
    "refunded": OrderStatus.RECUSED,
    "expired": OrderStatus.CANCELLED,
    "declined": OrderStatus.RECUSED,
    "processing": OrderStatus.IN_PROCESS,
}

# Gateway transaction statuses -> local status
GATEWAY_STATUS_MAP = {
    "paid": OrderStatus.PAID,
    "confirmed": OrderStatus.PAID,
    "approved": OrderStatus.PAID,
    "authorized": OrderStatus.AUTHORIZED,
    "pre_authorized": OrderStatus.AUTHORIZED,
    "pending": OrderStatus.IN_PROCESS,
    "waiting": OrderStatus.IN_PROCESS,
    "processing": OrderStatus.IN_PROCESS,
    "created": OrderStatus.IN_PROCESS,
    "cancelled": OrderStatus.RECUSED,
    "canceled": OrderStatus.RECUSED,
    "recused": OrderStatus.RECUSED,
    "refused": OrderStatus.RECUSED,
    "declined": OrderStatus.RECUSED,
    "expired": OrderStatus.RECUSED,
    "refunded": OrderStatus.RECUSED,
    "partially_refunded": OrderStatus.PARTIAL_REFUNDED,
    "partial_refunded": OrderStatus.PARTIAL_REFUNDED,
}


def normalize_status(value):
    """Canonical OrderStatus for a stored/legacy value, or None if unknown."""
    if value is None:
        return None
    key = str(value).strip().lower()
    if key in OrderStatus.values:
        return OrderStatus(key)
    return STATUS_ALIASES.get(key)


def map_gateway_status(value):
    if value is None:
        return None
    return GATEWAY_STATUS_MAP.get(str(value).strip().lower())


def can_transition(current, target) -> bool:
    current = normalize_status(current)
    target = normalize_status(target)
    if current is None or target is None:
        return False
    return target in ALLOWED_TRANSITIONS[current]
