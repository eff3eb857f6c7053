# payments/reconciler.py
"""
Payment state reconciler.

Every change to an order's payment status goes through ``_apply_status``
with the order row locked. Webhooks, polls, expiry, capture, refund and
administrative cancellation are all idempotent: a repeated event finds the
order already in the target state, and an event the status lattice refuses
(e.g. ``paid`` after the order was cancelled for expiry) is recorded and
reported as AlreadyProcessed without touching the order.
"""
import hashlib
import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from cart.holds import clear_cart
from catalog.models import Product
from common.errors import (
    AlreadyProcessed,
    GatewayError,
    InvalidRange,
    InvalidState,
    MalformedPayload,
    NotFound,
)
from orders.models import AuditLog, Order, PaymentMethod, RefundStatus, Reservation
from orders.status import (
    AWAITING_PAYMENT_STATUSES,
    RELEASED_STATUSES,
    OrderStatus,
    can_transition,
    map_gateway_status,
    normalize_status,
)
from .gateway import get_gateway
from .models import PaymentEvent
from .signatures import verify_signature

logger = logging.getLogger(__name__)


SETTLED_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.PARTIAL_REFUNDED})
REFUNDABLE_METHODS = frozenset({PaymentMethod.PIX, PaymentMethod.CARD})
REFUND_GATEWAY_STATUSES = frozenset({"refunded", "partially_refunded", "partial_refunded"})


@dataclass
class ReconcileResult:
    order: Order
    previous_status: str
    status: str
    changed: bool
    refused: bool = False

    def as_dict(self):
        return {
            "order": str(self.order.pk),
            "previous_status": self.previous_status,
            "status": self.status,
            "changed": self.changed,
        }


def _get_order(order_id) -> Order:
    try:
        return Order.objects.get(pk=order_id)
    except (Order.DoesNotExist, ValidationError):
        raise NotFound(f"Order {order_id} not found", order_id=str(order_id))


def _lock_order(order_id) -> Order:
    try:
        return Order.objects.select_for_update().get(pk=order_id)
    except (Order.DoesNotExist, ValidationError):
        raise NotFound(f"Order {order_id} not found", order_id=str(order_id))


def _release_order(order, status, now):
    """Give back everything the order held: reservations and product stock."""
    released = (
        Reservation.objects.filter(order=order)
        .exclude(status__in=RELEASED_STATUSES)
        .update(status=status, updated_at=now)
    )
    items = list(order.items.select_for_update().filter(stock_restored=False).order_by("product_id"))
    if items:
        # lock products in id order before touching stock
        list(Product.objects.select_for_update().filter(pk__in=[i.product_id for i in items]).order_by("pk"))
        for item in items:
            Product.objects.filter(pk=item.product_id).update(stock=F("stock") + item.quantity)
            item.stock_restored = True
            item.save(update_fields=["stock_restored"])
    logger.info(
        "Order %s released: %s reservation(s), %s product line(s) restocked",
        order.pk, released, len(items),
    )


def _sync_reservations(order, status, now):
    if status in RELEASED_STATUSES:
        _release_order(order, status, now)
    elif status in (OrderStatus.PAID, OrderStatus.AUTHORIZED, OrderStatus.IN_PROCESS):
        Reservation.objects.filter(order=order).exclude(status__in=RELEASED_STATUSES).update(
            status=status, updated_at=now
        )


def _apply_status(order, target, *, now=None, allow_from_settled=False, paid_amount=None,
                  reason="", actor_id=None) -> ReconcileResult:
    """
    Move a locked order to ``target`` if the lattice allows it.

    Same-state targets are no-ops (changed=False). Refused transitions leave
    the order untouched and come back with refused=True so callers can record
    the event before raising AlreadyProcessed.
    """
    now = now or timezone.now()
    previous = normalize_status(order.status)
    target = normalize_status(target)

    if target is None or target == previous:
        return ReconcileResult(order, previous, previous, changed=False)

    refused = not can_transition(previous, target)
    if previous in SETTLED_STATUSES and target in RELEASED_STATUSES and not allow_from_settled:
        refused = True
    if refused:
        if target == OrderStatus.PAID:
            logger.warning("Order %s reported paid while %s; manual refund may be needed", order.pk, previous)
        else:
            logger.info("Order %s: transition %s -> %s refused", order.pk, previous, target)
        return ReconcileResult(order, previous, previous, changed=False, refused=True)

    order.status = target
    fields = ["status", "updated_at"]
    if target == OrderStatus.PAID:
        order.paid_at = order.paid_at or now
        order.paid_amount = paid_amount if paid_amount is not None else order.total_amount
        fields += ["paid_at", "paid_amount"]
    elif target == OrderStatus.CANCELLED:
        order.cancelled_at = now
        order.cancellation_reason = reason or order.cancellation_reason
        order.cancelled_by_id = actor_id
        fields += ["cancelled_at", "cancellation_reason", "cancelled_by"]
    order.save(update_fields=fields)
    _sync_reservations(order, target, now)

    logger.info("Order %s: %s -> %s", order.pk, previous, target)
    return ReconcileResult(order, previous, target, changed=True)


def _log_event(order, source, result=None, *, event_type="", gateway_status="", payload=None, dedupe_key=None):
    return PaymentEvent.objects.create(
        order=order,
        source=source,
        event_type=event_type or "",
        gateway_status=gateway_status or "",
        previous_status=result.previous_status if result else "",
        local_status=result.status if result else "",
        applied=bool(result and result.changed),
        dedupe_key=dedupe_key,
        payload=payload or {},
    )


def _settled_amount(order) -> Decimal:
    return order.paid_amount if order.paid_amount is not None else order.total_amount


def _refund_target(order, gateway_status="", refunded=None):
    """
    recused when the whole settled amount went back, partial_refunded otherwise.

    ``refunded`` is the cumulative amount the gateway reports; without it a
    refund already recorded here for less than the settled amount keeps the
    order partial.
    """
    if gateway_status in ("partially_refunded", "partial_refunded"):
        return OrderStatus.PARTIAL_REFUNDED
    if refunded is None:
        refunded = order.refund_amount
    if refunded is not None and refunded < _settled_amount(order):
        return OrderStatus.PARTIAL_REFUNDED
    return OrderStatus.RECUSED


def _record_refund(order, result, refunded, now):
    if not result.changed:
        return
    order.refund_status = RefundStatus.COMPLETED
    order.refund_date = now or timezone.now()
    if refunded is not None:
        order.refund_amount = refunded
    elif result.status == OrderStatus.RECUSED:
        order.refund_amount = _settled_amount(order)
    order.save(update_fields=["refund_status", "refund_date", "refund_amount", "updated_at"])


def _raise_if_refused(result: ReconcileResult, event: str):
    if result.refused:
        raise AlreadyProcessed(
            f"Order already {result.previous_status}; {event} ignored",
            status=result.previous_status,
        )


def apply_transaction(order_id, tx, *, source, now=None) -> ReconcileResult:
    """Store a gateway transaction on the order and apply the status it reports."""
    with transaction.atomic():
        order = _lock_order(order_id)
        if tx.tid and order.click2pay_tid != tx.tid:
            order.click2pay_tid = tx.tid
            order.payment_data = tx.raw
            order.save(update_fields=["click2pay_tid", "payment_data", "updated_at"])
        target = map_gateway_status(tx.status) or OrderStatus.IN_PROCESS
        result = _apply_status(order, target, now=now, paid_amount=tx.paid_amount)
        _log_event(order, source, result, gateway_status=tx.status, payload=tx.raw)
    _raise_if_refused(result, f"{source} status {tx.status!r}")
    return result


def check_status(order_id, *, gateway=None, now=None) -> ReconcileResult:
    """
    Ask the gateway for the transaction status and apply it.

    GatewayError propagates; nothing local changes and the caller polls again.
    """
    order = _get_order(order_id)
    if order.payment_method == PaymentMethod.CASH or not order.click2pay_tid:
        raise InvalidState("Order has no gateway transaction", order_id=str(order.pk))

    gateway = gateway or get_gateway()
    tx = gateway.get_transaction(order.click2pay_tid)
    is_refund = tx.status in REFUND_GATEWAY_STATUSES

    with transaction.atomic():
        order = _lock_order(order.pk)
        target = _refund_target(order, tx.status) if is_refund else map_gateway_status(tx.status)
        result = _apply_status(
            order, target, now=now, paid_amount=tx.paid_amount, allow_from_settled=is_refund,
        )
        if is_refund:
            _record_refund(order, result, None, now)
        _log_event(order, "poll", result, gateway_status=tx.status, payload=tx.raw)
    _raise_if_refused(result, f"gateway status {tx.status!r}")
    return result


def _parse_webhook(raw_body):
    try:
        payload = json.loads(raw_body or b"{}")
    except (TypeError, ValueError):
        raise MalformedPayload("Webhook body is not valid JSON")
    if not isinstance(payload, dict):
        raise MalformedPayload("Webhook body must be a JSON object")
    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    return payload, data


def _decimal_or_none(value):
    if value in (None, "") or isinstance(value, (dict, list, bool)):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _paid_amount(data):
    payment = data.get("payment") if isinstance(data.get("payment"), dict) else {}
    return _decimal_or_none(payment.get("paid_amount", payment.get("amount")))


def _refunded_amount(data):
    refund = data.get("refund") if isinstance(data.get("refund"), dict) else {}
    return _decimal_or_none(refund.get("amount", data.get("refunded_amount")))


def handle_webhook(raw_body: bytes, signature: str, *, secret=None, now=None) -> ReconcileResult:
    """
    Verify, deduplicate and apply a gateway notification.

    Raises Unauthorized on a bad signature, NotFound for an unknown order and
    AlreadyProcessed for duplicate deliveries or refused transitions.
    """
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    verify_signature(raw_body, signature, secret=secret)
    payload, data = _parse_webhook(raw_body)

    dedupe_key = hashlib.sha256(raw_body or b"").hexdigest()
    if PaymentEvent.objects.filter(dedupe_key=dedupe_key).exists():
        raise AlreadyProcessed("Duplicate webhook delivery")

    event_type = str(payload.get("type") or data.get("type") or "").upper()
    gateway_status = str(data.get("status") or "").lower()
    external_identifier = data.get("external_identifier") or data.get("externalIdentifier")
    tid = data.get("tid")

    order_qs = Order.objects.none()
    if external_identifier:
        order_qs = Order.objects.filter(external_identifier=external_identifier)
    if not order_qs.exists() and tid:
        order_qs = Order.objects.filter(click2pay_tid=tid)
    order_id = order_qs.values_list("pk", flat=True).first()
    if order_id is None:
        logger.warning("Webhook for unknown order external_identifier=%s tid=%s", external_identifier, tid)
        raise NotFound("Order not found for webhook", external_identifier=external_identifier, tid=tid)

    is_refund = "REFUND" in event_type or gateway_status in REFUND_GATEWAY_STATUSES
    refunded = _refunded_amount(data) if is_refund else None

    with transaction.atomic():
        order = _lock_order(order_id)
        if is_refund:
            target = _refund_target(order, gateway_status, refunded)
        else:
            target = map_gateway_status(gateway_status)
        try:
            with transaction.atomic():
                event = _log_event(
                    order, "webhook", event_type=event_type, gateway_status=gateway_status,
                    payload=payload, dedupe_key=dedupe_key,
                )
        except IntegrityError:
            raise AlreadyProcessed("Duplicate webhook delivery")

        result = _apply_status(
            order, target, now=now, paid_amount=_paid_amount(data),
            allow_from_settled=is_refund,
        )
        if is_refund:
            _record_refund(order, result, refunded, now)
        event.previous_status = result.previous_status
        event.local_status = result.status
        event.applied = result.changed
        event.save(update_fields=["previous_status", "local_status", "applied"])

    logger.info(
        "Webhook %s/%s for order %s: %s -> %s (changed=%s)",
        event_type, gateway_status, order_id, result.previous_status, result.status, result.changed,
    )
    _raise_if_refused(result, f"webhook {event_type or gateway_status}")
    return result


def cancel_expired_hold(order_id, *, now=None, claims=None) -> ReconcileResult:
    """
    Cancel an order whose payment window has elapsed without payment.

    Paid or authorized orders are never touched (AlreadyProcessed); an order
    already cancelled is a no-op.
    """
    now = now or timezone.now()
    with transaction.atomic():
        order = _lock_order(order_id)
        if claims is not None and not claims.is_staff and order.user_id != claims.user_id:
            raise NotFound(f"Order {order_id} not found", order_id=str(order_id))

        status = normalize_status(order.status)
        if status in RELEASED_STATUSES:
            return ReconcileResult(order, status, status, changed=False)
        if status not in AWAITING_PAYMENT_STATUSES:
            result = ReconcileResult(order, status, status, changed=False, refused=True)
        elif not order.payment_window_elapsed(now):
            raise InvalidState(
                "Payment window is still open",
                order_id=str(order.pk),
                expires_at=order.expires_at.isoformat() if order.expires_at else None,
            )
        else:
            result = _apply_status(order, OrderStatus.CANCELLED, now=now, reason="Payment window expired")
            # holds placed after checkout belong to the user's next cart
            clear_cart(order.user, created_before=order.created_at)
            _log_event(order, "expiry", result)
    _raise_if_refused(result, "expiry")
    return result


def expire_stale_orders(*, now=None) -> int:
    """Cancel every awaiting-payment order past its window. Returns how many changed."""
    now = now or timezone.now()
    stale = list(
        Order.objects.filter(status__in=AWAITING_PAYMENT_STATUSES, expires_at__lte=now)
        .values_list("pk", flat=True)
    )
    cancelled = 0
    for order_id in stale:
        try:
            result = cancel_expired_hold(order_id, now=now)
        except (AlreadyProcessed, InvalidState, NotFound) as exc:
            logger.info("Expiry skipped for order %s: %s", order_id, exc)
            continue
        cancelled += int(result.changed)
    if cancelled:
        logger.info("Expired %s order(s) past their payment window", cancelled)
    return cancelled


def poll_pending_orders(*, gateway=None, now=None) -> dict:
    """Re-read gateway status for open orders whose webhook may have been lost."""
    now = now or timezone.now()
    gateway = gateway or get_gateway()
    open_orders = list(
        Order.objects.filter(
            status__in=AWAITING_PAYMENT_STATUSES | {OrderStatus.AUTHORIZED},
        )
        .exclude(click2pay_tid="")
        .exclude(payment_method=PaymentMethod.CASH)
        .values_list("pk", flat=True)
    )
    stats = {"checked": 0, "changed": 0, "errors": 0}
    for order_id in open_orders:
        stats["checked"] += 1
        try:
            result = check_status(order_id, gateway=gateway, now=now)
        except GatewayError as exc:
            stats["errors"] += 1
            logger.error("Status poll failed for order %s: %s", order_id, exc)
            continue
        except AlreadyProcessed:
            continue
        stats["changed"] += int(result.changed)
    return stats


def capture_payment(order_id, *, gateway=None, now=None) -> ReconcileResult:
    """Capture an authorized card charge, then mark the order paid."""
    order = _get_order(order_id)
    if order.payment_method != PaymentMethod.CARD:
        raise InvalidState("Only card payments can be captured", order_id=str(order.pk))
    if normalize_status(order.status) != OrderStatus.AUTHORIZED:
        raise InvalidState(
            f"Order is {order.status}; only authorized payments can be captured",
            order_id=str(order.pk), status=order.status,
        )
    if not order.click2pay_tid:
        raise InvalidState("Order has no gateway transaction", order_id=str(order.pk))

    gateway = gateway or get_gateway()
    tx = gateway.capture(order.click2pay_tid, order.total_amount)

    with transaction.atomic():
        order = _lock_order(order.pk)
        result = _apply_status(order, OrderStatus.PAID, now=now, paid_amount=tx.paid_amount)
        _log_event(order, "capture", result, gateway_status=tx.status, payload=tx.raw)
        if result.refused:
            # the order moved on while the gateway was capturing
            logger.warning(
                "Order %s captured at the gateway (tx %s) while %s; refund needed",
                order.pk, tx.tid or order.click2pay_tid, result.previous_status,
            )
            AuditLog.record(
                action="order.capture_mismatch", order=order, severity="critical",
                metadata={
                    "status": result.previous_status,
                    "gateway_status": tx.status,
                    "amount": str(tx.paid_amount if tx.paid_amount is not None else order.total_amount),
                },
            )
    _raise_if_refused(result, "capture")
    return result


def refund(order_id, reason, claims, amount=None, *, gateway=None, now=None) -> ReconcileResult:
    """
    Refund a settled PIX or card order, fully or partially.

    Full refunds recuse the order and release its reservations; partial ones
    leave the booking in place as partial_refunded. A partial_refunded order
    can be refunded again up to what is left of the settled amount.
    """
    claims.require_staff("refunds")
    now = now or timezone.now()

    with transaction.atomic():
        order = _lock_order(order_id)
        status = normalize_status(order.status)
        if order.refund_status == RefundStatus.PROCESSING:
            raise InvalidState("Refund already processing", order_id=str(order.pk))
        if status not in SETTLED_STATUSES:
            raise InvalidState(f"Order is {order.status}; only paid orders can be refunded", order_id=str(order.pk))
        if order.payment_method not in REFUNDABLE_METHODS:
            raise InvalidState(f"{order.payment_method} orders cannot be refunded through the gateway", order_id=str(order.pk))
        if not order.click2pay_tid:
            raise InvalidState("Order has no gateway transaction", order_id=str(order.pk))

        settled = _settled_amount(order)
        already = Decimal("0.00")
        if status == OrderStatus.PARTIAL_REFUNDED and order.refund_amount is not None:
            already = order.refund_amount
        refundable = settled - already
        amount = refundable if amount is None else Decimal(str(amount))
        if amount <= 0 or amount > refundable:
            raise InvalidRange(f"Refund amount must be between 0 and {refundable}", refundable=str(refundable))

        # stored up front so a refund webhook racing the gateway call sees the new total
        order.refund_status = RefundStatus.PROCESSING
        order.refund_reason = reason or ""
        order.refund_amount = already + amount
        order.save(update_fields=["refund_status", "refund_reason", "refund_amount", "updated_at"])
        tid, method = order.click2pay_tid, order.payment_method

    gateway = gateway or get_gateway()
    try:
        tx = gateway.refund(tid, amount, method)
    except GatewayError as exc:
        with transaction.atomic():
            order = _lock_order(order_id)
            order.refund_status = RefundStatus.FAILED
            order.refund_amount = already or None
            order.save(update_fields=["refund_status", "refund_amount", "updated_at"])
            AuditLog.record(
                action="order.refund_failed", user_id=claims.user_id, order=order, severity="warning",
                metadata={"amount": str(amount), "error": exc.message},
            )
        raise

    with transaction.atomic():
        order = _lock_order(order_id)
        total_refunded = already + amount
        full = total_refunded >= settled
        target = OrderStatus.RECUSED if full else OrderStatus.PARTIAL_REFUNDED
        result = _apply_status(order, target, now=now, allow_from_settled=True)
        order.refund_status = RefundStatus.COMPLETED
        order.refund_amount = total_refunded
        order.refund_date = now
        order.save(update_fields=["refund_status", "refund_amount", "refund_date", "updated_at"])
        _log_event(order, "refund", result, gateway_status=tx.status, payload=tx.raw)
        AuditLog.record(
            action="order.refunded", user_id=claims.user_id, order=order, severity="warning",
            metadata={
                "amount": str(amount),
                "total_refunded": str(total_refunded),
                "full": full,
                "reason": reason or "",
            },
        )
    return result


def cancel_cash_order(order_id, reason, claims, *, now=None) -> ReconcileResult:
    """Administrative cancellation of a paid cash order; releases and restocks."""
    claims.require_staff("cash order cancellation")
    with transaction.atomic():
        order = _lock_order(order_id)
        if order.payment_method != PaymentMethod.CASH:
            raise InvalidState("Only cash orders can be cancelled here", order_id=str(order.pk))
        status = normalize_status(order.status)
        if status == OrderStatus.CANCELLED:
            return ReconcileResult(order, status, status, changed=False)
        if status != OrderStatus.PAID:
            raise InvalidState(f"Order is {order.status}; only paid cash orders can be cancelled", order_id=str(order.pk))

        result = _apply_status(
            order, OrderStatus.CANCELLED, now=now, allow_from_settled=True,
            reason=reason or "Cancelled by administrator", actor_id=claims.user_id,
        )
        _log_event(order, "admin", result)
        AuditLog.record(
            action="order.cash_cancelled", user_id=claims.user_id, order=order, severity="warning",
            metadata={"reason": reason or "", "previous_status": result.previous_status},
        )
    return result
