# booking-backend/orders/checkout.py
"""
Checkout: turn a user's active holds into an order with reservations.

All capacity checks are repeated with the resource rows locked; a hold whose
window was taken in the meantime fails the whole checkout with
SlotNoLongerAvailable and nothing is written.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from cart.models import CartHold
from catalog.models import Product, Resource
from common.errors import (
    AlreadyProcessed,
    CapacityExceeded,
    GatewayError,
    InvalidRange,
    InvalidState,
    SlotNoLongerAvailable,
)
from coupons.services import redeem_coupon, validate_coupon
from payments.errors import classify_payment_error
from payments.gateway import get_gateway
from payments.reconciler import apply_transaction
from scheduling.availability import check_window
from .models import AuditLog, Order, OrderItem, PaymentMethod, Reservation, new_external_identifier
from .status import OrderStatus

logger = logging.getLogger(__name__)


GATEWAY_METHODS = frozenset({PaymentMethod.PIX, PaymentMethod.CARD, PaymentMethod.BOLETO})


@dataclass
class CheckoutResult:
    order: Order
    reservation_ids: list = field(default_factory=list)
    error: dict = None


def commit_checkout(user, order, *, paid=False, cart_user=None, coupon_code=None, now=None):
    """
    Consume ``cart_user``'s (default: ``user``'s) active holds into ``order``.

    A ``coupon_code`` is validated against the cart subtotal with the coupon
    row locked and its discount taken off ``order.total_amount``.
    Must run inside a transaction. Returns the created reservation ids.
    """
    now = now or timezone.now()
    holder = cart_user or user
    holds = list(
        CartHold.objects.select_for_update()
        .active(now)
        .filter(user=holder)
        .order_by("id")
    )
    if not holds:
        raise InvalidState("Cart is empty")

    # lock in a fixed order so concurrent checkouts cannot deadlock
    resource_ids = sorted({h.resource_id for h in holds if h.is_bookable})
    product_ids = sorted({h.product_id for h in holds if not h.is_bookable})
    resources = {r.pk: r for r in Resource.objects.select_for_update().filter(pk__in=resource_ids).order_by("pk")}
    products = {p.pk: p for p in Product.objects.select_for_update().filter(pk__in=product_ids).order_by("pk")}

    reservation_status = OrderStatus.PAID if paid else OrderStatus.IN_PROCESS
    reservation_ids = []
    total = Decimal("0.00")

    for hold in holds:
        if hold.is_bookable:
            resource = resources[hold.resource_id]
            try:
                check_window(resource, hold.start_time, hold.end_time, hold.quantity,
                             exclude_hold_id=hold.pk, now=now)
            except (CapacityExceeded, InvalidRange) as exc:
                logger.info("Checkout for user=%s lost hold %s: %s", user.pk, hold.pk, exc)
                raise SlotNoLongerAvailable(
                    f"{resource.name} is no longer available for the selected time",
                    hold_id=hold.pk,
                    resource_id=resource.pk,
                    start_time=hold.start_time.isoformat(),
                    end_time=hold.end_time.isoformat(),
                )
            reservation = Reservation.objects.create(
                resource=resource,
                user=order.user,
                order=order,
                branch_id=resource.branch_id,
                start_time=hold.start_time,
                end_time=hold.end_time,
                quantity=hold.quantity,
                status=reservation_status,
                total_price=hold.price,
            )
            reservation_ids.append(reservation.pk)
        else:
            product = products[hold.product_id]
            if product.stock < hold.quantity:
                raise SlotNoLongerAvailable(
                    f"Only {product.stock} unit(s) of {product.name} left",
                    hold_id=hold.pk,
                    product_id=product.pk,
                )
            product.stock -= hold.quantity
            product.save(update_fields=["stock", "updated_at"])
            OrderItem.objects.create(
                order=order,
                product=product,
                branch_id=product.branch_id,
                quantity=hold.quantity,
                price_per_unit=product.price,
            )

        # consumed right away so later holds in this loop no longer see it
        hold.status = CartHold.STATUS_CONSUMED
        hold.save(update_fields=["status", "updated_at"])
        total += hold.price

    fields = ["total_amount", "updated_at"]
    coupon = None
    if coupon_code:
        coupon, discount = validate_coupon(coupon_code, total, now=now, lock=True)
        order.coupon = coupon
        order.discount_amount = discount
        total -= discount
        fields += ["coupon", "discount_amount"]
    order.total_amount = total
    order.save(update_fields=fields)
    if coupon is not None:
        redeem_coupon(coupon, order, discount)
    return reservation_ids


def _first_branch_id(user, now):
    return (
        CartHold.objects.active(now)
        .filter(user=user)
        .order_by("id")
        .values_list("branch_id", flat=True)
        .first()
    )


def start_checkout(user, payment_method, payer=None, card=None, coupon_code=None, *,
                   gateway=None, now=None) -> CheckoutResult:
    """
    Create a pending order from the cart and open the gateway transaction.

    The order and its reservations are committed before the gateway call. A
    gateway failure leaves the order pending so the payment window sweep
    releases it; the classified error is returned for the client.
    """
    if payment_method not in GATEWAY_METHODS:
        raise InvalidState(f"Payment method {payment_method!r} is not available at checkout")
    now = now or timezone.now()

    with transaction.atomic():
        order = Order(
            user=user,
            branch_id=_first_branch_id(user, now),
            created_by=user,
            payment_method=payment_method,
            status=OrderStatus.PENDING,
        )
        order.start_payment_window(now)
        order.save()
        reservation_ids = commit_checkout(user, order, coupon_code=coupon_code, now=now)

    logger.info(
        "Checkout order=%s user=%s method=%s total=%s reservations=%s",
        order.external_identifier, user.pk, payment_method, order.total_amount, len(reservation_ids),
    )

    gateway = gateway or get_gateway()
    try:
        tx = gateway.create_transaction(order, payer=payer, card=card)
    except GatewayError as exc:
        Order.objects.filter(pk=order.pk).update(payment_data={"error": exc.message, **exc.context})
        order.refresh_from_db()
        return CheckoutResult(order, reservation_ids, classify_payment_error(exc.message, payment_method))

    try:
        result = apply_transaction(order.pk, tx, source="checkout", now=now)
    except AlreadyProcessed:
        # a webhook settled the order before this call returned
        order.refresh_from_db()
        return CheckoutResult(order, reservation_ids)
    order = result.order
    error = None
    if result.status == OrderStatus.RECUSED:
        error = classify_payment_error(tx.status_reason or tx.status, payment_method)
    return CheckoutResult(order, reservation_ids, error)


def create_cash_order(claims, user, coupon_code=None, *, now=None) -> CheckoutResult:
    """
    Staff-only: book the administrator's cart for ``user`` as a paid cash order.
    """
    claims.require_staff("cash orders")
    now = now or timezone.now()

    with transaction.atomic():
        order = Order(
            user=user,
            branch_id=claims.branch_id or _first_branch_id(claims.user_id, now),
            created_by_id=claims.user_id,
            payment_method=PaymentMethod.CASH,
            status=OrderStatus.PAID,
            external_identifier=new_external_identifier("cash"),
            paid_at=now,
        )
        order.save()
        reservation_ids = commit_checkout(
            user, order, paid=True, cart_user=claims.user_id, coupon_code=coupon_code, now=now,
        )
        order.paid_amount = order.total_amount
        order.save(update_fields=["paid_amount", "updated_at"])
        AuditLog.record(
            action="order.cash_created",
            user_id=claims.user_id,
            order=order,
            metadata={
                "client_id": user.pk,
                "total": str(order.total_amount),
                "reservations": reservation_ids,
            },
        )

    logger.info("Cash order %s created by user=%s for user=%s", order.external_identifier, claims.user_id, user.pk)
    return CheckoutResult(order, reservation_ids)
