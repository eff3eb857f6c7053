# booking-backend/cart/holds.py
"""
Cart / hold manager.

A hold is a soft, time-limited claim on a resource window (or on product
stock). Active holds count against availability exactly like reservations
until they expire, are removed, or are consumed by checkout.
"""
import logging
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from catalog.models import ResourceType
from catalog.services import get_product, get_resource
from common.errors import CapacityExceeded, InvalidRange, InvalidState, NotFound
from scheduling.availability import check_window
from .models import BOOKABLE_ITEM_TYPES, CartHold, ItemType

logger = logging.getLogger(__name__)


def hold_ttl(item_type) -> timedelta:
    seconds = settings.CART_HOLD_TTL_SECONDS.get(item_type, 900)
    return timedelta(seconds=seconds)


def _hours(start, end) -> Decimal:
    return Decimal((end - start).total_seconds()) / Decimal(3600)


def booking_price(resource, start, end, quantity) -> Decimal:
    return (resource.price_per_hour * _hours(start, end) * quantity).quantize(Decimal("0.01"))


def held_product_quantity(product, *, exclude_hold_id=None, now=None) -> int:
    qs = CartHold.objects.active(now).filter(product=product, item_type=ItemType.PRODUCT)
    if exclude_hold_id is not None:
        qs = qs.exclude(pk=exclude_hold_id)
    return qs.aggregate(total=Sum("quantity"))["total"] or 0


def _check_product_stock(product, quantity, *, exclude_hold_id=None, now=None):
    held = held_product_quantity(product, exclude_hold_id=exclude_hold_id, now=now)
    available = max(product.stock - held, 0)
    if quantity > available:
        raise CapacityExceeded(
            f"Only {available} unit(s) of {product.name} available",
            available_quantity=available,
        )


def add_to_cart(user, item_type, item_id, quantity=1, start_time=None, end_time=None,
                metadata=None, *, now=None):
    """
    Place a hold for ``quantity`` of an item.

    Bookable items (room/equipment) need start_time/end_time; the window is
    re-validated with the resource row locked so concurrent adds serialize.
    Raises CapacityExceeded when the window (or stock) lacks room.
    """
    now = now or timezone.now()
    quantity = int(quantity or 1)
    if quantity < 1:
        raise InvalidRange("quantity must be at least 1")
    if item_type not in ItemType.values:
        raise InvalidRange(f"Unknown item type {item_type!r}")

    with transaction.atomic():
        if item_type in BOOKABLE_ITEM_TYPES:
            resource = get_resource(item_id, lock=True)
            expected = ResourceType.ROOM if item_type == ItemType.ROOM else ResourceType.EQUIPMENT
            if resource.resource_type != expected:
                raise InvalidRange(f"Resource {resource.pk} is not a {item_type}")
            check_window(resource, start_time, end_time, quantity, now=now)
            hold = CartHold.objects.create(
                user=user,
                branch_id=resource.branch_id,
                item_type=item_type,
                resource=resource,
                start_time=start_time,
                end_time=end_time,
                quantity=quantity,
                price=booking_price(resource, start_time, end_time, quantity),
                metadata=metadata or {},
                expires_at=now + hold_ttl(item_type),
            )
        else:
            product = get_product(item_id, lock=True)
            _check_product_stock(product, quantity, now=now)
            hold = CartHold.objects.create(
                user=user,
                branch_id=product.branch_id,
                item_type=item_type,
                product=product,
                quantity=quantity,
                price=(product.price * quantity).quantize(Decimal("0.01")),
                metadata=metadata or {},
                expires_at=now + hold_ttl(item_type),
            )

    logger.info("Hold %s created user=%s %s:%s qty=%s", hold.pk, user.pk, item_type, item_id, quantity)
    return hold


def _user_hold(user, hold_id, *, lock=False):
    qs = CartHold.objects.filter(user=user)
    if lock:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=hold_id)
    except (CartHold.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"Cart item {hold_id} not found", hold_id=hold_id)


def remove_from_cart(user, hold_id):
    """Release a hold; removing one that already left the active state is a no-op."""
    with transaction.atomic():
        hold = _user_hold(user, hold_id, lock=True)
        if hold.status == CartHold.STATUS_ACTIVE:
            hold.status = CartHold.STATUS_REMOVED
            hold.save(update_fields=["status", "updated_at"])
            logger.info("Hold %s removed by user=%s", hold.pk, user.pk)
    return hold


def update_cart(user, hold_id, quantity, *, now=None):
    """Change a hold's quantity, re-validating capacity without counting the hold itself."""
    now = now or timezone.now()
    quantity = int(quantity)
    if quantity < 1:
        raise InvalidRange("quantity must be at least 1")

    with transaction.atomic():
        hold = _user_hold(user, hold_id, lock=True)
        if not hold.is_active(now):
            raise InvalidState("Cart item is no longer active", hold_id=hold.pk)

        if hold.is_bookable:
            resource = get_resource(hold.resource_id, lock=True)
            check_window(resource, hold.start_time, hold.end_time, quantity,
                         exclude_hold_id=hold.pk, now=now)
            hold.price = booking_price(resource, hold.start_time, hold.end_time, quantity)
        else:
            product = get_product(hold.product_id, lock=True)
            _check_product_stock(product, quantity, exclude_hold_id=hold.pk, now=now)
            hold.price = (product.price * quantity).quantize(Decimal("0.01"))

        hold.quantity = quantity
        hold.save(update_fields=["quantity", "price", "updated_at"])
    return hold


def clear_cart(user, *, created_before=None) -> int:
    """Drop the user's active holds; with ``created_before`` only those placed up to that moment."""
    qs = CartHold.objects.filter(user=user, status=CartHold.STATUS_ACTIVE)
    if created_before is not None:
        qs = qs.filter(created_at__lte=created_before)
    count = qs.update(
        status=CartHold.STATUS_REMOVED, updated_at=timezone.now()
    )
    if count:
        logger.info("Cart cleared user=%s holds=%s", user.pk, count)
    return count


def get_cart(user, *, now=None):
    """
    The user's live holds. Stale active rows are flipped to expired on the
    way out so the cart never shows them.
    """
    now = now or timezone.now()
    CartHold.objects.filter(
        user=user, status=CartHold.STATUS_ACTIVE, expires_at__lte=now
    ).update(status=CartHold.STATUS_EXPIRED, updated_at=now)
    return list(
        CartHold.objects.active(now)
        .filter(user=user)
        .select_related("resource", "product")
        .order_by("created_at", "id")
    )


def cart_total(holds) -> Decimal:
    return sum((h.price for h in holds), Decimal("0.00"))


def sweep_expired_holds(*, now=None) -> int:
    """Flip every active hold past its expiry to expired. Returns the count."""
    now = now or timezone.now()
    count = CartHold.objects.filter(
        status=CartHold.STATUS_ACTIVE, expires_at__lte=now
    ).update(status=CartHold.STATUS_EXPIRED, updated_at=now)
    if count:
        logger.info("Expired %s cart hold(s)", count)
    return count
