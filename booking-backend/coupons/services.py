# booking-backend/coupons/services.py
"""
Coupon validation and redemption.

``validate_coupon`` is read-only and backs the lookup endpoint; checkout calls
it again with ``lock=True`` so the usage limit is checked and bumped under the
coupon row lock.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal

from django.db.models import F
from django.utils import timezone

from common.errors import InvalidCoupon
from .models import Coupon, CouponUsage, DiscountType

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def compute_discount(coupon, subtotal) -> Decimal:
    """Discount for ``subtotal``; never more than the subtotal itself."""
    subtotal = Decimal(subtotal)
    if coupon.discount_type == DiscountType.FIXED:
        discount = coupon.discount_value
    else:
        discount = subtotal * coupon.discount_value / Decimal("100")
    discount = min(discount, subtotal).quantize(CENTS, rounding=ROUND_HALF_UP)
    return max(discount, Decimal("0.00"))


def validate_coupon(code, subtotal, *, now=None, lock=False):
    """
    Return (coupon, discount) for ``code`` against a cart ``subtotal``.

    Raises InvalidCoupon for unknown, inactive, out-of-window or exhausted
    coupons and when the subtotal is under the coupon minimum.
    """
    code = (code or "").strip().upper()
    if not code:
        raise InvalidCoupon("Missing coupon code")
    now = now or timezone.now()

    qs = Coupon.objects.select_for_update() if lock else Coupon.objects
    coupon = qs.filter(code=code).first()
    if coupon is None or not coupon.is_active:
        raise InvalidCoupon("Coupon not found or inactive", code=code)
    if coupon.valid_from and coupon.valid_from > now:
        raise InvalidCoupon("Coupon is not active yet", code=code)
    if coupon.valid_until and coupon.valid_until < now:
        raise InvalidCoupon("Coupon has expired", code=code)
    if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
        raise InvalidCoupon("Coupon usage limit reached", code=code)

    subtotal = Decimal(subtotal)
    if coupon.minimum_amount is not None and subtotal < coupon.minimum_amount:
        raise InvalidCoupon(
            f"Minimum amount for this coupon: {coupon.minimum_amount}",
            code=code,
            minimum_amount=str(coupon.minimum_amount),
        )
    return coupon, compute_discount(coupon, subtotal)


def redeem_coupon(coupon, order, discount) -> CouponUsage:
    """Record a use of a locked coupon against ``order``. Runs inside the checkout transaction."""
    Coupon.objects.filter(pk=coupon.pk).update(used_count=F("used_count") + 1)
    usage = CouponUsage.objects.create(
        coupon=coupon,
        user=order.user,
        order=order,
        branch_id=order.branch_id,
        discount_applied=discount,
    )
    logger.info("Coupon %s applied to order %s: -%s", coupon.code, order.pk, discount)
    return usage
