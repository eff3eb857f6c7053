from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from cart.holds import add_to_cart
from cart.models import CartHold, ItemType
from common.claims import resolve_claims
from common.errors import InvalidCoupon
from common.roles import BookingRole
from common.testing import at, future_weekday, make_product, make_resource, make_user
from coupons.api import CouponLookupView, CouponUsageListView
from coupons.models import Coupon, CouponUsage, DiscountType
from coupons.services import compute_discount, validate_coupon
from orders.checkout import create_cash_order, start_checkout
from orders.models import Order, PaymentMethod
from orders.views import CheckoutView
from payments.gateway import GatewayTransaction


def _gateway():
    gateway = MagicMock()
    gateway.create_transaction.return_value = GatewayTransaction(tid="tx-c", status="pending", raw={"tid": "tx-c"})
    return gateway


class DiscountTests(TestCase):
    def test_percentage_and_fixed(self):
        pct = Coupon(code="DEZ", discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("10"))
        fixed = Coupon(code="TRINTA", discount_type=DiscountType.FIXED, discount_value=Decimal("30"))

        self.assertEqual(compute_discount(pct, Decimal("59.00")), Decimal("5.90"))
        self.assertEqual(compute_discount(fixed, Decimal("59.00")), Decimal("30.00"))
        self.assertEqual(compute_discount(fixed, Decimal("20.00")), Decimal("20.00"))

    def test_code_is_stored_upper_case(self):
        coupon = Coupon.objects.create(code=" bemvindo ", discount_value=Decimal("5"))
        self.assertEqual(coupon.code, "BEMVINDO")


class ValidateCouponTests(TestCase):
    def setUp(self):
        self.now = timezone.now()
        self.coupon = Coupon.objects.create(
            code="VERAO", discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("20"),
            minimum_amount=Decimal("50.00"), valid_until=self.now + timedelta(days=30), max_uses=2,
        )

    def test_valid_code_any_case(self):
        coupon, discount = validate_coupon("verao", Decimal("100.00"), now=self.now)
        self.assertEqual(coupon, self.coupon)
        self.assertEqual(discount, Decimal("20.00"))

    def test_rejections(self):
        with self.assertRaises(InvalidCoupon):
            validate_coupon("", Decimal("100.00"))
        with self.assertRaises(InvalidCoupon):
            validate_coupon("NOPE", Decimal("100.00"))
        with self.assertRaises(InvalidCoupon):
            validate_coupon("VERAO", Decimal("49.99"), now=self.now)
        with self.assertRaises(InvalidCoupon):
            validate_coupon("VERAO", Decimal("100.00"), now=self.now + timedelta(days=31))

        Coupon.objects.filter(pk=self.coupon.pk).update(valid_from=self.now + timedelta(days=1))
        with self.assertRaises(InvalidCoupon):
            validate_coupon("VERAO", Decimal("100.00"), now=self.now)

    def test_inactive_and_exhausted(self):
        Coupon.objects.filter(pk=self.coupon.pk).update(used_count=2)
        with self.assertRaises(InvalidCoupon):
            validate_coupon("VERAO", Decimal("100.00"), now=self.now)

        Coupon.objects.filter(pk=self.coupon.pk).update(used_count=0, is_active=False)
        with self.assertRaises(InvalidCoupon):
            validate_coupon("VERAO", Decimal("100.00"), now=self.now)


class CheckoutCouponTests(TestCase):
    def setUp(self):
        self.alice = make_user("alice-cupom")
        self.admin = make_user("admin-cupom", role=BookingRole.ADMIN)
        self.room = make_resource(name="Sala Cupom")
        self.water = make_product(stock=5)
        self.day = future_weekday(1)
        Coupon.objects.create(
            code="DESCONTO10", discount_type=DiscountType.FIXED, discount_value=Decimal("10.00"),
            minimum_amount=Decimal("50.00"), max_uses=1,
        )

    def test_discount_applied_and_usage_recorded(self):
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.day, 9), at(self.day, 10))
        add_to_cart(self.alice, ItemType.PRODUCT, self.water.id, 2)
        gateway = _gateway()

        order = start_checkout(self.alice, PaymentMethod.PIX, coupon_code="desconto10", gateway=gateway).order

        self.assertEqual(order.total_amount, Decimal("49.00"))
        self.assertEqual(order.discount_amount, Decimal("10.00"))
        self.assertEqual(order.coupon.code, "DESCONTO10")
        self.assertEqual(gateway.create_transaction.call_args[0][0].total_amount, Decimal("49.00"))
        usage = CouponUsage.objects.get()
        self.assertEqual(usage.order, order)
        self.assertEqual(usage.user, self.alice)
        self.assertEqual(usage.discount_applied, Decimal("10.00"))
        self.assertEqual(Coupon.objects.get(code="DESCONTO10").used_count, 1)

    def test_invalid_coupon_writes_nothing(self):
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.day, 9), at(self.day, 10))
        Coupon.objects.filter(code="DESCONTO10").update(used_count=1)
        gateway = _gateway()

        with self.assertRaises(InvalidCoupon):
            start_checkout(self.alice, PaymentMethod.PIX, coupon_code="DESCONTO10", gateway=gateway)

        gateway.create_transaction.assert_not_called()
        self.assertFalse(Order.objects.exists())
        self.assertEqual(CartHold.objects.active().filter(user=self.alice).count(), 1)

    def test_cash_order_with_coupon(self):
        add_to_cart(self.admin, ItemType.ROOM, self.room.id, 1, at(self.day, 10), at(self.day, 11))

        order = create_cash_order(resolve_claims(self.admin), self.alice, coupon_code="DESCONTO10").order

        self.assertEqual(order.total_amount, Decimal("40.00"))
        self.assertEqual(order.paid_amount, Decimal("40.00"))
        self.assertEqual(CouponUsage.objects.get().user, self.alice)


class CouponApiTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.alice = make_user("alice-cupom-api")
        self.admin = make_user("admin-cupom-api", role=BookingRole.ADMIN)
        self.room = make_resource(name="Sala API")
        self.day = future_weekday(2)
        Coupon.objects.create(code="METADE", discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("50"))

    def _get(self, path, user, **params):
        request = self.factory.get(path, params)
        force_authenticate(request, user=user)
        return request

    def test_lookup_defaults_to_cart_total(self):
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.day, 9), at(self.day, 11))

        response = CouponLookupView.as_view()(self._get("/api/v1/coupons/validate", self.alice, code="metade"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["subtotal"], "100.00")
        self.assertEqual(response.data["discount_amount"], "50.00")
        self.assertEqual(response.data["total"], "50.00")

    def test_lookup_unknown_code(self):
        response = CouponLookupView.as_view()(
            self._get("/api/v1/coupons/validate", self.alice, code="NADA", subtotal="10")
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["error"], "invalid_coupon")

    def test_checkout_with_bad_coupon(self):
        add_to_cart(self.alice, ItemType.ROOM, self.room.id, 1, at(self.day, 9), at(self.day, 10))
        request = self.factory.post(
            "/api/v1/orders/checkout", {"payment_method": "pix", "coupon_code": "NADA"}, format="json",
        )
        force_authenticate(request, user=self.alice)

        response = CheckoutView.as_view()(request)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["error"], "invalid_coupon")

    def test_usage_list_is_staff_only(self):
        response = CouponUsageListView.as_view()(self._get("/api/v1/coupons/usage", self.alice))
        self.assertEqual(response.status_code, 403)
        response = CouponUsageListView.as_view()(self._get("/api/v1/coupons/usage", self.admin))
        self.assertEqual(response.status_code, 200)
