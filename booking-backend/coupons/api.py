# booking-backend/coupons/api.py
from decimal import Decimal, InvalidOperation

from rest_framework.generics import ListAPIView
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from cart.holds import cart_total, get_cart
from common.api_mixins import EngineErrorMixin
from common.errors import InvalidRange
from common.permissions import BranchScopedListMixin, IsStaffRole
from .models import CouponUsage
from .serializers import CouponSerializer, CouponUsageSerializer
from .services import validate_coupon


class CouponLookupView(EngineErrorMixin, APIView):
    """
    GET /api/v1/coupons/validate?code=ABC123[&subtotal=123.45]
    Validates the coupon against the subtotal (default: the caller's cart
    total) and previews the discount. Nothing is reserved until checkout.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        code = (request.query_params.get("code") or "").strip()
        subtotal = request.query_params.get("subtotal")
        if subtotal is None:
            subtotal = cart_total(get_cart(request.user))
        else:
            try:
                subtotal = Decimal(str(subtotal))
            except InvalidOperation:
                raise InvalidRange("Invalid subtotal", subtotal=subtotal)

        coupon, discount = validate_coupon(code, subtotal)
        return Response({
            "coupon": CouponSerializer(coupon).data,
            "subtotal": str(subtotal),
            "discount_amount": str(discount),
            "total": str(max(subtotal - discount, Decimal("0.00"))),
        })


class CouponUsageListView(BranchScopedListMixin, ListAPIView):
    """
    GET /api/v1/coupons/usage?code=
    """
    permission_classes = [IsStaffRole]
    serializer_class = CouponUsageSerializer
    queryset = CouponUsage.objects.none()

    def base_queryset(self):
        qs = CouponUsage.objects.select_related("coupon", "order")
        code = (self.request.query_params.get("code") or "").strip()
        if code:
            qs = qs.filter(coupon__code__iexact=code)
        return qs
