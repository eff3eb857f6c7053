# booking-backend/orders/views.py
from django.contrib.auth import get_user_model
from rest_framework import generics, permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from common.api_mixins import EngineErrorMixin
from common.claims import claims_for
from common.dates import to_aware
from common.errors import NotFound
from common.permissions import BranchScopedListMixin, IsStaffRole, scope_to_branch
from .checkout import create_cash_order, start_checkout
from .models import AuditLog, Order
from .serializers import (
    AuditLogSerializer,
    CashOrderSerializer,
    CheckoutSerializer,
    OrderDetailSerializer,
    OrderListSerializer,
)
from .status import OrderStatus, normalize_status


User = get_user_model()


def orders_visible_to(claims):
    """Clients see their own orders; admins their branch; super admins everything."""
    qs = Order.objects.select_related("user", "branch")
    if not claims.is_staff:
        return qs.filter(user_id=claims.user_id)
    return scope_to_branch(qs, claims)


class CheckoutView(EngineErrorMixin, APIView):
    """
    POST /api/v1/orders/checkout  {payment_method, payer?, card?, coupon_code?}

    201 with the order when the gateway accepted the transaction, 402 when it
    declined it, 502 when it could not be reached. In the last two cases the
    body carries ``payment_error`` with retry guidance.
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        ser = CheckoutSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        result = start_checkout(
            request.user,
            data["payment_method"],
            payer=data.get("payer"),
            card=data.get("card"),
            coupon_code=data.get("coupon_code") or None,
        )
        body = {
            "order": OrderDetailSerializer(result.order).data,
            "reservation_ids": result.reservation_ids,
        }
        if result.error is None:
            return Response(body, status=status.HTTP_201_CREATED)

        body["payment_error"] = result.error
        if result.order.status == OrderStatus.RECUSED:
            body.update(error="payment_declined", detail=result.error["message"])
            return Response(body, status=status.HTTP_402_PAYMENT_REQUIRED)
        body.update(error="gateway_error", detail=result.error["message"])
        return Response(body, status=status.HTTP_502_BAD_GATEWAY)


class CashOrderView(EngineErrorMixin, APIView):
    """
    POST /api/v1/orders/cash  {user_id, coupon_code?}
    Admin books their own cart for a client, paid in cash at the counter.
    """
    permission_classes = [IsStaffRole]

    def post(self, request):
        ser = CashOrderSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        try:
            client = User.objects.get(pk=ser.validated_data["user_id"])
        except User.DoesNotExist:
            raise NotFound("Client not found", user_id=ser.validated_data["user_id"])
        result = create_cash_order(
            claims_for(request), client, coupon_code=ser.validated_data.get("coupon_code") or None,
        )
        return Response(
            {"order": OrderDetailSerializer(result.order).data, "reservation_ids": result.reservation_ids},
            status=status.HTTP_201_CREATED,
        )


class OrderListView(EngineErrorMixin, generics.ListAPIView):
    """
    GET /api/v1/orders/?status=&payment_method=&date_from=&date_to=
    """
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = OrderListSerializer
    queryset = Order.objects.none()

    def get_queryset(self):
        qs = orders_visible_to(claims_for(self.request))
        params = self.request.query_params

        status_ = normalize_status(params.get("status"))
        method = (params.get("payment_method") or "").strip()
        if status_:
            qs = qs.filter(status=status_)
        if method:
            qs = qs.filter(payment_method=method)
        if params.get("date_from"):
            qs = qs.filter(created_at__gte=to_aware(params["date_from"]))
        if params.get("date_to"):
            qs = qs.filter(created_at__lte=to_aware(params["date_to"]))
        return qs.order_by("-created_at")


class OrderDetailView(generics.RetrieveAPIView):
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = OrderDetailSerializer

    def get_queryset(self):
        return orders_visible_to(claims_for(self.request)).prefetch_related(
            "reservations__resource", "items__product"
        )


class AuditLogListView(BranchScopedListMixin, generics.ListAPIView):
    permission_classes = [IsStaffRole]
    serializer_class = AuditLogSerializer
    queryset = AuditLog.objects.none()

    def base_queryset(self):
        qs = AuditLog.objects.select_related("order", "user")
        params = self.request.query_params
        action = (params.get("action") or "").strip()
        severity = (params.get("severity") or "").strip()
        if action:
            qs = qs.filter(action__iexact=action)
        if severity:
            qs = qs.filter(severity__iexact=severity)
        if params.get("order_id"):
            qs = qs.filter(order_id=params["order_id"])
        if params.get("user_id"):
            qs = qs.filter(user_id=params["user_id"])
        return qs.order_by("-created_at", "-id")
