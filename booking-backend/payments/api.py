# payments/api.py
from rest_framework import permissions
from rest_framework.response import Response
from rest_framework.views import APIView

from common.api_mixins import EngineErrorMixin
from common.claims import claims_for
from common.errors import NotFound
from common.permissions import IsStaffRole
from orders.serializers import OrderDetailSerializer
from orders.views import orders_visible_to
from .reconciler import cancel_cash_order, cancel_expired_hold, capture_payment, check_status, handle_webhook, refund
from .serializers import CancelCashSerializer, PaymentEventSerializer, RefundSerializer
from .signatures import signature_from_headers


def _reconcile_body(result):
    body = result.as_dict()
    body["order_detail"] = OrderDetailSerializer(result.order).data
    return body


class _OrderActionView(EngineErrorMixin, APIView):
    permission_classes = [permissions.IsAuthenticated]

    def visible_order(self, request, pk):
        order = orders_visible_to(claims_for(request)).filter(pk=pk).first()
        if order is None:
            raise NotFound(f"Order {pk} not found", order_id=str(pk))
        return order


class OrderStatusView(_OrderActionView):
    """
    POST /api/v1/payments/orders/<id>/status
    Re-read the gateway transaction and apply it. Clients poll this while the
    PIX code or boleto is open.
    """

    def post(self, request, pk):
        order = self.visible_order(request, pk)
        return Response(_reconcile_body(check_status(order.pk)))


class CancelExpiredView(_OrderActionView):
    """POST /api/v1/payments/orders/<id>/cancel-expired"""

    def post(self, request, pk):
        result = cancel_expired_hold(pk, claims=claims_for(request))
        return Response(_reconcile_body(result))


class CaptureView(_OrderActionView):
    permission_classes = [IsStaffRole]

    def post(self, request, pk):
        order = self.visible_order(request, pk)
        return Response(_reconcile_body(capture_payment(order.pk)))


class RefundView(_OrderActionView):
    """POST /api/v1/payments/orders/<id>/refund  {reason, amount?}"""
    permission_classes = [IsStaffRole]

    def post(self, request, pk):
        order = self.visible_order(request, pk)
        ser = RefundSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        result = refund(
            order.pk,
            ser.validated_data["reason"],
            claims_for(request),
            amount=ser.validated_data.get("amount"),
        )
        return Response(_reconcile_body(result))


class CancelCashView(_OrderActionView):
    """POST /api/v1/payments/orders/<id>/cancel-cash  {reason}"""
    permission_classes = [IsStaffRole]

    def post(self, request, pk):
        order = self.visible_order(request, pk)
        ser = CancelCashSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        result = cancel_cash_order(order.pk, ser.validated_data["reason"], claims_for(request))
        return Response(_reconcile_body(result))


class PaymentEventListView(_OrderActionView):
    """GET /api/v1/payments/orders/<id>/events"""
    permission_classes = [IsStaffRole]

    def get(self, request, pk):
        order = self.visible_order(request, pk)
        return Response(PaymentEventSerializer(order.payment_events.all(), many=True).data)


class WebhookView(EngineErrorMixin, APIView):
    """
    POST /api/v1/payments/webhook

    Authenticated by the HMAC signature over the raw body, not by JWT.
    Duplicates and stale events answer 200 so the gateway stops retrying.
    """
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        result = handle_webhook(request.body, signature_from_headers(request.headers))
        return Response({"received": True, **result.as_dict()})
