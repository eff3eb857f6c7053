# booking-backend/orders/serializers.py
from rest_framework import serializers

from .models import AuditLog, Order, OrderItem, PaymentMethod, Reservation


class ReservationSerializer(serializers.ModelSerializer):
    resource_name = serializers.CharField(source="resource.name", read_only=True)

    class Meta:
        model = Reservation
        fields = [
            "id", "resource", "resource_name", "start_time", "end_time",
            "quantity", "status", "total_price",
        ]
        read_only_fields = fields


class OrderItemSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    line_total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = OrderItem
        fields = ["id", "product", "product_name", "quantity", "price_per_unit", "line_total"]
        read_only_fields = fields


class OrderListSerializer(serializers.ModelSerializer):
    client_name = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id", "external_identifier", "client_name", "status", "payment_method",
            "total_amount", "expires_at", "paid_at", "created_at",
        ]
        read_only_fields = fields

    def get_client_name(self, obj):
        u = getattr(obj, "user", None)
        if not u:
            return None
        full = (u.get_full_name() or "").strip()
        return full or u.username


class OrderDetailSerializer(OrderListSerializer):
    reservations = ReservationSerializer(many=True, read_only=True)
    items = OrderItemSerializer(many=True, read_only=True)
    payment = serializers.SerializerMethodField()
    coupon_code = serializers.CharField(source="coupon.code", read_only=True, default=None)

    class Meta(OrderListSerializer.Meta):
        fields = OrderListSerializer.Meta.fields + [
            "branch", "click2pay_tid", "paid_amount", "payment", "discount_amount", "coupon_code",
            "cancelled_at", "cancellation_reason",
            "refund_status", "refund_amount", "refund_date", "refund_reason",
            "reservations", "items",
        ]
        read_only_fields = fields

    def get_payment(self, obj):
        """Client-facing subset of the gateway payload (PIX code, boleto link)."""
        data = obj.payment_data or {}
        inner = data.get("data") if isinstance(data.get("data"), dict) else data
        pix = inner.get("pix") or {}
        boleto = inner.get("boleto") or {}
        return {
            "qr_code": pix.get("qrCode") or pix.get("qr_code") or inner.get("qrCode"),
            "qr_code_image": pix.get("qrCodeImage") or pix.get("qr_code_image"),
            "boleto_url": boleto.get("url") or inner.get("boletoUrl"),
            "barcode": boleto.get("barcode") or boleto.get("digitable_line"),
            "error": data.get("error"),
        }


class CheckoutSerializer(serializers.Serializer):
    payment_method = serializers.ChoiceField(
        choices=[PaymentMethod.PIX, PaymentMethod.CARD, PaymentMethod.BOLETO]
    )
    payer = serializers.DictField(required=False)
    card = serializers.DictField(required=False)
    coupon_code = serializers.CharField(required=False, allow_blank=True, max_length=40)

    def validate(self, attrs):
        if attrs["payment_method"] == PaymentMethod.CARD and not attrs.get("card"):
            raise serializers.ValidationError({"card": "Card details are required for card payments"})
        return attrs


class CashOrderSerializer(serializers.Serializer):
    user_id = serializers.IntegerField(min_value=1)
    coupon_code = serializers.CharField(required=False, allow_blank=True, max_length=40)


class AuditLogSerializer(serializers.ModelSerializer):
    username = serializers.CharField(source="user.username", read_only=True, default=None)
    order_identifier = serializers.CharField(source="order.external_identifier", read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = [
            "id", "action", "severity", "branch", "order", "order_identifier",
            "user", "username", "metadata", "created_at",
        ]
        read_only_fields = fields
