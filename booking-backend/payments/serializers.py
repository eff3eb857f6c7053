# payments/serializers.py
from rest_framework import serializers

from .models import PaymentEvent


class RefundSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)


class CancelCashSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")


class PaymentEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentEvent
        fields = [
            "id", "source", "event_type", "gateway_status",
            "previous_status", "local_status", "applied", "created_at",
        ]
        read_only_fields = fields
