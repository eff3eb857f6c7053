# booking-backend/cart/serializers.py
from rest_framework import serializers

from .models import CartHold, ItemType


class CartHoldSerializer(serializers.ModelSerializer):
    item_name = serializers.SerializerMethodField()

    class Meta:
        model = CartHold
        fields = [
            "id", "item_type", "resource", "product", "item_name", "start_time", "end_time",
            "quantity", "price", "metadata", "status", "expires_at", "created_at",
        ]
        read_only_fields = fields

    def get_item_name(self, obj):
        target = obj.resource if obj.is_bookable else obj.product
        return getattr(target, "name", None)


class AddToCartSerializer(serializers.Serializer):
    item_type = serializers.ChoiceField(choices=ItemType.choices)
    item_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1, default=1)
    start_time = serializers.DateTimeField(required=False, allow_null=True)
    end_time = serializers.DateTimeField(required=False, allow_null=True)
    metadata = serializers.JSONField(required=False)

    def validate(self, attrs):
        if attrs["item_type"] != ItemType.PRODUCT:
            if not attrs.get("start_time") or not attrs.get("end_time"):
                raise serializers.ValidationError("start_time and end_time are required for bookings")
        return attrs


class UpdateCartSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)
