# booking-backend/coupons/serializers.py
from rest_framework import serializers

from .models import Coupon, CouponUsage


class CouponSerializer(serializers.ModelSerializer):
    class Meta:
        model = Coupon
        fields = [
            "id", "code", "name", "description", "discount_type", "discount_value",
            "minimum_amount", "valid_from", "valid_until", "max_uses", "used_count",
        ]
        read_only_fields = fields


class CouponUsageSerializer(serializers.ModelSerializer):
    code = serializers.CharField(source="coupon.code", read_only=True)

    class Meta:
        model = CouponUsage
        fields = ["id", "code", "order", "user", "discount_applied", "created_at"]
        read_only_fields = fields
