# booking-backend/scheduling/serializers.py
from rest_framework import serializers

from .models import ManualBlock


class ManualBlockSerializer(serializers.ModelSerializer):
    created_by_name = serializers.CharField(source="created_by.username", read_only=True, default=None)

    class Meta:
        model = ManualBlock
        fields = ["id", "resource", "branch", "start_time", "end_time", "reason", "created_by", "created_by_name", "created_at"]
        read_only_fields = fields


class ManualBlockCreateSerializer(serializers.Serializer):
    start_time = serializers.DateTimeField()
    end_time = serializers.DateTimeField()
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)


class HourAvailabilitySerializer(serializers.Serializer):
    hour = serializers.IntegerField()
    is_available = serializers.BooleanField()
    available_quantity = serializers.IntegerField()
    blocked_reason = serializers.CharField(allow_null=True)
