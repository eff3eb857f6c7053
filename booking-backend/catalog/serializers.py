# booking-backend/catalog/serializers.py
from rest_framework import serializers

from .models import Product, Resource, WeeklyScheduleEntry


class WeeklyScheduleEntrySerializer(serializers.ModelSerializer):
    weekday_name = serializers.CharField(source="get_weekday_display", read_only=True)

    class Meta:
        model = WeeklyScheduleEntry
        fields = ["id", "weekday", "weekday_name", "start_time", "end_time"]


class ResourceListSerializer(serializers.ModelSerializer):
    branch_code = serializers.CharField(source="branch.code", read_only=True, default=None)

    class Meta:
        model = Resource
        fields = [
            "id", "name", "resource_type", "capacity", "price_per_hour",
            "open_time", "close_time", "branch", "branch_code",
        ]


class ResourceDetailSerializer(ResourceListSerializer):
    open_days = serializers.SerializerMethodField()
    schedule = WeeklyScheduleEntrySerializer(source="schedule_entries", many=True, read_only=True)

    class Meta(ResourceListSerializer.Meta):
        fields = ResourceListSerializer.Meta.fields + ["description", "open_days", "schedule"]

    def get_open_days(self, obj):
        return sorted(obj.weekdays())


class ProductSerializer(serializers.ModelSerializer):
    class Meta:
        model = Product
        fields = ["id", "name", "description", "price", "stock", "branch"]
