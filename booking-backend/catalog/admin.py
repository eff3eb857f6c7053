from django.contrib import admin

from common.admin_mixins import BranchScopedAdmin
from .models import Product, Resource, WeeklyScheduleEntry


class WeeklyScheduleEntryInline(admin.TabularInline):
    model = WeeklyScheduleEntry
    extra = 0


@admin.register(Resource)
class ResourceAdmin(BranchScopedAdmin):
    list_display = ("name", "resource_type", "capacity", "price_per_hour", "open_time", "close_time", "branch", "is_active")
    list_filter = ("resource_type", "branch", "is_active")
    search_fields = ("name",)
    inlines = [WeeklyScheduleEntryInline]


@admin.register(Product)
class ProductAdmin(BranchScopedAdmin):
    list_display = ("name", "price", "stock", "branch", "is_active")
    list_filter = ("branch", "is_active")
    search_fields = ("name",)
