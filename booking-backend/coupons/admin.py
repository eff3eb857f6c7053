from django.contrib import admin

from common.admin_mixins import BranchScopedAdmin
from .models import Coupon, CouponUsage


@admin.register(Coupon)
class CouponAdmin(BranchScopedAdmin):
    list_display = (
        "code", "name", "branch", "is_active", "discount_type", "discount_value",
        "minimum_amount", "max_uses", "used_count", "valid_from", "valid_until",
    )
    list_filter = ("branch", "is_active", "discount_type")
    search_fields = ("code", "name")
    readonly_fields = ("used_count",)
    ordering = ("code",)


@admin.register(CouponUsage)
class CouponUsageAdmin(BranchScopedAdmin):
    list_display = ("coupon", "user", "order", "branch", "discount_applied", "created_at")
    list_filter = ("branch",)
    search_fields = ("coupon__code", "user__username")
    readonly_fields = ("coupon", "user", "order", "branch", "discount_applied", "created_at")
