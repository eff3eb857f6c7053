# booking-backend/orders/admin.py
from django.contrib import admin

from common.admin_mixins import BranchScopedAdmin
from .models import AuditLog, Order, OrderItem, Reservation


class ReservationInline(admin.TabularInline):
    model = Reservation
    extra = 0
    readonly_fields = ("resource", "start_time", "end_time", "quantity", "status", "total_price")
    can_delete = False


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ("product", "quantity", "price_per_unit", "stock_restored", "created_at")
    can_delete = False


@admin.register(Order)
class OrderAdmin(BranchScopedAdmin):
    list_display = ("external_identifier", "user", "branch", "payment_method", "status", "total_amount", "expires_at", "created_at")
    list_filter = ("status", "payment_method", "refund_status", "branch", "created_at")
    search_fields = ("external_identifier", "click2pay_tid", "user__username", "user__email")
    date_hierarchy = "created_at"
    readonly_fields = (
        "external_identifier", "click2pay_tid", "payment_data", "status",
        "paid_at", "paid_amount", "cancelled_at", "cancelled_by",
        "refund_status", "refund_amount", "refund_date", "coupon", "discount_amount",
    )
    inlines = [ReservationInline, OrderItemInline]


@admin.register(Reservation)
class ReservationAdmin(BranchScopedAdmin):
    list_display = ("resource", "user", "start_time", "end_time", "quantity", "status", "order")
    list_filter = ("status", "resource__resource_type", "branch")
    search_fields = ("resource__name", "user__username", "order__external_identifier")
    date_hierarchy = "start_time"


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("action", "severity", "user", "order", "branch", "created_at")
    list_filter = ("severity", "action", "created_at")
    search_fields = ("action", "order__external_identifier", "user__username")
    readonly_fields = [f.name for f in AuditLog._meta.fields]
