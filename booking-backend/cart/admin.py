from django.contrib import admin

from common.admin_mixins import BranchScopedAdmin
from .models import CartHold


@admin.register(CartHold)
class CartHoldAdmin(BranchScopedAdmin):
    list_display = ("id", "user", "item_type", "resource", "product", "start_time", "end_time", "quantity", "status", "expires_at")
    list_filter = ("status", "item_type", "branch")
    search_fields = ("user__username", "resource__name", "product__name")
    readonly_fields = ("created_at", "updated_at")
